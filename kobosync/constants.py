# -*- coding: utf-8 -*-
# Calibre-Web Automated – fork of Calibre-Web
# Copyright (C) 2018-2026 Calibre-Web contributors
# Copyright (C) 2024-2026 Calibre-Web Automated contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

import os
from datetime import datetime


BASE_DIR = os.path.abspath(os.path.dirname(__file__))
CONFIG_DIR = os.environ.get('KOBOSYNC_CONFIG_DIR', os.path.dirname(BASE_DIR))

ROLE_USER               = 0 << 0
ROLE_DOWNLOAD           = 1 << 1
ROLE_EXPLICIT_CONTENT   = 1 << 9

# Formats a Kobo device can read, mapped to the labels announced in the download urls
KOBO_FORMATS = {"KEPUB": ["KEPUB"], "EPUB": ["EPUB3", "EPUB"]}

KOBO_STOREAPI_URL = "https://storeapi.kobo.com"
KOBO_IMAGEHOST_URL = "https://cdn.kobo.com/book-images"
KOBO_READING_SERVICES_URL = "https://readingservices.kobo.com"

SYNC_ITEM_LIMIT = 100

# Header carrying the opaque cursor in both directions
SYNC_TOKEN_HEADER = "x-kobo-synctoken"
# Header carrying the continuation sentinel
SYNC_HEADER = "x-kobo-sync"
SYNC_CONTINUE = "continue"

DEFAULT_CATEGORY_UUID = "00000000-0000-0000-0000-000000000001"

# Fixed namespace for deterministic series ids
SERIES_NAMESPACE = "6ba7b810-9dad-11d1-80b4-00c04fd430c8"

EPOCH = datetime(1970, 1, 1)


def has_flag(value, bit_flag):
    return bit_flag == (bit_flag & (value or 0))
