# -*- coding: utf-8 -*-
# Calibre-Web Automated – fork of Calibre-Web
# Copyright (C) 2018-2026 Calibre-Web contributors
# Copyright (C) 2024-2026 Calibre-Web Automated contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

from datetime import datetime, timezone

from . import logger
from .constants import EPOCH

log = logger.create()


# All timestamps handled by the sync engine are naive datetimes in UTC, which is also
# what SQLite hands back from DateTime columns.
def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(timestamp):
    if timestamp is None:
        return None
    if timestamp.tzinfo is not None:
        return timestamp.astimezone(timezone.utc).replace(tzinfo=None)
    return timestamp


def convert_to_kobo_timestamp_string(timestamp):
    try:
        return as_naive_utc(timestamp).strftime("%Y-%m-%dT%H:%M:%SZ")
    except AttributeError as exc:
        log.debug("Timestamp not valid: {}".format(exc))
        return EPOCH.strftime("%Y-%m-%dT%H:%M:%SZ")
