# -*- coding: utf-8 -*-
# Calibre-Web Automated – fork of Calibre-Web
# Copyright (C) 2018-2026 Calibre-Web contributors
# Copyright (C) 2024-2026 Calibre-Web Automated contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

"""Process wide settings for the sync server.

A single SyncConfig is built at startup (environment first, command line on top)
and handed to the app factory, which passes it on to every component needing it.
Nothing reads settings from module globals at request time.
"""

import os
import logging
from dataclasses import dataclass, fields, replace

from . import constants


def _env_bool(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_int(name, default):
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        return default


@dataclass(frozen=True)
class SyncConfig:
    sync_item_limit: int = constants.SYNC_ITEM_LIMIT
    kobo_proxy: bool = False
    store_api_url: str = constants.KOBO_STOREAPI_URL
    image_host_url: str = constants.KOBO_IMAGEHOST_URL
    reading_services_url: str = constants.KOBO_READING_SERVICES_URL
    external_port: int = 0
    library_db_path: str = os.path.join(constants.CONFIG_DIR, "library.db")
    app_db_path: str = os.path.join(constants.CONFIG_DIR, "app.db")
    books_dir: str = os.path.join(constants.CONFIG_DIR, "books")
    log_file: str = ""
    log_level: int = logging.INFO
    listen_host: str = "0.0.0.0"
    listen_port: int = 8083

    @classmethod
    def from_environ(cls, **overrides):
        config = cls(
            sync_item_limit=_env_int('KOBOSYNC_SYNC_ITEM_LIMIT', constants.SYNC_ITEM_LIMIT),
            kobo_proxy=_env_bool('KOBOSYNC_PROXY'),
            store_api_url=os.environ.get('KOBOSYNC_STORE_API_URL', constants.KOBO_STOREAPI_URL),
            image_host_url=os.environ.get('KOBOSYNC_IMAGE_HOST_URL', constants.KOBO_IMAGEHOST_URL),
            reading_services_url=os.environ.get('KOBOSYNC_READING_SERVICES_URL',
                                                constants.KOBO_READING_SERVICES_URL),
            external_port=_env_int('KOBOSYNC_EXTERNAL_PORT', 0),
            library_db_path=os.environ.get('KOBOSYNC_LIBRARY_DB', cls.library_db_path),
            app_db_path=os.environ.get('KOBOSYNC_APP_DB', cls.app_db_path),
            books_dir=os.environ.get('KOBOSYNC_BOOKS_DIR', cls.books_dir),
            log_file=os.environ.get('KOBOSYNC_LOG_FILE', ""),
            log_level=logging.DEBUG if _env_bool('KOBOSYNC_DEBUG') else logging.INFO,
            listen_host=os.environ.get('KOBOSYNC_HOST', "0.0.0.0"),
            listen_port=_env_int('KOBOSYNC_PORT', 8083),
        )
        return config.update(**overrides)

    def update(self, **overrides):
        known = {f.name for f in fields(self)}
        values = {key: value for key, value in overrides.items() if key in known and value is not None}
        return replace(self, **values) if values else self

    @property
    def page_size(self):
        return max(1, int(self.sync_item_limit))
