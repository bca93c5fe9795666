# -*- coding: utf-8 -*-
# Calibre-Web Automated – fork of Calibre-Web
# Copyright (C) 2018-2026 Calibre-Web contributors
# Copyright (C) 2024-2026 Calibre-Web Automated contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

"""The opaque cursor a device presents on every library sync.

The token is the urlsafe base64 form of a small JSON document:

    {"version": "1-0-0",
     "data": {"books_last_modified": "2024-01-02T03:04:05.000006",
              "books_last_created": ...,
              "reading_state_last_modified": ...,
              "tags_last_modified": ...}}

Watermarks are naive UTC timestamps with microsecond precision, so a decoded
watermark is never older than the item it was taken from. The token is not
signed: anything that does not decode is treated as a first sync.
"""

import json
from base64 import urlsafe_b64decode, urlsafe_b64encode
from binascii import Error as Base64Error
from dataclasses import dataclass, replace
from datetime import datetime

from . import logger
from .constants import EPOCH, SYNC_TOKEN_HEADER
from .helper import as_naive_utc

log = logger.create()

VERSION = "1-0-0"

_FIELDS = ("books_last_modified", "books_last_created", "reading_state_last_modified", "tags_last_modified")


def _to_json_timestamp(value):
    return as_naive_utc(value).isoformat(timespec='microseconds')


def _from_json_timestamp(value):
    if value is None:
        return EPOCH
    if not isinstance(value, str):
        raise ValueError("timestamp is not a string: {!r}".format(value))
    return as_naive_utc(datetime.fromisoformat(value))


def b64encode_json(json_data):
    return urlsafe_b64encode(json.dumps(json_data, sort_keys=True, separators=(',', ':')).encode('utf-8'))


def b64decode_json(token):
    if isinstance(token, str):
        token = token.encode('ascii')
    # tolerate tokens whose padding was stripped in transit
    token += b'=' * (-len(token) % 4)
    return json.loads(urlsafe_b64decode(token).decode('utf-8'))


@dataclass(frozen=True)
class SyncToken:
    books_last_modified: datetime = EPOCH
    books_last_created: datetime = EPOCH
    reading_state_last_modified: datetime = EPOCH
    tags_last_modified: datetime = EPOCH

    @classmethod
    def default(cls):
        return cls()

    @classmethod
    def decode(cls, token):
        """Parse a token, falling back to the default cursor on anything malformed"""
        if not token:
            return cls.default()
        try:
            document = b64decode_json(token)
            if not isinstance(document, dict) or document.get("version") != VERSION:
                raise ValueError("unsupported sync token version")
            data = document.get("data")
            if not isinstance(data, dict):
                raise ValueError("sync token without data")
            return cls(**{name: _from_json_timestamp(data.get(name)) for name in _FIELDS})
        except (ValueError, TypeError, OverflowError, UnicodeError, Base64Error) as e:
            log.debug("Invalid sync token, starting from scratch: %s", e)
            return cls.default()

    @classmethod
    def from_headers(cls, headers):
        return cls.decode(headers.get(SYNC_TOKEN_HEADER))

    def encode(self):
        document = {
            "version": VERSION,
            "data": {name: _to_json_timestamp(getattr(self, name)) for name in _FIELDS},
        }
        return b64encode_json(document).decode('ascii')

    def to_headers(self, headers):
        headers[SYNC_TOKEN_HEADER] = self.encode()

    def advance(self, books_last_modified=None, books_last_created=None,
                reading_state_last_modified=None, tags_last_modified=None):
        """Move watermarks forward; a value older than the current one is ignored"""
        values = {}
        for name, value in (("books_last_modified", books_last_modified),
                            ("books_last_created", books_last_created),
                            ("reading_state_last_modified", reading_state_last_modified),
                            ("tags_last_modified", tags_last_modified)):
            value = as_naive_utc(value)
            if value is not None and value > getattr(self, name):
                values[name] = value
        return replace(self, **values) if values else self

    def __str__(self):
        return "{},{},{},{}".format(self.books_last_modified, self.books_last_created,
                                    self.reading_state_last_modified, self.tags_last_modified)
