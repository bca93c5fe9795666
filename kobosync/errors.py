# -*- coding: utf-8 -*-
# Calibre-Web Automated – fork of Calibre-Web
# Copyright (C) 2018-2026 Calibre-Web contributors
# Copyright (C) 2024-2026 Calibre-Web Automated contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

"""
Error taxonomy of the sync engine.

    PermissionDenied  - the action needs a capability the principal lacks (403)
    NotVisible        - the item exists but is hidden by content/tag policy, reported
                        exactly like NotFound so its existence does not leak (404)
    NotFound          - the item is genuinely absent (404)
    MalformedRequest  - client payload is missing required structure (400)
    Transient         - the store or a collaborator is unavailable (503)
    Unauthorized      - the auth token in the url is unknown (401)
"""


class KoboSyncError(Exception):
    """Base class for errors surfaced to the device"""
    status_code = 500

    def __init__(self, message="Internal server error"):
        self.message = message
        super().__init__(message)


class Unauthorized(KoboSyncError):
    status_code = 401

    def __init__(self, message="Unknown auth token"):
        super().__init__(message)


class PermissionDenied(KoboSyncError):
    status_code = 403


class NotFound(KoboSyncError):
    status_code = 404

    def __init__(self, message="Book not found"):
        super().__init__(message)


class NotVisible(NotFound):
    pass


class MalformedRequest(KoboSyncError):
    status_code = 400


class Transient(KoboSyncError):
    status_code = 503

    def __init__(self, message="Storage temporarily unavailable"):
        super().__init__(message)
