# -*- coding: utf-8 -*-
# Calibre-Web Automated – fork of Calibre-Web
# Copyright (C) 2018-2026 Calibre-Web contributors
# Copyright (C) 2024-2026 Calibre-Web Automated contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

"""Authentication of Kobo devices.

A device is set up with an api endpoint of the form
``https://<server>/kobo/<auth_token>``, so every request it sends carries the
token as the first url segment. The blueprint strips that segment off before
routing and the decorators below resolve it to a user. Everything the device
does then runs with the permissions of that user.
"""

from functools import wraps

from flask import g, current_app

from . import logger, ub
from .errors import Unauthorized
from .permissions import Principal, check_download

log = logger.create()


def register_url_value_preprocessor(kobo):
    @kobo.url_value_preprocessor
    # pylint: disable=unused-variable
    def pop_auth_token(__, values):
        g.auth_token = values.pop("auth_token")


def get_auth_token():
    if "auth_token" in g:
        return g.get("auth_token")
    return None


def get_principal():
    return g.get("principal")


def lookup_user(app_session, auth_token):
    if not auth_token:
        return None
    return (app_session.query(ub.User)
            .join(ub.KoboAuthToken)
            .filter(ub.KoboAuthToken.auth_token == auth_token)
            .one_or_none())


def requires_kobo_auth(f):
    @wraps(f)
    def inner(*args, **kwargs):
        auth_token = get_auth_token()
        services = current_app.extensions["kobosync"]
        user = lookup_user(services.app_session, auth_token)
        if user is None:
            log.debug("Received Kobo request without a valid auth token")
            raise Unauthorized()
        g.principal = Principal.from_user(user, auth_token)
        return f(*args, **kwargs)
    return inner


def download_required(f):
    @wraps(f)
    def inner(*args, **kwargs):
        check_download(get_principal())
        return f(*args, **kwargs)
    return inner


def generate_auth_token(app_session, user_id):
    """Return the user's Kobo auth token, creating one on first use"""
    auth_token = (app_session.query(ub.KoboAuthToken)
                  .filter(ub.KoboAuthToken.user_id == user_id)
                  .first())
    if auth_token is None:
        auth_token = ub.KoboAuthToken(user_id=user_id)
        app_session.add(auth_token)
        ub.session_commit(app_session, "Kobo auth token created for user {}".format(user_id))
    return auth_token.auth_token


def delete_auth_token(app_session, user_id):
    (app_session.query(ub.KoboAuthToken)
     .filter(ub.KoboAuthToken.user_id == user_id)
     .delete(synchronize_session='fetch'))
    ub.session_commit(app_session)
