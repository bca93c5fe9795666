# -*- coding: utf-8 -*-
# Calibre-Web Automated – fork of Calibre-Web
# Copyright (C) 2018-2026 Calibre-Web contributors
# Copyright (C) 2024-2026 Calibre-Web Automated contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

__package__ = "kobosync"

import mimetypes

from flask import Flask
from werkzeug.middleware.proxy_fix import ProxyFix

from . import logger
from . import ub, db
from .config import SyncConfig


mimetypes.init()
mimetypes.add_type('application/epub+zip', '.epub')
mimetypes.add_type('application/epub+zip', '.kepub')

log = logger.create()


def create_app(config=None, library_engine=None, app_engine=None):
    """Build the Flask app serving the Kobo endpoints.

    ``config`` defaults to the environment; the engines can be handed in to run
    against databases that already exist (tests use in-memory SQLite).
    """
    from .kobo import kobo, KoboServices
    from .sync import SyncOrchestrator
    from . import translations

    config = config or SyncConfig.from_environ()

    app = Flask(__name__)
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1, x_prefix=1)
    app.config.update(
        JSON_SORT_KEYS=False,
        BABEL_DEFAULT_LOCALE='en',
    )
    if hasattr(app, "json"):
        app.json.sort_keys = False

    translations.init_app(app)

    library_db = db.LibraryDB(config.library_db_path, engine=library_engine)
    app_session = ub.init_db(config.app_db_path, engine=app_engine)
    app.extensions["kobosync"] = KoboServices(
        config=config,
        library_db=library_db,
        app_session=app_session,
        orchestrator=SyncOrchestrator(config, library_db, app_session),
    )

    @app.teardown_appcontext
    def remove_sessions(exception=None):
        app_session.remove()
        library_db.remove_session()

    app.register_blueprint(kobo)
    log.info("Kobo sync server ready, library at %s", config.library_db_path)
    return app
