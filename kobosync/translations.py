# -*- coding: utf-8 -*-
# Calibre-Web Automated – fork of Calibre-Web
# Copyright (C) 2018-2026 Calibre-Web contributors
# Copyright (C) 2024-2026 Calibre-Web Automated contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

from flask_babel import Babel

babel = Babel()


def init_app(app):
    # No catalogs are shipped, error descriptions stay in the default locale
    app.config.setdefault('BABEL_DEFAULT_LOCALE', 'en')
    babel.init_app(app)
