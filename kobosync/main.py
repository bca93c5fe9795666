# -*- coding: utf-8 -*-
# Calibre-Web Automated – fork of Calibre-Web
# Copyright (C) 2018-2026 Calibre-Web contributors
# Copyright (C) 2024-2026 Calibre-Web Automated contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

import argparse
import logging
import sys

from tornado.httpserver import HTTPServer
from tornado.ioloop import IOLoop
from tornado.log import access_log
from tornado.wsgi import WSGIContainer

from . import create_app, logger, ub
from .config import SyncConfig
from .kobo_auth import generate_auth_token

log = logger.create()


class KoboWSGIContainer(WSGIContainer):

    def _log(self, status_code, request):
        if status_code < 400:
            log_method = access_log.info
        elif status_code < 500:
            log_method = access_log.warning
        else:
            log_method = access_log.error
        request_time = 1000.0 * request.request_time()
        # the auth token is a credential, keep it out of the access log
        uri = request.uri or ""
        if uri.startswith("/kobo/"):
            parts = uri.split("/", 3)
            uri = "/".join(parts[:2] + ["***"] + parts[3:])
        summary = "{} {} ({})".format(request.method, uri, request.remote_ip)
        log_method("%d %s %.2fms", status_code, summary, request_time)


def parse_arguments(argv=None):
    parser = argparse.ArgumentParser(description='Kobo library sync server',
                                     prog='kobosync.py')
    parser.add_argument('-p', metavar='port', type=int,
                        help='port to listen on (default taken from KOBOSYNC_PORT or 8083)')
    parser.add_argument('-i', metavar='ip-address', help='interface to listen on')
    parser.add_argument('-l', metavar='path', help='path and name to the library database, e.g. /config/library.db')
    parser.add_argument('-a', metavar='path', help='path and name to the app database, e.g. /config/app.db')
    parser.add_argument('-d', metavar='path', help='directory holding the book files')
    parser.add_argument('-o', metavar='path', help='log file, /dev/stdout or /dev/stderr')
    parser.add_argument('-x', metavar='port', type=int, help='external port used in download urls')
    parser.add_argument('-v', action='store_true', help='debug logging')
    parser.add_argument('--proxy', action='store_true', help='forward unknown requests to the Kobo store')
    parser.add_argument('-t', metavar='username',
                        help='print the Kobo api endpoint token of a user, creating it if needed, and exit')
    return parser.parse_args(argv)


def build_config(args):
    return SyncConfig.from_environ(
        listen_port=args.p,
        listen_host=args.i,
        library_db_path=args.l,
        app_db_path=args.a,
        books_dir=args.d,
        log_file=args.o,
        external_port=args.x,
        log_level=logging.DEBUG if args.v else None,
        kobo_proxy=True if args.proxy else None,
    )


def provision_token(app, user_name):
    services = app.extensions["kobosync"]
    user = services.app_session.query(ub.User).filter(ub.User.name == user_name).one_or_none()
    if user is None:
        log.error("User %s not found", user_name)
        return 1
    auth_token = generate_auth_token(services.app_session, user.id)
    print("Kobo api endpoint for {}: <server>/kobo/{}".format(user_name, auth_token))
    return 0


def main(argv=None):
    args = parse_arguments(argv)
    config = build_config(args)
    logger.setup(config.log_file or logger.LOG_TO_STDERR, config.log_level)

    app = create_app(config)
    if args.t:
        sys.exit(provision_token(app, args.t))

    http_server = HTTPServer(KoboWSGIContainer(app), xheaders=True)
    try:
        http_server.listen(config.listen_port, address=config.listen_host)
    except OSError as ex:
        log.error("Could not listen on %s:%s: %s", config.listen_host, config.listen_port, ex)
        sys.exit(1)
    log.info("Starting Kobo sync server on %s:%s", config.listen_host, config.listen_port)
    try:
        IOLoop.current().start()
    except KeyboardInterrupt:
        log.info("Kobo sync server stopped")
    finally:
        http_server.stop()
