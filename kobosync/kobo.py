# -*- coding: utf-8 -*-
# Calibre-Web Automated – fork of Calibre-Web
# Copyright (C) 2018-2026 Calibre-Web contributors
# Copyright (C) 2024-2026 Calibre-Web Automated contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

import base64
import os
import uuid
from dataclasses import dataclass

import requests
from flask import (
    Blueprint,
    current_app,
    jsonify,
    make_response,
    redirect,
    request,
    send_file,
)
from flask_babel import gettext as _
from sqlalchemy import exc
from werkzeug.datastructures import Headers

from . import logger
from .constants import SYNC_TOKEN_HEADER
from .errors import KoboSyncError, MalformedRequest, NotFound, Transient
from .kobo_auth import (
    download_required,
    get_auth_token,
    get_principal,
    register_url_value_preprocessor,
    requires_kobo_auth,
)
from .permissions import check_visible, visible
from .projection import get_metadata
from .reading_state import (
    get_kobo_reading_state_response,
    get_or_create_reading_progress,
    update_reading_state,
)

log = logger.create()

kobo = Blueprint("kobo", __name__, url_prefix="/kobo/<auth_token>")
register_url_value_preprocessor(kobo)

CONNECTION_SPECIFIC_HEADERS = [
    "connection",
    "content-encoding",
    "content-length",
    "transfer-encoding",
]

EBOOK_MIMETYPES = {
    "EPUB": "application/epub+zip",
    "KEPUB": "application/epub+zip",
}


@dataclass
class KoboServices:
    config: object
    library_db: object
    app_session: object
    orchestrator: object


def services():
    return current_app.extensions["kobosync"]


def get_base_url():
    """Scheme, host and script root the device reached us on, honouring the external port"""
    config = services().config
    if config.external_port:
        if ':' in request.host and not request.host.endswith(']'):
            host = "".join(request.host.split(':')[:-1])
        else:
            host = request.host
        return "{url_scheme}://{url_base}:{url_port}{script_root}".format(
            url_scheme=request.scheme,
            url_base=host,
            url_port=config.external_port,
            script_root=request.script_root)
    return request.url_root.rstrip("/")


def get_store_url_for_current_request():
    # Programmatically modify the current url to point to the official Kobo store
    __, __, request_path_with_auth_token = request.full_path.rpartition("/kobo/")
    __, __, request_path = request_path_with_auth_token.rstrip("?").partition("/")
    return services().config.store_api_url + "/" + request_path


def make_request_to_kobo_store():
    outgoing_headers = Headers(request.headers)
    outgoing_headers.remove("Host")
    outgoing_headers.pop("Cookie", None)
    store_response = requests.request(
        method=request.method,
        url=get_store_url_for_current_request(),
        headers=outgoing_headers,
        data=request.get_data(),
        allow_redirects=False,
        timeout=(2, 10)
    )
    log.debug("Content: " + str(store_response.content))
    log.debug_headers("StatusCode: " + str(store_response.status_code) + " headers: %s", store_response.headers)
    return store_response


def redirect_or_proxy_request():
    if not services().config.kobo_proxy:
        return make_response(jsonify({}))
    if request.method == "GET":
        return redirect(get_store_url_for_current_request(), 307)
    # The Kobo device turns other request types into GET requests on redirects,
    # so we instead proxy to the Kobo store ourselves.
    try:
        store_response = make_request_to_kobo_store()
    except requests.exceptions.Timeout:
        log.error("Timeout connecting to the Kobo store")
        return make_response(jsonify({"error": _("Gateway timeout")}), 504)
    except requests.exceptions.RequestException as e:
        log.error("Request to the Kobo store failed: %s", e)
        return make_response(jsonify({"error": _("Bad gateway")}), 502)

    response_headers = store_response.headers
    for header_key in CONNECTION_SPECIFIC_HEADERS:
        response_headers.pop(header_key, None)

    return make_response(
        store_response.content, store_response.status_code, response_headers.items()
    )


@kobo.errorhandler(KoboSyncError)
def handle_sync_error(error):
    if error.status_code >= 500:
        log.error("Kobo request %s failed: %s", request.path, error.message)
    else:
        log.debug("Kobo request %s rejected (%s): %s", request.path, error.status_code, error.message)
    return make_response(jsonify({"error": _(error.message)}), error.status_code)


@kobo.errorhandler(exc.SQLAlchemyError)
def handle_store_error(error):
    services().app_session.rollback()
    log.error_or_exception("Kobo request {} failed: {}".format(request.path, error))
    return handle_sync_error(Transient())


def _accessible_book(book_uuid=None, book_id=None):
    """Look a book up inside the principal's libraries; hidden books read as missing"""
    principal = get_principal()
    library_db = services().library_db
    library_ids = library_db.get_library_ids(principal)
    book = library_db.get_book_in_libraries(library_ids, book_uuid=book_uuid, book_id=book_id)
    if book is None:
        log.info("Book %s not found in database", book_uuid or book_id)
        raise NotFound()
    return check_visible(principal, book)


@kobo.route("/v1/library/sync")
@requires_kobo_auth
@download_required
def HandleSyncRequest():
    log.info("Kobo library sync request received")
    log.debug_headers("Sync request headers: %s", request.headers)
    result = services().orchestrator.sync(get_principal(),
                                          request.headers.get(SYNC_TOKEN_HEADER),
                                          get_base_url())
    response = make_response(jsonify(result.entries))
    response.headers.extend(result.headers())
    return response


@kobo.route("/v1/library/<book_uuid>/metadata")
@requires_kobo_auth
@download_required
def HandleMetadataRequest(book_uuid):
    log.info("Kobo library metadata request received for book %s" % book_uuid)
    book = _accessible_book(book_uuid=book_uuid)
    metadata = get_metadata(book, get_base_url(), get_auth_token())
    response = make_response(jsonify([metadata]))
    response.headers["Content-Type"] = "application/json; charset=utf-8"
    return response


@kobo.route("/v1/library/<book_uuid>/state", methods=["GET", "PUT"])
@requires_kobo_auth
def HandleStateRequest(book_uuid):
    book = _accessible_book(book_uuid=book_uuid)
    app_session = services().app_session
    principal = get_principal()

    if request.method == "GET":
        progress = get_or_create_reading_progress(app_session, principal.user_id, book.id)
        return jsonify([get_kobo_reading_state_response(book, progress)])

    request_data = request.get_json(silent=True)
    if request_data is None:
        log.debug("Received malformed v1/library/<book_uuid>/state request.")
        raise MalformedRequest("Malformed request data is missing 'ReadingStates' key")
    return jsonify(update_reading_state(app_session, principal.user_id, book, request_data))


@kobo.route("/download/<int:book_id>/<book_format>")
@requires_kobo_auth
@download_required
def download_book(book_id, book_format):
    book = _accessible_book(book_id=book_id)
    book_format = book_format.upper()
    book_data = next((data for data in book.data if data.format.upper() == book_format), None)
    if book_data is None:
        raise NotFound("Ebook file not found")
    file_path = os.path.join(services().config.books_dir, book.path, book_data.file_name)
    if not os.path.isfile(file_path):
        log.error("Ebook file path does not exist: %s", file_path)
        raise NotFound("Ebook file not found")
    log.info("User %s requested download for book %s ebook at %s", get_principal().user_id, book.title, file_path)
    download_name = book_data.file_name
    if book_format == "KEPUB":
        download_name = "{}.kepub.epub".format(book_data.name)
    return send_file(file_path, mimetype=EBOOK_MIMETYPES.get(book_format, "application/octet-stream"),
                     as_attachment=True, download_name=download_name)


@kobo.route("/<book_uuid>/<width>/<height>/<isGreyscale>/image.jpg", defaults={'Quality': ""})
@kobo.route("/<book_uuid>/<width>/<height>/<Quality>/<isGreyscale>/image.jpg")
@requires_kobo_auth
def HandleCoverImageRequest(book_uuid, width, height, Quality, isGreyscale):
    principal = get_principal()
    library_db = services().library_db
    book = library_db.get_book_in_libraries(library_db.get_library_ids(principal), book_uuid=book_uuid)
    if book is not None:
        if not visible(principal, book):
            raise NotFound("Cover not found")
        cover_path = os.path.join(services().config.books_dir, book.path, "cover.jpg")
        if book.has_cover and os.path.isfile(cover_path):
            log.debug("Serving local cover image of book %s", book_uuid)
            return send_file(cover_path, mimetype="image/jpeg")
    log.debug("Cover for unknown book: %s redirected to kobo", book_uuid)
    return redirect(services().config.image_host_url +
                    "/{book_uuid}/{width}/{height}/false/image.jpg".format(book_uuid=book_uuid,
                                                                           width=width,
                                                                           height=height), 307)


@kobo.route("/v1/initialization")
@requires_kobo_auth
def HandleInitRequest():
    log.info('Init')
    base_url = get_base_url() + "/kobo/" + get_auth_token()
    kobo_resources = {
        "image_host": base_url,
        "image_url_template": base_url + "/{ImageId}/{Width}/{Height}/false/image.jpg",
        "image_url_quality_template": base_url + "/{ImageId}/{Width}/{Height}/{Quality}/false/image.jpg",
        "library_sync": base_url + "/v1/library/sync",
        "library_metadata": base_url + "/v1/library/{Ids}/metadata",
        "reading_state": base_url + "/v1/library/{Ids}/state",
        "tags": base_url + "/v1/library/tags",
        "reading_services_host": services().config.reading_services_url,
    }
    response = make_response(jsonify({"Resources": kobo_resources}))
    response.headers["x-kobo-apitoken"] = "e30="
    return response


@kobo.route("/v1/auth/device", methods=["POST"])
def HandleAuthRequest():
    log.debug('Kobo Auth request')
    if services().config.kobo_proxy:
        return redirect_or_proxy_request()
    request_data = request.get_json(silent=True)
    if not isinstance(request_data, dict):
        request_data = {}
    # The device keeps these tokens but every call is authorised through the url token
    response = make_response(jsonify({
        "AccessToken": base64.b64encode(os.urandom(24)).decode('utf-8'),
        "RefreshToken": base64.b64encode(os.urandom(24)).decode('utf-8'),
        "TokenType": "Bearer",
        "TrackingId": str(uuid.uuid4()),
        "UserKey": request_data.get("UserKey", ""),
    }))
    return response


def _tag_request_data(*required):
    request_data = request.get_json(silent=True)
    if not isinstance(request_data, dict) or any(key not in request_data for key in required):
        log.debug("Received malformed v1/library/tags request.")
        raise MalformedRequest("Malformed tags POST request. Data has empty 'Name', missing 'Name' or 'Items' field")
    return request_data


# Collections are not synced: the tag endpoints validate and answer without storing anything
@kobo.route("/v1/library/tags", methods=["POST", "DELETE"])
@requires_kobo_auth
def HandleTagCreate():
    if request.method == "DELETE":
        return redirect_or_proxy_request()
    _tag_request_data("Name", "Items")
    return make_response(jsonify(str(uuid.uuid4())), 201)


@kobo.route("/v1/library/tags/<tag_id>", methods=["DELETE", "PUT"])
@requires_kobo_auth
def HandleTagUpdate(tag_id):
    if request.method == "PUT":
        _tag_request_data("Name")
    log.debug("Ignoring collection update for tag %s", tag_id)
    return make_response(' ', 200)


@kobo.route("/v1/library/tags/<tag_id>/items", methods=["POST"])
@requires_kobo_auth
def HandleTagAddItem(tag_id):
    _tag_request_data("Items")
    log.debug("Ignoring items added to tag %s", tag_id)
    return make_response('', 201)


@kobo.route("/v1/library/tags/<tag_id>/items/delete", methods=["POST"])
@requires_kobo_auth
def HandleTagRemoveItem(tag_id):
    _tag_request_data("Items")
    log.debug("Ignoring items removed from tag %s", tag_id)
    return make_response('', 200)


@kobo.route("/v1/library/<book_uuid>", methods=["DELETE"])
@requires_kobo_auth
def HandleBookDeletionRequest(book_uuid):
    # Archiving is not implemented; the book shows up again on the next full sync
    log.info("Kobo book delete request received for book %s" % book_uuid)
    return "", 204


@kobo.route("/v1/user/loyalty/benefits", methods=["GET"])
def handle_benefits():
    if services().config.kobo_proxy:
        return redirect_or_proxy_request()
    return make_response(jsonify({"Benefits": {}}))


@kobo.route("/v1/analytics/gettests", methods=["GET", "POST"])
def handle_getests():
    if services().config.kobo_proxy:
        return redirect_or_proxy_request()
    testkey = request.headers.get("X-Kobo-userkey", "")
    return make_response(jsonify({"Result": "Success", "TestKey": testkey, "Tests": {}}))


@kobo.route("")
def TopLevelEndpoint():
    return make_response(jsonify({}))


@kobo.route("/<path:path>", methods=["GET", "POST", "PUT", "DELETE", "PATCH"])
def HandleUnimplementedRequest(path=None):
    log.debug("Unimplemented Kobo request received: %s %s", request.method, request.base_url)
    return redirect_or_proxy_request()
