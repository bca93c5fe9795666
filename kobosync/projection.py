# -*- coding: utf-8 -*-
# Calibre-Web Automated – fork of Calibre-Web
# Copyright (C) 2018-2026 Calibre-Web contributors
# Copyright (C) 2024-2026 Calibre-Web Automated contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

"""Entitlement and metadata records for library books.

Everything in here is a pure function of the book row and the requester: no
clock reads, no randomness. Devices cache metadata by id, so the same book must
always project to the same record.
"""

import uuid

from . import logger
from .constants import DEFAULT_CATEGORY_UUID, KOBO_FORMATS, SERIES_NAMESPACE
from .helper import convert_to_kobo_timestamp_string
from .languages import get_lang1

log = logger.create()

_SERIES_NAMESPACE = uuid.UUID(SERIES_NAMESPACE)


def series_id(name):
    # name based, identical across requests and processes
    return str(uuid.uuid3(_SERIES_NAMESPACE, name))


def get_download_url_for_book(base_url, auth_token, book_id, book_format):
    return "{url_base}/kobo/{auth_token}/download/{book_id}/{book_format}".format(
        url_base=base_url.rstrip("/"),
        auth_token=auth_token,
        book_id=book_id,
        book_format=book_format.lower()
    )


def create_book_entitlement(book):
    book_uuid = str(book.uuid)
    created = convert_to_kobo_timestamp_string(book.timestamp)
    # Archiving is not implemented, every book is an active entitlement
    return {
        "Accessibility": "Full",
        "ActivePeriod": {"From": created},
        "Created": created,
        "CrossRevisionId": book_uuid,
        "Id": book_uuid,
        "IsRemoved": False,
        "IsHiddenFromArchive": False,
        "IsLocked": False,
        "LastModified": convert_to_kobo_timestamp_string(book.last_modified),
        "OriginCategory": "Imported",
        "RevisionId": book_uuid,
        "Status": "Active",
    }


def get_description(book):
    if not book.comments:
        return None
    return book.comments[0].text


def get_author(book):
    if not book.authors:
        return {"Contributors": None}
    author_list = []
    author_roles = []
    for author in book.authors:
        author_roles.append({"Name": author.name})
        author_list.append(author.name)
    return {"ContributorRoles": author_roles, "Contributors": author_list}


def get_publisher(book):
    if not book.publishers:
        return None
    return book.publishers[0].name


def get_series(book):
    if not book.series:
        return None
    return book.series[0].name


def get_seriesindex(book):
    return book.series_index or 1


def get_language(book):
    if not book.languages:
        return get_lang1(None)
    return get_lang1(book.languages[0].lang_code)


def get_download_urls(book, base_url, auth_token):
    download_urls = []
    for book_data in book.kobo_data:
        book_format = book_data.format.upper()
        for kobo_format in KOBO_FORMATS[book_format]:
            download_urls.append(
                {
                    "Format": kobo_format,
                    "Size": book_data.uncompressed_size,
                    "Url": get_download_url_for_book(base_url, auth_token, book.id, book_format),
                    # The Kobo format accepts platforms: (Generic, Android)
                    "Platform": "Generic",
                }
            )
    return download_urls


def get_metadata(book, base_url, auth_token):
    book_uuid = book.uuid
    metadata = {
        "Categories": [DEFAULT_CATEGORY_UUID, ],
        "CoverImageId": book_uuid,
        "CrossRevisionId": book_uuid,
        "CurrentDisplayPrice": {"CurrencyCode": "USD", "TotalAmount": 0},
        "CurrentLoveDisplayPrice": {"TotalAmount": 0},
        "Description": get_description(book),
        "DownloadUrls": get_download_urls(book, base_url, auth_token),
        "EntitlementId": book_uuid,
        "ExternalIds": [],
        "Genre": DEFAULT_CATEGORY_UUID,
        "IsEligibleForKoboLove": False,
        "IsInternetArchive": False,
        "IsPreOrder": False,
        "IsSocialEnabled": True,
        "Language": get_language(book),
        "PhoneticPronunciations": {},
        "PublicationDate": convert_to_kobo_timestamp_string(book.pubdate),
        "Publisher": {"Imprint": "", "Name": get_publisher(book), },
        "RevisionId": book_uuid,
        "Title": book.title or "Untitled",
        "WorkId": book_uuid,
    }
    metadata.update(get_author(book))

    name = get_series(book)
    if name:
        try:
            number_float = float(get_seriesindex(book))
        except (TypeError, ValueError):
            log.debug("Series index %r of book %s is not a number", book.series_index, book.id)
            number_float = 1.0
        metadata["Series"] = {
            "Name": name,
            "Number": get_seriesindex(book),
            "NumberFloat": number_float,
            "Id": series_id(name),
        }

    return metadata


def create_book_entry(book, base_url, auth_token):
    return {
        "BookEntitlement": create_book_entitlement(book),
        "BookMetadata": get_metadata(book, base_url, auth_token),
    }
