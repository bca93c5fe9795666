# -*- coding: utf-8 -*-
# Calibre-Web Automated – fork of Calibre-Web
# Copyright (C) 2018-2026 Calibre-Web contributors
# Copyright (C) 2024-2026 Calibre-Web Automated contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

"""One library sync round.

A round decodes the device cursor, plans the changed books and progress rows,
drops what the user may not see, projects the rest and either hands out an
advanced cursor or asks the device to come back with the same one.

Paging works without a resume offset in the cursor: books and progress rows
looked at by an unfinished pass are recorded in KoboSyncedBooks under the
cursor of that pass, and left out when the device polls again with it. The
last page of the pass advances the watermarks over everything the pass emitted
and clears the record.
"""

from dataclasses import dataclass, field
from typing import List

from sqlalchemy import exc

from . import logger, ub
from . import planner
from .constants import SYNC_HEADER, SYNC_CONTINUE
from .errors import Transient
from .permissions import visible
from .projection import create_book_entry
from .reading_state import get_kobo_reading_state_response
from .sync_token import SyncToken

log = logger.create()


@dataclass
class SyncResult:
    entries: List = field(default_factory=list)
    sync_token: SyncToken = field(default_factory=SyncToken)
    cont_sync: bool = False

    def headers(self):
        headers = {}
        self.sync_token.to_headers(headers)
        if self.cont_sync:
            headers[SYNC_HEADER] = SYNC_CONTINUE
        return headers


class SyncOrchestrator:

    def __init__(self, config, library_db, app_session):
        self.config = config
        self.library_db = library_db
        self.app_session = app_session

    def sync(self, principal, token, base_url):
        sync_token = SyncToken.decode(token)
        log.debug("SyncToken: {}".format(sync_token))
        try:
            return self._sync(principal, sync_token, base_url)
        except exc.SQLAlchemyError as e:
            self.app_session.rollback()
            log.error_or_exception("Sync round for user {} failed: {}".format(principal.user_id, e))
            raise Transient() from e

    def _load_ledger(self, principal, pass_token):
        # rows of an abandoned pass (the device moved to another cursor) are dropped
        (self.app_session.query(ub.KoboSyncedBooks)
         .filter(ub.KoboSyncedBooks.user_id == principal.user_id)
         .filter(ub.KoboSyncedBooks.sync_token != pass_token)
         .delete(synchronize_session='fetch'))
        rows = (self.app_session.query(ub.KoboSyncedBooks)
                .filter(ub.KoboSyncedBooks.user_id == principal.user_id)
                .all())
        return {row.book_id: row for row in rows}

    def _record(self, ledger, principal, pass_token, book_id, emitted, **timestamps):
        row = ledger.get(book_id)
        if row is None:
            row = ub.KoboSyncedBooks(user_id=principal.user_id, book_id=book_id,
                                     sync_token=pass_token, emitted=False)
            ledger[book_id] = row
        for column, value in timestamps.items():
            if value is not None:
                setattr(row, column, value)
        row.emitted = bool(row.emitted) or emitted
        return row

    def _sync(self, principal, sync_token, base_url):
        library_ids = self.library_db.get_library_ids(principal)
        if not library_ids:
            log.debug("User %s has no accessible library, nothing to sync", principal.user_id)
            return SyncResult(sync_token=sync_token)

        pass_token = sync_token.encode()
        ledger = self._load_ledger(principal, pass_token)
        known_rows = set(ledger)
        change_set = planner.plan(self.library_db, self.app_session, principal, library_ids, sync_token,
                                  self.config.page_size, ledger=ledger, pass_token=pass_token)

        entries = []
        for book in change_set.books:
            if not visible(principal, book):
                log.debug("Book %s hidden from user %s", book.id, principal.user_id)
                self._record(ledger, principal, pass_token, book.id, False,
                             book_last_modified=book.last_modified)
                continue
            entitlement = create_book_entry(book, base_url, principal.auth_token)
            progress = change_set.book_progress.get(book.id)
            if progress is not None:
                entitlement["ReadingState"] = get_kobo_reading_state_response(book, progress)
            if book.timestamp and book.timestamp > sync_token.books_last_created:
                entries.append({"NewEntitlement": entitlement})
            else:
                entries.append({"ChangedEntitlement": entitlement})
            self._record(ledger, principal, pass_token, book.id, True,
                         book_last_modified=book.last_modified,
                         book_created=book.timestamp,
                         reading_state_modified=progress.last_modified if progress is not None else None)

        progress_books = self.library_db.get_books_by_ids([p.book_id for p in change_set.progress], library_ids)
        for progress in change_set.progress:
            book = progress_books.get(progress.book_id)
            if book is None or not visible(principal, book):
                self._record(ledger, principal, pass_token, progress.book_id, False,
                             reading_state_modified=progress.last_modified)
                continue
            entries.append({"ChangedReadingState": {
                "ReadingState": get_kobo_reading_state_response(book, progress)}})
            self._record(ledger, principal, pass_token, progress.book_id, True,
                         reading_state_modified=progress.last_modified)

        if change_set.has_more:
            for book_id, row in ledger.items():
                if book_id not in known_rows:
                    self.app_session.add(row)
            ub.session_commit(self.app_session)
            log.debug("Sync page for user %s: %d entries, %d books remaining", principal.user_id,
                      len(entries), change_set.total_matching - len(change_set.books))
            return SyncResult(entries=entries, sync_token=sync_token, cont_sync=True)

        new_token = self._advance(sync_token, ledger.values())
        (self.app_session.query(ub.KoboSyncedBooks)
         .filter(ub.KoboSyncedBooks.user_id == principal.user_id)
         .delete(synchronize_session='fetch'))
        ub.session_commit(self.app_session)
        log.debug("Sync round for user %s finished with %d entries, new token %s",
                  principal.user_id, len(entries), new_token)
        return SyncResult(entries=entries, sync_token=new_token)

    @staticmethod
    def _advance(sync_token, ledger_rows):
        emitted = [row for row in ledger_rows if row.emitted]
        new_token = sync_token
        for row in emitted:
            new_token = new_token.advance(books_last_modified=row.book_last_modified,
                                          books_last_created=row.book_created,
                                          reading_state_last_modified=row.reading_state_modified)
        return new_token
