# -*- coding: utf-8 -*-
# Calibre-Web Automated – fork of Calibre-Web
# Copyright (C) 2018-2026 Calibre-Web contributors
# Copyright (C) 2024-2026 Calibre-Web Automated contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

from dataclasses import dataclass, field
from typing import Dict, List

from sqlalchemy.sql.expression import and_, or_

from . import logger, ub

log = logger.create()


@dataclass
class ChangeSet:
    books: List = field(default_factory=list)
    # progress rows of books in `books` that changed after the progress watermark
    book_progress: Dict = field(default_factory=dict)
    # progress rows whose book is not part of `books`
    progress: List = field(default_factory=list)
    total_matching: int = 0
    # progress rows beyond the page cap are still waiting
    progress_pending: bool = False

    @property
    def has_more(self):
        return self.total_matching > len(self.books) or self.progress_pending


def handled_book_ids(library_db, ledger):
    """Books the running pass already dealt with at their current revision"""
    revisions = {book_id: row.book_last_modified for book_id, row in ledger.items()
                 if row.book_last_modified is not None}
    if not revisions:
        return set()
    current = library_db.get_books_last_modified(revisions.keys())
    return {book_id for book_id, last_modified in current.items()
            if last_modified is not None and last_modified <= revisions[book_id]}


def changed_progress(app_session, user_id, sync_token, exclude_book_ids, pass_token, limit):
    ledger = ub.KoboSyncedBooks
    query = (app_session.query(ub.ReadingProgress)
             .outerjoin(ledger, and_(ledger.user_id == ub.ReadingProgress.user_id,
                                     ledger.book_id == ub.ReadingProgress.book_id,
                                     ledger.sync_token == pass_token))
             .filter(ub.ReadingProgress.user_id == user_id)
             .filter(ub.ReadingProgress.last_modified > sync_token.reading_state_last_modified)
             .filter(or_(ledger.reading_state_modified.is_(None),
                         ledger.reading_state_modified < ub.ReadingProgress.last_modified)))
    if exclude_book_ids:
        query = query.filter(ub.ReadingProgress.book_id.notin_(list(exclude_book_ids)))
    return (query.order_by(ub.ReadingProgress.last_modified.asc(), ub.ReadingProgress.id.asc())
            .limit(limit)
            .all())


def plan(library_db, app_session, principal, library_ids, sync_token, limit, ledger=None, pass_token=""):
    """Collect the books and progress rows a sync round has to look at.

    ``ledger`` maps book ids to the KoboSyncedBooks rows of the pass identified by
    ``pass_token``; those books are left out unless they changed since.
    """
    if not library_ids:
        return ChangeSet()
    ledger = ledger or {}

    exclude_ids = handled_book_ids(library_db, ledger)
    books = library_db.get_changed_books(library_ids, sync_token.books_last_modified,
                                         sync_token.books_last_created, limit, exclude_ids)
    total_matching = library_db.count_changed_books(library_ids, sync_token.books_last_modified,
                                                    sync_token.books_last_created, exclude_ids)

    page_ids = [book.id for book in books]
    book_progress = {}
    if page_ids:
        rows = (app_session.query(ub.ReadingProgress)
                .filter(ub.ReadingProgress.user_id == principal.user_id)
                .filter(ub.ReadingProgress.book_id.in_(page_ids))
                .filter(ub.ReadingProgress.last_modified > sync_token.reading_state_last_modified)
                .all())
        book_progress = {row.book_id: row for row in rows}

    progress = changed_progress(app_session, principal.user_id, sync_token, page_ids, pass_token, limit + 1)
    progress_pending = len(progress) > limit
    progress = progress[:limit]

    log.debug("Planned %d books (%d matching), %d progress only changes for user %s",
              len(books), total_matching, len(progress), principal.user_id)
    return ChangeSet(books=books, book_progress=book_progress, progress=progress,
                     total_matching=total_matching, progress_pending=progress_pending)
