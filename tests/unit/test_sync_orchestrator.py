# Calibre-Web Automated – fork of Calibre-Web
# Copyright (C) 2018-2026 Calibre-Web contributors
# Copyright (C) 2024-2026 Calibre-Web Automated contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

"""
Unit tests for complete library sync rounds.

These drive SyncOrchestrator the way a device does: send the cursor from the
previous response, keep polling while the continue header is set.
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import exc

from kobosync import db, ub
from kobosync.config import SyncConfig
from kobosync.constants import SYNC_CONTINUE, SYNC_HEADER, SYNC_TOKEN_HEADER
from kobosync.errors import Transient
from kobosync.permissions import Principal
from kobosync.reading_state import get_or_create_reading_progress
from kobosync.sync import SyncOrchestrator, SyncResult
from kobosync.sync_token import SyncToken


BASE_URL = "http://kobo.local"
T0 = datetime(2024, 1, 1, 12, 0, 0)


def _orchestrator(library_db, app_session, page_size=100):
    return SyncOrchestrator(SyncConfig(sync_item_limit=page_size), library_db, app_session)


def _entitlement_ids(entries):
    ids = []
    for entry in entries:
        for kind in ("NewEntitlement", "ChangedEntitlement"):
            if kind in entry:
                ids.append(entry[kind]["BookEntitlement"]["Id"])
    return ids


def _sync_until_done(orchestrator, principal, token=None, max_rounds=20):
    """Poll like a device; returns the list of results of every round"""
    results = []
    for _ in range(max_rounds):
        result = orchestrator.sync(principal, token, BASE_URL)
        results.append(result)
        token = result.sync_token.encode()
        if not result.cont_sync:
            return results
    raise AssertionError("sync did not finish")


def _set_progress(app_session, user_id, book_id, last_modified, progress=0.5, is_finished=False):
    row = get_or_create_reading_progress(app_session, user_id, book_id)
    row.progress = progress
    row.is_finished = is_finished
    row.last_modified = last_modified
    app_session.commit()
    return row


def _touch_book(library_db, book_id, last_modified):
    session = library_db.session
    book = session.query(db.Books).filter(db.Books.id == book_id).one()
    book.last_modified = last_modified
    session.commit()


@pytest.mark.unit
class TestSyncResult:
    """Response headers of a round"""

    def test_final_round_headers(self):
        headers = SyncResult(sync_token=SyncToken(books_last_modified=T0)).headers()
        assert SyncToken.decode(headers[SYNC_TOKEN_HEADER]).books_last_modified == T0
        assert SYNC_HEADER not in headers

    def test_continue_headers(self):
        headers = SyncResult(cont_sync=True).headers()
        assert headers[SYNC_HEADER] == SYNC_CONTINUE
        assert headers[SYNC_TOKEN_HEADER] == SyncToken.default().encode()


@pytest.mark.unit
class TestFirstSync:
    """A device without a cursor gets the whole visible library"""

    def test_single_new_book(self, library_db, app_session, principal, book_factory):
        book_id, book_uuid = book_factory(created=T0, modified=T0 + timedelta(minutes=5))
        result = _orchestrator(library_db, app_session).sync(principal, None, BASE_URL)

        assert result.cont_sync is False
        assert len(result.entries) == 1
        entitlement = result.entries[0]["NewEntitlement"]
        assert entitlement["BookEntitlement"]["Id"] == book_uuid
        assert entitlement["BookMetadata"]["DownloadUrls"][0]["Url"] == \
            "{}/kobo/{}/download/{}/epub".format(BASE_URL, principal.auth_token, book_id)
        assert "ReadingState" not in entitlement
        assert result.sync_token.books_last_modified == T0 + timedelta(minutes=5)
        assert result.sync_token.books_last_created == T0

    def test_malformed_token_is_a_first_sync(self, library_db, app_session, principal, book_factory):
        book_factory()
        result = _orchestrator(library_db, app_session).sync(principal, "%%%garbage", BASE_URL)
        assert len(result.entries) == 1
        assert "NewEntitlement" in result.entries[0]

    def test_existing_progress_rides_along(self, library_db, app_session, principal, book_factory):
        book_id, _ = book_factory()
        row = _set_progress(app_session, principal.user_id, book_id, T0 + timedelta(days=1), progress=0.25)
        result = _orchestrator(library_db, app_session).sync(principal, None, BASE_URL)
        entitlement = result.entries[0]["NewEntitlement"]
        assert entitlement["ReadingState"]["CurrentBookmark"]["ProgressPercent"] == 25
        assert result.sync_token.reading_state_last_modified == row.last_modified
        # carried inside the entitlement, not repeated on its own
        assert len(result.entries) == 1

    def test_empty_library(self, library_db, app_session, principal, library_id):
        result = _orchestrator(library_db, app_session).sync(principal, None, BASE_URL)
        assert result.entries == []
        assert result.cont_sync is False
        assert result.sync_token == SyncToken.default()


@pytest.mark.unit
class TestIncrementalSync:
    """Later rounds only carry what changed"""

    def test_nothing_changed(self, library_db, app_session, principal, book_factory):
        book_factory()
        orchestrator = _orchestrator(library_db, app_session)
        first = orchestrator.sync(principal, None, BASE_URL)
        second = orchestrator.sync(principal, first.sync_token.encode(), BASE_URL)
        assert second.entries == []
        assert second.sync_token == first.sync_token

    def test_modified_book_is_a_changed_entitlement(self, library_db, app_session, principal, book_factory):
        book_id, book_uuid = book_factory(created=T0, modified=T0)
        orchestrator = _orchestrator(library_db, app_session)
        first = orchestrator.sync(principal, None, BASE_URL)
        _touch_book(library_db, book_id, T0 + timedelta(days=1))

        second = orchestrator.sync(principal, first.sync_token.encode(), BASE_URL)
        assert _entitlement_ids(second.entries) == [book_uuid]
        assert "ChangedEntitlement" in second.entries[0]
        assert second.sync_token.books_last_modified == T0 + timedelta(days=1)
        assert second.sync_token.books_last_created == T0

    def test_new_book_after_first_sync(self, library_db, app_session, principal, book_factory):
        book_factory(created=T0, modified=T0)
        orchestrator = _orchestrator(library_db, app_session)
        first = orchestrator.sync(principal, None, BASE_URL)
        _, added_uuid = book_factory(created=T0 + timedelta(hours=1), modified=T0 + timedelta(hours=1))

        second = orchestrator.sync(principal, first.sync_token.encode(), BASE_URL)
        assert _entitlement_ids(second.entries) == [added_uuid]
        assert "NewEntitlement" in second.entries[0]

    def test_sub_second_changes_are_not_delivered_twice(self, library_db, app_session, principal,
                                                        book_factory):
        book_factory(created=T0, modified=T0 + timedelta(microseconds=250))
        orchestrator = _orchestrator(library_db, app_session)
        first = orchestrator.sync(principal, None, BASE_URL)
        assert first.sync_token.books_last_modified == T0 + timedelta(microseconds=250)
        assert orchestrator.sync(principal, first.sync_token.encode(), BASE_URL).entries == []

    def test_progress_only_change(self, library_db, app_session, principal, book_factory):
        book_id, book_uuid = book_factory(created=T0, modified=T0)
        orchestrator = _orchestrator(library_db, app_session)
        first = orchestrator.sync(principal, None, BASE_URL)
        _set_progress(app_session, principal.user_id, book_id, T0 + timedelta(days=2), progress=1.0,
                      is_finished=True)

        second = orchestrator.sync(principal, first.sync_token.encode(), BASE_URL)
        assert len(second.entries) == 1
        state = second.entries[0]["ChangedReadingState"]["ReadingState"]
        assert state["EntitlementId"] == book_uuid
        assert state["StatusInfo"]["Status"] == "Finished"
        assert second.sync_token.reading_state_last_modified == T0 + timedelta(days=2)
        assert second.sync_token.books_last_modified == first.sync_token.books_last_modified

        third = orchestrator.sync(principal, second.sync_token.encode(), BASE_URL)
        assert third.entries == []

    def test_token_ahead_of_library_stays_put(self, library_db, app_session, principal, book_factory):
        book_factory(created=T0, modified=T0)
        ahead = SyncToken(books_last_modified=T0 + timedelta(days=30), books_last_created=T0 + timedelta(days=30),
                          reading_state_last_modified=T0 + timedelta(days=30))
        result = _orchestrator(library_db, app_session).sync(principal, ahead.encode(), BASE_URL)
        assert result.entries == []
        assert result.sync_token == ahead


@pytest.mark.unit
class TestPaging:
    """Large change sets are split into continue rounds"""

    def test_250_books_in_pages_of_100(self, library_db, app_session, principal, book_factory):
        uuids = [book_factory()[1] for _ in range(250)]
        orchestrator = _orchestrator(library_db, app_session, page_size=100)

        results = _sync_until_done(orchestrator, principal)
        assert [len(r.entries) for r in results] == [100, 100, 50]
        assert [r.cont_sync for r in results] == [True, True, False]
        assert results[0].headers()[SYNC_HEADER] == SYNC_CONTINUE
        assert SYNC_HEADER not in results[2].headers()

        # the cursor only moves once the pass is complete
        assert results[0].sync_token == SyncToken.default()
        assert results[1].sync_token == SyncToken.default()
        delivered = [uuid for r in results for uuid in _entitlement_ids(r.entries)]
        assert sorted(delivered) == sorted(uuids)
        assert len(set(delivered)) == 250

        last = results[2].sync_token
        assert last.books_last_modified == datetime(2024, 1, 1, 12, 0) + timedelta(minutes=250)
        assert orchestrator.sync(principal, last.encode(), BASE_URL).entries == []

    def test_pass_record_is_cleared(self, library_db, app_session, principal, book_factory):
        for _ in range(5):
            book_factory()
        orchestrator = _orchestrator(library_db, app_session, page_size=2)
        results = _sync_until_done(orchestrator, principal)
        assert len(results) == 3
        assert app_session.query(ub.KoboSyncedBooks).count() == 0

    def test_abandoned_pass_starts_over(self, library_db, app_session, principal, book_factory):
        for _ in range(4):
            book_factory()
        orchestrator = _orchestrator(library_db, app_session, page_size=3)
        assert orchestrator.sync(principal, None, BASE_URL).cont_sync is True

        other_cursor = SyncToken(reading_state_last_modified=T0).encode()
        restart = orchestrator.sync(principal, other_cursor, BASE_URL)
        assert len(restart.entries) == 3
        assert restart.cont_sync is True
        rows = app_session.query(ub.KoboSyncedBooks).all()
        assert {row.sync_token for row in rows} == {other_cursor}

    def test_hidden_books_do_not_stall_paging(self, library_db, app_session, user_factory, book_factory):
        user_id, token = user_factory(name="no-explicit")
        principal = Principal(user_id=user_id, auth_token=token, can_download=True)
        for i in range(6):
            book_factory(explicit=i % 2 == 0)
        orchestrator = _orchestrator(library_db, app_session, page_size=2)
        results = _sync_until_done(orchestrator, principal)
        assert sum(len(r.entries) for r in results) == 3
        assert results[-1].cont_sync is False


@pytest.mark.unit
class TestProgressPaging:
    """Progress only changes beyond one page"""

    @staticmethod
    def _state_ids(results):
        return [entry["ChangedReadingState"]["ReadingState"]["EntitlementId"]
                for r in results for entry in r.entries if "ChangedReadingState" in entry]

    def test_hidden_progress_does_not_block_later_changes(self, library_db, app_session, principal,
                                                         book_factory):
        first_hidden, _ = book_factory(explicit=True)
        second_hidden, _ = book_factory(explicit=True)
        book_id, book_uuid = book_factory()
        orchestrator = _orchestrator(library_db, app_session, page_size=2)
        token = _sync_until_done(orchestrator, principal)[-1].sync_token.encode()

        _set_progress(app_session, principal.user_id, first_hidden, T0 + timedelta(days=1))
        _set_progress(app_session, principal.user_id, second_hidden, T0 + timedelta(days=1, seconds=1))
        _set_progress(app_session, principal.user_id, book_id, T0 + timedelta(days=2))

        results = _sync_until_done(orchestrator, principal, token)
        assert self._state_ids(results) == [book_uuid]
        last = results[-1].sync_token
        assert last.reading_state_last_modified == T0 + timedelta(days=2)
        assert orchestrator.sync(principal, last.encode(), BASE_URL).entries == []

    def test_same_timestamp_across_pages(self, library_db, app_session, principal, book_factory):
        books = [book_factory() for _ in range(3)]
        orchestrator = _orchestrator(library_db, app_session, page_size=2)
        token = _sync_until_done(orchestrator, principal)[-1].sync_token.encode()
        for book_id, _ in books:
            _set_progress(app_session, principal.user_id, book_id, T0 + timedelta(days=1))

        results = _sync_until_done(orchestrator, principal, token)
        assert [r.cont_sync for r in results] == [True, False]
        assert sorted(self._state_ids(results)) == sorted(book_uuid for _, book_uuid in books)
        assert app_session.query(ub.KoboSyncedBooks).count() == 0


@pytest.mark.unit
class TestVisibility:
    """Books the user may not see never reach the device"""

    def test_explicit_books_are_filtered(self, library_db, app_session, principal, book_factory):
        _, visible_uuid = book_factory(created=T0, modified=T0)
        book_factory(created=T0, modified=T0 + timedelta(hours=1), explicit=True)
        result = _orchestrator(library_db, app_session).sync(principal, None, BASE_URL)
        assert _entitlement_ids(result.entries) == [visible_uuid]
        # the hidden book does not move the watermark
        assert result.sync_token.books_last_modified == T0

    def test_denied_tags(self, library_db, app_session, user_factory, book_factory):
        user_id, token = user_factory(name="tagged", denied_tags="Horror")
        principal = Principal(user_id=user_id, auth_token=token, can_download=True,
                              denied_tags=frozenset({"horror"}))
        _, fine = book_factory(tags=("Fantasy",))
        book_factory(tags=("Horror",))
        result = _orchestrator(library_db, app_session).sync(principal, None, BASE_URL)
        assert _entitlement_ids(result.entries) == [fine]

    def test_progress_of_hidden_book(self, library_db, app_session, principal, book_factory):
        book_id, _ = book_factory(created=T0, modified=T0, explicit=True)
        _set_progress(app_session, principal.user_id, book_id, T0 + timedelta(days=1))
        result = _orchestrator(library_db, app_session).sync(principal, None, BASE_URL)
        assert result.entries == []
        assert result.sync_token.reading_state_last_modified == SyncToken.default().reading_state_last_modified

    def test_no_accessible_library(self, library_db, app_session, reader, book_factory):
        book_factory()
        user_id, token = reader
        principal = Principal(user_id=user_id, auth_token=token, can_download=True, all_libraries=False)
        cursor = SyncToken(books_last_modified=T0).encode()
        result = _orchestrator(library_db, app_session).sync(principal, cursor, BASE_URL)
        assert result.entries == []
        assert result.cont_sync is False
        assert result.sync_token == SyncToken.decode(cursor)

    def test_restricted_to_one_library(self, library_db, app_session, reader, book_factory, library_id):
        session = library_db.session
        other = db.Library(name="Comics", media_type="book")
        session.add(other)
        session.commit()
        _, mine = book_factory()
        book_factory(library=other.id)
        user_id, token = reader
        principal = Principal(user_id=user_id, auth_token=token, can_download=True, all_libraries=False,
                              library_ids=frozenset({library_id}))
        result = _orchestrator(library_db, app_session).sync(principal, None, BASE_URL)
        assert _entitlement_ids(result.entries) == [mine]


@pytest.mark.unit
class TestStoreFailures:
    """Store errors surface as Transient"""

    def test_transient(self, library_db, app_session, principal, monkeypatch):
        def broken(_principal):
            raise exc.OperationalError("SELECT 1", {}, Exception("database is locked"))

        monkeypatch.setattr(library_db, "get_library_ids", broken)
        with pytest.raises(Transient) as exc_info:
            _orchestrator(library_db, app_session).sync(principal, None, BASE_URL)
        assert exc_info.value.status_code == 503
