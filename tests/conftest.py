# Calibre-Web Automated – fork of Calibre-Web
# Copyright (C) 2018-2026 Calibre-Web contributors
# Copyright (C) 2024-2026 Calibre-Web Automated contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

"""
Shared pytest fixtures for the Kobo sync tests.

Both stores run on private in-memory SQLite engines (StaticPool keeps the one
connection alive), so every test starts from empty tables. Fixtures hand out
plain ids and uuids rather than ORM instances: the Flask app closes the scoped
sessions after every request, which detaches anything loaded before it.
"""

import uuid
from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from kobosync import constants, create_app, db, ub
from kobosync.config import SyncConfig
from kobosync.permissions import Principal


BASE_TIME = datetime(2024, 1, 1, 12, 0, 0)


def _memory_engine():
    return create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)


@pytest.fixture
def library_engine():
    engine = _memory_engine()
    yield engine
    engine.dispose()


@pytest.fixture
def app_engine():
    engine = _memory_engine()
    yield engine
    engine.dispose()


@pytest.fixture
def library_db(library_engine):
    library = db.LibraryDB(engine=library_engine)
    yield library
    library.dispose()


@pytest.fixture
def app_session(app_engine):
    session = ub.init_db(engine=app_engine)
    yield session
    session.remove()


@pytest.fixture
def library_id(library_db):
    session = library_db.session
    library = db.Library(name="Books", media_type="book")
    session.add(library)
    session.commit()
    return library.id


@pytest.fixture
def book_factory(library_db, library_id):
    """Insert a book and return (id, uuid).

    Books get increasing created/modified times unless given explicitly.
    """
    counter = {"n": 0}

    def make_book(title=None, created=None, modified=None, formats=("EPUB",), tags=(), explicit=False,
                  authors=("Jane Author",), series=None, series_index="1.0", language=None,
                  publisher=None, description=None, library=None):
        counter["n"] += 1
        n = counter["n"]
        session = library_db.session
        created = created or BASE_TIME + timedelta(minutes=n)
        book = db.Books(uuid=str(uuid.uuid4()),
                        library_id=library or library_id,
                        title=title or "Book {}".format(n),
                        timestamp=created,
                        last_modified=modified or created,
                        pubdate=datetime(2020, 5, 17),
                        series_index=series_index,
                        path="Jane Author/Book {} ({})".format(n, n),
                        has_cover=0,
                        explicit=explicit)
        for name in authors:
            author = session.query(db.Authors).filter(db.Authors.name == name).first() or db.Authors(name)
            book.authors.append(author)
        for name in tags:
            tag = session.query(db.Tags).filter(db.Tags.name == name).first() or db.Tags(name)
            book.tags.append(tag)
        if series:
            book.series.append(session.query(db.Series).filter(db.Series.name == series).first()
                               or db.Series(series))
        if language:
            book.languages.append(session.query(db.Languages).filter(db.Languages.lang_code == language).first()
                                  or db.Languages(language))
        if publisher:
            book.publishers.append(db.Publishers(publisher))
        session.add(book)
        session.flush()
        if description:
            session.add(db.Comments(description, book.id))
        for book_format in formats:
            session.add(db.Data(book.id, book_format, 1024 * n, "Book {}".format(n)))
        session.commit()
        return book.id, book.uuid

    return make_book


@pytest.fixture
def user_factory(app_session):
    """Insert a user with a Kobo auth token and return (user_id, auth_token)"""

    def make_user(name="reader", role=constants.ROLE_DOWNLOAD, **kwargs):
        user = ub.create_user(app_session, name, role=role, **kwargs)
        token = ub.KoboAuthToken(user_id=user.id)
        app_session.add(token)
        app_session.commit()
        return user.id, token.auth_token

    return make_user


@pytest.fixture
def reader(user_factory):
    return user_factory()


@pytest.fixture
def principal(reader):
    user_id, auth_token = reader
    return Principal(user_id=user_id, auth_token=auth_token, can_download=True)


@pytest.fixture
def sync_config():
    return SyncConfig(sync_item_limit=constants.SYNC_ITEM_LIMIT)


@pytest.fixture
def app(sync_config, library_engine, app_engine, tmp_path):
    config = sync_config.update(books_dir=str(tmp_path / "books"))
    app = create_app(config, library_engine=library_engine, app_engine=app_engine)
    app.config.update(TESTING=True)
    yield app
    services = app.extensions["kobosync"]
    services.app_session.remove()
    services.library_db.dispose()


@pytest.fixture
def client(app):
    return app.test_client()


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a fast unit test"
    )
