# -*- coding: utf-8 -*-
# Calibre-Web Automated – fork of Calibre-Web
# Copyright (C) 2018-2026 Calibre-Web contributors
# Copyright (C) 2024-2026 Calibre-Web Automated contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

import os
from binascii import hexlify

from sqlalchemy import create_engine, exc
from sqlalchemy import Column, ForeignKey, UniqueConstraint
from sqlalchemy import String, Integer, SmallInteger, Boolean, DateTime, Float, JSON
from sqlalchemy.orm import relationship, sessionmaker, scoped_session
try:
    # Compatibility with sqlalchemy 2.0
    from sqlalchemy.orm import declarative_base
except ImportError:
    from sqlalchemy.ext.declarative import declarative_base

from . import constants, logger
from .errors import Transient
from .helper import utcnow

log = logger.create()

Base = declarative_base()


class UserBase:

    def _has_role(self, role_flag):
        return constants.has_flag(self.role, role_flag)

    def role_download(self):
        return self._has_role(constants.ROLE_DOWNLOAD)

    def role_explicit_content(self):
        return self._has_role(constants.ROLE_EXPLICIT_CONTENT)

    def list_denied_tags(self):
        mct = self.denied_tags or ""
        return [t.strip() for t in mct.split(",") if t.strip()]

    def list_allowed_tags(self):
        mct = self.allowed_tags or ""
        return [t.strip() for t in mct.split(",") if t.strip()]

    def list_library_ids(self):
        ids = []
        for value in (self.library_ids or "").split(","):
            value = value.strip()
            if value.isdigit():
                ids.append(int(value))
        return ids

    def __repr__(self):
        return '<User %r>' % self.name


class User(UserBase, Base):
    __tablename__ = 'user'
    __table_args__ = {'sqlite_autoincrement': True}

    id = Column(Integer, primary_key=True)
    name = Column(String(64), unique=True)
    email = Column(String(120), default="")
    role = Column(SmallInteger, default=constants.ROLE_USER)
    denied_tags = Column(String, default="")
    allowed_tags = Column(String, default="")
    # comma separated library ids, only consulted when all_libraries is off
    all_libraries = Column(Boolean, default=True)
    library_ids = Column(String, default="")
    kobo_auth_token = relationship('KoboAuthToken', backref='user', lazy='dynamic',
                                   cascade="all, delete-orphan")


class KoboAuthToken(Base):
    __tablename__ = 'kobo_auth_token'

    id = Column(Integer, primary_key=True)
    auth_token = Column(String, unique=True, nullable=False)
    user_id = Column(Integer, ForeignKey('user.id'), nullable=False)
    created = Column(DateTime, default=utcnow)

    def __init__(self, user_id=None, auth_token=None):
        super().__init__()
        self.user_id = user_id
        self.auth_token = auth_token or hexlify(os.urandom(16)).decode('utf-8')

    def __repr__(self):
        return '<KoboAuthToken %r>' % self.id


# Per (user, book) reading position. The StatusInfo, CurrentBookmark and Statistics
# blocks of the device ReadingState API all map onto this one row.
class ReadingProgress(Base):
    __tablename__ = 'kobo_reading_progress'
    __table_args__ = (UniqueConstraint('user_id', 'book_id', name='uq_reading_progress_user_book'),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey('user.id'), nullable=False)
    book_id = Column(Integer, nullable=False)
    is_finished = Column(Boolean, default=False, nullable=False)
    progress = Column(Float, default=0.0, nullable=False)
    location_value = Column(String)
    location_type = Column(String)
    location_source = Column(String)
    spent_reading_minutes = Column(Integer)
    remaining_time_minutes = Column(Integer)
    times_started_reading = Column(Integer, default=0, nullable=False)
    last_time_started_reading = Column(DateTime)
    extra_statistics = Column(JSON, default=dict)
    created = Column(DateTime, default=utcnow)
    last_modified = Column(DateTime, default=utcnow, index=True)

    def __repr__(self):
        return '<ReadingProgress user=%r book=%r progress=%r>' % (self.user_id, self.book_id, self.progress)


# Books handed out (or skipped) during a paged sync pass that has not reached its last page
# yet. sync_token is the cursor the device keeps presenting while the pass is running.
class KoboSyncedBooks(Base):
    __tablename__ = 'kobo_synced_books'
    __table_args__ = (UniqueConstraint('user_id', 'book_id', name='uq_kobo_synced_books_user_book'),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey('user.id'), nullable=False)
    book_id = Column(Integer, nullable=False)
    sync_token = Column(String, nullable=False, default="")
    book_last_modified = Column(DateTime)
    book_created = Column(DateTime)
    reading_state_modified = Column(DateTime)
    emitted = Column(Boolean, default=False, nullable=False)

    def __repr__(self):
        return '<KoboSyncedBooks user=%r book=%r>' % (self.user_id, self.book_id)


def init_db(app_db_path=None, engine=None):
    """Create the app store tables and return a scoped session factory bound to them"""
    if engine is None:
        engine = create_engine('sqlite:///{0}'.format(app_db_path), echo=False,
                               connect_args={'timeout': 30, 'check_same_thread': False})
    Base.metadata.create_all(engine)
    Session = scoped_session(sessionmaker())
    Session.configure(bind=engine)
    return Session


def create_user(_session, name, role=constants.ROLE_USER, **kwargs):
    user = User(name=name, role=role, **kwargs)
    _session.add(user)
    session_commit(_session, "User {} created".format(name))
    return user


def session_commit(_session, success=None):
    try:
        _session.commit()
        if success:
            log.info(success)
    except (exc.OperationalError, exc.InvalidRequestError) as e:
        _session.rollback()
        log.error_or_exception(e)
        raise Transient() from e
