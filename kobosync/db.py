# -*- coding: utf-8 -*-
# Calibre-Web Automated – fork of Calibre-Web
# Copyright (C) 2018-2026 Calibre-Web contributors
# Copyright (C) 2024-2026 Calibre-Web Automated contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

import os
import threading

from sqlalchemy import create_engine
from sqlalchemy import Table, Column, ForeignKey
from sqlalchemy import String, Integer, Boolean, TIMESTAMP
from sqlalchemy.orm import relationship, sessionmaker, scoped_session, selectinload
try:
    # Compatibility with sqlalchemy 2.0
    from sqlalchemy.orm import declarative_base
except ImportError:
    from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.sql.expression import or_, func

from . import logger
from .constants import KOBO_FORMATS
from .helper import utcnow

log = logger.create()

Base = declarative_base()

books_authors_link = Table('books_authors_link', Base.metadata,
                           Column('id', Integer, primary_key=True, autoincrement=True),
                           Column('book', Integer, ForeignKey('books.id'), nullable=False),
                           Column('author', Integer, ForeignKey('authors.id'), nullable=False)
                           )

books_tags_link = Table('books_tags_link', Base.metadata,
                        Column('book', Integer, ForeignKey('books.id'), primary_key=True),
                        Column('tag', Integer, ForeignKey('tags.id'), primary_key=True)
                        )

books_series_link = Table('books_series_link', Base.metadata,
                          Column('book', Integer, ForeignKey('books.id'), primary_key=True),
                          Column('series', Integer, ForeignKey('series.id'), primary_key=True)
                          )

books_languages_link = Table('books_languages_link', Base.metadata,
                             Column('book', Integer, ForeignKey('books.id'), primary_key=True),
                             Column('lang_code', Integer, ForeignKey('languages.id'), primary_key=True)
                             )

books_publishers_link = Table('books_publishers_link', Base.metadata,
                              Column('book', Integer, ForeignKey('books.id'), primary_key=True),
                              Column('publisher', Integer, ForeignKey('publishers.id'), primary_key=True)
                              )


class Library(Base):
    __tablename__ = 'libraries'

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    media_type = Column(String, nullable=False, default='book')

    def __repr__(self):
        return "<Library('{0}')>".format(self.name)


class Comments(Base):
    __tablename__ = 'comments'

    id = Column(Integer, primary_key=True)
    book = Column(Integer, ForeignKey('books.id'), nullable=False)
    text = Column(String(collation='NOCASE'), nullable=False)

    def __init__(self, comment, book=None):
        super().__init__()
        self.text = comment
        self.book = book

    def __repr__(self):
        return "<Comments({0})>".format(self.text)


class Tags(Base):
    __tablename__ = 'tags'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(collation='NOCASE'), unique=True, nullable=False)

    def __init__(self, name):
        super().__init__()
        self.name = name

    def __repr__(self):
        return "<Tags('{0})>".format(self.name)


class Authors(Base):
    __tablename__ = 'authors'

    id = Column(Integer, primary_key=True)
    name = Column(String(collation='NOCASE'), unique=True, nullable=False)
    sort = Column(String(collation='NOCASE'))

    def __init__(self, name, sort=None):
        super().__init__()
        self.name = name
        self.sort = sort or name

    def __repr__(self):
        return "<Authors('{0},{1}')>".format(self.name, self.sort)


class Series(Base):
    __tablename__ = 'series'

    id = Column(Integer, primary_key=True)
    name = Column(String(collation='NOCASE'), unique=True, nullable=False)
    sort = Column(String(collation='NOCASE'))

    def __init__(self, name, sort=None):
        super().__init__()
        self.name = name
        self.sort = sort or name

    def __repr__(self):
        return "<Series('{0},{1}')>".format(self.name, self.sort)


class Languages(Base):
    __tablename__ = 'languages'

    id = Column(Integer, primary_key=True)
    lang_code = Column(String(collation='NOCASE'), nullable=False, unique=True)

    def __init__(self, lang_code):
        super().__init__()
        self.lang_code = lang_code

    def __repr__(self):
        return "<Languages('{0}')>".format(self.lang_code)


class Publishers(Base):
    __tablename__ = 'publishers'

    id = Column(Integer, primary_key=True)
    name = Column(String(collation='NOCASE'), nullable=False, unique=True)
    sort = Column(String(collation='NOCASE'))

    def __init__(self, name, sort=None):
        super().__init__()
        self.name = name
        self.sort = sort or name

    def __repr__(self):
        return "<Publishers('{0},{1}')>".format(self.name, self.sort)


# One file asset of a book, stored as <books_dir>/<book.path>/<name>.<format>
class Data(Base):
    __tablename__ = 'data'

    id = Column(Integer, primary_key=True)
    book = Column(Integer, ForeignKey('books.id'), nullable=False)
    format = Column(String(collation='NOCASE'), nullable=False)
    uncompressed_size = Column(Integer, nullable=False)
    name = Column(String, nullable=False)

    def __init__(self, book, book_format, uncompressed_size, name):
        super().__init__()
        self.book = book
        self.format = book_format
        self.uncompressed_size = uncompressed_size
        self.name = name

    @property
    def file_name(self):
        return "{}.{}".format(self.name, self.format.lower())

    def __repr__(self):
        return "<Data('{0},{1}{2}{3}')>".format(self.book, self.format, self.uncompressed_size, self.name)


class Books(Base):
    __tablename__ = 'books'

    id = Column(Integer, primary_key=True, autoincrement=True)
    uuid = Column(String, unique=True, nullable=False)
    library_id = Column(Integer, ForeignKey('libraries.id'), nullable=False)
    title = Column(String(collation='NOCASE'), nullable=False, default='Unknown')
    # creation time of the library entry
    timestamp = Column(TIMESTAMP, default=utcnow)
    pubdate = Column(TIMESTAMP)
    series_index = Column(String, nullable=False, default="1.0")
    last_modified = Column(TIMESTAMP, default=utcnow, index=True)
    path = Column(String, default="", nullable=False)
    has_cover = Column(Integer, default=0)
    explicit = Column(Boolean, default=False, nullable=False)

    library = relationship(Library, backref='books')
    authors = relationship(Authors, secondary=books_authors_link, order_by=books_authors_link.c.id,
                           backref='books')
    tags = relationship(Tags, secondary=books_tags_link, backref='books', order_by="Tags.name")
    comments = relationship(Comments, backref='books')
    data = relationship(Data, backref='books', order_by="Data.id")
    series = relationship(Series, secondary=books_series_link, backref='books')
    languages = relationship(Languages, secondary=books_languages_link, backref='books')
    publishers = relationship(Publishers, secondary=books_publishers_link, backref='books')

    def __repr__(self):
        return "<Books('{0},{1},{2},{3}')>".format(self.id, self.title, self.timestamp, self.last_modified)

    @property
    def kobo_data(self):
        """File assets a Kobo device can download, KEPUB preferred over EPUB"""
        kepub = [data for data in self.data if data.format.upper() == 'KEPUB']
        if kepub:
            return kepub
        return [data for data in self.data if data.format.upper() in KOBO_FORMATS]


def _syncable_file_filter():
    return Books.data.any(func.upper(Data.format).in_(list(KOBO_FORMATS)))


class LibraryDB:
    """Read access to the book library store"""
    _reconnect_lock = threading.RLock()

    def __init__(self, library_db_path=None, engine=None):
        self.engine = None
        self.session_factory = None
        if engine is not None or library_db_path:
            self.setup_db(library_db_path, engine)

    def setup_db(self, library_db_path=None, engine=None):
        with self._reconnect_lock:
            self.dispose()
            if engine is None:
                if library_db_path != ':memory:' and not os.path.exists(library_db_path):
                    log.warning("Library database not found at %s, creating an empty one", library_db_path)
                engine = create_engine('sqlite:///{0}'.format(library_db_path), echo=False,
                                       connect_args={'timeout': 30, 'check_same_thread': False})
            self.engine = engine
            Base.metadata.create_all(engine)
            self.session_factory = scoped_session(sessionmaker(bind=engine))

    @property
    def session(self):
        return self.session_factory()

    def remove_session(self):
        if self.session_factory is not None:
            self.session_factory.remove()

    def dispose(self):
        if self.session_factory is not None:
            try:
                self.session_factory.remove()
            except Exception as ex:
                log.debug("Failed to remove library session: %s", ex)
        self.session_factory = None

    def get_books_by_ids(self, book_ids, library_ids):
        if not book_ids or not library_ids:
            return {}
        books = (self.session.query(Books)
                 .options(selectinload(Books.tags), selectinload(Books.data))
                 .filter(Books.id.in_(list(book_ids)))
                 .filter(Books.library_id.in_(list(library_ids)))
                 .all())
        return {book.id: book for book in books}

    def get_books_last_modified(self, book_ids):
        if not book_ids:
            return {}
        rows = (self.session.query(Books.id, Books.last_modified)
                .filter(Books.id.in_(list(book_ids)))
                .all())
        return {row.id: row.last_modified for row in rows}

    def get_library_ids(self, principal):
        """Ids of the book libraries a principal may sync from"""
        query = self.session.query(Library.id).filter(Library.media_type == 'book')
        if not principal.all_libraries:
            if not principal.library_ids:
                return []
            query = query.filter(Library.id.in_(list(principal.library_ids)))
        return [row.id for row in query.order_by(Library.id).all()]

    def changed_books_query(self, library_ids, books_last_modified, books_last_created, exclude_ids=None):
        query = (self.session.query(Books)
                 .filter(Books.library_id.in_(list(library_ids)))
                 .filter(or_(Books.last_modified > books_last_modified,
                             Books.timestamp > books_last_created))
                 .filter(_syncable_file_filter()))
        if exclude_ids:
            query = query.filter(Books.id.notin_(list(exclude_ids)))
        return query

    def get_changed_books(self, library_ids, books_last_modified, books_last_created, limit, exclude_ids=None):
        query = self.changed_books_query(library_ids, books_last_modified, books_last_created, exclude_ids)
        return (query
                .options(selectinload(Books.authors),
                         selectinload(Books.tags),
                         selectinload(Books.comments),
                         selectinload(Books.data),
                         selectinload(Books.series),
                         selectinload(Books.languages),
                         selectinload(Books.publishers))
                .order_by(Books.last_modified.asc(), Books.id.asc())
                .limit(limit)
                .all())

    def count_changed_books(self, library_ids, books_last_modified, books_last_created, exclude_ids=None):
        return self.changed_books_query(library_ids, books_last_modified, books_last_created, exclude_ids).count()

    def get_book_in_libraries(self, library_ids, book_uuid=None, book_id=None):
        if not library_ids:
            return None
        query = self.session.query(Books).filter(Books.library_id.in_(list(library_ids)))
        if book_uuid is not None:
            query = query.filter(Books.uuid == book_uuid)
        else:
            query = query.filter(Books.id == book_id)
        return query.first()
