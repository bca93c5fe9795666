# -*- coding: utf-8 -*-
# Calibre-Web Automated – fork of Calibre-Web
# Copyright (C) 2018-2026 Calibre-Web contributors
# Copyright (C) 2024-2026 Calibre-Web Automated contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

from dataclasses import dataclass, field
from typing import FrozenSet

from .errors import NotVisible, PermissionDenied


@dataclass(frozen=True)
class Principal:
    """The user a sync round runs for, with the capabilities read off the user row"""
    user_id: int
    auth_token: str = ""
    can_download: bool = False
    can_see_explicit: bool = False
    all_libraries: bool = True
    library_ids: FrozenSet[int] = field(default_factory=frozenset)
    allowed_tags: FrozenSet[str] = field(default_factory=frozenset)
    denied_tags: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def from_user(cls, user, auth_token=""):
        return cls(
            user_id=user.id,
            auth_token=auth_token,
            can_download=user.role_download(),
            can_see_explicit=user.role_explicit_content(),
            all_libraries=bool(user.all_libraries),
            library_ids=frozenset(user.list_library_ids()),
            allowed_tags=frozenset(t.lower() for t in user.list_allowed_tags()),
            denied_tags=frozenset(t.lower() for t in user.list_denied_tags()),
        )

    def tag_allowed(self, tag_name):
        name = (tag_name or "").strip().lower()
        if name in self.denied_tags:
            return False
        if self.allowed_tags and name not in self.allowed_tags:
            return False
        return True


def _tag_names(book):
    return [tag.name if hasattr(tag, 'name') else tag for tag in (book.tags or [])]


def visible(principal, book):
    if book is None:
        return False
    if book.explicit and not principal.can_see_explicit:
        return False
    return all(principal.tag_allowed(name) for name in _tag_names(book))


def check_visible(principal, book):
    """Return the book, or raise NotVisible so hidden books look like absent ones"""
    if not visible(principal, book):
        raise NotVisible()
    return book


def check_download(principal):
    if principal is None or not principal.can_download:
        raise PermissionDenied("Download permission required")
