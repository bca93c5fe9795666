# -*- coding: utf-8 -*-
# Calibre-Web Automated – fork of Calibre-Web
# Copyright (C) 2018-2026 Calibre-Web contributors
# Copyright (C) 2024-2026 Calibre-Web Automated contributors
# SPDX-License-Identifier: GPL-3.0-or-later
# See CONTRIBUTORS for full list of authors.

from pycountry import languages as pyc_languages

from . import logger

log = logger.create()

DEFAULT_LANGUAGE = "en"

# Common prefixes of free text language tags ("english", "fr-CA", "deutsch")
_PREFIXES = (
    ("en", "en"),
    ("fr", "fr"),
    ("de", "de"),
    ("es", "es"),
    ("it", "it"),
    ("pt", "pt"),
    ("ja", "ja"),
    ("zh", "zh"),
)


def _lookup(**kwargs):
    try:
        return pyc_languages.get(**kwargs)
    except (KeyError, LookupError):
        return None


def get_lang1(lang):
    """Best effort ISO 639-1 code for a free text language value, 'en' if unknown"""
    if not lang:
        return DEFAULT_LANGUAGE
    value = lang.strip()
    lowered = value.lower()
    if len(lowered) == 2 and lowered.isalpha():
        return lowered
    # region suffixes like pt-BR or en_US
    base = lowered.replace("_", "-").split("-")[0]
    if len(base) == 2 and base.isalpha():
        return base
    if len(base) == 3:
        language = _lookup(alpha_3=base)
        if language is not None and getattr(language, 'alpha_2', None):
            return language.alpha_2
    language = _lookup(name=value)
    if language is not None and getattr(language, 'alpha_2', None):
        return language.alpha_2
    for prefix, code in _PREFIXES:
        if lowered.startswith(prefix):
            return code
    log.debug("No ISO 639-1 code for language %r, using %s", lang, DEFAULT_LANGUAGE)
    return DEFAULT_LANGUAGE
