# nearbuy/domain/services/keyword_matcher.py
"""
Synonym-table matching for free-text replies.

Every flow that accepts typed answers next to buttons declares a table::

    PURPOSES = {
        "loan": ("loan", "lend", "borrow"),
        "advance": ("advance", "salary"),
        ...
    }

and calls ``match_keyword(text, PURPOSES)``.  Canonical values are scanned in
table order and the first keyword hit wins; there is no scoring.  Short
keywords (two characters or fewer, or pure digits) only match a whole token so
that ``"c"`` or ``"1"`` do not fire inside longer words; longer keywords match
anywhere in the text.
"""

from __future__ import annotations

import re
from typing import Mapping, Sequence

_TOKEN_SPLIT_RE = re.compile(r"[^\w']+", re.UNICODE)
_SPACES_RE = re.compile(r"\s+")


def normalize(text: str | None) -> str:
    if not text:
        return ""
    return _SPACES_RE.sub(" ", text.strip().lower())


def _tokens(text: str) -> set[str]:
    return {tok for tok in _TOKEN_SPLIT_RE.split(text) if tok}


def _is_short(keyword: str) -> bool:
    return len(keyword) <= 2 or keyword.isdigit()


def match_keyword(text: str | None, table: Mapping[str, Sequence[str]]) -> str | None:
    """Return the canonical value whose keyword appears first in table order."""
    norm = normalize(text)
    if not norm:
        return None
    tokens = _tokens(norm)
    for canonical, keywords in table.items():
        for keyword in keywords:
            kw = keyword.lower()
            if _is_short(kw):
                if kw == norm or kw in tokens:
                    return canonical
            elif kw in norm:
                return canonical
    return None
