"""Text normalization helpers (core domain)."""

from __future__ import annotations

import re
from typing import Optional

_NON_ALNUM = re.compile(r"[^\w\s]|_")
_WHITESPACE = re.compile(r"\s+")


def _collapse_whitespace(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def normalize(text: Optional[str]) -> str:
    """Canonicalize text for comparison.

    Lower-cases, drops every character that is not alphanumeric or
    whitespace, then collapses whitespace runs. Punctuation is removed before
    collapsing so the result is stable under repeated application.
    """

    if not text:
        return ""
    return _collapse_whitespace(_NON_ALNUM.sub("", text.lower()))
