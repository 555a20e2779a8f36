"""Canonical message signatures used as aggregation keys."""

from __future__ import annotations

import re

__all__ = ["normalize"]

# zero-width space, non-joiner, joiner and the byte-order mark
_ZERO_WIDTH_RE = re.compile("[\u200b-\u200d\ufeff]")
_WS_RE = re.compile(r"\s+")


def normalize(text: str | None) -> str:
    """Return the comparison key for ``text``.

    The key ignores case, zero-width characters and whitespace runs. An empty
    result means the text is not a valid message.
    """

    if not text:
        return ""
    stripped = _ZERO_WIDTH_RE.sub("", text)
    return _WS_RE.sub(" ", stripped).strip().lower()
