"""Message token model plus helpers to tokenize and flatten chat content."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence, Union

from discord import PartialEmoji

__all__ = [
    "EmoteToken",
    "TextToken",
    "Token",
    "token_from_mapping",
    "token_to_mapping",
    "tokenize_content",
    "tokens_from_mappings",
    "tokens_to_text",
]

_CUSTOM_EMOJI_RE = re.compile(r"<(?P<animated>a?):(?P<name>[A-Za-z0-9_]{2,32}):(?P<id>\d{15,22})>")
_WS_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class TextToken:
    content: str


@dataclass(frozen=True)
class EmoteToken:
    alt_text: str
    image_ref: str


Token = Union[TextToken, EmoteToken]


def tokens_to_text(tokens: Iterable[Token]) -> str:
    """Flatten ``tokens`` into plain text; emotes contribute their alt text."""

    parts = []
    for token in tokens:
        if isinstance(token, EmoteToken):
            parts.append(token.alt_text or "")
        else:
            parts.append(token.content)
    return _WS_RE.sub(" ", " ".join(parts)).strip()


def _emote_url(name: str, emoji_id: int, animated: bool) -> str:
    return str(PartialEmoji(name=name, id=emoji_id, animated=animated).url)


def tokenize_content(content: str | None) -> list[Token]:
    """Split Discord message ``content`` into ordered text and emote tokens.

    Custom emoji markup (``<:name:id>`` / ``<a:name:id>``) becomes an
    :class:`EmoteToken` pointing at the CDN image; the text between emotes is
    kept as :class:`TextToken` segments. Blank segments are dropped.
    """

    text = content or ""
    tokens: list[Token] = []
    cursor = 0
    for match in _CUSTOM_EMOJI_RE.finditer(text):
        segment = text[cursor : match.start()].strip()
        if segment:
            tokens.append(TextToken(segment))
        name = match.group("name")
        url = _emote_url(name, int(match.group("id")), bool(match.group("animated")))
        tokens.append(EmoteToken(alt_text=name, image_ref=url))
        cursor = match.end()
    tail = text[cursor:].strip()
    if tail:
        tokens.append(TextToken(tail))
    return tokens


def token_from_mapping(raw: Mapping[str, Any]) -> Token | None:
    """Build a token from the ``{kind: text|emote, ...}`` wire shape.

    Returns ``None`` for ill-formed entries so producers can drop them.
    """

    kind = str(raw.get("kind") or "").strip().lower()
    if kind == "text":
        content = str(raw.get("content") or raw.get("text") or "").strip()
        return TextToken(content) if content else None
    if kind == "emote":
        alt = str(raw.get("altText") or raw.get("alt") or "").strip()
        ref = str(raw.get("imageRef") or raw.get("src") or "").strip()
        if ref:
            return EmoteToken(alt_text=alt, image_ref=ref)
        # an emote without an image is only useful as text
        return TextToken(alt) if alt else None
    return None


def tokens_from_mappings(items: Sequence[Mapping[str, Any]] | None) -> list[Token]:
    tokens: list[Token] = []
    for item in items or ():
        if not isinstance(item, Mapping):
            continue
        token = token_from_mapping(item)
        if token is not None:
            tokens.append(token)
    return tokens


def token_to_mapping(token: Token) -> dict[str, str]:
    if isinstance(token, EmoteToken):
        return {"kind": "emote", "altText": token.alt_text, "imageRef": token.image_ref}
    return {"kind": "text", "content": token.content}
