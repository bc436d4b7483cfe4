"""Split resource addresses into type, name and index tokens."""

from __future__ import annotations

from typing import List, Literal, Tuple

TokenKind = Literal["rt", "rn", "ri"]

RESOURCE_TYPE: TokenKind = "rt"
RESOURCE_NAME: TokenKind = "rn"
RESOURCE_INDEX: TokenKind = "ri"


def tokenize(address: str) -> List[Tuple[TokenKind, str]]:
    """Tokenize ``address`` into ``(kind, text)`` pairs.

    ``module.a.aws_s3_bucket.b["x"]`` yields ``rt``/``rn`` pairs for each dotted
    segment and an ``ri`` token holding the bracketed index verbatim.  Dots
    inside an index do not split it.
    """
    tokens: List[Tuple[TokenKind, str]] = []
    kind: TokenKind = RESOURCE_TYPE
    start = 0
    position = 0
    length = len(address)

    while position < length:
        char = address[position]
        if kind == RESOURCE_TYPE:
            if char == ".":
                tokens.append((RESOURCE_TYPE, address[start:position]))
                start = position + 1
                kind = RESOURCE_NAME
        elif kind == RESOURCE_NAME:
            if char == ".":
                tokens.append((RESOURCE_NAME, address[start:position]))
                start = position + 1
                kind = RESOURCE_TYPE
            elif char == "[":
                tokens.append((RESOURCE_NAME, address[start:position]))
                start = position
                kind = RESOURCE_INDEX
            elif position == length - 1:
                tokens.append((RESOURCE_NAME, address[start:]))
                start = length
        elif char == "]":
            tokens.append((RESOURCE_INDEX, address[start : position + 1]))
            start = position + 1
            kind = RESOURCE_TYPE
            if address[position + 1 : position + 2] == ".":
                start += 1
                position += 1
        position += 1

    if start < length:
        tokens.append((kind, address[start:]))
    return tokens


def split(address: str) -> List[str]:
    """Return only the token texts of :func:`tokenize`."""
    return [text for _, text in tokenize(address)]


def split_index(address: str) -> Tuple[str, str | int | None]:
    """Separate a trailing instance index from ``address``.

    ``aws_instance.web[0]`` gives ``("aws_instance.web", 0)`` and
    ``aws_instance.web["a"]`` gives ``("aws_instance.web", "a")``.  Addresses
    without a trailing index return ``None`` as the index.
    """
    tokens = tokenize(address)
    if not tokens or tokens[-1][0] != RESOURCE_INDEX:
        return address, None
    raw = tokens[-1][1]
    base = address[: len(address) - len(raw)]
    inner = raw[1:-1]
    if inner.startswith('"') and inner.endswith('"') and len(inner) >= 2:
        return base, inner[1:-1]
    try:
        return base, int(inner)
    except ValueError:
        return base, inner


__all__ = ["RESOURCE_INDEX", "RESOURCE_NAME", "RESOURCE_TYPE", "split", "split_index", "tokenize"]
