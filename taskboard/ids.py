"""Identifier normalization.

Ids reach the API wrapped in quotes, whitespace or other serialization noise.
Everything external goes through :func:`normalize_id` once, and the rest of the
package only ever sees the canonical form: 24 lowercase hex characters, the
textual form of a MongoDB ``ObjectId``.
"""
from __future__ import annotations

import re
from typing import Any

from bson import ObjectId

from .errors import InvalidIdentifier

CANONICAL_LENGTH = 24
_EMBEDDED_HEX = re.compile(r"[0-9a-fA-F]{24}")
_NON_HEX = re.compile(r"[^0-9a-fA-F]")


def normalize_id(raw: Any, kind: str = "id") -> str:
    """Return the canonical form of ``raw`` or raise :class:`InvalidIdentifier`.

    A contiguous run of 24 hex characters wins; otherwise every non-hex
    character is stripped and the remainder must be exactly 24 long.
    """
    if raw is None:
        raise InvalidIdentifier(f"{kind} is required", {"value": None})
    text = str(raw)
    if not text:
        raise InvalidIdentifier(f"{kind} is required", {"value": text})
    match = _EMBEDDED_HEX.search(text)
    if match:
        return match.group(0).lower()
    stripped = _NON_HEX.sub("", text)
    if len(stripped) == CANONICAL_LENGTH:
        return stripped.lower()
    raise InvalidIdentifier(f"invalid {kind}: {text!r}", {"value": text})


def new_id() -> str:
    return str(ObjectId())
