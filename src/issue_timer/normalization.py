"""Utilities to normalize identifiers and free-text descriptions."""

from __future__ import annotations

import re
from typing import Optional

from .errors import ValidationError

_IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._:-]{0,127}$")
_WHITESPACE_PATTERN = re.compile(r"\s+")

MAX_DESCRIPTION_LENGTH = 2000


def normalize_identifier(value: object, kind: str = "identifier") -> str:
    """Return a stripped identifier or raise ``ValidationError``."""
    if not isinstance(value, str):
        raise ValidationError(f"{kind} must be a string")
    normalized = value.strip()
    if not _IDENTIFIER_PATTERN.match(normalized):
        raise ValidationError(f"Malformed {kind}: {value!r}")
    return normalized


def normalize_description(value: Optional[str]) -> Optional[str]:
    """Collapse whitespace; blank descriptions become ``None``."""
    if value is None:
        return None
    normalized = _WHITESPACE_PATTERN.sub(" ", value).strip()
    if len(normalized) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(
            f"description exceeds {MAX_DESCRIPTION_LENGTH} characters"
        )
    return normalized or None
