from __future__ import annotations

import re

from app.errors import InvalidArgumentError

_CHANNEL_SEPARATORS = re.compile(r"[\s\-().]")
_CHANNEL_PATTERN = re.compile(r"\+?[0-9]{7,15}")
# identification numbers compare without separators
_IDENTIFICATION_SEPARATORS = re.compile(r"[\s.,]")


def normalize_channel_identifier(raw: str | None) -> str:
    """Canonical form of a phone-like channel identifier, e.g. ``+57 300-123-4567`` -> ``+573001234567``."""
    value = _CHANNEL_SEPARATORS.sub("", str(raw or "").strip())
    if not value:
        raise InvalidArgumentError("channel_identifier is required")
    if not _CHANNEL_PATTERN.fullmatch(value):
        raise InvalidArgumentError(f"invalid channel_identifier: {raw}")
    return value


def normalize_identification_number(raw: str | None) -> str:
    value = _IDENTIFICATION_SEPARATORS.sub("", str(raw or "").strip())
    if not value:
        raise InvalidArgumentError("identification_number is required")
    return value


def mask_channel_identifier(value: str | None) -> str:
    text = str(value or "")
    if len(text) <= 4:
        return "*" * len(text)
    return "*" * (len(text) - 4) + text[-4:]
