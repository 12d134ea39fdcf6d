"""Shared normalization helpers used across coordinator modules."""
from __future__ import annotations

from typing import Any, Iterable, Mapping


def bare_field(name: str) -> str:
    """Strip any ``group/`` prefix: ``group_toolinfo/Q_1`` -> ``Q_1``."""
    return name.rsplit("/", 1)[-1]


def normalize_id(value: Any) -> str:
    """Case-folded, trimmed string form of an identifier ("" for None)."""
    if value is None:
        return ""
    return str(value).strip().casefold()


def first_present(record: Mapping[str, Any], fields: Iterable[str]) -> str:
    """Return the first non-blank value among *fields*, stripped, or ``""``."""
    for f in fields:
        value = record.get(f)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return ""
