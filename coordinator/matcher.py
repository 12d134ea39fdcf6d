"""Record matching, maturity classification and domain-expertise decoding.

All functions here are pure: they take already-fetched Kobo records and the
configuration tables and never perform I/O.

Tool ids are not guaranteed unique in the main registry.  Classification is
single-pass and first-match-wins; a duplicated id silently resolves to the
earliest submission.
"""
from __future__ import annotations

import logging
from collections import Counter
from typing import Iterable, Sequence

from coordinator.config import DEFAULT_CONFIG, MAIN, FormConfig
from coordinator.errors import InvalidMaturityError, ToolNotFoundError
from coordinator.models import DomainExpertStatus, MaturityLevel, Record
from coordinator.utils import first_present, normalize_id

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Submission matching
# ---------------------------------------------------------------------------


def record_tool_id(record: Record, candidate_fields: Sequence[str]) -> str:
    """Tool id stored on *record*, probing *candidate_fields* in order."""
    return first_present(record, candidate_fields)


def match(
    records: Iterable[Record], target_id: str, candidate_fields: Sequence[str],
) -> list[Record]:
    """Return the records whose tool id equals *target_id*, in input order.

    Comparison is case-insensitive and ignores surrounding whitespace.
    Records without any populated candidate field never match.
    """
    target = normalize_id(target_id)
    if not target:
        return []
    matched: list[Record] = []
    for record in records:
        found = record_tool_id(record, candidate_fields)
        log.debug("Record tool id %r vs %r", found, target_id)
        if not found:
            continue
        if normalize_id(found) == target:
            matched.append(record)
    return matched


# ---------------------------------------------------------------------------
# Maturity
# ---------------------------------------------------------------------------


def normalize_maturity(raw: object, config: FormConfig = DEFAULT_CONFIG) -> MaturityLevel | None:
    value = config.maturity_synonyms.get(normalize_id(raw))
    return MaturityLevel(value) if value else None


def classify_maturity(
    master_records: Iterable[Record], tool_id: str, config: FormConfig = DEFAULT_CONFIG,
) -> MaturityLevel:
    """Maturity of *tool_id* from the first matching main-registry record.

    Raises ToolNotFoundError when no record carries the id, and
    InvalidMaturityError (with the raw value) when the matching record's
    maturity is not a known synonym.
    """
    target = normalize_id(tool_id)
    id_fields = config.id_fields_for(MAIN)
    for idx, record in enumerate(master_records):
        if not target or normalize_id(record_tool_id(record, id_fields)) != target:
            continue
        raw = record.get(config.maturity_field)
        raw_text = "" if raw is None else str(raw)
        log.info("Tool %s found at position %d (maturity=%r)", tool_id, idx, raw_text)
        level = normalize_maturity(raw_text, config)
        if level is None:
            raise InvalidMaturityError(tool_id, raw_text)
        return level
    raise ToolNotFoundError(tool_id)


# ---------------------------------------------------------------------------
# Domain expertise
# ---------------------------------------------------------------------------


def decode_codes(text: object, config: FormConfig = DEFAULT_CONFIG) -> list[str]:
    """Map a space separated code string to category names, dropping unknown codes."""
    if text is None:
        return []
    tokens = str(text).strip().lower().split()
    return [config.domain_codes[t] for t in tokens if t in config.domain_codes]


def decode_expertise(
    matched_records: Iterable[Record], maturity: MaturityLevel | str,
    config: FormConfig = DEFAULT_CONFIG,
) -> dict[str, int]:
    """Count recognized expertise codes per category across *matched_records*."""
    fields = config.expertise_fields[MaturityLevel(maturity).value]
    counts: Counter[str] = Counter()
    for record in matched_records:
        for category in decode_codes(first_present(record, fields), config):
            counts[category] += 1
    return dict(counts)


def expertise_statuses(
    counts: dict[str, int], maturity: MaturityLevel | str,
    config: FormConfig = DEFAULT_CONFIG,
) -> list[DomainExpertStatus]:
    """Cross-reference decoded counts with the categories expected for *maturity*."""
    level = MaturityLevel(maturity)
    return [
        DomainExpertStatus(
            category=category, maturity=level,
            submitted=counts.get(category, 0) > 0, count=counts.get(category, 0),
        )
        for category in config.expected_categories[level.value]
    ]
