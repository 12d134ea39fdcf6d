"""XLSForm question schemas: workbook parsing, per-category caching, table view.

Kobo stores answers under group-prefixed keys (``group_toolid/Q_13110000``)
while the XLSForm ``survey`` sheet names the bare question (``Q_13110000``).
Everything here looks questions up by the bare name.
"""
from __future__ import annotations

import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Protocol

import openpyxl
from lxml import etree, html as lxml_html

from coordinator.config import DEFAULT_CONFIG, FormConfig
from coordinator.errors import SchemaLoadError
from coordinator.models import Choice, Column, Question, QuestionSchema, Record, SubmissionTable
from coordinator.utils import bare_field

log = logging.getLogger(__name__)

_LABEL_HEADERS = ("label::English (en)", "question", "label")
_SELECT_TYPES = ("select_one", "select_multiple")
_HIDDEN_PREFIXES = ("_", "formhub/", "meta/")
_ISO_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}")
_MISSING_CELL = "-"


class SchemaSource(Protocol):
    def load(self, category: str) -> dict[str, Any]:
        """Return ``{"fields": [{name, label, type, choices?}]}`` for *category*."""
        ...


def _s(value: object) -> str:
    """Safely coerce cell value to stripped string."""
    if value is None:
        return ""
    return str(value).strip()


def clean_label(label: str) -> str:
    """Drop HTML markup and non-breaking spaces from an XLSForm label."""
    label = _s(label)
    if not label:
        return ""
    if "<" in label or "&" in label:
        try:
            label = lxml_html.fromstring(label).text_content()
        except (etree.ParserError, etree.XMLSyntaxError, ValueError):
            pass
    return label.replace("\xa0", " ").replace("&nbsp;", " ").strip()


def _sheet_rows(ws) -> list[dict[str, object]]:
    rows = ws.iter_rows(values_only=True)
    header = next(rows, None)
    if not header:
        return []
    keys = [_s(h) for h in header]
    out: list[dict[str, object]] = []
    for row in rows:
        if not row or all(v is None for v in row):
            continue
        out.append({k: v for k, v in zip(keys, row) if k})
    return out


def _first(row: dict[str, object], keys: Iterable[str]) -> str:
    for k in keys:
        val = _s(row.get(k))
        if val:
            return val
    return ""


def _list_name(row: dict[str, object], q_type: str) -> str:
    explicit = _first(row, ("list_name", "choices"))
    if explicit:
        return explicit
    parts = q_type.split()
    if len(parts) >= 2 and parts[0] in _SELECT_TYPES:
        return parts[1]
    return ""


class XLSFormSource:
    """Loads ``<category>.xlsx`` XLSForm workbooks from a directory."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def load(self, category: str) -> dict[str, Any]:
        path = self.directory / f"{category}.xlsx"
        if not path.exists():
            raise SchemaLoadError(f"Could not load form schema file: {path.name}", category)
        try:
            wb = openpyxl.load_workbook(path, read_only=True, data_only=True)
        except Exception as exc:
            raise SchemaLoadError(f"Could not read form schema file {path.name}: {exc}", category) from exc
        try:
            if "survey" not in wb.sheetnames:
                raise SchemaLoadError('No "survey" sheet found in the Excel file', category)
            survey_rows = _sheet_rows(wb["survey"])
            choice_rows = _sheet_rows(wb["choices"]) if "choices" in wb.sheetnames else []
        finally:
            wb.close()

        choices: dict[str, list[dict[str, str]]] = {}
        for row in choice_rows:
            list_name = _first(row, ("list_name", "list name"))
            if not list_name:
                continue
            name = _s(row.get("name"))
            choices.setdefault(list_name, []).append({
                "name": name,
                "label": clean_label(_first(row, (*_LABEL_HEADERS, "name"))) or name,
            })

        fields: list[dict[str, Any]] = []
        for row in survey_rows:
            name = _first(row, ("name", "code"))
            q_type = _s(row.get("type")) or "text"
            entry: dict[str, Any] = {
                "name": name,
                "label": clean_label(_first(row, (*_LABEL_HEADERS, "name", "code"))),
                "type": q_type,
            }
            list_name = _list_name(row, q_type)
            if list_name and list_name in choices:
                entry["choices"] = choices[list_name]
            fields.append(entry)
        log.info("Loaded %d questions and %d choice lists from %s", len(fields), len(choices), path.name)
        return {"fields": fields}


def parse_schema(category: str, payload: dict[str, Any]) -> QuestionSchema:
    """Build a QuestionSchema from a Schema Source payload."""
    try:
        raw_fields = payload["fields"]
        questions: dict[str, Question] = {}
        for f in raw_fields:
            name = bare_field(_s(f.get("name")))
            if not name or name in questions:
                continue
            questions[name] = Question(
                name=name,
                label=_s(f.get("label")) or name,
                type=_s(f.get("type")) or "text",
                choices=tuple(Choice(name=_s(c.get("name")), label=_s(c.get("label")))
                              for c in f.get("choices") or ()),
            )
    except (KeyError, TypeError, AttributeError) as exc:
        raise SchemaLoadError(f"Malformed schema for {category}: {exc}", category) from exc
    return QuestionSchema(category=category, questions=questions)


class SchemaResolver:
    """Resolves and caches question schemas per category.

    The cache belongs to the resolver instance; ``clear()`` empties it.
    """

    def __init__(
        self, source: SchemaSource, cache: dict[str, QuestionSchema] | None = None,
        config: FormConfig = DEFAULT_CONFIG,
    ):
        self.source = source
        self.config = config
        self._cache: dict[str, QuestionSchema] = {} if cache is None else cache

    def resolve(self, category: str) -> QuestionSchema:
        cached = self._cache.get(category)
        if cached is not None:
            return cached
        try:
            payload = self.source.load(category)
        except SchemaLoadError:
            raise
        except Exception as exc:
            raise SchemaLoadError(f"Error loading form schema for {category}: {exc}", category) from exc
        schema = parse_schema(category, payload)
        self._cache[category] = schema
        return schema

    def resolve_for(self, category: str, maturity: str) -> QuestionSchema | None:
        """Schema for a survey category at a maturity, ``None`` if it has none."""
        key = self.config.schema_key(category, maturity)
        return self.resolve(key) if key else None

    def clear(self) -> None:
        self._cache.clear()


# ---------------------------------------------------------------------------
# Table view
# ---------------------------------------------------------------------------


def _is_hidden(key: str) -> bool:
    return key.startswith(_HIDDEN_PREFIXES) or key == "__version__"


def _is_tool_id(raw_keys: list[str]) -> bool:
    return any("toolid" in k.lower() or "Q_13110000" in k for k in raw_keys)


def _format_value(key: str, value: Any) -> Any:
    lowered = key.lower()
    if (isinstance(value, str) and _ISO_RE.match(value)
            and ("start" in lowered or "end" in lowered or "time" in lowered)):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).strftime("%m/%d/%Y, %H:%M")
        except ValueError:
            return value
    return value


def build_table(records: list[Record], schema: QuestionSchema | None) -> SubmissionTable:
    """Lay matched records out as labelled columns.

    One column per bare field name in first-seen order, tool-id columns first.
    With a schema, only fields it knows are shown; without one every visible
    field is shown under its bare name.
    """
    raw_by_name: dict[str, list[str]] = {}
    for record in records:
        for key in record:
            if _is_hidden(key):
                continue
            name = bare_field(key)
            if schema is not None and schema.question_for(name) is None:
                continue
            keys = raw_by_name.setdefault(name, [])
            if key not in keys:
                keys.append(key)

    names = sorted(raw_by_name, key=lambda n: 0 if _is_tool_id(raw_by_name[n]) else 1)
    columns = []
    for name in names:
        q = schema.question_for(name) if schema is not None else None
        columns.append(Column(key=name, label=q.label if q else name, type=q.type if q else "text"))

    rows: list[dict[str, Any]] = []
    for record in records:
        row: dict[str, Any] = {}
        for name in names:
            value = next(
                (record[k] for k in raw_by_name[name] if record.get(k) not in (None, "")), None,
            )
            if value is not None and schema is not None:
                value = schema.choice_label(name, value)
            value = _format_value(name, value)
            row[name] = _MISSING_CELL if value is None else value
        rows.append(row)
    return SubmissionTable(columns=columns, rows=rows)
