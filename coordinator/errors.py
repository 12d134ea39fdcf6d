"""Exception taxonomy.

Classification errors end a search; source and schema errors are captured on
the per-source result and never abort an aggregation.
"""
from __future__ import annotations


class CoordinatorError(Exception):
    """Base class for all coordinator errors."""


class ToolNotFoundError(CoordinatorError):
    def __init__(self, tool_id: str):
        super().__init__(f'Tool ID "{tool_id}" not found in the main form')
        self.tool_id = tool_id


class InvalidMaturityError(CoordinatorError):
    """Matched master record carries a maturity value outside the synonym table."""
    def __init__(self, tool_id: str, raw_value: str):
        super().__init__(
            f"Invalid maturity level: {raw_value!r}. "
            "Expected: advanced, advance, advance_stage, early, or early_stage"
        )
        self.tool_id = tool_id
        self.raw_value = raw_value


class SchemaLoadError(CoordinatorError):
    def __init__(self, message: str, category: str = ""):
        super().__init__(message)
        self.category = category


class SourceFetchError(CoordinatorError):
    """Network or HTTP failure for a single form source."""
    def __init__(self, message: str, form_id: str = "", status_code: int | None = None):
        super().__init__(message)
        self.form_id = form_id
        self.status_code = status_code


class SourceTimeoutError(SourceFetchError):
    pass
