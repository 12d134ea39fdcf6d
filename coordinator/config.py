"""Form tables and deployment settings for the coordinator panel.

The lookup tables below drift as the Kobo forms get revised (new maturity
spellings, extra tool-id fields after a form re-publish).  They are grouped in
a frozen, versioned :class:`FormConfig` so that every change is an explicit
edit with a version bump rather than a literal scattered across call sites.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from types import MappingProxyType
from typing import Mapping

KOBO_BASE_URL = os.environ.get("KOBO_BASE_URL", "https://kf.kobotoolbox.org/api/v2")
KOBO_TIMEOUT = float(os.environ.get("KOBO_TIMEOUT", "45"))
KOBO_FOLLOW_PAGES = os.environ.get("KOBO_FOLLOW_PAGES", "").lower() in ("1", "true", "yes")
SCHEMA_DIR = Path(os.environ.get("COORDINATOR_SCHEMA_DIR", Path(__file__).parent / "forms"))


def kobo_token() -> str:
    """API token for the Kobo server, read at call time."""
    return os.environ.get("KOBO_API_TOKEN", "")


# ---------------------------------------------------------------------------
# Categories and form families
# ---------------------------------------------------------------------------

MAIN = "main"
USERTYPE3 = "usertype3"
USERTYPE4 = "usertype4"
LEADERSHIP = "leadership"
TECHNICAL = "technical"
PROJECT_MANAGER = "project_manager"
DOMAIN_EXPERT = "domain_expert"

SURVEY_CATEGORIES = (USERTYPE3, USERTYPE4)
INNOVATOR_CATEGORIES = (LEADERSHIP, TECHNICAL, PROJECT_MANAGER)

# category -> form family used for tool-id field lookup
FAMILIES: dict[str, str] = {
    MAIN: "main",
    USERTYPE3: "survey",
    USERTYPE4: "survey",
    LEADERSHIP: "innovator",
    TECHNICAL: "innovator",
    PROJECT_MANAGER: "innovator",
    DOMAIN_EXPERT: "domain_expert",
}

MATURITY_FIELD = "tool_maturity"


@dataclass(frozen=True)
class FormConfig:
    version: str
    forms: Mapping[tuple[str, str | None], str]
    id_fields: Mapping[str, tuple[str, ...]]
    expertise_fields: Mapping[str, tuple[str, ...]]
    maturity_synonyms: Mapping[str, str]
    domain_codes: Mapping[str, str]
    expected_categories: Mapping[str, tuple[str, ...]]
    role_labels: Mapping[str, str] = field(default_factory=dict)
    schema_keys: Mapping[tuple[str, str], str] = field(default_factory=dict)
    maturity_field: str = MATURITY_FIELD

    def __post_init__(self):
        # Tables are read-only views over private copies.
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, Mapping):
                object.__setattr__(self, f.name, MappingProxyType(dict(value)))

    def form_id(self, category: str, maturity: str | None = None) -> str:
        """Form id for a category; maturity-independent forms are keyed by ``None``."""
        if (category, maturity) in self.forms:
            return self.forms[(category, maturity)]
        if (category, None) in self.forms:
            return self.forms[(category, None)]
        raise KeyError(f"No form configured for {category!r} / {maturity!r}")

    def id_fields_for(self, category: str) -> tuple[str, ...]:
        return self.id_fields[FAMILIES[category]]

    def schema_key(self, category: str, maturity: str) -> str | None:
        return self.schema_keys.get((category, maturity))


_COUNTRY = "Country Expert"
_DATA = "Data"
_ECON = "Economics"
_GESI = "Gender Equity and Social Inclusion"
_HCD = "Human-Centered Design"
_ICT = "Information and Communication Technologies"

_TOOL_ID_Q = "Q_13110000"
_EXPERTISE_Q = "Q_22300000"

DEFAULT_CONFIG = FormConfig(
    version="2025.08",
    forms={
        (MAIN, None): "aJn2DsjpAeJjrB6VazHjtz",
        (USERTYPE3, "advanced"): "aFfhFi5vpsierwc3b5SNvc",
        (USERTYPE3, "early"): "aCAhpbKYdsMbnGcWo4yR42",
        (USERTYPE4, "advanced"): "aU5LwrZps9u7Yt7obeShjv",
        (USERTYPE4, "early"): "aKhnEosysRHsrUKxanCSKc",
        (LEADERSHIP, None): "afiUqEoYaGMS8RaygTPuAR",
        (TECHNICAL, None): "aqxEbPgQTMQQqe42ZFW2cc",
        (PROJECT_MANAGER, None): "auq274db5dfNGasdH4bWdU",
        (DOMAIN_EXPERT, "advanced"): "ap6dUEDwX7KUsKLFZUD7kb",
        (DOMAIN_EXPERT, "early"): "au52CRd6ATzV7S36WcAdDu",
    },
    id_fields={
        "main": ("ID",),
        "survey": (
            f"group_toolid/{_TOOL_ID_Q}",
            f"group_requester/{_TOOL_ID_Q}",
            f"group_individualinfo/{_TOOL_ID_Q}",
        ),
        "innovator": (f"group_requester/{_TOOL_ID_Q}",),
        "domain_expert": (
            f"group_intro/{_TOOL_ID_Q}",
            f"group_requester/{_TOOL_ID_Q}",
            _TOOL_ID_Q,
        ),
    },
    expertise_fields={
        "advanced": (f"group_individual/{_EXPERTISE_Q}", f"group_intro_001/{_EXPERTISE_Q}"),
        "early": (f"group_individual/{_EXPERTISE_Q}", f"group_intro_001/{_EXPERTISE_Q}"),
    },
    maturity_synonyms={
        "advanced": "advanced",
        "advance": "advanced",
        "advance_stage": "advanced",
        "early": "early",
        "early_stage": "early",
    },
    domain_codes={
        "ce": _COUNTRY,
        "country_expert": _COUNTRY,
        "data": _DATA,
        "econ": _ECON,
        "economics": _ECON,
        "gesi": _GESI,
        "hcd": _HCD,
        "ict": _ICT,
    },
    expected_categories={
        "advanced": (_COUNTRY, _DATA, _ECON, _GESI, _HCD, _ICT),
        "early": (_COUNTRY, _DATA, _ECON, _GESI, _ICT),
    },
    role_labels={
        LEADERSHIP: "Leadership",
        TECHNICAL: "Technical",
        PROJECT_MANAGER: "Project Manager",
    },
    schema_keys={
        (USERTYPE3, "advanced"): "ut3_advance",
        (USERTYPE3, "early"): "ut3_early",
        (USERTYPE4, "advanced"): "ut4_advance",
        (USERTYPE4, "early"): "ut4_early",
    },
)
