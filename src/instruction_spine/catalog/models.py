"""
Instruction record model.

``InstructionRecord`` is the unit of content: one governed, versioned
instruction document.  Records are persisted as camelCase JSON (one file
per id) and held in memory as frozen pydantic models so a reader can never
observe a half-applied mutation.

Manifesto:
    - **Immutable in memory:** Mutations build a new record via ``model_copy``
    - **Camel on disk, snake in Python:** ``alias_generator=to_camel``
    - **Closed vocabularies:** status / classification / audience /
      requirement are enums, never free text

Architecture:
    ::

        InstructionRecord (frozen)
          ├── content     id, title, body, rationale, categories
          ├── governance  owner, priority → priorityTier, status,
          │               classification, audience, requirement
          ├── integrity   sourceHash = sha256(body), schemaVersion
          ├── review      lastReviewedAt, nextReviewDue, reviewIntervalDays
          └── history     version, changeLog[{version, changedAt, summary}]

        governance_projection() → {id, owner, priorityTier, version}

Tags:
    model, pydantic, instruction, governance, instruction-spine

Doc-Types:
    - API Reference
    - Data Model
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

SCHEMA_VERSION = "2"
UNOWNED = "unowned"
INITIAL_VERSION = "1.0.0"


def utc_now() -> datetime:
    """Current UTC time truncated to whole seconds."""
    return datetime.now(UTC).replace(microsecond=0)


class Audience(str, Enum):
    INDIVIDUAL = "individual"
    GROUP = "group"
    ALL = "all"


class Requirement(str, Enum):
    MANDATORY = "mandatory"
    CRITICAL = "critical"
    RECOMMENDED = "recommended"
    OPTIONAL = "optional"
    DEPRECATED = "deprecated"


class Status(str, Enum):
    DRAFT = "draft"
    REVIEW = "review"
    APPROVED = "approved"
    DEPRECATED = "deprecated"


class Classification(str, Enum):
    PUBLIC = "public"
    INTERNAL = "internal"
    RESTRICTED = "restricted"


class PriorityTier(str, Enum):
    """Coarse band derived from numeric priority; P0 is the most urgent."""

    P0 = "P0"
    P1 = "P1"
    P2 = "P2"
    P3 = "P3"
    P4 = "P4"


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


class ChangeLogEntry(_CamelModel):
    """One entry of a record's append-only change history."""

    version: str
    changed_at: datetime
    summary: str


class InstructionRecord(_CamelModel):
    """A fully governed instruction document."""

    id: str
    title: str
    body: str
    rationale: str | None = None
    priority: int = Field(ge=0, le=100)
    audience: Audience = Audience.ALL
    requirement: Requirement = Requirement.OPTIONAL
    categories: list[str] = Field(default_factory=list)
    source_hash: str
    schema_version: str = SCHEMA_VERSION
    created_at: datetime
    updated_at: datetime
    version: str = INITIAL_VERSION
    status: Status = Status.DRAFT
    owner: str = UNOWNED
    priority_tier: PriorityTier
    classification: Classification = Classification.INTERNAL
    last_reviewed_at: datetime
    next_review_due: datetime
    review_interval_days: int | None = None
    change_log: list[ChangeLogEntry] = Field(min_length=1)
    supersedes: str | None = None
    deprecated_by: str | None = None
    risk_score: int | None = None
    semantic_summary: str = Field(min_length=1)
    created_by_agent: str | None = None
    source_workspace: str | None = None

    def governance_projection(self) -> dict[str, str]:
        """The ``{id, owner, priorityTier, version}`` tuple behind the governance hash."""
        return {
            "id": self.id,
            "owner": self.owner,
            "priorityTier": self.priority_tier.value,
            "version": self.version,
        }

    def to_json_dict(self, *, meta_only: bool = False) -> dict[str, Any]:
        """camelCase JSON-ready dict; ``meta_only`` drops the body."""
        exclude = {"body"} if meta_only else None
        return self.model_dump(mode="json", by_alias=True, exclude_none=True, exclude=exclude)

    def to_fields(self) -> dict[str, Any]:
        """snake_case python-typed dict, the input shape for re-normalization."""
        return self.model_dump()
