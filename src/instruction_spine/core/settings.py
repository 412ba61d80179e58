"""Process-level settings for the instruction catalog.

``CatalogSettings`` reads ``INSTRUCTIONS_*`` environment variables (and a
``.env`` file) once at startup.  Everything tunable lives here: the
instructions directory, the mutation switch, usage-bucket geometry,
snapshot retention and the priority banding table.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.

    - **Pydantic validation:** Type-checked at startup, not at call time
    - **Environment-driven:** ``INSTRUCTIONS_`` prefix plus a ``.env`` file
    - **Process-level banding:** Tier thresholds are fixed per process,
      never passed per call
    - **Sensible defaults:** Works out of the box for development

Features:
    - **CatalogSettings:** All catalog knobs with defaults
    - **Legacy alias:** ``MCP_ENABLE_MUTATION`` still toggles mutation
    - **get_settings():** Cached instance; ``clear_settings_cache()`` for tests

Examples:
    >>> settings = CatalogSettings(dir="/tmp/instructions", enable_mutation=True)
    >>> settings.bucket_size_minutes
    60

Tags:
    settings, configuration, pydantic, environment, instruction-spine

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from pathlib import Path

from pydantic import AliasChoices, Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from instruction_spine.core.errors import ConfigError

TIERS = ("P0", "P1", "P2", "P3", "P4")


class CatalogSettings(BaseSettings):
    """Settings for one catalog process.

    Fields
    ──────
    dir                    : Instructions directory (one JSON file per record)
    enable_mutation        : Gate for every mutating action
    bucket_size_minutes    : Usage bucket width
    bucket_count           : Buckets retained (current + ring)
    max_entries_per_bucket : Raw usage entries kept per bucket
    trace                  : Verbose tracing (DEBUG + ``catalog.trace`` events)
    tier_thresholds        : Lower bounds for P0..P3; anything below is P4
    """

    model_config = SettingsConfigDict(
        env_prefix="INSTRUCTIONS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # ── Storage ──────────────────────────────────────────────────
    dir: Path = Field(default=Path("instructions"), description="Instructions directory")
    snapshot_dir: Path = Field(default=Path("snapshots"))
    snapshot_retention: int = Field(default=30, ge=1)
    owners_file: Path = Field(default=Path("owners.json"))
    audit_log: str = Field(default="logs/instruction-transactions.log.jsonl")
    usage_file: str = Field(default="")

    # ── Mutation ─────────────────────────────────────────────────
    enable_mutation: bool = Field(
        default=False,
        validation_alias=AliasChoices("INSTRUCTIONS_ENABLE_MUTATION", "MCP_ENABLE_MUTATION"),
    )

    # ── Usage buckets ────────────────────────────────────────────
    bucket_size_minutes: int = Field(default=60, ge=1)
    bucket_count: int = Field(default=24, ge=1)
    max_entries_per_bucket: int = Field(default=1000, ge=0)

    # ── Governance ───────────────────────────────────────────────
    tier_thresholds: tuple[int, int, int, int] = (80, 70, 60, 20)
    semantic_summary_length: int = Field(default=200, ge=16)

    # ── Observability ────────────────────────────────────────────
    trace: bool = False
    log_level: str = "INFO"
    log_format: str = Field(default="auto", pattern="^(json|console|auto)$")

    @model_validator(mode="after")
    def _check_thresholds(self) -> CatalogSettings:
        bounds = self.tier_thresholds
        if any(b < 0 or b > 100 for b in bounds):
            raise ValueError("tier_thresholds must lie within 0..100")
        if any(a <= b for a, b in zip(bounds, bounds[1:])):
            raise ValueError("tier_thresholds must be strictly descending")
        return self

    # ── Derived properties ───────────────────────────────────────

    @property
    def audit_log_path(self) -> Path | None:
        return Path(self.audit_log) if self.audit_log else None

    @property
    def usage_file_path(self) -> Path | None:
        return Path(self.usage_file) if self.usage_file else None

    @property
    def effective_log_level(self) -> str:
        return "DEBUG" if self.trace else self.log_level

    def json_logs(self) -> bool | None:
        """``None`` lets ``configure_logging`` auto-detect from the TTY."""
        if self.log_format == "auto":
            return None
        return self.log_format == "json"


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: dict[str, CatalogSettings] = {}


def get_settings(*, _force_reload: bool = False, **overrides: object) -> CatalogSettings:
    """Load, validate, and cache the process settings.

    Keyword overrides bypass the cache (CLI flags such as ``--dir``).

    Raises:
        ConfigError: if any value fails validation.
    """
    if not overrides and not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]

    try:
        settings = CatalogSettings(**overrides)
    except ValidationError as exc:
        raise ConfigError(f"Invalid catalog settings: {exc}", cause=exc) from exc

    if not overrides:
        _settings_cache["default"] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()
