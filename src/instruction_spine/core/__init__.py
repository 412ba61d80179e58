"""Instruction Spine Core -- shared primitives for the catalog engine.

Architecture::

    errors.py          Typed error hierarchy (SpineError + catalog codes)
    logging.py         structlog configuration and context helpers
    settings.py        pydantic-settings CatalogSettings (INSTRUCTIONS_ env)
    hashing.py         sha256 helpers, canonical body hashing
    transports/mcp.py  FastMCP scaffold (create/run)
"""

from instruction_spine.core.errors import (
    ConfigError,
    ConflictError,
    CorruptedRecordError,
    ErrorCategory,
    IntegrityMismatchError,
    IOFailureError,
    MutationDisabledError,
    NotFoundError,
    SpineError,
    UnknownActionError,
    ValidationFailedError,
)

__all__ = [
    "ConfigError",
    "ConflictError",
    "CorruptedRecordError",
    "ErrorCategory",
    "IntegrityMismatchError",
    "IOFailureError",
    "MutationDisabledError",
    "NotFoundError",
    "SpineError",
    "UnknownActionError",
    "ValidationFailedError",
]
