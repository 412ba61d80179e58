"""
Structured error types for the instruction catalog.

Every failure the catalog engine can report is a typed ``SpineError`` that
carries a machine-readable ``code``, an ``ErrorCategory`` for routing, a
retry hint and an ``ErrorContext`` with the instruction ids involved. The
ops layer turns these into ``OperationResult.fail(...)`` envelopes so MCP
clients always receive structured data instead of transport exceptions.

Manifesto:
    - **Typed taxonomy:** One class per failure the catalog can produce
    - **Stable codes:** ``code`` is part of the tool contract, never reworded
    - **Rich context:** Errors carry ids, file paths and field reasons
    - **Error chaining:** Underlying ``OSError`` / ``ValueError`` kept as cause

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       SpineError                                 │
        │  (code, category, retryable, context, cause)                    │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  NotFoundError          ValidationFailedError   ConflictError    │
        │  (NOT_FOUND)            (VALIDATION_FAILED)     (CONFLICT)       │
        │                         reasons: list[str]                       │
        │                                                                  │
        │  IntegrityMismatchError CorruptedRecordError    IOFailureError   │
        │  (INTEGRITY_MISMATCH)   (CORRUPTED_RECORD)      (IO_FAILURE)     │
        │                                                 retryable=True   │
        │                                                                  │
        │  MutationDisabledError  ConfigError             UnknownAction    │
        │  (MUTATION_DISABLED)    (CONFIG_ERROR)          (UNKNOWN_ACTION) │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> err = NotFoundError("instruction 'x1' not found").with_context(instruction_id="x1")
    >>> err.code
    'NOT_FOUND'
    >>> err.context.instruction_id
    'x1'

    >>> err = ValidationFailedError("invalid entry", reasons=["missing body"])
    >>> err.to_dict()["reasons"]
    ['missing body']

Guardrails:
    ❌ DON'T: Raise bare ``Exception`` from catalog code
    ✅ DO: Raise the subclass whose ``code`` matches the failure

    ❌ DON'T: Swallow ``OSError`` during persistence
    ✅ DO: Wrap it in ``IOFailureError(..., cause=exc)``

Tags:
    error-handling, exception-hierarchy, error-codes, instruction-spine

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """
    Standard error categories for classification and routing.

    Categories group the catalog's error codes by who has to act on them:
    callers fix VALIDATION / NOT_FOUND / CONFLICT, operators fix CONFIG /
    PERMISSION, and STORAGE / INTEGRITY point at the backing directory.
    """

    VALIDATION = "VALIDATION"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    INTEGRITY = "INTEGRITY"
    STORAGE = "STORAGE"
    PERMISSION = "PERMISSION"
    CONFIG = "CONFIG"
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to catalog errors.

    Attributes:
        instruction_id: Id of the record the error is about
        action: Tool action being executed (``add``, ``groom``, ...)
        path: File-system path involved, if any
        metadata: Additional key-value pairs
    """

    instruction_id: str | None = None
    action: str | None = None
    path: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result: dict[str, Any] = {}
        for key in ("instruction_id", "action", "path"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class SpineError(Exception):
    """
    Base class for all instruction-spine errors.

    Subclasses set ``code``, ``default_category`` and ``default_retryable``;
    callers normally only pass a message and, where useful, ``cause``.
    """

    code: str = "INTERNAL"
    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> SpineError:
        """
        Add context to this error (fluent API).

        Usage:
            raise NotFoundError("missing").with_context(instruction_id="x1")
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    @property
    def details(self) -> dict[str, Any]:
        """Key/value detail forwarded into ``OperationError.details``."""
        return self.context.to_dict()

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, code={self.code})"


# =============================================================================
# CALLER ERRORS
# =============================================================================


class NotFoundError(SpineError):
    """Instruction id absent on read, update or remove."""

    code = "NOT_FOUND"
    default_category = ErrorCategory.NOT_FOUND


class ValidationFailedError(SpineError):
    """
    Input fails governance validation.

    ``reasons`` lists every field-level problem found, not just the first.
    """

    code = "VALIDATION_FAILED"
    default_category = ErrorCategory.VALIDATION

    def __init__(self, message: str, *, reasons: list[str] | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.reasons = list(reasons or [])

    @property
    def details(self) -> dict[str, Any]:
        result = super().details
        result["reasons"] = self.reasons
        return result

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["reasons"] = self.reasons
        return result


class ConflictError(SpineError):
    """Duplicate add without overwrite.

    The store reports this as a ``skipped`` outcome; the class exists so
    batch callers can surface it explicitly when they want to.
    """

    code = "CONFLICT"
    default_category = ErrorCategory.CONFLICT


class UnknownActionError(SpineError):
    """Dispatch action name is not registered."""

    code = "UNKNOWN_ACTION"
    default_category = ErrorCategory.VALIDATION


# =============================================================================
# INTEGRITY / STORAGE ERRORS
# =============================================================================


class IntegrityMismatchError(SpineError):
    """Stored ``sourceHash`` does not equal SHA-256 of the current body."""

    code = "INTEGRITY_MISMATCH"
    default_category = ErrorCategory.INTEGRITY

    def __init__(
        self,
        message: str,
        *,
        expected: str | None = None,
        actual: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.expected = expected
        self.actual = actual

    @property
    def details(self) -> dict[str, Any]:
        result = super().details
        result.update({"expected": self.expected, "actual": self.actual})
        return result


class CorruptedRecordError(SpineError):
    """Record file unreadable or unparseable during load."""

    code = "CORRUPTED_RECORD"
    default_category = ErrorCategory.STORAGE


class IOFailureError(SpineError):
    """Disk write, rename or delete failure; the mutation was aborted."""

    code = "IO_FAILURE"
    default_category = ErrorCategory.STORAGE
    default_retryable = True


# =============================================================================
# OPERATOR ERRORS
# =============================================================================


class MutationDisabledError(SpineError):
    """Write attempted while the mutation capability is switched off."""

    code = "MUTATION_DISABLED"
    default_category = ErrorCategory.PERMISSION

    def __init__(self, message: str | None = None, **kwargs: Any):
        super().__init__(
            message or "Mutation is disabled. Set INSTRUCTIONS_ENABLE_MUTATION=1 to enable.",
            **kwargs,
        )


class ConfigError(SpineError):
    """Invalid settings; never retryable."""

    code = "CONFIG_ERROR"
    default_category = ErrorCategory.CONFIG


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "SpineError",
    "NotFoundError",
    "ValidationFailedError",
    "ConflictError",
    "UnknownActionError",
    "IntegrityMismatchError",
    "CorruptedRecordError",
    "IOFailureError",
    "MutationDisabledError",
    "ConfigError",
]
