"""
Failure description — structured error information for the failure track.

An ErrorCode classifies the failure, the message explains it, and the
optional exception carries the typed domain error (or the original adapter
exception) so callers can branch on it without parsing messages.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum, unique
from typing import Optional


@unique
class ErrorCode(Enum):
    """
    Structured error codes for the failure track.

    NOT_FOUND is special in fallback chains: it marks an expected absence
    that lets the next source be tried. Every other code is a hard stop.
    """

    VALIDATION_ERROR = "VALIDATION_ERROR"
    """Input or resolved data failed a validity check."""

    NOT_FOUND = "NOT_FOUND"
    """Resource doesn't exist; an expected, non-fatal outcome."""

    BUSINESS_RULE_ERROR = "BUSINESS_RULE_ERROR"
    """Domain invariant violated, e.g. a credential without a key."""

    TECHNICAL_ERROR = "TECHNICAL_ERROR"
    """I/O, parsing or crypto failures."""

    DATABASE_ERROR = "DATABASE_ERROR"
    """Database connectivity or query failures."""

    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    """System misconfiguration; aborts loading."""

    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    """Unexpected/unclassified failures."""


@dataclass(frozen=True, slots=True)
class FailureDescription:
    """
    Immutable failure descriptor carrying error code, message, optional exception, and timestamp.

    >>> desc = FailureDescription(ErrorCode.NOT_FOUND, "peer0 not found")
    >>> desc.with_context("resolving channel peers").message
    'resolving channel peers: peer0 not found'
    """

    code: ErrorCode
    message: str
    exception: Optional[BaseException] = field(default=None, repr=False)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def with_context(self, context: str) -> FailureDescription:
        """Prefix the message with caller context, keeping code and exception."""
        return replace(self, message=f"{context}: {self.message}")

