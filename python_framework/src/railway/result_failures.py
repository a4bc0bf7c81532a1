"""
Convenience factory methods for common Result failures.

Usage:
    from railway.result_failures import ResultFailures

    # Instead of:
    Result.failure(ErrorCode.NOT_FOUND, "Peer not found with identifier: peer0")

    # Write:
    ResultFailures.not_found("Peer", "peer0")
"""

from __future__ import annotations

from typing import TypeVar

from railway.failure import ErrorCode
from railway.result import Result

T = TypeVar("T")


class ResultFailures:
    """Factory methods for common failure types."""

    @staticmethod
    def validation_error(message: str, exception: BaseException | None = None) -> Result:
        """Resolved data failed a validity check."""
        return Result.failure(ErrorCode.VALIDATION_ERROR, message, exception)

    @staticmethod
    def business_rule_error(message: str, exception: BaseException | None = None) -> Result:
        """Domain invariant violated."""
        return Result.failure(ErrorCode.BUSINESS_RULE_ERROR, message, exception)

    @staticmethod
    def not_found(resource_type: str, identifier: str) -> Result:
        """Resource doesn't exist."""
        return Result.failure(
            ErrorCode.NOT_FOUND,
            f"{resource_type} not found with identifier: {identifier}",
        )

    @staticmethod
    def configuration_error(message: str, exception: BaseException | None = None) -> Result:
        """System misconfiguration."""
        return Result.failure(ErrorCode.CONFIGURATION_ERROR, message, exception)

    @staticmethod
    def from_os_error(message: str, exception: OSError) -> Result:
        """
        Map a file-system error onto the failure track.

        A missing file is an expected absence (NOT_FOUND) so fallback chains
        can continue; anything else (permissions, I/O, a directory where a
        file was expected) is a hard TECHNICAL_ERROR.
        """
        if isinstance(exception, FileNotFoundError):
            return Result.failure(ErrorCode.NOT_FOUND, message, exception)
        return Result.failure(ErrorCode.TECHNICAL_ERROR, message, exception)
