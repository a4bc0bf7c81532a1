"""
Test assertions for Result values.

Usage in tests:
    from railway import ResultAssertions

    def test_peer_lookup():
        peer = ResultAssertions.assert_success(config.peer_config("peer0"))
        assert peer.url == "grpcs://peer0:7051"

    def test_missing_user():
        error = ResultAssertions.assert_failure(manager.get_user("ghost"), ErrorCode.NOT_FOUND)
        ResultAssertions.assert_caused_by(error, UserNotFoundError)
"""

from __future__ import annotations

from typing import TypeVar

from railway.failure import ErrorCode, FailureDescription
from railway.result import Result

T = TypeVar("T")
E = TypeVar("E", bound=BaseException)


class ResultAssertions:
    """Expressive test assertions for Result values."""

    @staticmethod
    def assert_success(result: Result[T], message: str = "") -> T:
        """Assert the Result is a Success and return the value."""
        context = f" — {message}" if message else ""
        assert result.is_success(), (
            f"Expected Success but got Failure("
            f"{result.error().code.value}: {result.error().message!r}){context}"
        )
        return result.value()

    @staticmethod
    def assert_failure(
        result: Result[T],
        expected_code: ErrorCode | None = None,
        message: str = "",
    ) -> FailureDescription:
        """Assert the Result is a Failure, optionally checking the error code."""
        context = f" — {message}" if message else ""
        assert result.is_failure(), (
            f"Expected Failure but got Success({result.value()!r}){context}"
        )
        error = result.error()
        if expected_code is not None:
            assert error.code == expected_code, (
                f"Expected error code {expected_code.value} "
                f"but got {error.code.value}: {error.message!r}{context}"
            )
        return error

    @staticmethod
    def assert_failure_message_contains(result: Result[T], substring: str) -> None:
        """Assert that the failure message contains the given substring."""
        assert result.is_failure(), (
            f"Expected Failure but got Success({result.value()!r})"
        )
        error = result.error()
        assert substring.lower() in error.message.lower(), (
            f"Expected failure message to contain {substring!r} "
            f"but message was: {error.message!r}"
        )

    @staticmethod
    def assert_caused_by(error: FailureDescription, exception_type: type[E]) -> E:
        """Assert the failure carries an exception of the given type and return it."""
        assert isinstance(error.exception, exception_type), (
            f"Expected failure caused by {exception_type.__name__} "
            f"but got {type(error.exception).__name__}: {error.message!r}"
        )
        return error.exception
