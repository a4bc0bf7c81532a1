"""
Domain errors — typed causes carried inside Result failures.

Business logic never raises these across module boundaries. They travel in
`FailureDescription.exception` so callers can tell, for example, a missing
user (`UserNotFoundError`) from a user whose certificate has no key
(`PrivateKeyNotFoundError`) without parsing messages.
"""

from __future__ import annotations


class ResolverError(Exception):
    """Base class for all resolution errors."""


class NetworkConfigError(ResolverError):
    """A section of the network configuration could not be loaded."""


class InvalidPatternError(NetworkConfigError):
    """An entity matcher pattern failed to compile; the whole load is rejected."""

    def __init__(self, entity: str, index: int, pattern: str, reason: str) -> None:
        super().__init__(f"invalid {entity} matcher #{index} pattern {pattern!r}: {reason}")
        self.entity = entity
        self.index = index
        self.pattern = pattern


class InvalidPeerConfigError(ResolverError):
    """A resolved peer is unusable: no URL, or TLS without any CA material."""

    def __init__(self, peer: str, reason: str) -> None:
        super().__init__(f"invalid configuration for peer {peer}: {reason}")
        self.peer = peer


class UserNotFoundError(ResolverError):
    """No source holds an enrollment certificate for the user."""

    def __init__(self, username: str) -> None:
        super().__init__(f"user not found: {username}")
        self.username = username


class PrivateKeyNotFoundError(ResolverError):
    """A certificate was found but no source yields its private key."""

    def __init__(self, username: str) -> None:
        super().__init__(f"unable to find private key for user [{username}]")
        self.username = username


class CertPoolLoadError(ResolverError):
    """
    Aggregate of every TLS CA certificate that failed to load during preload.

    The individual failures are kept in order in `errors`.
    """

    def __init__(self, errors: list[str]) -> None:
        super().__init__(
            f"{len(errors)} TLS CA certificate(s) failed to load: " + "; ".join(errors)
        )
        self.errors = list(errors)
