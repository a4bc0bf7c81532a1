"""
Ports — Protocol-based interfaces for the resolver's collaborators.

These define WHAT the resolvers need (contracts) without specifying HOW it's
done. Following hexagonal architecture:

  Domain ← Ports (protocols) ← Adapters (implementations)

Every port returns Result. For the credential stores and the crypto provider
the failure code matters: NOT_FOUND means "absent, try the next source",
anything else means "broken, stop".
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from railway.result import Result

from fabric_resolver.domain.models import (
    IdentityIdentifier,
    NetworkConfig,
    PrivateKey,
    PrivKeyKey,
    UserData,
)


@runtime_checkable
class NetworkConfigSource(Protocol):
    """
    Port: produce a complete, typed NetworkConfig.

    Called at startup and again on every reload. A malformed section must
    yield a CONFIGURATION_ERROR failure, never a partial topology.
    """

    def load(self) -> Result[NetworkConfig]: ...


@runtime_checkable
class CryptoProvider(Protocol):
    """
    Port: private key lookup and import, plus key identifiers from certificates.

      - get_key: locate a private key by subject key identifier (NOT_FOUND if unknown)
      - import_key: parse a PEM private key into a handle (never generates keys)
      - key_identifier: SKI of the public key inside a PEM/DER certificate
    """

    def get_key(self, ski: bytes) -> Result[PrivateKey]: ...

    def import_key(self, pem: bytes) -> Result[PrivateKey]: ...

    def key_identifier(self, certificate: bytes) -> Result[bytes]: ...


@runtime_checkable
class UserStore(Protocol):
    """Port: persisted identities, keyed by {MSP id, username}."""

    def load(self, identifier: IdentityIdentifier) -> Result[UserData]: ...


@runtime_checkable
class KeyValueStore(Protocol):
    """
    Port: opaque byte store used for enrollment certificates and private keys.

    Certificate stores are keyed by IdentityIdentifier, key stores by
    PrivKeyKey. A missing entry is a NOT_FOUND failure.
    """

    def load(self, key: IdentityIdentifier | PrivKeyKey) -> Result[bytes]: ...
