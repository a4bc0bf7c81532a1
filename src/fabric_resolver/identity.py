"""
Identity manager — assembles a signing identity from partial credential sources.

Probe order for `get_user(username)`:

  1. user store, keyed by {MSP id, username}
       hit  → key comes from the crypto provider by the certificate's SKI;
              nothing else is consulted
  2. enrollment certificate
       a. embedded in the network config (inline PEM, else file path)
       b. certificate store
       none → UserNotFoundError (NOT_FOUND)
  3. private key
       a. embedded in the network config (inline PEM, else file path;
          a path that does not exist falls through)
       b. key store, keyed by {username, MSP id, SKI}, imported as PEM
       c. crypto provider by SKI
       none → PrivateKeyNotFoundError (BUSINESS_RULE_ERROR)
  4. MSP id of the organization must resolve (CONFIGURATION_ERROR otherwise)

Every probe returns Success / Failure(NOT_FOUND) / Failure(other). NOT_FOUND
moves on to the next probe, any other failure stops the chain and is
returned with context. No key material is ever generated.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import structlog
from railway import ErrorCode, FailureDescription
from railway.result import Result
from railway.result_failures import ResultFailures

from fabric_resolver.domain.errors import PrivateKeyNotFoundError, UserNotFoundError
from fabric_resolver.domain.models import (
    EnrollmentMaterial,
    IdentityIdentifier,
    PrivateKey,
    PrivKeyKey,
    User,
    UserData,
)
from fabric_resolver.domain.ports import CryptoProvider, KeyValueStore, UserStore
from fabric_resolver.endpoint_config import EndpointConfig
from fabric_resolver.pathvar import subst

log = structlog.get_logger()


def _with_context(context: str) -> Callable[[FailureDescription], FailureDescription]:
    return lambda err: err.with_context(context)


class IdentityManager:
    """
    Resolve users of one organization to certificate + private key.

    Stores are optional; an absent store behaves like an empty one.
    """

    def __init__(
        self,
        org_name: str,
        mspid: str,
        endpoint_config: EndpointConfig,
        crypto: CryptoProvider,
        user_store: UserStore | None = None,
        cert_store: KeyValueStore | None = None,
        key_store: KeyValueStore | None = None,
    ) -> None:
        self._org_name = org_name
        self._mspid = mspid
        self._config = endpoint_config
        self._crypto = crypto
        self._user_store = user_store
        self._cert_store = cert_store
        self._key_store = key_store

    @classmethod
    def create(
        cls,
        org_name: str,
        endpoint_config: EndpointConfig,
        crypto: CryptoProvider,
        user_store: UserStore | None = None,
        cert_store: KeyValueStore | None = None,
        key_store: KeyValueStore | None = None,
    ) -> Result[IdentityManager]:
        """Build a manager for `org_name`; fails with CONFIGURATION_ERROR when the org has no MSP id."""
        return (
            endpoint_config.msp_id(org_name)
            .or_else(
                ErrorCode.NOT_FOUND,
                lambda: ResultFailures.configuration_error(f"MSP ID not configured for organization {org_name}"),
            )
            .map(
                lambda mspid: cls(
                    org_name, mspid, endpoint_config, crypto, user_store, cert_store, key_store
                )
            )
        )

    @property
    def mspid(self) -> str:
        return self._mspid

    def get_signing_identity(self, username: str) -> Result[User]:
        return self.get_user(username)

    def get_user(self, username: str) -> Result[User]:
        return (
            self._load_user_from_store(username)
            .or_else(ErrorCode.NOT_FOUND, lambda: self._assemble_user(username))
            .peek(lambda user: log.info("identity.user_loaded", user=user.id, mspid=user.mspid, ski=user.private_key.ski_hex))
            .peek_failure(
                lambda err: log.warning("identity.user_unavailable", user=username, code=err.code.value, error=err.message)
            )
        )

    def new_user(self, user_data: UserData) -> Result[User]:
        """Rebuild a User from stored data; the key must already be known to the crypto provider."""
        return (
            self._crypto.key_identifier(user_data.enrollment_certificate)
            .map_failure(_with_context("fetching public key from cert failed"))
            .flat_map(self._crypto.get_key)
            .map(
                lambda key: User(
                    id=user_data.id,
                    mspid=user_data.mspid,
                    enrollment_certificate=user_data.enrollment_certificate,
                    private_key=key,
                )
            )
        )

    # ─────────────────────── Step 1: user store ───────────────────────

    def _load_user_from_store(self, username: str) -> Result[User]:
        if self._user_store is None:
            return ResultFailures.not_found("User in store", username)
        return (
            self._user_store.load(IdentityIdentifier(mspid=self._mspid, id=username))
            .map_failure(_with_context("loading user from store failed"))
            .flat_map(lambda data: self._user_from_store_data(username, data))
        )

    def _user_from_store_data(self, username: str, data: UserData) -> Result[User]:
        log.debug("identity.store_hit", user=username)
        return self.new_user(data).or_else(
            ErrorCode.NOT_FOUND,
            lambda: _private_key_not_found(username),
        )

    # ─────────────────────── Steps 2-4: partial sources ───────────────────────

    def _assemble_user(self, username: str) -> Result[User]:
        return (
            self._enrollment_certificate(username)
            .flat_map(
                lambda cert: Result.combine(
                    self._private_key(username, cert),
                    self._organization_msp_id(),
                    lambda key, mspid: User(
                        id=username, mspid=mspid, enrollment_certificate=cert, private_key=key
                    ),
                )
            )
        )

    def _enrollment_certificate(self, username: str) -> Result[bytes]:
        return Result.first_success(
            [
                lambda: self._embedded_cert(username),
                lambda: self._cert_from_store(username),
            ]
        ).or_else(ErrorCode.NOT_FOUND, lambda: _user_not_found(username))

    def _private_key(self, username: str, cert: bytes) -> Result[PrivateKey]:
        return Result.first_success(
            [
                lambda: self._embedded_key(username),
                lambda: self._key_for_certificate(username, cert),
            ]
        ).or_else(ErrorCode.NOT_FOUND, lambda: _private_key_not_found(username))

    def _organization_msp_id(self) -> Result[str]:
        return self._config.msp_id(self._org_name).or_else(
            ErrorCode.NOT_FOUND,
            lambda: ResultFailures.configuration_error(f"MSP ID config read failed for {self._org_name}"),
        )

    # ─────────────────────── Probes ───────────────────────

    def _embedded_user(self, username: str) -> EnrollmentMaterial:
        organization = self._config.network_config.organizations.get(self._org_name.lower())
        if organization is None:
            return EnrollmentMaterial()
        return organization.users.get(username.lower(), EnrollmentMaterial())

    def _embedded_cert(self, username: str) -> Result[bytes]:
        cert = self._embedded_user(username).cert
        if cert.pem:
            log.debug("identity.embedded_cert", user=username, source="pem")
            return Result.success(cert.pem.encode())
        if not cert.path:
            return ResultFailures.not_found("Embedded certificate", username)
        path = Path(subst(cert.path))
        log.debug("identity.embedded_cert", user=username, source="path")
        return Result.from_computation(
            path.read_bytes,
            ErrorCode.TECHNICAL_ERROR,
            f"reading cert from embedded path {path} failed",
        )

    def _cert_from_store(self, username: str) -> Result[bytes]:
        if self._cert_store is None:
            return ResultFailures.not_found("Certificate in store", username)
        return (
            self._cert_store.load(IdentityIdentifier(mspid=self._mspid, id=username))
            .peek(lambda _: log.debug("identity.cert_store_hit", user=username))
            .map_failure(_with_context("fetching cert from store failed"))
        )

    def _embedded_key(self, username: str) -> Result[PrivateKey]:
        key = self._embedded_user(username).key
        if key.pem:
            pem: Result[bytes] = Result.success(key.pem.encode())
        elif key.path:
            path = Path(subst(key.path))
            try:
                pem = Result.success(path.read_bytes())
            except OSError as exc:
                pem = ResultFailures.from_os_error(f"embedded private key {path} unavailable", exc)
        else:
            return ResultFailures.not_found("Embedded private key", username)
        return (
            pem.flat_map(self._crypto.import_key)
            .peek(lambda _: log.debug("identity.embedded_key", user=username))
            .map_failure(_with_context("fetching embedded private key failed"))
        )

    def _key_for_certificate(self, username: str, cert: bytes) -> Result[PrivateKey]:
        return (
            self._crypto.key_identifier(cert)
            .map_failure(_with_context("fetching public key from cert failed"))
            .flat_map(
                lambda ski: Result.first_success(
                    [
                        lambda: self._key_from_key_store(username, ski),
                        lambda: self._crypto.get_key(ski),
                    ]
                )
            )
        )

    def _key_from_key_store(self, username: str, ski: bytes) -> Result[PrivateKey]:
        if self._key_store is None:
            return ResultFailures.not_found("Private key in store", username)
        return (
            self._key_store.load(PrivKeyKey(id=username, mspid=self._mspid, ski=ski))
            .flat_map(self._crypto.import_key)
            .peek(lambda _: log.debug("identity.key_store_hit", user=username))
            .map_failure(_with_context("fetching private key from key store failed"))
        )


def _user_not_found(username: str) -> Result[bytes]:
    error = UserNotFoundError(username)
    return Result.failure(ErrorCode.NOT_FOUND, str(error), error)


def _private_key_not_found(username: str) -> Result:
    error = PrivateKeyNotFoundError(username)
    return ResultFailures.business_rule_error(str(error), error)
