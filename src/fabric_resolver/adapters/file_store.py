"""
File-system credential stores.

Adapter layer — implements the KeyValueStore and UserStore ports over a
directory tree. File layout (one file per entry):

  certificate store:  <base>/<username>@<mspid>-cert.pem
  key store:          <base>/<ski hex>_sk

A missing file is NOT_FOUND (the identity chain moves on to the next
source); any other I/O error is a TECHNICAL_ERROR and stops the chain.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TypeAlias
from pathlib import Path

import structlog
from railway.result import Result
from railway.result_failures import ResultFailures

from fabric_resolver.adapters.crypto import KEY_FILE_SUFFIX
from fabric_resolver.domain.models import IdentityIdentifier, PrivKeyKey, UserData
from fabric_resolver.domain.ports import KeyValueStore
from fabric_resolver.pathvar import subst

log = structlog.get_logger()

StoreKey: TypeAlias = IdentityIdentifier | PrivKeyKey


def cert_file_name(key: StoreKey) -> str:
    if not isinstance(key, IdentityIdentifier):
        raise TypeError(f"certificate store expects IdentityIdentifier, got {type(key).__name__}")
    return f"{key.id}@{key.mspid}-cert.pem"


def key_file_name(key: StoreKey) -> str:
    if not isinstance(key, PrivKeyKey):
        raise TypeError(f"key store expects PrivKeyKey, got {type(key).__name__}")
    return f"{key.ski.hex()}{KEY_FILE_SUFFIX}"


class FileKeyValueStore:
    """Read-only byte store: each key maps to one file under `base_path`."""

    def __init__(self, base_path: str | Path, file_name: Callable[[StoreKey], str]) -> None:
        self._base_path = Path(subst(str(base_path)))
        self._file_name = file_name

    @property
    def base_path(self) -> Path:
        return self._base_path

    def load(self, key: StoreKey) -> Result[bytes]:
        try:
            path = self._base_path / self._file_name(key)
        except TypeError as exc:
            return ResultFailures.validation_error(str(exc), exc)
        try:
            data = path.read_bytes()
        except OSError as exc:
            return ResultFailures.from_os_error(f"Cannot read store entry {path}", exc)
        log.debug("store.entry_loaded", path=str(path))
        return Result.success(data)


def certificate_file_store(base_path: str | Path) -> FileKeyValueStore:
    return FileKeyValueStore(base_path, cert_file_name)


def key_file_store(base_path: str | Path) -> FileKeyValueStore:
    return FileKeyValueStore(base_path, key_file_name)


class CertificateUserStore:
    """
    UserStore over a certificate store: a user exists when its enrollment
    certificate does.
    """

    def __init__(self, cert_store: KeyValueStore) -> None:
        self._cert_store = cert_store

    def load(self, identifier: IdentityIdentifier) -> Result[UserData]:
        return self._cert_store.load(identifier).map(
            lambda cert: UserData(id=identifier.id, mspid=identifier.mspid, enrollment_certificate=cert)
        )
