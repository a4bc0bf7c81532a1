"""
Crypto provider — private key lookup and import using PyCA cryptography.

Adapter layer — implements the CryptoProvider port.

Keys are identified by their subject key identifier (SKI):
  - EC keys:   SHA-256 over the uncompressed X9.62 public point
  - RSA keys:  SHA-256 over the PKCS#1 DER public key
  - others:    SHA-256 over the raw public key bytes

`get_key` looks in an in-memory registry first, then in the keystore
directory for a file named `<ski hex>_sk`. Imported keys are temporary:
they are returned to the caller and never written anywhere.
"""

from __future__ import annotations

import hashlib
import threading
from pathlib import Path

import structlog
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from railway import ErrorCode
from railway.result import Result
from railway.result_failures import ResultFailures

from fabric_resolver.cert_pool import parse_certificates
from fabric_resolver.domain.models import PrivateKey
from fabric_resolver.pathvar import subst

log = structlog.get_logger()

KEY_FILE_SUFFIX = "_sk"


def subject_key_identifier(public_key: object) -> bytes:
    """SKI of a public key, computed the same way for keys and certificates."""
    match public_key:
        case ec.EllipticCurvePublicKey():
            raw = public_key.public_bytes(
                serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint
            )
        case rsa.RSAPublicKey():
            raw = public_key.public_bytes(serialization.Encoding.DER, serialization.PublicFormat.PKCS1)
        case _:
            raw = public_key.public_bytes(serialization.Encoding.Raw, serialization.PublicFormat.Raw)
    return hashlib.sha256(raw).digest()


def _load_private_key(pem: bytes) -> PrivateKey:
    key = serialization.load_pem_private_key(pem, password=None)
    return PrivateKey(ski=subject_key_identifier(key.public_key()), handle=key)


class CryptographyKeyProvider:
    """
    CryptoProvider backed by `cryptography` and an optional keystore directory.

    The registry is shared between threads and guarded by a lock.
    """

    def __init__(self, keystore_path: str | Path | None = None) -> None:
        self._keystore = Path(subst(str(keystore_path))) if keystore_path else None
        self._keys: dict[bytes, PrivateKey] = {}
        self._lock = threading.Lock()

    def register(self, key: PrivateKey) -> None:
        """Make a key available to `get_key` for the lifetime of this provider."""
        with self._lock:
            self._keys[key.ski] = key

    def get_key(self, ski: bytes) -> Result[PrivateKey]:
        with self._lock:
            cached = self._keys.get(ski)
        if cached is not None:
            return Result.success(cached)
        if self._keystore is None:
            return ResultFailures.not_found("Private key", ski.hex())
        return self._load_from_keystore(ski)

    def import_key(self, pem: bytes) -> Result[PrivateKey]:
        return Result.from_computation(
            lambda: _load_private_key(pem),
            ErrorCode.TECHNICAL_ERROR,
            "Failed to import PEM private key",
        )

    def key_identifier(self, certificate: bytes) -> Result[bytes]:
        return Result.from_computation(
            lambda: subject_key_identifier(parse_certificates(certificate)[0].public_key()),
            ErrorCode.TECHNICAL_ERROR,
            "Failed to compute key identifier from certificate",
        )

    def _load_from_keystore(self, ski: bytes) -> Result[PrivateKey]:
        path = self._keystore / f"{ski.hex()}{KEY_FILE_SUFFIX}"
        try:
            pem = path.read_bytes()
        except OSError as exc:
            return ResultFailures.from_os_error(f"Private key not found in keystore: {ski.hex()}", exc)

        return (
            self.import_key(pem)
            .ensure(
                lambda key: key.ski == ski,
                ErrorCode.TECHNICAL_ERROR,
                f"Keystore file {path.name} holds a key with a different identifier",
            )
            .peek(self.register)
            .peek(lambda key: log.debug("crypto.key_loaded", ski=key.ski_hex, keystore=str(self._keystore)))
        )
