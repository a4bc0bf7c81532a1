"""
TLS trust pool — every peer/orderer CA certificate, loaded once.

Loading certificates at dial time is expensive, so the endpoint config warms
a base pool at load: every network peer's and every orderer's TLS CA cert,
plus (optionally) the host's system trust store. Callers then ask for
`get(*extra)` which returns a NEW TrustPool containing the base set and the
extras; the base pool itself is never touched after warm-up.

A certificate that fails to load does not stop the others. Failures are
collected and reported together as a CertPoolLoadError.

Parsing:
  - asn1crypto: PEM detection and unarmoring (bundles with several blocks)
  - cryptography (PyCA): DER → x509.Certificate
"""

from __future__ import annotations

import ssl
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path

import structlog
from asn1crypto import pem
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.serialization import Encoding
from railway import ErrorCode
from railway.result import Result
from railway.result_failures import ResultFailures

from fabric_resolver.domain.errors import CertPoolLoadError
from fabric_resolver.domain.models import TLSConfig
from fabric_resolver.pathvar import subst

log = structlog.get_logger()


# ─────────────────────── Certificate parsing ───────────────────────


def parse_certificates(data: bytes) -> list[x509.Certificate]:
    """
    Parse one or more certificates from PEM (possibly a bundle) or raw DER bytes.

    Raises ValueError when nothing parseable is found.
    """
    if pem.detect(data):
        certificates = [
            x509.load_der_x509_certificate(der)
            for object_type, _headers, der in pem.unarmor(data, multiple=True)
            if object_type == "CERTIFICATE"
        ]
        if not certificates:
            raise ValueError("PEM data contains no CERTIFICATE block")
        return certificates
    return [x509.load_der_x509_certificate(data)]


def read_tls_material(tls: TLSConfig) -> bytes:
    """Raw bytes of inline PEM, or of the file at the substituted path. May raise OSError."""
    if tls.pem:
        return tls.pem.encode()
    return Path(subst(tls.path)).read_bytes()


def load_certificate(tls: TLSConfig) -> Result[x509.Certificate]:
    """
    Load the first certificate declared by a TLSConfig.

    Returns NOT_FOUND when the config declares neither PEM nor path,
    TECHNICAL_ERROR when the material is unreadable or unparseable.
    """
    if tls.is_empty:
        return ResultFailures.not_found("TLS certificate", "<none declared>")
    source = "inline pem" if tls.pem else tls.path
    return Result.from_computation(
        lambda: parse_certificates(read_tls_material(tls))[0],
        ErrorCode.TECHNICAL_ERROR,
        f"Failed to load TLS certificate from {source}",
    )


def fingerprint(certificate: x509.Certificate) -> bytes:
    return certificate.fingerprint(hashes.SHA256())


# ─────────────────────── System trust ───────────────────────


def load_system_certificates() -> Result[tuple[x509.Certificate, ...]]:
    """
    Certificates from the interpreter's default CA bundle file.

    A host without a bundle file yields an empty tuple, not a failure.
    """
    paths = ssl.get_default_verify_paths()
    for candidate in (paths.cafile, paths.openssl_cafile):
        if candidate and Path(candidate).is_file():
            return Result.from_computation(
                lambda path=candidate: tuple(parse_certificates(Path(path).read_bytes())),
                ErrorCode.TECHNICAL_ERROR,
                f"Failed to load system trust store from {candidate}",
            )
    log.warning("cert_pool.system_store_missing", cafile=paths.cafile)
    return Result.success(())


# ─────────────────────── Pools ───────────────────────


@dataclass(frozen=True, slots=True)
class TrustPool:
    """An immutable, de-duplicated set of trusted CA certificates."""

    certificates: tuple[x509.Certificate, ...] = ()

    def __len__(self) -> int:
        return len(self.certificates)

    def __contains__(self, certificate: object) -> bool:
        if not isinstance(certificate, x509.Certificate):
            return False
        target = fingerprint(certificate)
        return any(fingerprint(c) == target for c in self.certificates)

    def extended(self, extra: Iterable[x509.Certificate]) -> TrustPool:
        """New pool with `extra` appended, skipping certificates already present."""
        seen = {fingerprint(c) for c in self.certificates}
        merged = list(self.certificates)
        for certificate in extra:
            digest = fingerprint(certificate)
            if digest not in seen:
                seen.add(digest)
                merged.append(certificate)
        return TrustPool(tuple(merged))

    def subjects(self) -> list[str]:
        return [c.subject.rfc4514_string() for c in self.certificates]

    def to_pem(self) -> bytes:
        """PEM bundle suitable for `ssl.SSLContext.load_verify_locations(cadata=...)`."""
        return b"".join(c.public_bytes(Encoding.PEM) for c in self.certificates)


class CertPool:
    """
    Cache of the trust pool built from the network config.

    `warm` replaces the base pool reference in one assignment; `get` reads
    it once, so concurrent callers always see a complete pool.
    """

    def __init__(
        self,
        use_system_cert_pool: bool = False,
        system_loader: Callable[[], Result[tuple[x509.Certificate, ...]]] = load_system_certificates,
    ) -> None:
        self._use_system_cert_pool = use_system_cert_pool
        self._system_loader = system_loader
        self._base = TrustPool()

    @property
    def use_system_cert_pool(self) -> bool:
        return self._use_system_cert_pool

    def warm(
        self, sources: Iterable[tuple[str, TLSConfig]], failures: Iterable[str] = ()
    ) -> Result[int]:
        """
        Load every named TLS CA cert into a fresh base pool.

        `sources` yields (label, TLSConfig) pairs, e.g. ("peer: grpcs://peer0:7051", tls).
        Entries without any declared material are skipped. Returns the pool
        size on full success; otherwise the pool still holds every cert that
        loaded, and a TECHNICAL_ERROR failure carries a CertPoolLoadError.

        `failures` are problems the caller hit while listing sources; they are
        reported in the same CertPoolLoadError.
        """
        errors: list[str] = list(failures)
        pool = TrustPool()

        if self._use_system_cert_pool:
            system = self._system_loader()
            if system.is_success():
                pool = pool.extended(system.value())
            else:
                errors.append(f"system trust store: {system.error().message}")

        loaded: list[x509.Certificate] = []
        for label, tls in sources:
            if tls.is_empty:
                continue
            result = load_certificate(tls)
            if result.is_success():
                loaded.append(result.value())
            else:
                errors.append(f"for {label}: {result.error().message}")

        self._base = pool.extended(loaded)

        if errors:
            error = CertPoolLoadError(errors)
            log.warning("cert_pool.preload_failed", failures=len(errors), loaded=len(self._base))
            return Result.failure(ErrorCode.TECHNICAL_ERROR, str(error), error)

        log.debug("cert_pool.warmed", certificates=len(self._base))
        return Result.success(len(self._base))

    def get(self, *extra: x509.Certificate) -> TrustPool:
        """Base pool plus `extra`, as a new TrustPool. The base pool is not modified."""
        base = self._base
        if not extra:
            return base
        return base.extended(extra)
