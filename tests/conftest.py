"""
Shared test fixtures and helpers for the fabric-resolver test suite.

Certificates and keys are generated at test time with `cryptography`, so
no key material is checked into the repository. `network_data()` returns a
small but complete network configuration mapping (camelCase keys, as
written in YAML files) that tests adjust as needed.
"""

from __future__ import annotations

import copy
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from fabric_resolver.adapters.network_config import MappingNetworkConfigSource
from fabric_resolver.endpoint_config import EndpointConfig

ORG1_MSP = "Org1MSP"


# ─────────────────────── Key material ───────────────────────


def make_key() -> ec.EllipticCurvePrivateKey:
    """Generate a fresh P-256 private key."""
    return ec.generate_private_key(ec.SECP256R1())


def make_certificate(
    common_name: str = "ca.org1.example.com",
    key: ec.EllipticCurvePrivateKey | None = None,
) -> x509.Certificate:
    """Self-signed certificate for `key` (a new key when omitted)."""
    key = key or make_key()
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.now(UTC)
    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=30))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )


def cert_pem(certificate: x509.Certificate) -> bytes:
    return certificate.public_bytes(serialization.Encoding.PEM)


def key_pem(key: ec.EllipticCurvePrivateKey) -> bytes:
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )


# ─────────────────────── Network configuration ───────────────────────


def network_data(tls_pem: str) -> dict[str, Any]:
    """
    A network config mapping with one organization, two peers, one orderer,
    one channel and one CA. Every TLS CA cert is `tls_pem`.
    """
    return copy.deepcopy(
        {
            "name": "test-network",
            "description": "network used by the unit tests",
            "version": "1.0.0",
            "client": {
                "organization": "Org1",
                "cryptoconfig": {"path": "/opt/crypto-config"},
                "credentialStore": {"path": "", "cryptoStore": {"path": ""}},
                "tlsCerts": {"systemCertPool": False},
                "peer": {"timeout": {"connection": "5s", "response": "1m30s"}},
                "eventService": {"type": "deliver"},
            },
            "channels": {
                "mychannel": {
                    "peers": {
                        "peer0.org1.example.com": {"endorsingPeer": True, "eventSource": False},
                        "peer1.org1.example.com": None,
                    },
                    "orderers": ["orderer.example.com"],
                },
            },
            "organizations": {
                "Org1": {
                    "mspid": ORG1_MSP,
                    "cryptoPath": "peerOrganizations/org1.example.com/users/{username}@org1.example.com/msp",
                    "peers": ["peer0.org1.example.com", "peer1.org1.example.com"],
                    "certificateAuthorities": ["ca.org1.example.com"],
                },
            },
            "orderers": {
                "orderer.example.com": {
                    "url": "grpcs://orderer.example.com:7050",
                    "grpcOptions": {"ssl-target-name-override": "orderer.example.com", "fail-fast": False},
                    "tlsCACerts": {"pem": tls_pem},
                },
            },
            "peers": {
                "peer0.org1.example.com": {
                    "url": "grpcs://peer0.org1.example.com:7051",
                    "eventUrl": "grpcs://peer0.org1.example.com:7053",
                    "grpcOptions": {"ssl-target-name-override": "peer0.org1.example.com", "keep-alive-time": "0s"},
                    "tlsCACerts": {"pem": tls_pem},
                },
                "peer1.org1.example.com": {
                    "url": "grpcs://peer1.org1.example.com:8051",
                    "grpcOptions": {"ssl-target-name-override": "peer1.org1.example.com"},
                    "tlsCACerts": {"pem": tls_pem},
                },
            },
            "certificateAuthorities": {
                "ca.org1.example.com": {
                    "url": "https://ca.org1.example.com:7054",
                    "caName": "ca.org1.example.com",
                    "tlsCACerts": {"pem": [tls_pem]},
                    "registrar": {"enrollId": "admin", "enrollSecret": "adminpw"},
                },
            },
        }
    )


def load_endpoint_config(data: dict[str, Any]) -> EndpointConfig:
    """Load an EndpointConfig from a mapping, failing the test on error."""
    result = EndpointConfig.load(MappingNetworkConfigSource(data))
    assert result.is_success(), f"network config failed to load: {result.error().message}"
    return result.value()


@pytest.fixture()
def tls_ca() -> x509.Certificate:
    """A TLS CA certificate shared by every endpoint of the test network."""
    return make_certificate("tlsca.example.com")


@pytest.fixture()
def network(tls_ca: x509.Certificate) -> dict[str, Any]:
    """Fresh copy of the test network mapping."""
    return network_data(cert_pem(tls_ca).decode())
