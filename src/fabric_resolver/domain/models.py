"""
Domain models — immutable network topology, endpoint and identity value objects.

The topology (NetworkConfig) is produced once by a NetworkConfigSource and
never mutated afterwards. Resolved endpoints are new PeerConfig /
OrdererConfig instances built per lookup; their `grpc_options` dict is always
a private copy, so callers may set per-connection overrides freely.

All mapping keys inside a NetworkConfig are lower-case. Lookups lower-case
their query before touching a table.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any

SSL_TARGET_NAME_OVERRIDE = "ssl-target-name-override"


class EntityKind(Enum):
    """Entity classes that carry their own ordered list of override rules."""

    PEER = "peer"
    ORDERER = "orderer"
    CHANNEL = "channel"


class TimeoutType(Enum):
    """Named timeouts read from the `client` section of the network config."""

    ENDORSER_CONNECTION = "peer.timeout.connection"
    PEER_RESPONSE = "peer.timeout.response"
    DISCOVERY_GREYLIST_EXPIRY = "peer.timeout.discovery.greylistexpiry"
    EVENT_HUB_CONNECTION = "eventservice.timeout.connection"
    EVENT_REG = "eventservice.timeout.registrationresponse"
    ORDERER_CONNECTION = "orderer.timeout.connection"
    ORDERER_RESPONSE = "orderer.timeout.response"
    DISCOVERY_CONNECTION = "discovery.timeout.connection"
    DISCOVERY_RESPONSE = "discovery.timeout.response"
    QUERY = "global.timeout.query"
    EXECUTE = "global.timeout.execute"
    RES_MGMT = "global.timeout.resmgmt"
    CONNECTION_IDLE = "global.cache.connectionidle"
    EVENT_SERVICE_IDLE = "global.cache.eventserviceidle"
    CHANNEL_CONFIG_REFRESH = "global.cache.channelconfig"
    CHANNEL_MEMBERSHIP_REFRESH = "global.cache.channelmembership"
    DISCOVERY_SERVICE_REFRESH = "global.cache.discovery"
    CACHE_SWEEP_INTERVAL = "cache.interval.sweep"


DEFAULT_TIMEOUTS: dict[TimeoutType, timedelta] = {
    TimeoutType.ENDORSER_CONNECTION: timedelta(seconds=10),
    TimeoutType.PEER_RESPONSE: timedelta(minutes=3),
    TimeoutType.DISCOVERY_GREYLIST_EXPIRY: timedelta(seconds=10),
    TimeoutType.EVENT_HUB_CONNECTION: timedelta(seconds=15),
    TimeoutType.EVENT_REG: timedelta(seconds=15),
    TimeoutType.ORDERER_CONNECTION: timedelta(seconds=15),
    TimeoutType.ORDERER_RESPONSE: timedelta(minutes=2),
    TimeoutType.DISCOVERY_CONNECTION: timedelta(seconds=15),
    TimeoutType.DISCOVERY_RESPONSE: timedelta(seconds=15),
    TimeoutType.QUERY: timedelta(minutes=3),
    TimeoutType.EXECUTE: timedelta(minutes=3),
    TimeoutType.RES_MGMT: timedelta(minutes=3),
    TimeoutType.CONNECTION_IDLE: timedelta(seconds=30),
    TimeoutType.EVENT_SERVICE_IDLE: timedelta(minutes=2),
    TimeoutType.CHANNEL_CONFIG_REFRESH: timedelta(seconds=90),
    TimeoutType.CHANNEL_MEMBERSHIP_REFRESH: timedelta(seconds=60),
    TimeoutType.DISCOVERY_SERVICE_REFRESH: timedelta(seconds=10),
    TimeoutType.CACHE_SWEEP_INTERVAL: timedelta(seconds=15),
}


class EventServiceType(Enum):
    AUTO = "auto"
    EVENTHUB = "eventhub"
    DELIVER = "deliver"


# ─────────────────────── Certificate material ───────────────────────


@dataclass(frozen=True, slots=True)
class TLSConfig:
    """
    Certificate (or key) material declared either inline or by file path.

    Inline PEM wins over the path. The path is stored as written in the
    config; path substitution happens when an endpoint is resolved.
    """

    pem: str = field(default="", repr=False)
    path: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.pem and not self.path


@dataclass(frozen=True, slots=True)
class EnrollmentMaterial:
    """A certificate and key pair declared in configuration (embedded users, TLS client certs)."""

    cert: TLSConfig = field(default_factory=TLSConfig)
    key: TLSConfig = field(default_factory=TLSConfig)


# ─────────────────────── Topology ───────────────────────


@dataclass(frozen=True, slots=True)
class PeerConfig:
    """A peer endpoint, either as declared or as resolved for a runtime name."""

    url: str = ""
    event_url: str = ""
    tls_ca_certs: TLSConfig = field(default_factory=TLSConfig)
    grpc_options: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class OrdererConfig:
    """An orderer endpoint, either as declared or as resolved for a runtime name."""

    url: str = ""
    tls_ca_certs: TLSConfig = field(default_factory=TLSConfig)
    grpc_options: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class PeerChannelConfig:
    """Capability flags of a peer within one channel; unspecified flags are true."""

    endorsing_peer: bool = True
    chaincode_query: bool = True
    ledger_query: bool = True
    event_source: bool = True


@dataclass(frozen=True, slots=True)
class ChannelConfig:
    peers: dict[str, PeerChannelConfig] = field(default_factory=dict)
    orderers: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class OrganizationConfig:
    mspid: str = ""
    crypto_path: str = ""
    peers: tuple[str, ...] = ()
    certificate_authorities: tuple[str, ...] = ()
    users: dict[str, EnrollmentMaterial] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class CAConfig:
    """
    A certificate authority server.

    TLS CA certs come either as a list of inline PEMs or as one
    comma-separated string of file paths.
    """

    url: str = ""
    ca_name: str = ""
    tls_ca_pems: tuple[str, ...] = field(default=(), repr=False)
    tls_ca_path: str = ""
    registrar_enroll_id: str = ""
    registrar_enroll_secret: str = field(default="", repr=False)


@dataclass(frozen=True, slots=True)
class MatchConfig:
    """
    One override rule (entity matcher).

    `mapped_host` is a key into the peer or orderer table; `mapped_name` is a
    key into the channel table. Empty substitution templates mean "inherit
    from the runtime name".
    """

    pattern: str = ""
    mapped_host: str = ""
    mapped_name: str = ""
    url_substitution_exp: str = ""
    event_url_substitution_exp: str = ""
    ssl_target_override_url_substitution_exp: str = ""


@dataclass(frozen=True, slots=True)
class ClientConfig:
    organization: str = ""
    crypto_config_path: str = ""
    credential_store_path: str = ""
    crypto_store_path: str = ""
    system_cert_pool: bool = False
    tls_client_certs: EnrollmentMaterial = field(default_factory=EnrollmentMaterial)
    event_service_type: EventServiceType = EventServiceType.AUTO
    timeouts: dict[TimeoutType, timedelta] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class NetworkConfig:
    """The full declared topology. Built once per load, read-only afterwards."""

    name: str = ""
    description: str = ""
    version: str = ""
    client: ClientConfig = field(default_factory=ClientConfig)
    organizations: dict[str, OrganizationConfig] = field(default_factory=dict)
    peers: dict[str, PeerConfig] = field(default_factory=dict)
    orderers: dict[str, OrdererConfig] = field(default_factory=dict)
    channels: dict[str, ChannelConfig] = field(default_factory=dict)
    certificate_authorities: dict[str, CAConfig] = field(default_factory=dict)
    entity_matchers: dict[EntityKind, tuple[MatchConfig, ...]] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class NetworkPeer:
    """A resolved peer together with the MSP of the organization owning it."""

    peer_config: PeerConfig
    mspid: str


@dataclass(frozen=True, slots=True)
class ChannelPeer:
    network_peer: NetworkPeer
    channel_config: PeerChannelConfig


# ─────────────────────── Identity ───────────────────────


@dataclass(frozen=True, slots=True)
class IdentityIdentifier:
    """Store key for identities and enrollment certificates."""

    mspid: str
    id: str


@dataclass(frozen=True, slots=True)
class PrivKeyKey:
    """Store key for private keys: owner plus subject key identifier."""

    id: str
    mspid: str
    ski: bytes


@dataclass(frozen=True, slots=True)
class UserData:
    """What an identity store hands back: enough to rebuild a User."""

    id: str
    mspid: str
    enrollment_certificate: bytes = field(repr=False)


@dataclass(frozen=True, slots=True)
class PrivateKey:
    """
    Opaque private key handle.

    `ski` is the subject key identifier (SHA-256 over the raw public key);
    `handle` is whatever the crypto provider uses internally and is never
    logged or compared.
    """

    ski: bytes
    handle: Any = field(repr=False, compare=False)

    @property
    def ski_hex(self) -> str:
        return self.ski.hex()


@dataclass(frozen=True, slots=True)
class TLSClientCertificate:
    """Certificate (PEM or DER bytes) and private key presented for mutual TLS."""

    certificate: bytes = field(repr=False)
    private_key: PrivateKey


@dataclass(frozen=True, slots=True)
class User:
    """A signing identity: enrollment certificate plus the matching private key."""

    id: str
    mspid: str
    enrollment_certificate: bytes = field(repr=False)
    private_key: PrivateKey

    def identifier(self) -> IdentityIdentifier:
        return IdentityIdentifier(mspid=self.mspid, id=self.id)
