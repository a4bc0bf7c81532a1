"""
Endpoint configuration — resolves runtime names to connection-ready descriptors.

Owns one immutable snapshot of the topology:

    _Snapshot(network, matchers, cert_pool, preload_error)

Every public method reads `self._snapshot` exactly once and works on that
object, so a concurrent reload can never hand a caller half of an old
topology and half of a new one. Reload builds a complete new snapshot under
a lock and swaps the reference only when the build succeeded.

Resolution order for peers:    key → declared URL → entity matchers
Resolution order for orderers: key → URL over resolved orderers → matchers
Channels:                      key → channel matcher's mapped name

A miss is a NOT_FOUND failure, never an exception.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass, replace
from datetime import timedelta
from pathlib import Path
from typing import TypeAlias

import structlog
from cryptography import x509
from railway import ErrorCode, FailureDescription, LoggingExecutionContext
from railway.result import Result
from railway.result_failures import ResultFailures

from fabric_resolver.cert_pool import CertPool, TrustPool, load_system_certificates
from fabric_resolver.domain.errors import InvalidPeerConfigError
from fabric_resolver.domain.models import (
    DEFAULT_TIMEOUTS,
    CAConfig,
    ChannelConfig,
    ChannelPeer,
    ClientConfig,
    EnrollmentMaterial,
    EntityKind,
    EventServiceType,
    NetworkConfig,
    NetworkPeer,
    OrdererConfig,
    PeerConfig,
    PrivateKey,
    TimeoutType,
    TLSClientCertificate,
    TLSConfig,
)
from fabric_resolver.domain.ports import CryptoProvider, NetworkConfigSource
from fabric_resolver.matching import EntityMatchers
from fabric_resolver.pathvar import subst

log = structlog.get_logger()

_TLS_SCHEMES = ("grpcs://", "https://")

SystemLoader: TypeAlias = Callable[[], Result[tuple[x509.Certificate, ...]]]


def is_tls_enabled(url: str) -> bool:
    """True when the URL scheme implies TLS."""
    return url.lower().startswith(_TLS_SCHEMES)


def _with_tls_path(tls: TLSConfig) -> TLSConfig:
    if not tls.path:
        return tls
    return replace(tls, path=subst(tls.path))


def _finish_peer(peer: PeerConfig) -> PeerConfig:
    """Fresh descriptor: private options dict, substituted TLS path."""
    return replace(peer, tls_ca_certs=_with_tls_path(peer.tls_ca_certs), grpc_options=dict(peer.grpc_options))


def _finish_orderer(orderer: OrdererConfig) -> OrdererConfig:
    return replace(
        orderer, tls_ca_certs=_with_tls_path(orderer.tls_ca_certs), grpc_options=dict(orderer.grpc_options)
    )


@dataclass(frozen=True, slots=True)
class _Snapshot:
    network: NetworkConfig
    matchers: EntityMatchers
    cert_pool: CertPool
    preload_error: FailureDescription | None = None

    @property
    def system_cert_pool(self) -> bool:
        return self.network.client.system_cert_pool


class EndpointConfig:
    """
    Resolver over a loaded network topology.

    Build with `EndpointConfig.load(source)`; the constructor expects an
    already-built snapshot.
    """

    def __init__(
        self,
        source: NetworkConfigSource,
        snapshot: _Snapshot,
        system_loader: SystemLoader = load_system_certificates,
    ) -> None:
        self._source = source
        self._snapshot = snapshot
        self._system_loader = system_loader
        self._reload_lock = threading.Lock()

    @classmethod
    def load(
        cls,
        source: NetworkConfigSource,
        system_loader: SystemLoader = load_system_certificates,
    ) -> Result[EndpointConfig]:
        """
        Load the topology, compile matchers and warm the TLS trust pool.

        Fails with CONFIGURATION_ERROR on a malformed config or bad pattern.
        Certificate preload failures do NOT fail the load; they are logged
        and exposed through `preload_error`.
        """
        return _build_snapshot(source, system_loader).map(
            lambda snapshot: cls(source, snapshot, system_loader)
        )

    # ─────────────────────── Snapshot access ───────────────────────

    @property
    def network_config(self) -> NetworkConfig:
        return self._snapshot.network

    @property
    def preload_error(self) -> FailureDescription | None:
        """Aggregate CertPoolLoadError failure from the last warm-up, if any."""
        return self._snapshot.preload_error

    def reset_network_config(self) -> Result[NetworkConfig]:
        """
        Re-read the topology from the source and swap it in.

        On failure the previous snapshot stays in place and keeps serving
        lookups; the failure is returned to the caller.
        """
        with self._reload_lock:
            return (
                LoggingExecutionContext(operation="NetworkConfigReload")
                .execute(lambda: _build_snapshot(self._source, self._system_loader))
                .peek(self._swap)
                .peek_failure(lambda err: log.error("endpoint.reload_failed", code=err.code.value, error=err.message))
                .map(lambda snapshot: snapshot.network)
            )

    def _swap(self, snapshot: _Snapshot) -> None:
        self._snapshot = snapshot
        log.info(
            "endpoint.reloaded",
            peers=len(snapshot.network.peers),
            orderers=len(snapshot.network.orderers),
            channels=len(snapshot.network.channels),
        )

    # ─────────────────────── Generic entry point ───────────────────────

    def resolve_endpoint(self, kind: EntityKind, name: str) -> Result[PeerConfig | OrdererConfig | ChannelConfig]:
        """Dispatch a lookup by entity class."""
        match kind:
            case EntityKind.PEER:
                return self.peer_config(name)
            case EntityKind.ORDERER:
                return self.orderer_config(name)
            case EntityKind.CHANNEL:
                return self.channel_config(name)
        return ResultFailures.validation_error(f"Unsupported entity kind: {kind!r}")

    # ─────────────────────── Peers ───────────────────────

    def peer_config(self, name_or_url: str) -> Result[PeerConfig]:
        """
        Effective peer configuration for a declared name, a declared URL or a
        runtime name covered by a peer entity matcher.

        The result is verified: it must carry a URL, and a TLS URL must come
        with CA material (inline, by path, or via the system pool).
        """
        snapshot = self._snapshot
        return _peer_config(snapshot, name_or_url).flat_map(
            lambda peer: _verify_peer(snapshot, peer, name_or_url)
        )

    def peers_config(self, org: str) -> Result[list[PeerConfig]]:
        """Peers of an organization; a peer that fails verification is replaced by its matched form or dropped."""
        return _peers_config(self._snapshot, org)

    def network_peers(self) -> Result[list[NetworkPeer]]:
        """Every organization's peers, paired with the organization's MSP id."""
        return _network_peers(self._snapshot)

    def peer_msp_id(self, name: str) -> Result[str]:
        return _peer_msp_id(self._snapshot, name)

    def msp_id(self, org: str) -> Result[str]:
        organization = self._snapshot.network.organizations.get(org.lower())
        if organization is None or not organization.mspid:
            return ResultFailures.not_found("MSP id for organization", org)
        return Result.success(organization.mspid)

    # ─────────────────────── Orderers ───────────────────────

    def orderer_config(self, name_or_url: str) -> Result[OrdererConfig]:
        return _orderer_config(self._snapshot, name_or_url)

    def orderers_config(self) -> Result[list[OrdererConfig]]:
        """Every declared orderer, each replaced by its matched form when an orderer matcher applies."""
        return _orderers_config(self._snapshot)

    # ─────────────────────── Channels ───────────────────────

    def channel_config(self, name: str) -> Result[ChannelConfig]:
        return _channel_config(self._snapshot, name)

    def channel_peers(self, name: str) -> Result[list[ChannelPeer]]:
        """
        Peers of a channel with their capability flags and MSP ids.

        Undeclared peers are resolved through matchers and skipped when no
        matcher applies. A peer that fails verification, or whose MSP id
        cannot be found, fails the whole call.
        """
        snapshot = self._snapshot
        return _channel_config(snapshot, name).flat_map(
            lambda channel: Result.all_of(_channel_peers(snapshot, channel))
        )

    def channel_orderers(self, name: str) -> Result[list[OrdererConfig]]:
        snapshot = self._snapshot
        return (
            _channel_config(snapshot, name)
            .flat_map(lambda channel: Result.all_of(_orderer_config(snapshot, o) for o in channel.orderers))
            .ensure(bool, ErrorCode.NOT_FOUND, f"Channel {name} declares no orderers")
        )

    # ─────────────────────── Certificate authorities ───────────────────────

    def ca_config(self, org: str) -> Result[list[CAConfig]]:
        """Certificate authorities declared for an organization, in declaration order."""
        network = self._snapshot.network
        organization = network.organizations.get(org.lower())
        if organization is None:
            return ResultFailures.not_found("Organization", org)
        authorities = [
            network.certificate_authorities[ca.lower()]
            for ca in organization.certificate_authorities
            if ca.lower() in network.certificate_authorities
        ]
        if not authorities:
            return ResultFailures.not_found("Certificate authority for organization", org)
        return Result.success(authorities)

    def ca_server_certs(self, org: str) -> Result[list[bytes]]:
        """
        TLS server certificates of the organization's CAs.

        Inline PEMs win; otherwise the comma-separated path list is read.
        """
        return self.ca_config(org).flat_map(
            lambda authorities: Result.all_of(_ca_server_certs(ca) for ca in authorities)
        ).map(lambda groups: [cert for group in groups for cert in group])

    # ─────────────────────── Client settings ───────────────────────

    def client_config(self) -> ClientConfig:
        return self._snapshot.network.client

    def timeout(self, kind: TimeoutType) -> timedelta:
        """Configured timeout, or the built-in default when unset or zero."""
        configured = self._snapshot.network.client.timeouts.get(kind)
        if not configured:
            return DEFAULT_TIMEOUTS[kind]
        return configured

    def event_service_type(self) -> EventServiceType:
        return self._snapshot.network.client.event_service_type

    def crypto_config_path(self) -> str:
        return subst(self._snapshot.network.client.crypto_config_path)

    def tls_client_certs(self, crypto: CryptoProvider) -> Result[list[TLSClientCertificate]]:
        """
        Client certificate and key for mutual TLS, from `client.tlsCerts.client`.

        The key comes from the crypto provider by the certificate's key
        identifier, else from the configured key PEM or path. An empty list
        means no client certificate is configured.
        """
        return _tls_client_certs(self._snapshot.network.client.tls_client_certs, crypto)

    # ─────────────────────── Trust ───────────────────────

    def tls_ca_cert_pool(self, *certs: x509.Certificate) -> Result[TrustPool]:
        """The warmed trust pool plus `certs`, as a new pool."""
        pool = self._snapshot.cert_pool
        return Result.from_computation(
            lambda: pool.get(*certs),
            ErrorCode.TECHNICAL_ERROR,
            "Failed to extend TLS CA cert pool",
        )


# ─────────────────────── Snapshot building ───────────────────────


def _build_snapshot(source: NetworkConfigSource, system_loader: SystemLoader) -> Result[_Snapshot]:
    return source.load().flat_map(lambda network: _compile(network, system_loader))


def _compile(network: NetworkConfig, system_loader: SystemLoader) -> Result[_Snapshot]:
    return Result.from_computation(
        lambda: EntityMatchers.compile(network.entity_matchers),
        ErrorCode.CONFIGURATION_ERROR,
        "Failed to compile entity matchers",
    ).map(lambda matchers: _warm(network, matchers, system_loader))


def _warm(network: NetworkConfig, matchers: EntityMatchers, system_loader: SystemLoader) -> _Snapshot:
    pool = CertPool(use_system_cert_pool=network.client.system_cert_pool, system_loader=system_loader)
    cold = _Snapshot(network=network, matchers=matchers, cert_pool=pool)

    failures: list[str] = []
    sources: list[tuple[str, TLSConfig]] = []
    peers = _network_peers(cold).peek_failure(lambda err: failures.append(f"network peers: {err.message}"))
    for peer in peers.get_or_else([]):
        sources.append((f"peer: {peer.peer_config.url}", peer.peer_config.tls_ca_certs))
    # orderers are preloaded one by one; _orderers_config is all-or-nothing
    for name, declared in network.orderers.items():
        orderer = _finish_orderer(matchers.match_orderer(network, name) or declared)
        if orderer.tls_ca_certs.is_empty and not network.client.system_cert_pool:
            failures.append(f"for orderer: {orderer.url or name}: no TLS CA certificate configured")
            continue
        sources.append((f"orderer: {orderer.url}", orderer.tls_ca_certs))

    warmed = pool.warm(sources, failures=failures)
    preload_error = warmed.error() if warmed.is_failure() else None
    return replace(cold, preload_error=preload_error)


# ─────────────────────── Resolution (per snapshot) ───────────────────────


def _verify_peer(snapshot: _Snapshot, peer: PeerConfig, name: str) -> Result[PeerConfig]:
    if not peer.url:
        error = InvalidPeerConfigError(name, "URL does not exist or is empty")
        return ResultFailures.validation_error(str(error), error)
    tls = peer.tls_ca_certs
    if is_tls_enabled(peer.url) and tls.is_empty and not snapshot.system_cert_pool:
        error = InvalidPeerConfigError(name, "TLS CA certificate does not exist or is empty")
        return ResultFailures.validation_error(str(error), error)
    return Result.success(peer)


def _peer_config(snapshot: _Snapshot, name_or_url: str) -> Result[PeerConfig]:
    network = snapshot.network
    key = name_or_url.lower()

    peer = network.peers.get(key)
    if peer is None:
        peer = next((p for p in network.peers.values() if p.url.lower() == key), None)
    if peer is None:
        log.debug("endpoint.peer_not_declared", name=name_or_url)
        peer = snapshot.matchers.match_peer(network, name_or_url)
        if peer is not None:
            log.debug("endpoint.peer_matched", name=name_or_url, url=peer.url)
    if peer is None:
        return ResultFailures.not_found("Peer", name_or_url)
    return Result.success(_finish_peer(peer))


def _peers_config(snapshot: _Snapshot, org: str) -> Result[list[PeerConfig]]:
    network = snapshot.network
    organization = network.organizations.get(org.lower())
    if organization is None:
        return ResultFailures.not_found("Organization", org)

    peers: list[PeerConfig] = []
    for peer_name in organization.peers:
        declared = network.peers.get(peer_name.lower(), PeerConfig())
        peer: PeerConfig | None = declared
        if _verify_peer(snapshot, declared, peer_name).is_failure():
            peer = snapshot.matchers.match_peer(network, peer_name)
            if peer is None:
                log.debug("endpoint.org_peer_skipped", org=org, peer=peer_name)
                continue
            log.debug("endpoint.peer_matched", name=peer_name, url=peer.url)
        peers.append(_finish_peer(peer))

    if not peers:
        return ResultFailures.not_found("Peers for organization", org)
    return Result.success(peers)


def _network_peers(snapshot: _Snapshot) -> Result[list[NetworkPeer]]:
    network_peers = [
        NetworkPeer(peer_config=peer, mspid=organization.mspid)
        for org_name, organization in snapshot.network.organizations.items()
        for peer in _peers_config(snapshot, org_name).get_or_else([])
    ]
    if not network_peers:
        return ResultFailures.not_found("Network peers", "<all organizations>")
    return Result.success(network_peers)


def _peer_msp_id(snapshot: _Snapshot, name: str) -> Result[str]:
    target = name.lower()
    for organization in snapshot.network.organizations.values():
        for org_peer in organization.peers:
            if org_peer.lower() == target:
                return Result.success(organization.mspid)
            mapped = snapshot.matchers.mapped_peer_host(org_peer)
            if mapped is not None and mapped.lower() == target:
                return Result.success(organization.mspid)
    return ResultFailures.not_found("MSP id for peer", name)


def _orderers_config(snapshot: _Snapshot) -> Result[list[OrdererConfig]]:
    network = snapshot.network
    orderers: list[OrdererConfig] = []
    for name, declared in network.orderers.items():
        orderer = snapshot.matchers.match_orderer(network, name) or declared
        if orderer.tls_ca_certs.is_empty and not snapshot.system_cert_pool:
            log.debug("endpoint.orderer_without_tls_certs", orderer=name, url=orderer.url)
            return ResultFailures.validation_error(f"Orderer {name} has no TLS CA certificate configured")
        orderers.append(_finish_orderer(orderer))
    return Result.success(orderers)


def _orderer_config(snapshot: _Snapshot, name_or_url: str) -> Result[OrdererConfig]:
    network = snapshot.network
    key = name_or_url.lower()

    orderer = network.orderers.get(key)
    if orderer is None:
        resolved = _orderers_config(snapshot).get_or_else([])
        orderer = next((o for o in resolved if o.url.lower() == key), None)
    if orderer is None:
        log.debug("endpoint.orderer_not_declared", name=name_or_url)
        orderer = snapshot.matchers.match_orderer(network, key)
        if orderer is not None:
            log.debug("endpoint.orderer_matched", name=name_or_url, url=orderer.url)
    if orderer is None:
        return ResultFailures.not_found("Orderer", name_or_url)
    return Result.success(_finish_orderer(orderer))


def _channel_config(snapshot: _Snapshot, name: str) -> Result[ChannelConfig]:
    mapped = snapshot.matchers.mapped_channel_name(snapshot.network, name)
    channel = snapshot.network.channels.get(mapped.lower()) if mapped else None
    if channel is None:
        return ResultFailures.not_found("Channel", name)
    if mapped != name:
        log.debug("endpoint.channel_matched", name=name, mapped_name=mapped)
    return Result.success(channel)


def _channel_peers(snapshot: _Snapshot, channel: ChannelConfig) -> Iterator[Result[ChannelPeer]]:
    network = snapshot.network
    for peer_name, flags in channel.peers.items():
        peer = network.peers.get(peer_name.lower()) or snapshot.matchers.match_peer(network, peer_name.lower())
        if peer is None:
            log.debug("endpoint.channel_peer_skipped", peer=peer_name)
            continue
        yield (
            _verify_peer(snapshot, peer, peer_name)
            .flat_map(
                lambda verified, peer_name=peer_name: _peer_msp_id(snapshot, peer_name).map(
                    lambda mspid: NetworkPeer(peer_config=_finish_peer(verified), mspid=mspid)
                )
            )
            .map(lambda network_peer, flags=flags: ChannelPeer(network_peer=network_peer, channel_config=flags))
        )


def _ca_server_certs(ca: CAConfig) -> Result[list[bytes]]:
    if ca.tls_ca_pems:
        return Result.success([pem.encode() for pem in ca.tls_ca_pems])
    paths = [p.strip() for p in ca.tls_ca_path.split(",") if p.strip()]
    return Result.from_computation(
        lambda: [Path(subst(path)).read_bytes() for path in paths],
        ErrorCode.TECHNICAL_ERROR,
        f"Failed to read CA server certificates for {ca.ca_name or ca.url}",
    )


def _read_material(tls: TLSConfig, what: str) -> Result[bytes]:
    """Inline PEM or file contents; empty bytes when nothing is declared."""
    if tls.pem:
        return Result.success(tls.pem.encode())
    if not tls.path:
        return Result.success(b"")
    path = Path(subst(tls.path))
    return Result.from_computation(
        path.read_bytes,
        ErrorCode.TECHNICAL_ERROR,
        f"Failed to load TLS client {what} from file path {path}",
    )


def _configured_client_key(key: TLSConfig, ski: bytes, crypto: CryptoProvider) -> Result[PrivateKey]:
    return (
        _read_material(key, "key")
        .ensure(bool, ErrorCode.VALIDATION_ERROR, "No private key configured for the TLS client certificate")
        .flat_map(crypto.import_key)
        .ensure(
            lambda private_key: private_key.ski == ski,
            ErrorCode.VALIDATION_ERROR,
            "TLS client private key does not match the client certificate",
        )
    )


def _tls_client_certs(material: EnrollmentMaterial, crypto: CryptoProvider) -> Result[list[TLSClientCertificate]]:
    def _client_key(ski: bytes) -> Result[PrivateKey]:
        provided = crypto.get_key(ski)
        if provided.is_success():
            return provided
        log.debug("endpoint.tls_client_key_from_config", reason=provided.error().message)
        return _configured_client_key(material.key, ski, crypto)

    def _pair(cert: bytes) -> Result[list[TLSClientCertificate]]:
        if not cert:
            return Result.success([])
        return (
            crypto.key_identifier(cert)
            .flat_map(_client_key)
            .map(lambda private_key: [TLSClientCertificate(certificate=cert, private_key=private_key)])
        )

    return _read_material(material.cert, "cert").flat_map(_pair)
