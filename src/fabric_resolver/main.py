"""
Application entry point — wires dependencies and runs the inspection CLI.

Composition root: creates concrete adapters (config source, crypto provider,
credential stores), builds the EndpointConfig and IdentityManager, and
answers one question per invocation:

    fabric-resolver peer peer0.org1.example.com
    fabric-resolver orderer orderer.example.com:7050
    fabric-resolver channel mychannel
    fabric-resolver identity User1
    fabric-resolver trust

This is the ONLY place where concrete classes are instantiated.
Everything else depends on Protocol interfaces.

Responsibilities:
  1. Configure structlog
  2. Load and validate settings from environment (CLI flags override)
  3. Create concrete adapter instances
  4. Resolve the requested entity and print it as JSON
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections.abc import Sequence
from typing import Any

import structlog
from railway import ErrorCode
from railway.result import Result

from fabric_resolver import __version__
from fabric_resolver.adapters.crypto import CryptographyKeyProvider
from fabric_resolver.adapters.file_store import (
    CertificateUserStore,
    certificate_file_store,
    key_file_store,
)
from fabric_resolver.adapters.network_config import YamlNetworkConfigSource
from fabric_resolver.adapters.postgres_store import certificate_db_store, key_db_store
from fabric_resolver.cert_pool import parse_certificates
from fabric_resolver.config import AppSettings
from fabric_resolver.domain.models import ChannelConfig, OrdererConfig, PeerConfig, TLSConfig, User
from fabric_resolver.domain.ports import KeyValueStore
from fabric_resolver.endpoint_config import EndpointConfig
from fabric_resolver.identity import IdentityManager

EXIT_OK = 0
EXIT_FAILURE = 1


def configure_structlog(log_level: str = "INFO") -> None:
    """
    Configure structlog for structured logging on stderr.

    stdout is reserved for the command's JSON answer.
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


# ─────────────────────── Wiring ───────────────────────


def build_endpoint_config(settings: AppSettings) -> Result[EndpointConfig]:
    """Load the network config named by the settings."""
    return EndpointConfig.load(YamlNetworkConfigSource(settings.network_config_path))


def _create_stores(
    settings: AppSettings, endpoint_config: EndpointConfig
) -> tuple[KeyValueStore | None, KeyValueStore | None]:
    """Certificate store and key store for the configured backend; either may be None."""
    if settings.store.backend == "postgres":
        dsn = settings.store.get_dsn()
        return certificate_db_store(dsn, settings.store.table), key_db_store(dsn, settings.store.table)

    client = endpoint_config.client_config()
    cert_store = certificate_file_store(client.credential_store_path) if client.credential_store_path else None
    key_store = key_file_store(client.crypto_store_path) if client.crypto_store_path else None
    return cert_store, key_store


def build_identity_manager(settings: AppSettings, endpoint_config: EndpointConfig) -> Result[IdentityManager]:
    """
    Wire the identity manager for the configured organization.

    The organization comes from the settings, else from the network
    config's `client.organization`.
    """
    org = settings.organization or endpoint_config.client_config().organization
    if not org:
        return Result.failure(
            ErrorCode.CONFIGURATION_ERROR,
            "No organization configured: set ORGANIZATION or client.organization",
        )
    cert_store, key_store = _create_stores(settings, endpoint_config)
    crypto = CryptographyKeyProvider(endpoint_config.client_config().crypto_store_path or None)
    # a user-store hit takes its key from the provider's keystore directory only
    user_store = (
        CertificateUserStore(cert_store)
        if cert_store is not None and settings.store.backend == "file"
        else None
    )
    return IdentityManager.create(
        org,
        endpoint_config,
        crypto,
        user_store=user_store,
        cert_store=cert_store,
        key_store=key_store,
    )


# ─────────────────────── Rendering ───────────────────────


def _tls(tls: TLSConfig) -> dict[str, Any]:
    return {"path": tls.path, "inline_pem": bool(tls.pem)}


def _peer(peer: PeerConfig) -> dict[str, Any]:
    return {
        "url": peer.url,
        "event_url": peer.event_url,
        "tls_ca_certs": _tls(peer.tls_ca_certs),
        "grpc_options": peer.grpc_options,
    }


def _orderer(orderer: OrdererConfig) -> dict[str, Any]:
    return {"url": orderer.url, "tls_ca_certs": _tls(orderer.tls_ca_certs), "grpc_options": orderer.grpc_options}


def _channel(endpoint_config: EndpointConfig, name: str, channel: ChannelConfig) -> dict[str, Any]:
    peers = endpoint_config.channel_peers(name).get_or_else([])
    return {
        "peers": {
            peer_name: {
                "endorsing_peer": flags.endorsing_peer,
                "chaincode_query": flags.chaincode_query,
                "ledger_query": flags.ledger_query,
                "event_source": flags.event_source,
            }
            for peer_name, flags in channel.peers.items()
        },
        "resolved_peers": [
            {"mspid": p.network_peer.mspid, **_peer(p.network_peer.peer_config)} for p in peers
        ],
        "orderers": [_orderer(o) for o in endpoint_config.channel_orderers(name).get_or_else([])],
    }


def _user(user: User) -> dict[str, Any]:
    certificate = parse_certificates(user.enrollment_certificate)[0]
    return {
        "id": user.id,
        "mspid": user.mspid,
        "subject": certificate.subject.rfc4514_string(),
        "ski": user.private_key.ski_hex,
    }


# ─────────────────────── CLI ───────────────────────


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fabric-resolver",
        description="Resolve network entities and identities from a network configuration.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", help="network config YAML (overrides NETWORK_CONFIG_PATH)")
    parser.add_argument("--org", help="organization (overrides ORGANIZATION)")
    parser.add_argument("--log-level", help="log level (overrides LOG_LEVEL)")

    commands = parser.add_subparsers(dest="command", required=True)
    for kind in ("peer", "orderer", "channel"):
        sub = commands.add_parser(kind, help=f"resolve a {kind} by name or URL")
        sub.add_argument("name")
    identity = commands.add_parser("identity", help="resolve a user's signing identity")
    identity.add_argument("username")
    commands.add_parser("trust", help="list the warmed TLS CA trust pool")
    return parser


def _load_settings(args: argparse.Namespace) -> AppSettings:
    overrides: dict[str, Any] = {}
    if args.config:
        overrides["network_config_path"] = args.config
    if args.org:
        overrides["organization"] = args.org
    if args.log_level:
        overrides["log_level"] = args.log_level
    return AppSettings(**overrides)


def _answer(args: argparse.Namespace, settings: AppSettings, endpoint_config: EndpointConfig) -> Result[dict[str, Any]]:
    match args.command:
        case "peer":
            return endpoint_config.peer_config(args.name).map(_peer)
        case "orderer":
            return endpoint_config.orderer_config(args.name).map(_orderer)
        case "channel":
            return endpoint_config.channel_config(args.name).map(
                lambda channel: _channel(endpoint_config, args.name, channel)
            )
        case "identity":
            return (
                build_identity_manager(settings, endpoint_config)
                .flat_map(lambda manager: manager.get_signing_identity(args.username))
                .flat_map(
                    lambda user: Result.from_computation(
                        lambda: _user(user), ErrorCode.TECHNICAL_ERROR, "Failed to read the enrollment certificate"
                    )
                )
            )
        case "trust":
            return endpoint_config.tls_ca_cert_pool().map(
                lambda pool: {
                    "certificates": pool.subjects(),
                    "preload_error": endpoint_config.preload_error.message if endpoint_config.preload_error else None,
                }
            )
    return Result.failure(ErrorCode.VALIDATION_ERROR, f"Unknown command: {args.command}")


def run(argv: Sequence[str] | None = None) -> int:
    """Parse arguments, resolve, print the JSON answer; returns the exit code."""
    args = _parser().parse_args(argv)
    try:
        settings = _load_settings(args)
    except Exception as e:
        print(f"FATAL: Configuration error — {e}", file=sys.stderr)  # noqa: T201
        return EXIT_FAILURE

    configure_structlog(settings.log_level)
    log = structlog.get_logger()
    log.debug("app.starting", version=__version__, command=args.command, config=str(settings.network_config_path))

    result = build_endpoint_config(settings).flat_map(
        lambda endpoint_config: _answer(args, settings, endpoint_config)
    )
    if result.is_failure():
        error = result.error()
        log.error("app.resolution_failed", command=args.command, code=error.code.value, error=error.message)
        return EXIT_FAILURE

    print(json.dumps(result.value(), indent=2, default=str))  # noqa: T201
    return EXIT_OK


def main() -> None:
    """Console script entry point."""
    sys.exit(run())


if __name__ == "__main__":
    main()
