"""
Network config adapter — typed deserialization of the network topology.

Adapter layer — implements the NetworkConfigSource port using:
  - PyYAML: reading the YAML document
  - pydantic: validating each section and injecting defaults

Pipeline:
  YAML file / mapping
    → lower-case every mapping key (names are case-insensitive everywhere)
    → pydantic document models (defaults: channel capability flags = true)
    → frozen domain models (NetworkConfig)

Any malformed section fails the whole load with a CONFIGURATION_ERROR that
carries a NetworkConfigError; no partial topology is ever returned.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import timedelta
from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from railway import ErrorCode
from railway.result import Result

from fabric_resolver.domain.errors import NetworkConfigError
from fabric_resolver.domain.models import (
    CAConfig,
    ChannelConfig,
    ClientConfig,
    EnrollmentMaterial,
    EntityKind,
    EventServiceType,
    MatchConfig,
    NetworkConfig,
    OrdererConfig,
    OrganizationConfig,
    PeerChannelConfig,
    PeerConfig,
    TimeoutType,
    TLSConfig,
)
from fabric_resolver.pathvar import subst

log = structlog.get_logger()

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")
_NANOSECONDS = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}


# ─────────────────────── Helpers ───────────────────────


def lower_keys(value: Any) -> Any:
    """Recursively lower-case every mapping key; values are left untouched."""
    if isinstance(value, Mapping):
        return {str(k).lower(): lower_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [lower_keys(v) for v in value]
    return value


def parse_duration(value: str | int | float) -> timedelta:
    """
    Parse a duration such as `10s`, `3m`, `1h30m` or `250ms`.

    Bare numbers are seconds. Raises ValueError on anything else.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid duration {value!r}")
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)
    text = value.strip()
    if not text:
        raise ValueError("empty duration")
    if re.fullmatch(r"\d+(?:\.\d+)?", text):
        return timedelta(seconds=float(text))
    if not re.fullmatch(rf"(?:{_DURATION_PART.pattern})+", text):
        raise ValueError(f"invalid duration {value!r}")
    # summed in nanoseconds; timedelta cannot hold less than a microsecond
    total_ns = sum(float(amount) * _NANOSECONDS[unit] for amount, unit in _DURATION_PART.findall(text))
    return timedelta(microseconds=total_ns / 1000)


def _dig(mapping: Mapping[str, Any], dotted: str) -> Any:
    node: Any = mapping
    for part in dotted.split("."):
        if not isinstance(node, Mapping) or part not in node:
            return None
        node = node[part]
    return node


# ─────────────────────── Document models ───────────────────────


class _Document(BaseModel):
    """Base for every section: unknown keys ignored, YAML nulls mean "use the default"."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, coerce_numbers_to_str=True)

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        if isinstance(data, Mapping):
            return {k: v for k, v in data.items() if v is not None}
        return data


class _TLSDocument(_Document):
    pem: str = ""
    path: str = ""

    def to_domain(self) -> TLSConfig:
        return TLSConfig(pem=self.pem, path=self.path)


class _PeerDocument(_Document):
    url: str = ""
    event_url: str = Field(default="", alias="eventurl")
    grpc_options: dict[str, Any] = Field(default_factory=dict, alias="grpcoptions")
    tls_ca_certs: _TLSDocument = Field(default_factory=_TLSDocument, alias="tlscacerts")

    def to_domain(self) -> PeerConfig:
        return PeerConfig(
            url=self.url,
            event_url=self.event_url,
            tls_ca_certs=self.tls_ca_certs.to_domain(),
            grpc_options=dict(self.grpc_options),
        )


class _OrdererDocument(_Document):
    url: str = ""
    grpc_options: dict[str, Any] = Field(default_factory=dict, alias="grpcoptions")
    tls_ca_certs: _TLSDocument = Field(default_factory=_TLSDocument, alias="tlscacerts")

    def to_domain(self) -> OrdererConfig:
        return OrdererConfig(
            url=self.url,
            tls_ca_certs=self.tls_ca_certs.to_domain(),
            grpc_options=dict(self.grpc_options),
        )


class _PeerChannelDocument(_Document):
    endorsing_peer: bool = Field(default=True, alias="endorsingpeer")
    chaincode_query: bool = Field(default=True, alias="chaincodequery")
    ledger_query: bool = Field(default=True, alias="ledgerquery")
    event_source: bool = Field(default=True, alias="eventsource")

    def to_domain(self) -> PeerChannelConfig:
        return PeerChannelConfig(
            endorsing_peer=self.endorsing_peer,
            chaincode_query=self.chaincode_query,
            ledger_query=self.ledger_query,
            event_source=self.event_source,
        )


class _ChannelDocument(_Document):
    peers: dict[str, _PeerChannelDocument | None] = Field(default_factory=dict)
    orderers: list[str] = Field(default_factory=list)

    def to_domain(self) -> ChannelConfig:
        return ChannelConfig(
            peers={
                name: (flags or _PeerChannelDocument()).to_domain()
                for name, flags in self.peers.items()
            },
            orderers=tuple(self.orderers),
        )


class _UserDocument(_Document):
    cert: _TLSDocument = Field(default_factory=_TLSDocument)
    key: _TLSDocument = Field(default_factory=_TLSDocument)


class _OrganizationDocument(_Document):
    mspid: str = ""
    crypto_path: str = Field(default="", alias="cryptopath")
    peers: list[str] = Field(default_factory=list)
    certificate_authorities: list[str] = Field(default_factory=list, alias="certificateauthorities")
    users: dict[str, _UserDocument] = Field(default_factory=dict)

    def to_domain(self) -> OrganizationConfig:
        return OrganizationConfig(
            mspid=self.mspid,
            crypto_path=self.crypto_path,
            peers=tuple(self.peers),
            certificate_authorities=tuple(self.certificate_authorities),
            users={
                name: EnrollmentMaterial(cert=user.cert.to_domain(), key=user.key.to_domain())
                for name, user in self.users.items()
            },
        )


class _CATLSDocument(_Document):
    pem: list[str] = Field(default_factory=list)
    path: str = ""

    @field_validator("pem", mode="before")
    @classmethod
    def _single_pem(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [value]
        return value


class _RegistrarDocument(_Document):
    enroll_id: str = Field(default="", alias="enrollid")
    enroll_secret: str = Field(default="", alias="enrollsecret")


class _CADocument(_Document):
    url: str = ""
    ca_name: str = Field(default="", alias="caname")
    tls_ca_certs: _CATLSDocument = Field(default_factory=_CATLSDocument, alias="tlscacerts")
    registrar: _RegistrarDocument = Field(default_factory=_RegistrarDocument)

    def to_domain(self) -> CAConfig:
        return CAConfig(
            url=self.url,
            ca_name=self.ca_name,
            tls_ca_pems=tuple(self.tls_ca_certs.pem),
            tls_ca_path=self.tls_ca_certs.path,
            registrar_enroll_id=self.registrar.enroll_id,
            registrar_enroll_secret=self.registrar.enroll_secret,
        )


class _MatcherDocument(_Document):
    pattern: str = ""
    mapped_host: str = Field(default="", alias="mappedhost")
    mapped_name: str = Field(default="", alias="mappedname")
    url_substitution_exp: str = Field(default="", alias="urlsubstitutionexp")
    event_url_substitution_exp: str = Field(default="", alias="eventurlsubstitutionexp")
    ssl_target_override_url_substitution_exp: str = Field(
        default="", alias="ssltargetoverrideurlsubstitutionexp"
    )

    def to_domain(self) -> MatchConfig:
        return MatchConfig(
            pattern=self.pattern,
            mapped_host=self.mapped_host,
            mapped_name=self.mapped_name,
            url_substitution_exp=self.url_substitution_exp,
            event_url_substitution_exp=self.event_url_substitution_exp,
            ssl_target_override_url_substitution_exp=self.ssl_target_override_url_substitution_exp,
        )


class _PathDocument(_Document):
    path: str = ""


class _CredentialStoreDocument(_Document):
    path: str = ""
    crypto_store: _PathDocument = Field(default_factory=_PathDocument, alias="cryptostore")


class _ClientTLSDocument(_Document):
    system_cert_pool: bool = Field(default=False, alias="systemcertpool")
    client: _UserDocument = Field(default_factory=_UserDocument)


class _EventServiceDocument(_Document):
    type: str = "auto"


class _ClientDocument(_Document):
    organization: str = ""
    crypto_config: _PathDocument = Field(default_factory=_PathDocument, alias="cryptoconfig")
    credential_store: _CredentialStoreDocument = Field(
        default_factory=_CredentialStoreDocument, alias="credentialstore"
    )
    tls_certs: _ClientTLSDocument = Field(default_factory=_ClientTLSDocument, alias="tlscerts")
    event_service: _EventServiceDocument = Field(
        default_factory=_EventServiceDocument, alias="eventservice"
    )


class _NetworkDocument(_Document):
    name: str = ""
    description: str = ""
    version: str = ""
    client: _ClientDocument = Field(default_factory=_ClientDocument)
    channels: dict[str, _ChannelDocument | None] = Field(default_factory=dict)
    organizations: dict[str, _OrganizationDocument] = Field(default_factory=dict)
    orderers: dict[str, _OrdererDocument] = Field(default_factory=dict)
    peers: dict[str, _PeerDocument] = Field(default_factory=dict)
    certificate_authorities: dict[str, _CADocument] = Field(
        default_factory=dict, alias="certificateauthorities"
    )
    entity_matchers: dict[str, list[_MatcherDocument]] = Field(
        default_factory=dict, alias="entitymatchers"
    )


# ─────────────────────── Conversion ───────────────────────


def _client_config(document: _ClientDocument, raw: Mapping[str, Any]) -> ClientConfig:
    timeouts: dict[TimeoutType, timedelta] = {}
    for timeout_type in TimeoutType:
        value = _dig(raw, timeout_type.value)
        if value is None or value == "":
            continue
        try:
            timeouts[timeout_type] = parse_duration(value)
        except ValueError as exc:
            raise NetworkConfigError(f"client.{timeout_type.value}: {exc}") from exc

    try:
        event_service_type = EventServiceType(document.event_service.type.lower())
    except ValueError:
        log.warning("network_config.unknown_event_service", type=document.event_service.type)
        event_service_type = EventServiceType.AUTO

    return ClientConfig(
        organization=document.organization.lower(),
        crypto_config_path=document.crypto_config.path,
        credential_store_path=document.credential_store.path,
        crypto_store_path=document.credential_store.crypto_store.path,
        system_cert_pool=document.tls_certs.system_cert_pool,
        tls_client_certs=EnrollmentMaterial(
            cert=document.tls_certs.client.cert.to_domain(),
            key=document.tls_certs.client.key.to_domain(),
        ),
        event_service_type=event_service_type,
        timeouts=timeouts,
    )


def _entity_matchers(
    documents: Mapping[str, list[_MatcherDocument]],
) -> dict[EntityKind, tuple[MatchConfig, ...]]:
    matchers: dict[EntityKind, tuple[MatchConfig, ...]] = {}
    for kind_name, rules in documents.items():
        try:
            kind = EntityKind(kind_name)
        except ValueError:
            log.warning("network_config.unknown_matcher_kind", kind=kind_name)
            continue
        matchers[kind] = tuple(rule.to_domain() for rule in rules)
    return matchers


def parse_network_config(data: Mapping[str, Any]) -> NetworkConfig:
    """
    Build a NetworkConfig from a raw mapping (as loaded from YAML or built in code).

    Raises NetworkConfigError naming the offending section.
    """
    if not isinstance(data, Mapping):
        raise NetworkConfigError(f"network config must be a mapping, got {type(data).__name__}")
    raw = lower_keys(data)
    try:
        document = _NetworkDocument.model_validate(raw)
    except ValidationError as exc:
        sections = sorted({str(err["loc"][0]) for err in exc.errors() if err["loc"]})
        raise NetworkConfigError(
            f"failed to parse network config section(s) {', '.join(sections) or '<root>'}: {exc}"
        ) from exc

    network = NetworkConfig(
        name=document.name,
        description=document.description,
        version=document.version,
        client=_client_config(document.client, raw.get("client") or {}),
        organizations={k: v.to_domain() for k, v in document.organizations.items()},
        peers={k: v.to_domain() for k, v in document.peers.items()},
        orderers={k: v.to_domain() for k, v in document.orderers.items()},
        channels={k: (v or _ChannelDocument()).to_domain() for k, v in document.channels.items()},
        certificate_authorities={
            k: v.to_domain() for k, v in document.certificate_authorities.items()
        },
        entity_matchers=_entity_matchers(document.entity_matchers),
    )
    _warn_deprecated(network)
    log.debug(
        "network_config.parsed",
        organizations=len(network.organizations),
        peers=len(network.peers),
        orderers=len(network.orderers),
        channels=len(network.channels),
    )
    return network


def _warn_deprecated(network: NetworkConfig) -> None:
    if any(channel.orderers for channel in network.channels.values()):
        log.warning(
            "network_config.deprecated_channel_orderers",
            hint="use orderer entity matchers to override orderer configuration",
        )


# ─────────────────────── Sources ───────────────────────


class MappingNetworkConfigSource:
    """
    NetworkConfigSource over an in-memory mapping.

    For applications that build their topology in code instead of shipping
    a YAML file.
    """

    def __init__(self, data: Mapping[str, Any]) -> None:
        self._data = data

    def load(self) -> Result[NetworkConfig]:
        return Result.from_computation(
            lambda: parse_network_config(self._data),
            ErrorCode.CONFIGURATION_ERROR,
            "Failed to load network configuration",
        )


class YamlNetworkConfigSource:
    """
    NetworkConfigSource reading a YAML file.

    The file is re-read on every load so a reload picks up edits.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = str(path)

    @property
    def path(self) -> Path:
        return Path(subst(self._path))

    def load(self) -> Result[NetworkConfig]:
        return Result.from_computation(
            lambda: parse_network_config(self._read()),
            ErrorCode.CONFIGURATION_ERROR,
            f"Failed to load network configuration from {self._path}",
        )

    def _read(self) -> Any:
        try:
            with self.path.open(encoding="utf-8") as handle:
                return yaml.safe_load(handle) or {}
        except OSError as exc:
            raise NetworkConfigError(f"cannot read {self.path}: {exc}") from exc
        except yaml.YAMLError as exc:
            raise NetworkConfigError(f"invalid YAML in {self.path}: {exc}") from exc
