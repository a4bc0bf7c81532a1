"""
Entity matchers — override rules compiled into patterns, plus the substitution engine.

An override rule maps a runtime name (e.g. a Kubernetes service hostname) to
a declared peer, orderer or channel, and rewrites the declared URL, event URL
and TLS server-name override to fit the runtime name.

Matching rules:
  - rules are tried in declaration order; the first match wins
  - a rule matches when its pattern is found ANYWHERE in the name
    (re.search, not fullmatch): overlapping patterns must be ordered by the
    config author, a loose pattern declared first shadows later ones
  - rules with an empty pattern are never compiled and never match

Substitution, per field:
  1. empty template   → the runtime name, inheriting the declared port
  2. no `$` in it     → the template as a literal
  3. otherwise        → every match of the pattern in the runtime name is
                        replaced by the template expanded with that match's
                        groups ($1, ${1}, $name, ${name}, $$)
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace

import structlog

from fabric_resolver.domain.errors import InvalidPatternError
from fabric_resolver.domain.models import (
    SSL_TARGET_NAME_OVERRIDE,
    EntityKind,
    MatchConfig,
    NetworkConfig,
    OrdererConfig,
    PeerConfig,
)

log = structlog.get_logger()

_GROUP_REFERENCE = re.compile(r"\$(?:\$|\{(\w+)\}|(\w+))")
_PORT = re.compile(r"[+-]?[0-9]+")


@dataclass(frozen=True, slots=True)
class CompiledMatcher:
    """A compiled override rule; `index` is its position in the declared list."""

    index: int
    pattern: re.Pattern[str]
    rule: MatchConfig


@dataclass(frozen=True, slots=True)
class EntityMatchers:
    """
    Compiled matchers for every entity class, each tuple sorted by declaration index.

    Built once per network config load and never recompiled.
    """

    by_kind: dict[EntityKind, tuple[CompiledMatcher, ...]] = field(default_factory=dict)

    @classmethod
    def compile(cls, rules: Mapping[EntityKind, Sequence[MatchConfig]]) -> EntityMatchers:
        """
        Compile every non-empty pattern. Raises InvalidPatternError on the first bad one.
        """
        by_kind: dict[EntityKind, tuple[CompiledMatcher, ...]] = {}
        for kind in EntityKind:
            compiled: list[CompiledMatcher] = []
            for index, rule in enumerate(rules.get(kind, ())):
                if not rule.pattern:
                    continue
                try:
                    pattern = re.compile(rule.pattern)
                except re.error as exc:
                    raise InvalidPatternError(kind.value, index, rule.pattern, str(exc)) from exc
                compiled.append(CompiledMatcher(index=index, pattern=pattern, rule=rule))
            by_kind[kind] = tuple(compiled)
        log.debug(
            "matchers.compiled",
            peer=len(by_kind[EntityKind.PEER]),
            orderer=len(by_kind[EntityKind.ORDERER]),
            channel=len(by_kind[EntityKind.CHANNEL]),
        )
        return cls(by_kind=by_kind)

    def find(self, kind: EntityKind, name: str) -> CompiledMatcher | None:
        """Return the first matcher (lowest index) whose pattern occurs in `name`."""
        for matcher in self.by_kind.get(kind, ()):
            if matcher.pattern.search(name):
                log.debug("matcher.matched", kind=kind.value, name=name, index=matcher.index)
                return matcher
        return None

    # ─────────────────────── Entity assembly ───────────────────────

    def match_peer(self, network: NetworkConfig, name: str) -> PeerConfig | None:
        """
        Build the effective PeerConfig for a runtime peer name, or None.

        The declared peer named by the rule's mapped host supplies TLS material
        and gRPC options; the options dict is copied before the TLS override
        is written into it.
        """
        matcher = self.find(EntityKind.PEER, name)
        if matcher is None:
            return None
        base = network.peers.get(matcher.rule.mapped_host.lower())
        if base is None:
            log.debug("matcher.mapped_host_missing", kind="peer", mapped_host=matcher.rule.mapped_host)
            return None

        options = dict(base.grpc_options)
        options[SSL_TARGET_NAME_OVERRIDE] = _tls_override(matcher, name)
        return replace(
            base,
            url=_substitute(matcher, name, matcher.rule.url_substitution_exp, base.url),
            event_url=_substitute(matcher, name, matcher.rule.event_url_substitution_exp, base.event_url),
            grpc_options=options,
        )

    def match_orderer(self, network: NetworkConfig, name: str) -> OrdererConfig | None:
        """Build the effective OrdererConfig for a runtime orderer name, or None."""
        matcher = self.find(EntityKind.ORDERER, name)
        if matcher is None:
            return None
        base = network.orderers.get(matcher.rule.mapped_host.lower())
        if base is None:
            log.debug("matcher.mapped_host_missing", kind="orderer", mapped_host=matcher.rule.mapped_host)
            return None

        options = dict(base.grpc_options)
        options[SSL_TARGET_NAME_OVERRIDE] = _tls_override(matcher, name)
        return replace(
            base,
            url=_substitute(matcher, name, matcher.rule.url_substitution_exp, base.url),
            grpc_options=options,
        )

    def mapped_peer_host(self, name: str) -> str | None:
        """Declared peer key a runtime peer name maps to, without building a config."""
        matcher = self.find(EntityKind.PEER, name)
        return matcher.rule.mapped_host if matcher else None

    def mapped_channel_name(self, network: NetworkConfig, name: str) -> str | None:
        """
        Declared channel key for `name`.

        A declared channel maps to itself; otherwise the first channel matcher
        decides, and an empty mapped name counts as no mapping.
        """
        if name.lower() in network.channels:
            return name
        matcher = self.find(EntityKind.CHANNEL, name)
        if matcher is None or not matcher.rule.mapped_name:
            return None
        return matcher.rule.mapped_name


# ─────────────────────── Substitution engine ───────────────────────


def port_of(url: str) -> int | None:
    """Port encoded in the last colon-delimited segment of `url`, if any."""
    segments = url.split(":")
    if len(segments) > 1 and _PORT.fullmatch(segments[-1]):
        return int(segments[-1])
    return None


def inherit_url(runtime_name: str, declared: str) -> str:
    """Runtime name, with the declared value's port appended when the name has none."""
    port = port_of(declared)
    if port is not None and port_of(runtime_name) is None:
        return f"{runtime_name}:{port}"
    return runtime_name


def tls_host_from_name(runtime_name: str) -> str:
    """
    Bare host for TLS server-name verification derived from a runtime name.

    `host` → `host`; `host:7051` → `host`; `grpcs://host` → `host`;
    `grpcs://host:7051` → `host`.
    """
    if ":" not in runtime_name:
        return runtime_name
    segments = runtime_name.split(":")
    host = segments[-2] if port_of(runtime_name) is not None else segments[-1]
    return host.lstrip("/")


def expand_template(template: str, match: re.Match[str]) -> str:
    """
    Expand group references in `template` against one match.

    Unknown or unmatched groups expand to an empty string; `$` not followed
    by a group reference is kept literally.
    """

    def _group(reference: re.Match[str]) -> str:
        name = reference.group(1) or reference.group(2)
        if name is None:
            return "$"
        try:
            value = match.group(int(name) if name.isascii() and name.isdigit() else name)
        except IndexError:
            return ""
        return value or ""

    return _GROUP_REFERENCE.sub(_group, template)


def replace_all(pattern: re.Pattern[str], name: str, template: str) -> str:
    """
    Replace every non-overlapping match of `pattern` in `name` with the expanded template.

    An empty match directly after a previous match is skipped, so `(.*)`
    rewrites a name once rather than twice.
    """
    pieces: list[str] = []
    last = 0
    previous_end = -1
    for match in pattern.finditer(name):
        if match.start() == match.end() == previous_end:
            continue
        pieces.append(name[last : match.start()])
        pieces.append(expand_template(template, match))
        last = previous_end = match.end()
    pieces.append(name[last:])
    return "".join(pieces)


def _substitute(matcher: CompiledMatcher, name: str, template: str, declared: str) -> str:
    if not template:
        return inherit_url(name, declared)
    if "$" not in template:
        return template
    return replace_all(matcher.pattern, name, template)


def _tls_override(matcher: CompiledMatcher, name: str) -> str:
    template = matcher.rule.ssl_target_override_url_substitution_exp
    if not template:
        return tls_host_from_name(name)
    if "$" not in template:
        return template
    return replace_all(matcher.pattern, name, template)
