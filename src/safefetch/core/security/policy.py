# src/safefetch/core/security/policy.py
"""Immutable fetch policy.

A PolicyConfig is built once by the caller and then shared read-only with
the validator and the fetch orchestrator, including across threads. The
"mutators" are copy-on-write and return a new policy.

Defaults are restrictive: http/https on ports 80/443 only, with every
private, reserved, loopback, link-local and multicast range denied.
"""

from __future__ import annotations

import ipaddress
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from safefetch.core.security.rules import (
    Dimension,
    ListKind,
    Match,
    Rule,
    RuleSet,
    parse_rules,
)

if TYPE_CHECKING:
    from safefetch.core.config import PolicySettings

DEFAULT_ALLOWED_SCHEMES = ("http", "https")
DEFAULT_ALLOWED_PORTS = (80, 443)

# Hostnames that name loopback or cloud metadata targets. The IP rules catch
# these after resolution as well; denying the names rejects them before the
# resolver's answer matters.
DEFAULT_DENIED_DOMAINS = (
    "localhost",
    "*.localhost",
    "localhost.localdomain",
    "metadata.google.internal",
    "metadata.goog",
)

# Each range blocks a specific attack vector - do not remove without security review
DEFAULT_DENIED_NETWORKS = (
    # IPv4
    "0.0.0.0/8",  # "This" network (RFC 1122) - routes to localhost on many stacks
    "10.0.0.0/8",  # Private (RFC 1918)
    "100.64.0.0/10",  # Shared address space / CGNAT (RFC 6598)
    "127.0.0.0/8",  # Loopback
    "169.254.0.0/16",  # Link-local, cloud metadata endpoints
    "172.16.0.0/12",  # Private (RFC 1918)
    "192.0.0.0/24",  # IETF protocol assignments (RFC 6890)
    "192.0.2.0/24",  # TEST-NET-1
    "192.88.99.0/24",  # 6to4 relay anycast
    "192.168.0.0/16",  # Private (RFC 1918)
    "198.18.0.0/15",  # Benchmarking (RFC 2544)
    "198.51.100.0/24",  # TEST-NET-2
    "203.0.113.0/24",  # TEST-NET-3
    "224.0.0.0/4",  # Multicast
    "240.0.0.0/4",  # Reserved, includes 255.255.255.255 broadcast
    # IPv6
    "::/128",  # Unspecified
    "::1/128",  # Loopback
    "::ffff:0:0/96",  # IPv4-mapped - bypass vector for IPv4-only checks
    "64:ff9b::/96",  # NAT64
    "100::/64",  # Discard-only
    "2001:db8::/32",  # Documentation
    "fc00::/7",  # Unique local
    "fe80::/10",  # Link-local
    "ff00::/8",  # Multicast
)


def _default_rule_sets() -> dict[Dimension, RuleSet]:
    return {
        Dimension.SCHEME: RuleSet.build(Dimension.SCHEME, allow=DEFAULT_ALLOWED_SCHEMES),
        Dimension.PORT: RuleSet.build(Dimension.PORT, allow=DEFAULT_ALLOWED_PORTS),
        Dimension.DOMAIN: RuleSet.build(Dimension.DOMAIN, deny=DEFAULT_DENIED_DOMAINS),
        Dimension.IP: RuleSet.build(Dimension.IP, deny=DEFAULT_DENIED_NETWORKS),
    }


@dataclass(frozen=True, slots=True)
class PolicyConfig:
    """Allow/deny rules and behaviour flags for one or more fetches.

    Attributes:
        rule_sets: One RuleSet per Dimension
        send_credentials: Permit user:password@ in URLs and forward them
        pin_dns: Force the transport to connect to the validated IPs only
        follow_redirects: Follow 301/302/303/307/308, re-validating each hop
        redirect_limit: Hop limit; 0 means unlimited
        headers: Fixed headers sent on every request, including redirect hops
        timeout: Transport timeout in seconds
        dns_timeout: Resolver timeout in seconds
    """

    rule_sets: Mapping[Dimension, RuleSet] = field(default_factory=_default_rule_sets)
    send_credentials: bool = False
    pin_dns: bool = True
    follow_redirects: bool = True
    redirect_limit: int = 5
    headers: Mapping[str, str] | None = None
    timeout: float = 30.0
    dns_timeout: float = 5.0

    def __post_init__(self) -> None:
        rule_sets = _default_rule_sets()
        for dimension, rule_set in self.rule_sets.items():
            dim = Dimension(dimension)
            if rule_set.dimension != dim:
                raise ValueError(f"RuleSet for {rule_set.dimension} registered under {dim}")
            rule_sets[dim] = rule_set
        object.__setattr__(self, "rule_sets", MappingProxyType(rule_sets))
        if self.headers is not None:
            object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))
        if self.redirect_limit < 0:
            raise ValueError(f"redirect_limit must be >= 0, got {self.redirect_limit}")
        if self.timeout <= 0 or self.dns_timeout <= 0:
            raise ValueError("timeout and dns_timeout must be positive")

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> PolicyConfig:
        """Build a policy from a plain options mapping.

        Recognised keys are ``scheme``, ``port``, ``domain`` and ``ip`` (each a
        mapping with optional ``allow``/``deny`` lists), ``send_credentials``,
        ``pin_dns``, ``follow_redirects``, ``redirect_limit``, ``headers``,
        ``timeout`` and ``dns_timeout``. A list that is not given keeps its
        default.

        Raises:
            pydantic.ValidationError: If the options are invalid
        """
        from safefetch.core.config import PolicySettings

        return cls.from_settings(PolicySettings.model_validate(dict(options)))

    @classmethod
    def from_settings(cls, settings: PolicySettings) -> PolicyConfig:
        policy = cls(
            send_credentials=settings.send_credentials,
            pin_dns=settings.pin_dns,
            follow_redirects=settings.follow_redirects,
            redirect_limit=settings.redirect_limit,
            headers=settings.headers,
            timeout=settings.timeout,
            dns_timeout=settings.dns_timeout,
        )
        for dimension in Dimension:
            lists = getattr(settings, dimension.value)
            for kind in ListKind:
                values = getattr(lists, kind.value)
                if values is not None:
                    policy = policy.replace_rules(dimension, kind, values)
        return policy

    def rules(self, dimension: Dimension | str) -> RuleSet:
        return self.rule_sets[Dimension(dimension)]

    def matches(self, dimension: Dimension | str, value: Any) -> Match:
        """Tri-state match of ``value`` against one dimension's rules."""
        return self.rules(dimension).match(_coerce(Dimension(dimension), value))

    def permits(self, dimension: Dimension | str, value: Any) -> bool:
        """Whether ``value`` passes the dimension's rules (deny wins; non-empty allow list is exclusive)."""
        return self.rules(dimension).permits(_coerce(Dimension(dimension), value))

    def append_rules(self, dimension: Dimension | str, kind: ListKind | str, *rules: Any) -> PolicyConfig:
        """Return a copy with ``rules`` appended to one list."""
        dim = Dimension(dimension)
        current = self.rules(dim).rules(kind)
        added = tuple(r for r in parse_rules(dim, rules) if r not in current)
        return self._with_rule_set(dim, kind, current + added)

    def replace_rules(self, dimension: Dimension | str, kind: ListKind | str, rules: Iterable[Any]) -> PolicyConfig:
        """Return a copy with one list replaced by ``rules``."""
        dim = Dimension(dimension)
        return self._with_rule_set(dim, kind, parse_rules(dim, rules))

    def remove_rules(self, dimension: Dimension | str, kind: ListKind | str, *rules: Any) -> PolicyConfig:
        """Return a copy with ``rules`` removed from one list. Unknown rules are ignored."""
        dim = Dimension(dimension)
        removed = parse_rules(dim, rules)
        kept = tuple(r for r in self.rules(dim).rules(kind) if r not in removed)
        return self._with_rule_set(dim, kind, kept)

    def with_options(self, **changes: Any) -> PolicyConfig:
        """Return a copy with behaviour flags changed (e.g. ``follow_redirects=False``)."""
        return replace(self, **changes)

    def _with_rule_set(self, dimension: Dimension, kind: ListKind | str, rules: tuple[Rule, ...]) -> PolicyConfig:
        rule_sets = dict(self.rule_sets)
        rule_sets[dimension] = rule_sets[dimension].with_rules(kind, rules)
        return replace(self, rule_sets=rule_sets)


def _coerce(dimension: Dimension, value: Any) -> Any:
    if dimension == Dimension.IP and not isinstance(value, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        return ipaddress.ip_address(value)
    if dimension == Dimension.PORT and isinstance(value, str):
        return int(value)
    return value
