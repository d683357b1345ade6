# src/safefetch/core/security/rules.py
"""Typed allow/deny rule matching for fetch policies.

Each policy dimension (scheme, port, domain, ip) has its own rule type and a
RuleSet holding an allow list and a deny list. Matching is tri-state:

    DENIED     - some deny rule matched (deny wins over allow)
    ALLOWED    - no deny rule matched, some allow rule did
    UNMATCHED  - nothing matched

An empty allow list means "anything not denied", a non-empty one means
"only what is listed". RuleSet.permits() applies that reading uniformly so
callers never scan lists themselves.

Rules are parsed from the plain values used in configuration files:

    scheme: "https"
    port:   443, "443", "1024-65535"
    domain: "example.com", "*.example.com", ".example.com", "re:^api\\d+\\.example\\.com$"
    ip:     "10.0.0.0/8", "127.0.0.1", "::1"
"""

from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address
IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network

MAX_PORT = 65535


class Dimension(StrEnum):
    """Policy dimension a rule applies to."""

    SCHEME = "scheme"
    PORT = "port"
    DOMAIN = "domain"
    IP = "ip"


class ListKind(StrEnum):
    """Whether a rule list allows or denies."""

    ALLOW = "allow"
    DENY = "deny"


class Match(StrEnum):
    """Result of evaluating a value against a RuleSet."""

    ALLOWED = "allowed"
    DENIED = "denied"
    UNMATCHED = "unmatched"


def normalize_hostname(hostname: str) -> str:
    """Lower-case a hostname and drop a single trailing root dot."""
    host = hostname.lower()
    if host.endswith(".") and not host.endswith(".."):
        host = host[:-1]
    return host


@dataclass(frozen=True, slots=True)
class SchemeRule:
    """Exact scheme name, compared case-insensitively."""

    scheme: str

    def matches(self, value: str) -> bool:
        return value.lower() == self.scheme

    def __str__(self) -> str:
        return self.scheme


@dataclass(frozen=True, slots=True)
class PortRule:
    """Single port or inclusive port range."""

    low: int
    high: int

    def matches(self, value: int) -> bool:
        return self.low <= value <= self.high

    def __str__(self) -> str:
        if self.low == self.high:
            return str(self.low)
        return f"{self.low}-{self.high}"


class DomainKind(StrEnum):
    EXACT = "exact"
    WILDCARD = "wildcard"
    SUFFIX = "suffix"
    REGEX = "regex"


@dataclass(frozen=True, slots=True)
class DomainRule:
    """Hostname matcher.

    - ``example.com``: that hostname only
    - ``*.example.com``: any subdomain, not the apex
    - ``.example.com``: the apex and any subdomain
    - ``re:<pattern>``: full, case-insensitive regular expression match
    """

    kind: DomainKind
    pattern: str
    _regex: re.Pattern[str] | None = field(default=None, compare=False, repr=False)

    def matches(self, value: str) -> bool:
        host = normalize_hostname(value)
        if self.kind == DomainKind.EXACT:
            return host == self.pattern
        if self.kind == DomainKind.WILDCARD:
            return host.endswith("." + self.pattern)
        if self.kind == DomainKind.SUFFIX:
            return host == self.pattern or host.endswith("." + self.pattern)
        assert self._regex is not None
        return self._regex.fullmatch(host) is not None

    def __str__(self) -> str:
        if self.kind == DomainKind.WILDCARD:
            return f"*.{self.pattern}"
        if self.kind == DomainKind.SUFFIX:
            return f".{self.pattern}"
        if self.kind == DomainKind.REGEX:
            return f"re:{self.pattern}"
        return self.pattern


@dataclass(frozen=True, slots=True)
class IPRule:
    """IP literal or CIDR block.

    IPv4-mapped IPv6 addresses are tested both as given and in their
    embedded IPv4 form, so ``::ffff:127.0.0.1`` matches ``127.0.0.0/8``.
    """

    network: IPNetwork

    def matches(self, value: IPAddress) -> bool:
        if value in self.network:
            return True
        if isinstance(value, ipaddress.IPv6Address) and value.ipv4_mapped is not None:
            return value.ipv4_mapped in self.network
        return False

    def __str__(self) -> str:
        return str(self.network)


Rule = SchemeRule | PortRule | DomainRule | IPRule


def parse_scheme_rule(value: Any) -> SchemeRule:
    if isinstance(value, SchemeRule):
        return value
    if not isinstance(value, str) or not re.fullmatch(r"[A-Za-z][A-Za-z0-9+.\-]*", value):
        raise ValueError(f"Invalid scheme rule: {value!r}")
    return SchemeRule(value.lower())


def parse_port_rule(value: Any) -> PortRule:
    if isinstance(value, PortRule):
        return value
    # bool is an int subclass; True is not a port
    if isinstance(value, bool):
        raise ValueError(f"Invalid port rule: {value!r}")
    if isinstance(value, int):
        low = high = value
    elif isinstance(value, (tuple, list)) and len(value) == 2:
        low, high = (int(v) for v in value)
    elif isinstance(value, str):
        m = re.fullmatch(r"\s*(\d+)\s*(?:-\s*(\d+)\s*)?", value, re.ASCII)
        if m is None:
            raise ValueError(f"Invalid port rule: {value!r}")
        low = int(m.group(1))
        high = int(m.group(2)) if m.group(2) is not None else low
    else:
        raise ValueError(f"Invalid port rule: {value!r}")
    if not (0 <= low <= high <= MAX_PORT):
        raise ValueError(f"Invalid port range: {value!r} (must satisfy 0 <= low <= high <= {MAX_PORT})")
    return PortRule(low, high)


def parse_domain_rule(value: Any) -> DomainRule:
    if isinstance(value, DomainRule):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Invalid domain rule: {value!r}")
    text = value.strip()
    if text.startswith("re:"):
        pattern = text[3:]
        try:
            compiled = re.compile(pattern, re.IGNORECASE)
        except re.error as e:
            raise ValueError(f"Invalid domain regex {pattern!r}: {e}") from e
        return DomainRule(DomainKind.REGEX, pattern, compiled)
    if text.startswith("*."):
        kind, host = DomainKind.WILDCARD, text[2:]
    elif text.startswith("."):
        kind, host = DomainKind.SUFFIX, text[1:]
    else:
        kind, host = DomainKind.EXACT, text
    host = normalize_hostname(host)
    if not host or "*" in host or "/" in host or ":" in host:
        raise ValueError(f"Invalid domain rule: {value!r}")
    return DomainRule(kind, host)


def parse_ip_rule(value: Any) -> IPRule:
    if isinstance(value, IPRule):
        return value
    try:
        network = ipaddress.ip_network(str(value).strip(), strict=False)
    except ValueError as e:
        raise ValueError(f"Invalid IP rule: {value!r}: {e}") from e
    return IPRule(network)


_PARSERS = {
    Dimension.SCHEME: parse_scheme_rule,
    Dimension.PORT: parse_port_rule,
    Dimension.DOMAIN: parse_domain_rule,
    Dimension.IP: parse_ip_rule,
}


def parse_rule(dimension: Dimension | str, value: Any) -> Rule:
    """Parse a configuration value into the rule type for ``dimension``.

    Raises:
        ValueError: If the value is not valid for the dimension
    """
    return _PARSERS[Dimension(dimension)](value)


def parse_rules(dimension: Dimension | str, values: Any) -> tuple[Rule, ...]:
    """Parse an iterable of configuration values, keeping order and dropping duplicates."""
    if isinstance(values, (str, bytes, int)):
        values = [values]
    rules: list[Rule] = []
    for value in values:
        rule = parse_rule(dimension, value)
        if rule not in rules:
            rules.append(rule)
    return tuple(rules)


@dataclass(frozen=True, slots=True)
class RuleSet:
    """Allow and deny lists for one dimension."""

    dimension: Dimension
    allow: tuple[Rule, ...] = ()
    deny: tuple[Rule, ...] = ()

    @classmethod
    def build(cls, dimension: Dimension | str, allow: Any = (), deny: Any = ()) -> RuleSet:
        dim = Dimension(dimension)
        return cls(dim, parse_rules(dim, allow), parse_rules(dim, deny))

    def rules(self, kind: ListKind | str) -> tuple[Rule, ...]:
        return self.allow if ListKind(kind) == ListKind.ALLOW else self.deny

    def match(self, value: Any) -> Match:
        # Deny is checked first and wins regardless of list order
        if any(rule.matches(value) for rule in self.deny):  # type: ignore[arg-type]
            return Match.DENIED
        if any(rule.matches(value) for rule in self.allow):  # type: ignore[arg-type]
            return Match.ALLOWED
        return Match.UNMATCHED

    def permits(self, value: Any) -> bool:
        result = self.match(value)
        if result == Match.UNMATCHED:
            return not self.allow
        return result == Match.ALLOWED

    def with_rules(self, kind: ListKind | str, rules: tuple[Rule, ...]) -> RuleSet:
        if ListKind(kind) == ListKind.ALLOW:
            return RuleSet(self.dimension, rules, self.deny)
        return RuleSet(self.dimension, self.allow, rules)
