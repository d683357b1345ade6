# src/safefetch/core/security/web.py
"""URL validation for SSRF prevention.

validate_url() is a pure decision over one DNS snapshot. It either returns
a ValidatedTarget whose pinned IP set the transport must connect to, or
raises an InvalidURLException subtype. Every check fails closed.

Order of checks:

1. Parse (malformed -> InvalidURLException)
2. Scheme rules (-> InvalidSchemeException)
3. Embedded credentials when forwarding is off (-> InvalidURLException)
4. Host extraction: unbracketed colons are rejected (-> InvalidURLException)
5. Resolution (-> ResolutionError, an InvalidIPException)
6. Port rules (-> InvalidPortException)
7. Domain rules on the hostname string (-> InvalidDomainException)
8. IP rules on EVERY resolved address (-> InvalidIPException)

Step 8 is strictest-address-wins: a hostname answering with one public and
one internal address is rejected outright. IPv6 addresses are only
reachable when an allow rule explicitly covers them.

Usage:
    target = validate_url("https://example.com/path?q=1", policy)
    # target.pinned_ips = ("93.184.216.34",)
    # target.connection_url("93.184.216.34") = "https://93.184.216.34:443/path?q=1"
    # target.host_header = "example.com"
"""

from __future__ import annotations

import ipaddress
import urllib.parse
from dataclasses import dataclass
from typing import Protocol

import structlog

from safefetch.core.security.errors import (
    InvalidDomainException,
    InvalidIPException,
    InvalidPortException,
    InvalidSchemeException,
    InvalidURLException,
    redact_url,
)
from safefetch.core.security.policy import PolicyConfig
from safefetch.core.security.resolver import ResolvedHost, Resolver, parse_ip_literal
from safefetch.core.security.rules import Dimension, Match, normalize_hostname

logger = structlog.get_logger(__name__)

DEFAULT_PORTS = {"http": 80, "https": 443}


class HostResolver(Protocol):
    """Anything that can resolve a hostname to a pinned address set."""

    def resolve(self, hostname: str) -> ResolvedHost: ...


@dataclass(frozen=True, slots=True)
class ValidatedTarget:
    """A URL that passed policy, with the addresses it may be fetched from.

    Attributes:
        original_url: The URL as provided
        url: Clean URL (no credentials, no fragment) built from the parts
        scheme: Lower-cased scheme
        host: Normalised hostname, or canonical IP for literal hosts
        port: Effective port (explicit or scheme default)
        path: Path including query string
        resolved: The resolution this decision was made on
        credentials: (user, password) when forwarding is permitted, else None
    """

    original_url: str
    url: str
    scheme: str
    host: str
    port: int
    path: str
    resolved: ResolvedHost
    credentials: tuple[str, str] | None = None

    @property
    def pinned_ips(self) -> tuple[str, ...]:
        """Every address the transport may connect to, in resolver order."""
        return self.resolved.ips

    @property
    def host_header(self) -> str:
        """Value for the Host header (port included only when non-default)."""
        host = _host_for_url(self.host)
        if DEFAULT_PORTS.get(self.scheme) == self.port:
            return host
        return f"{host}:{self.port}"

    @property
    def sni_hostname(self) -> str:
        """Hostname for TLS SNI and certificate verification."""
        return self.host

    def connection_url(self, ip: str) -> str:
        """URL with the hostname replaced by a pinned IP for direct connection."""
        if ip not in self.pinned_ips:
            raise ValueError(f"{ip} is not pinned for {self.host}")
        return f"{self.scheme}://{_host_for_url(ip)}:{self.port}{self.path}"


def _host_for_url(host: str) -> str:
    # IPv6 addresses need brackets in URLs (RFC 2732)
    return f"[{host}]" if ":" in host else host


@dataclass(frozen=True, slots=True)
class _Authority:
    host: str
    bracketed: bool
    port: int | None


def _split(url: str) -> urllib.parse.SplitResult:
    """Syntax-level parse; host details are checked later by _extract_authority()."""
    if not isinstance(url, str) or not url:
        raise InvalidURLException(str(url), "Empty URL")
    if any(ord(c) <= 0x20 or c == "\x7f" for c in url):
        raise InvalidURLException(url, "URL contains whitespace or control characters")
    try:
        parts = urllib.parse.urlsplit(url)
    except ValueError as e:
        # urlsplit errors can quote the netloc, userinfo included
        raise InvalidURLException(url, "Unable to parse URL") from e
    if not parts.scheme:
        raise InvalidURLException(url, "No scheme found in URL")
    return parts


def _split_userinfo(netloc: str) -> tuple[str | None, str]:
    userinfo, at, hostport = netloc.rpartition("@")
    return (userinfo if at else None), hostport


def _extract_authority(url: str, hostport: str) -> _Authority:
    if not hostport:
        raise InvalidURLException(url, "No host found in URL")
    if "\\" in hostport:
        raise InvalidURLException(url, "Backslash in URL authority")

    if hostport.startswith("["):
        end = hostport.find("]")
        if end == -1:
            raise InvalidURLException(url, f"Malformed hostname: {hostport}")
        host, rest = hostport[1:end], hostport[end + 1 :]
        if rest and not rest.startswith(":"):
            raise InvalidURLException(url, f"Malformed hostname: {hostport}")
        port_str = rest[1:]
        bracketed = True
    else:
        if hostport.count(":") > 1 or "]" in hostport:
            # Unbracketed IPv6 or garbage: never guess which colon is the port
            raise InvalidURLException(url, f"Malformed hostname: {hostport}")
        host, _, port_str = hostport.partition(":")
        bracketed = False

    if not host:
        raise InvalidURLException(url, "No host found in URL")
    if "%" in host:
        raise InvalidURLException(url, f"Malformed hostname: {host}")

    port: int | None = None
    if port_str:
        # str.isdigit() also accepts non-ASCII digits such as "²"
        if not (port_str.isascii() and port_str.isdigit()) or int(port_str) > 65535:
            raise InvalidURLException(url, f"Invalid port: {port_str!r}")
        port = int(port_str)

    if bracketed:
        try:
            host = str(ipaddress.IPv6Address(host))
        except ValueError as e:
            raise InvalidURLException(url, f"Malformed IPv6 literal: {host}") from e
    else:
        if not host.isascii():
            try:
                host = host.encode("idna").decode("ascii")
            except UnicodeError as e:
                raise InvalidURLException(url, f"Invalid internationalised hostname: {host}") from e
        host = normalize_hostname(host)

    return _Authority(host=host, bracketed=bracketed, port=port)


class Validator:
    """Judges URLs against one policy.

    Holds no state between calls: validating the same URL twice against the
    same policy and the same DNS answer gives the same decision.
    """

    def __init__(self, policy: PolicyConfig, resolver: HostResolver | None = None) -> None:
        self.policy = policy
        self.resolver: HostResolver = resolver if resolver is not None else Resolver(timeout=policy.dns_timeout)

    def validate(self, url: str) -> ValidatedTarget:
        """Validate ``url`` and return a target with pinned addresses.

        Raises:
            InvalidURLException: Or one of its subtypes, on any policy violation
        """
        try:
            target = self._validate(url)
        except InvalidURLException as e:
            logger.warning(
                "url_rejected",
                url=redact_url(str(url)),
                reason=e.reason,
                error_type=type(e).__name__,
            )
            raise
        logger.debug(
            "url_validated",
            url=target.url,
            host=target.host,
            port=target.port,
            pinned_ips=list(target.pinned_ips),
        )
        return target

    def _validate(self, url: str) -> ValidatedTarget:
        policy = self.policy

        # Step 1: parse
        parts = _split(url)
        scheme = parts.scheme.lower()

        # Step 2: scheme
        if not policy.permits(Dimension.SCHEME, scheme):
            raise InvalidSchemeException(url, f"Scheme {scheme!r} is not permitted")
        if scheme not in DEFAULT_PORTS:
            # Only HTTP(S) is fetchable, whatever the scheme rules say
            raise InvalidSchemeException(url, f"Scheme {scheme!r} is not supported")

        # Step 3: credentials are rejected, never silently stripped
        userinfo, hostport = _split_userinfo(parts.netloc)
        credentials: tuple[str, str] | None = None
        if userinfo is not None:
            if not policy.send_credentials:
                raise InvalidURLException(url, "Credentials passed in but 'send_credentials' is disabled")
            user, _, password = userinfo.partition(":")
            credentials = (urllib.parse.unquote(user), urllib.parse.unquote(password))

        # Step 4: host extraction; a bracketed host must be an IP literal
        authority = _extract_authority(url, hostport)
        literal = parse_ip_literal(authority.host)
        if authority.bracketed and literal is None:
            raise InvalidURLException(url, f"Malformed hostname: {authority.host}")

        # Step 5: resolve once; the result is pinned for this attempt
        resolved = self.resolver.resolve(authority.host)
        if not resolved.addresses:
            raise InvalidIPException(url, f"Host {authority.host!r} resolved to no addresses")

        # Step 6: port
        port = authority.port if authority.port is not None else DEFAULT_PORTS[scheme]
        if not policy.permits(Dimension.PORT, port):
            raise InvalidPortException(url, f"Port {port} is not permitted")

        # Step 7: domain (the hostname string as written, normalised)
        if not policy.permits(Dimension.DOMAIN, authority.host):
            raise InvalidDomainException(url, f"Host {authority.host!r} is not permitted")

        # Step 8: every resolved address
        ip_rules = policy.rules(Dimension.IP)
        for resolved_address in resolved.addresses:
            address = resolved_address.address
            result = ip_rules.match(address)
            if result == Match.DENIED:
                raise InvalidIPException(url, f"Address {address} for {authority.host!r} is denied")
            if address.version == 6 and result != Match.ALLOWED:
                raise InvalidIPException(url, f"IPv6 address {address} for {authority.host!r} is not explicitly allowed")
            if not ip_rules.permits(address):
                raise InvalidIPException(url, f"Address {address} for {authority.host!r} is not in the allow list")

        # Step 9: build the target
        host = str(literal) if literal is not None else authority.host
        netloc = _host_for_url(host)
        if port != DEFAULT_PORTS[scheme]:
            netloc = f"{netloc}:{port}"
        path = parts.path or "/"
        if parts.query:
            path = f"{path}?{parts.query}"

        return ValidatedTarget(
            original_url=url,
            url=f"{scheme}://{netloc}{path}",
            scheme=scheme,
            host=host,
            port=port,
            path=path,
            resolved=resolved,
            credentials=credentials,
        )


def validate_url(url: str, policy: PolicyConfig | None = None, resolver: HostResolver | None = None) -> ValidatedTarget:
    """Validate ``url`` against ``policy`` (default: PolicyConfig()).

    Raises:
        InvalidURLException: Or one of its subtypes, on any policy violation
    """
    return Validator(policy if policy is not None else PolicyConfig(), resolver).validate(url)
