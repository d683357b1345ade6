# src/safefetch/core/security/resolver.py
"""DNS resolution for URL validation.

A single resolve() call produces the complete address set for one
validation pass. That set is pinned: the transport connects to those
addresses and never resolves the hostname again (DNS rebinding defence).
There is no cache, so every pass sees current DNS.
"""

from __future__ import annotations

import ipaddress
import queue
import re
import socket
import threading
from dataclasses import dataclass

import structlog

from safefetch.core.security.errors import ResolutionError
from safefetch.core.security.rules import IPAddress

logger = structlog.get_logger(__name__)

# Characters inet_aton() accepts in the legacy numeric forms
# (2130706433, 0x7f.1, 0177.0.0.01, 127.1)
_NUMERIC_HOST = re.compile(r"[0-9a-fA-FxX.]+")


@dataclass(frozen=True, slots=True)
class ResolvedAddress:
    """One resolved address tagged with its address family."""

    address: IPAddress
    family: socket.AddressFamily

    @classmethod
    def of(cls, address: IPAddress) -> ResolvedAddress:
        family = socket.AF_INET if address.version == 4 else socket.AF_INET6
        return cls(address, family)

    def __str__(self) -> str:
        return str(self.address)


@dataclass(frozen=True, slots=True)
class ResolvedHost:
    """Hostname plus every address one resolution call returned.

    Addresses are de-duplicated and keep resolver order.
    """

    hostname: str
    addresses: tuple[ResolvedAddress, ...]

    @property
    def ips(self) -> tuple[str, ...]:
        return tuple(str(a) for a in self.addresses)

    @property
    def is_literal(self) -> bool:
        """True when the hostname was itself an IP address (no lookup happened)."""
        return len(self.addresses) == 1 and self.hostname == str(self.addresses[0])


def parse_ip_literal(host: str) -> IPAddress | None:
    """Parse ``host`` as an IP address, including legacy IPv4 encodings.

    C resolvers accept decimal (``2130706433``), octal (``0177.0.0.1``), hex
    (``0x7f.0.0.1``) and shortened (``127.1``) IPv4 forms. They all name the
    same address as the dotted-quad, so they are canonicalised here instead
    of reaching the IP rules as an opaque "hostname".

    Returns:
        The address, or None if ``host`` is not an IP literal
    """
    candidate = host[1:-1] if host.startswith("[") and host.endswith("]") else host
    try:
        return ipaddress.ip_address(candidate)
    except ValueError:
        pass
    if not _NUMERIC_HOST.fullmatch(candidate):
        return None
    try:
        packed = socket.inet_aton(candidate)
    except OSError:
        return None
    return ipaddress.IPv4Address(packed)


def _getaddrinfo(hostname: str) -> list[str]:
    """Resolve hostname to all IP addresses (IPv4 + IPv6), keeping order."""
    try:
        results = socket.getaddrinfo(hostname, None, socket.AF_UNSPEC, socket.SOCK_STREAM)
    except (socket.gaierror, UnicodeError) as e:
        raise ResolutionError(hostname, f"DNS resolution failed: {hostname}: {e}") from e
    ips: list[str] = []
    # sockaddr[0] is the address string for both AF_INET and AF_INET6
    for _family, _type, _proto, _canonname, sockaddr in results:
        ip = str(sockaddr[0])
        if ip not in ips:
            ips.append(ip)
    return ips


class Resolver:
    """System DNS resolver with a timeout.

    Example:
        host = Resolver(timeout=2.0).resolve("example.com")
        host.ips  # ('93.184.216.34',)
    """

    def __init__(self, timeout: float = 5.0) -> None:
        self.timeout = timeout

    def resolve(self, hostname: str) -> ResolvedHost:
        """Resolve ``hostname`` to its full address set.

        IP literals are returned as-is without a lookup.

        Raises:
            ResolutionError: If the name does not resolve, resolves to no
                usable address, or the lookup times out
        """
        literal = parse_ip_literal(hostname)
        if literal is not None:
            return ResolvedHost(str(literal), (ResolvedAddress.of(literal),))

        ip_list = self._lookup(hostname)
        if not ip_list:
            raise ResolutionError(hostname, f"DNS resolution returned no addresses: {hostname}")

        addresses: list[ResolvedAddress] = []
        for ip_str in ip_list:
            try:
                address = ipaddress.ip_address(ip_str)
            except ValueError as e:
                raise ResolutionError(hostname, f"Unparseable address {ip_str!r} for {hostname}: {e}") from e
            if isinstance(address, ipaddress.IPv6Address) and address.scope_id is not None:
                # Zone-scoped ("fe80::1%eth0") addresses are interface-bound; fail closed
                raise ResolutionError(hostname, f"Scoped address {ip_str!r} for {hostname}")
            addresses.append(ResolvedAddress.of(address))

        logger.debug("host_resolved", hostname=hostname, ips=ip_list)
        return ResolvedHost(hostname, tuple(addresses))

    def _lookup(self, hostname: str) -> list[str]:
        # getaddrinfo() has no timeout of its own. A daemon thread does not
        # block process exit, and a stuck lookup finishes on its own later.
        result_queue: queue.Queue[tuple[str, list[str] | BaseException]] = queue.Queue()

        def _resolve_worker() -> None:
            try:
                result_queue.put(("ok", _getaddrinfo(hostname)))
            except BaseException as exc:
                result_queue.put(("error", exc))

        thread = threading.Thread(target=_resolve_worker, daemon=True, name="dns_resolve")
        thread.start()

        try:
            status, value = result_queue.get(timeout=self.timeout)
        except queue.Empty:
            raise ResolutionError(hostname, f"DNS resolution timeout ({self.timeout}s): {hostname}") from None

        if status == "error":
            assert isinstance(value, BaseException)
            if isinstance(value, ResolutionError):
                raise value
            raise ResolutionError(hostname, f"DNS resolution failed: {hostname}: {value}") from value
        assert isinstance(value, list)
        return value
