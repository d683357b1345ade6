# tests/conftest.py
"""Shared test fixtures and helpers.

DNS Fakes:
- mock_getaddrinfo(): socket.getaddrinfo replacement for patching the system resolver
- StaticResolver: in-memory resolver with a fixed hostname -> IPs table

HTTP Fakes:
- Router: httpx.MockTransport handler keyed by (Host header, path), which
  records every request it receives so tests can assert what was (and was
  not) contacted

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/property/
"""

from __future__ import annotations

import ipaddress
import os
import socket
from collections.abc import Callable
from typing import Any

import httpx
import pytest
from hypothesis import Phase, Verbosity, settings

from safefetch.clients.transport import HttpxTransport
from safefetch.core.security.errors import ResolutionError
from safefetch.core.security.resolver import ResolvedAddress, ResolvedHost, parse_ip_literal

# =============================================================================
# Hypothesis profiles
# =============================================================================

settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,  # Disable deadline for CI (timing varies)
)

settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))


# =============================================================================
# DNS fakes
# =============================================================================


def mock_getaddrinfo(*ips: str) -> Callable[..., list[tuple[Any, ...]]]:
    """Create a getaddrinfo replacement that resolves every name to ``ips``."""

    def _getaddrinfo(*args: Any, **kwargs: Any) -> list[tuple[Any, ...]]:
        results: list[tuple[Any, ...]] = []
        for ip in ips:
            if ":" in ip:
                results.append((socket.AF_INET6, socket.SOCK_STREAM, 6, "", (ip, 0, 0, 0)))
            else:
                results.append((socket.AF_INET, socket.SOCK_STREAM, 6, "", (ip, 0)))
        return results

    return _getaddrinfo


@pytest.fixture
def system_dns(monkeypatch: pytest.MonkeyPatch) -> Callable[..., None]:
    """Point socket.getaddrinfo at a fixed answer: ``system_dns("93.184.216.34")``."""

    def _answer(*ips: str) -> None:
        monkeypatch.setattr(socket, "getaddrinfo", mock_getaddrinfo(*ips))

    return _answer


class StaticResolver:
    """Resolver with a fixed table. Unknown names fail like NXDOMAIN.

    ``calls`` records every hostname looked up, in order.
    """

    def __init__(self, table: dict[str, list[str]] | None = None) -> None:
        self.table = {k.lower(): v for k, v in (table or {}).items()}
        self.calls: list[str] = []

    def resolve(self, hostname: str) -> ResolvedHost:
        self.calls.append(hostname)
        literal = parse_ip_literal(hostname)
        if literal is not None:
            return ResolvedHost(str(literal), (ResolvedAddress.of(literal),))
        if hostname not in self.table:
            raise ResolutionError(hostname, f"DNS resolution failed: {hostname}: NXDOMAIN")
        addresses = tuple(ResolvedAddress.of(ipaddress.ip_address(ip)) for ip in self.table[hostname])
        if not addresses:
            raise ResolutionError(hostname, f"DNS resolution returned no addresses: {hostname}")
        return ResolvedHost(hostname, addresses)


@pytest.fixture
def make_resolver() -> type[StaticResolver]:
    """StaticResolver class, for tests that need their own table."""
    return StaticResolver


@pytest.fixture
def resolver() -> StaticResolver:
    """Resolver with a handful of public and internal names."""
    return StaticResolver(
        {
            "example.com": ["93.184.216.34"],
            "www.example.com": ["93.184.216.34"],
            "other.example.net": ["151.101.1.140"],
            "multi.example.com": ["93.184.216.34", "151.101.1.140"],
            "rebind.example.com": ["93.184.216.34", "127.0.0.1"],
            "internal.example.com": ["10.0.0.5"],
            "metadata.example.com": ["169.254.169.254"],
            "v6.example.com": ["2606:2800:220:1:248:1893:25c8:1946"],
            "dual.example.com": ["93.184.216.34", "2606:2800:220:1:248:1893:25c8:1946"],
        }
    )


# =============================================================================
# HTTP fakes
# =============================================================================

Handler = Callable[[httpx.Request], httpx.Response]


class Router:
    """httpx.MockTransport handler dispatching on (Host header, path).

    Unrouted requests return 404. Every request is appended to ``requests``.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Handler] = {}
        self.requests: list[httpx.Request] = []

    def add(self, host: str, path: str, handler: Handler) -> None:
        self.routes[(host, path)] = handler

    def ok(self, host: str, path: str, body: str = "OK") -> None:
        self.add(host, path, lambda request: httpx.Response(200, text=body))

    def redirect(self, host: str, path: str, location: str, status_code: int = 302) -> None:
        self.add(host, path, lambda request: httpx.Response(status_code, headers={"location": location}))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.headers["host"], request.url.path))
        if handler is None:
            return httpx.Response(404, text="not routed")
        return handler(request)

    @property
    def hosts(self) -> list[str]:
        return [r.headers["host"] for r in self.requests]


@pytest.fixture
def router() -> Router:
    return Router()


@pytest.fixture
def transport(router: Router) -> HttpxTransport:
    """HttpxTransport whose ephemeral clients all use the router."""
    return HttpxTransport(mounted_transport=httpx.MockTransport(router))
