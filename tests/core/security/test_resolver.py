# tests/core/security/test_resolver.py
"""Tests for DNS resolution, literal handling and resolver failure branches."""

from __future__ import annotations

import ipaddress
import socket
import threading
from collections.abc import Callable
from typing import Any

import pytest

from safefetch.core.security.errors import InvalidIPException, ResolutionError
from safefetch.core.security.resolver import Resolver, parse_ip_literal


class TestParseIPLiteral:
    @pytest.mark.parametrize(
        ("host", "expected"),
        [
            ("127.0.0.1", "127.0.0.1"),
            ("2130706433", "127.0.0.1"),  # decimal
            ("0x7f000001", "127.0.0.1"),  # hex
            ("0177.0.0.1", "127.0.0.1"),  # octal
            ("0x7f.0.0.1", "127.0.0.1"),  # mixed
            ("127.1", "127.0.0.1"),  # short form
            ("0", "0.0.0.0"),
            ("::1", "::1"),
            ("[::1]", "::1"),
            ("::ffff:169.254.169.254", "::ffff:a9fe:a9fe"),
        ],
    )
    def test_literals(self, host: str, expected: str) -> None:
        assert parse_ip_literal(host) == ipaddress.ip_address(expected)

    @pytest.mark.parametrize("host", ["example.com", "deadbeef", "cafe.be", "1.2.3.4.example.com", "localhost"])
    def test_hostnames_are_not_literals(self, host: str) -> None:
        assert parse_ip_literal(host) is None


class TestResolve:
    def test_literal_skips_lookup(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def _fail(*args: Any, **kwargs: Any) -> Any:
            raise AssertionError("getaddrinfo must not be called for IP literals")

        monkeypatch.setattr(socket, "getaddrinfo", _fail)
        host = Resolver().resolve("2130706433")
        assert host.ips == ("127.0.0.1",)
        assert host.is_literal

    def test_returns_all_addresses_tagged_by_family(self, system_dns: Callable[..., None]) -> None:
        system_dns("93.184.216.34", "2606:2800:220:1:248:1893:25c8:1946")
        host = Resolver().resolve("example.com")
        assert host.hostname == "example.com"
        assert host.ips == ("93.184.216.34", "2606:2800:220:1:248:1893:25c8:1946")
        assert [a.family for a in host.addresses] == [socket.AF_INET, socket.AF_INET6]
        assert not host.is_literal

    def test_duplicates_collapsed_in_order(self, system_dns: Callable[..., None]) -> None:
        system_dns("1.1.1.1", "8.8.8.8", "1.1.1.1")
        assert Resolver().resolve("example.com").ips == ("1.1.1.1", "8.8.8.8")

    def test_each_call_resolves_again(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """No caching: a rebinding answer is seen by the next validation pass."""
        answers = iter([["93.184.216.34"], ["127.0.0.1"]])

        def _getaddrinfo(*args: Any, **kwargs: Any) -> list[tuple[Any, ...]]:
            return [(socket.AF_INET, socket.SOCK_STREAM, 6, "", (ip, 0)) for ip in next(answers)]

        monkeypatch.setattr(socket, "getaddrinfo", _getaddrinfo)
        resolver = Resolver()
        assert resolver.resolve("example.com").ips == ("93.184.216.34",)
        assert resolver.resolve("example.com").ips == ("127.0.0.1",)


class TestResolutionFailures:
    def test_nxdomain(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def _gaierror(*args: Any, **kwargs: Any) -> Any:
            raise socket.gaierror(socket.EAI_NONAME, "Name or service not known")

        monkeypatch.setattr(socket, "getaddrinfo", _gaierror)
        with pytest.raises(ResolutionError, match="DNS resolution failed: nope.invalid"):
            Resolver().resolve("nope.invalid")

    def test_empty_answer(self, system_dns: Callable[..., None]) -> None:
        system_dns()
        with pytest.raises(ResolutionError, match="returned no addresses"):
            Resolver().resolve("example.com")

    def test_resolution_error_is_invalid_ip(self, system_dns: Callable[..., None]) -> None:
        system_dns()
        with pytest.raises(InvalidIPException):
            Resolver().resolve("example.com")

    def test_zone_scoped_address_fails_closed(self, system_dns: Callable[..., None]) -> None:
        system_dns("fe80::1%eth0")
        with pytest.raises(ResolutionError, match="Scoped address"):
            Resolver().resolve("example.com")

    def test_unparseable_address_fails_closed(self, system_dns: Callable[..., None]) -> None:
        system_dns("not-an-ip")
        with pytest.raises(ResolutionError, match="Unparseable address"):
            Resolver().resolve("example.com")

    def test_unexpected_exception_is_wrapped(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def _boom(*args: Any, **kwargs: Any) -> Any:
            raise RuntimeError("resolver exploded")

        monkeypatch.setattr(socket, "getaddrinfo", _boom)
        with pytest.raises(ResolutionError, match="resolver exploded") as exc_info:
            Resolver().resolve("example.com")
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    def test_timeout(self, monkeypatch: pytest.MonkeyPatch) -> None:
        release = threading.Event()

        def _hang(*args: Any, **kwargs: Any) -> list[tuple[Any, ...]]:
            release.wait(5)
            return []

        monkeypatch.setattr(socket, "getaddrinfo", _hang)
        try:
            with pytest.raises(ResolutionError, match=r"DNS resolution timeout \(0\.05s\): slow\.example\.com"):
                Resolver(timeout=0.05).resolve("slow.example.com")
        finally:
            release.set()
