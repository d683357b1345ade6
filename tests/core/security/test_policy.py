# tests/core/security/test_policy.py
"""Tests for PolicyConfig defaults, accessors and copy-on-write mutators."""

import ipaddress
from dataclasses import FrozenInstanceError

import pytest
from pydantic import ValidationError

from safefetch.core.security.policy import (
    DEFAULT_DENIED_NETWORKS,
    PolicyConfig,
)
from safefetch.core.security.rules import Dimension, ListKind, Match, PortRule, RuleSet


class TestDefaults:
    def test_flags(self) -> None:
        policy = PolicyConfig()
        assert policy.send_credentials is False
        assert policy.pin_dns is True
        assert policy.follow_redirects is True
        assert policy.redirect_limit == 5
        assert policy.headers is None

    def test_schemes(self) -> None:
        policy = PolicyConfig()
        assert policy.permits("scheme", "http")
        assert policy.permits("scheme", "HTTPS")
        assert not policy.permits("scheme", "ftp")
        assert not policy.permits("scheme", "file")

    def test_ports(self) -> None:
        policy = PolicyConfig()
        assert policy.permits("port", 80)
        assert policy.permits("port", 443)
        assert not policy.permits("port", 8080)
        assert not policy.permits("port", 22)

    @pytest.mark.parametrize(
        "ip",
        [
            "0.0.0.0",
            "10.0.0.5",
            "100.64.0.1",
            "127.0.0.1",
            "169.254.169.254",
            "172.16.0.1",
            "172.31.255.255",
            "192.0.0.8",
            "192.168.1.1",
            "198.18.0.1",
            "224.0.0.1",
            "255.255.255.255",
            "::1",
            "::ffff:127.0.0.1",
            "fc00::1",
            "fe80::1",
            "ff02::1",
        ],
    )
    def test_internal_ranges_denied(self, ip: str) -> None:
        assert PolicyConfig().matches("ip", ip) == Match.DENIED

    @pytest.mark.parametrize("ip", ["93.184.216.34", "8.8.8.8", "1.1.1.1", "172.32.0.1"])
    def test_public_ipv4_unmatched(self, ip: str) -> None:
        policy = PolicyConfig()
        assert policy.matches("ip", ip) == Match.UNMATCHED
        assert policy.permits("ip", ip)

    def test_localhost_names_denied(self) -> None:
        policy = PolicyConfig()
        assert policy.matches("domain", "localhost") == Match.DENIED
        assert policy.matches("domain", "foo.localhost") == Match.DENIED
        assert policy.matches("domain", "metadata.google.internal") == Match.DENIED
        assert policy.permits("domain", "example.com")

    def test_every_default_network_parses(self) -> None:
        for network in DEFAULT_DENIED_NETWORKS:
            ipaddress.ip_network(network)


class TestImmutability:
    def test_frozen(self) -> None:
        policy = PolicyConfig()
        with pytest.raises(FrozenInstanceError):
            policy.pin_dns = False  # type: ignore[misc]

    def test_rule_sets_read_only(self) -> None:
        policy = PolicyConfig()
        with pytest.raises(TypeError):
            policy.rule_sets[Dimension.PORT] = RuleSet.build("port")  # type: ignore[index]

    def test_headers_read_only_copy(self) -> None:
        headers = {"User-Agent": "safefetch"}
        policy = PolicyConfig(headers=headers)
        headers["User-Agent"] = "changed"
        assert policy.headers == {"User-Agent": "safefetch"}
        with pytest.raises(TypeError):
            policy.headers["X"] = "y"  # type: ignore[index]

    def test_negative_redirect_limit_rejected(self) -> None:
        with pytest.raises(ValueError, match="redirect_limit"):
            PolicyConfig(redirect_limit=-1)

    def test_mismatched_rule_set_rejected(self) -> None:
        with pytest.raises(ValueError, match="registered under"):
            PolicyConfig(rule_sets={Dimension.PORT: RuleSet.build("scheme", allow=["http"])})


class TestMutators:
    def test_append_returns_new_policy(self) -> None:
        policy = PolicyConfig()
        updated = policy.append_rules("port", "allow", 8080, "9000-9010")
        assert updated.permits("port", 8080)
        assert updated.permits("port", 9005)
        assert updated.permits("port", 443)
        assert not policy.permits("port", 8080)

    def test_append_skips_existing(self) -> None:
        updated = PolicyConfig().append_rules(Dimension.PORT, ListKind.ALLOW, 80)
        assert updated.rules("port").allow == (PortRule(80, 80), PortRule(443, 443))

    def test_replace(self) -> None:
        updated = PolicyConfig().replace_rules("port", "allow", ["1024-65535"])
        assert updated.rules("port").allow == (PortRule(1024, 65535),)
        assert not updated.permits("port", 443)

    def test_replace_with_empty_allow_list_opens_dimension(self) -> None:
        updated = PolicyConfig().replace_rules("port", "allow", [])
        assert updated.permits("port", 22)

    def test_remove(self) -> None:
        updated = PolicyConfig().remove_rules("ip", "deny", "10.0.0.0/8")
        assert updated.permits("ip", "10.0.0.5")
        assert not updated.permits("ip", "127.0.0.1")

    def test_remove_unknown_rule_is_noop(self) -> None:
        policy = PolicyConfig()
        assert policy.remove_rules("ip", "deny", "8.8.8.0/24").rules("ip") == policy.rules("ip")

    def test_deny_wins_after_append(self) -> None:
        policy = PolicyConfig().append_rules("ip", "allow", "127.0.0.1")
        assert policy.matches("ip", "127.0.0.1") == Match.DENIED

    def test_invalid_rule_raises(self) -> None:
        with pytest.raises(ValueError, match="Invalid IP rule"):
            PolicyConfig().append_rules("ip", "deny", "bogus")

    def test_with_options(self) -> None:
        policy = PolicyConfig().append_rules("port", "allow", 8080)
        updated = policy.with_options(follow_redirects=False)
        assert updated.follow_redirects is False
        assert updated.permits("port", 8080)


class TestFromOptions:
    def test_defaults_kept_for_missing_lists(self) -> None:
        policy = PolicyConfig.from_options({"redirect_limit": 2})
        assert policy.redirect_limit == 2
        assert policy.matches("ip", "127.0.0.1") == Match.DENIED

    def test_lists_replace_defaults(self) -> None:
        policy = PolicyConfig.from_options(
            {
                "scheme": {"allow": ["https"]},
                "port": {"allow": ["1024-65535"]},
                "ip": {"deny": ["8.8.8.0/24"]},
                "domain": {"allow": [".example.com"]},
                "send_credentials": True,
                "headers": {"User-Agent": "safefetch"},
            }
        )
        assert not policy.permits("scheme", "http")
        assert policy.permits("port", 1024)
        # The default IP deny list was replaced
        assert policy.permits("ip", "127.0.0.1")
        assert not policy.permits("ip", "8.8.8.8")
        assert policy.permits("domain", "api.example.com")
        assert not policy.permits("domain", "example.org")
        assert policy.send_credentials is True
        assert policy.headers == {"User-Agent": "safefetch"}

    def test_invalid_rule_is_validation_error(self) -> None:
        with pytest.raises(ValidationError, match="port.allow"):
            PolicyConfig.from_options({"port": {"allow": ["http"]}})

    def test_unknown_option_rejected(self) -> None:
        with pytest.raises(ValidationError):
            PolicyConfig.from_options({"follow_location": True})
