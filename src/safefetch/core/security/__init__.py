# src/safefetch/core/security/__init__.py
"""URL security for safefetch.

Exports:
- PolicyConfig: Immutable allow/deny policy and behaviour flags
- Dimension, ListKind, Match, RuleSet: Rule matching primitives
- Resolver, ResolvedHost: DNS resolution with pinning
- Validator, validate_url, ValidatedTarget: The validation engine
- Error hierarchy rooted at SafeFetchError
"""

from safefetch.core.security.errors import (
    InvalidDomainException,
    InvalidIPException,
    InvalidPortException,
    InvalidSchemeException,
    InvalidURLException,
    RedirectLimitException,
    ResolutionError,
    SafeFetchError,
    TransportException,
)
from safefetch.core.security.policy import PolicyConfig
from safefetch.core.security.resolver import ResolvedAddress, ResolvedHost, Resolver
from safefetch.core.security.rules import Dimension, ListKind, Match, RuleSet
from safefetch.core.security.web import ValidatedTarget, Validator, validate_url

__all__ = [
    # Policy
    "Dimension",
    "ListKind",
    "Match",
    "PolicyConfig",
    "RuleSet",
    # Resolution
    "ResolvedAddress",
    "ResolvedHost",
    "Resolver",
    # Validation
    "ValidatedTarget",
    "Validator",
    "validate_url",
    # Errors
    "InvalidDomainException",
    "InvalidIPException",
    "InvalidPortException",
    "InvalidSchemeException",
    "InvalidURLException",
    "RedirectLimitException",
    "ResolutionError",
    "SafeFetchError",
    "TransportException",
]
