"""
safefetch: SSRF-guarded HTTP fetching.

Validates every URL (and every redirect hop) against allow/deny policy
before any connection is made, and pins each connection to the addresses
that were validated.
"""

from safefetch.clients.http import FetchResult, fetch
from safefetch.core.security import (
    InvalidDomainException,
    InvalidIPException,
    InvalidPortException,
    InvalidSchemeException,
    InvalidURLException,
    PolicyConfig,
    RedirectLimitException,
    ResolutionError,
    SafeFetchError,
    TransportException,
    ValidatedTarget,
    validate_url,
)

__version__ = "0.1.0"

__all__ = [
    "FetchResult",
    "InvalidDomainException",
    "InvalidIPException",
    "InvalidPortException",
    "InvalidSchemeException",
    "InvalidURLException",
    "PolicyConfig",
    "RedirectLimitException",
    "ResolutionError",
    "SafeFetchError",
    "TransportException",
    "ValidatedTarget",
    "__version__",
    "fetch",
    "validate_url",
]
