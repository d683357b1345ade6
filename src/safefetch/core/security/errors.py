# src/safefetch/core/security/errors.py
"""Error hierarchy for guarded fetches.

Every error here is permanent: nothing in safefetch retries. Validation
errors mean "request refused", not "try again later".
"""

from __future__ import annotations


def redact_url(url: str) -> str:
    """Replace any userinfo in ``url`` with ``***`` so it is safe to log."""
    scheme, sep, rest = url.partition("://")
    if not sep:
        return url
    authority_end = len(rest)
    for delim in "/?#":
        idx = rest.find(delim)
        if idx != -1:
            authority_end = min(authority_end, idx)
    authority = rest[:authority_end]
    if "@" not in authority:
        return url
    return f"{scheme}://***@{authority.rpartition('@')[2]}{rest[authority_end:]}"


class SafeFetchError(Exception):
    """Base error for safefetch."""


class InvalidURLException(SafeFetchError):
    """URL rejected by policy or not parseable."""

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        # Messages end up in logs and CLI output; the raw URL stays on .url
        super().__init__(f"{reason} (url={redact_url(url)!r})")


class InvalidSchemeException(InvalidURLException):
    """Scheme is not permitted by the scheme rules."""


class InvalidPortException(InvalidURLException):
    """Effective port is not permitted by the port rules."""


class InvalidDomainException(InvalidURLException):
    """Hostname is not permitted by the domain rules."""


class InvalidIPException(InvalidURLException):
    """A resolved address is not permitted by the IP rules."""


class ResolutionError(InvalidIPException):
    """Hostname did not resolve, resolved to nothing, or timed out."""

    def __init__(self, hostname: str, reason: str) -> None:
        self.hostname = hostname
        super().__init__(hostname, reason)


class RedirectLimitException(SafeFetchError):
    """Redirect chain hit the configured hop limit."""

    def __init__(self, url: str, limit: int) -> None:
        self.url = url
        self.limit = limit
        super().__init__(f"Redirect limit {limit} hit (last redirect to {redact_url(url)!r})")


class TransportException(SafeFetchError):
    """Underlying transport failed (connection refused, TLS error, timeout).

    The message is the transport's own; the original error is chained as
    ``__cause__``.
    """

    def __init__(self, url: str, message: str) -> None:
        self.url = url
        super().__init__(message)
