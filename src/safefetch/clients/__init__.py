"""HTTP clients: the transport protocol and the redirect-following orchestrator."""

from safefetch.clients.http import FetchOrchestrator, FetchResult, FetchState, fetch
from safefetch.clients.transport import HttpxTransport, RedirectSignal, Transport, TransportResponse

__all__ = [
    "FetchOrchestrator",
    "FetchResult",
    "FetchState",
    "HttpxTransport",
    "RedirectSignal",
    "Transport",
    "TransportResponse",
    "fetch",
]
