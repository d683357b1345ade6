# src/safefetch/clients/transport.py
"""HTTP transport used by the fetch orchestrator.

The orchestrator treats the transport as a handle that it reconfigures on
every hop: reset, set URL, disable redirects, pin host, set headers, set
timeout, execute. Transport defaults are never trusted: auto-redirects are
always disabled and, when pinning, the hostname is never resolved by the
transport.

HttpxTransport implements pinning the same way for every request:

    connection URL  https://93.184.216.34:443/path   (pinned IP)
    Host header     example.com                      (virtual hosting)
    TLS SNI         example.com                      (certificate check)

Each request uses an ephemeral httpx.Client. A shared pool would be keyed
by the IP-based connection URL, so two hostnames sharing an IP could reuse
a TLS connection negotiated for the other name and skip SNI/certificate
verification.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

import httpx
import structlog

from safefetch.core.security.errors import TransportException

logger = structlog.get_logger(__name__)

REDIRECT_STATUS_CODES = frozenset({301, 302, 303, 307, 308})


@dataclass(frozen=True, slots=True)
class TransportResponse:
    """Completed response of one request/response cycle.

    Attributes:
        status_code: HTTP status
        headers: Response headers (case-insensitive lookup via httpx.Headers)
        content: Body bytes
        url: Logical (hostname-based) URL the request was made for
        encoding: Text encoding as resolved by httpx (declared charset when
            Python knows it, else UTF-8)
    """

    status_code: int
    headers: httpx.Headers
    content: bytes
    url: str
    encoding: str = "utf-8"

    @property
    def text(self) -> str:
        return self.content.decode(self.encoding, errors="replace")

    @property
    def is_redirect(self) -> bool:
        return self.status_code in REDIRECT_STATUS_CODES


@dataclass(frozen=True, slots=True)
class RedirectSignal:
    """Redirect extracted from a response: status and absolute target URL."""

    status_code: int
    location: str


@runtime_checkable
class Transport(Protocol):
    """External HTTP collaborator driven by FetchOrchestrator.

    Lifecycle per hop:
        1. reset()
        2. set_url(), disable_redirects(), pin_host(), set_headers(),
           set_timeout(), set_auth(), set_method()
        3. execute() - the only call that touches the network
        4. redirect_signal() on the returned response

    Error handling:
        - execute() MUST raise TransportException for transport failures
        - close() MUST be idempotent
    """

    def reset(self) -> None: ...

    def set_url(self, url: str) -> None: ...

    def disable_redirects(self) -> None: ...

    def pin_host(self, host: str, port: int, addresses: Sequence[str]) -> None: ...

    def set_headers(self, headers: Mapping[str, str]) -> None: ...

    def set_timeout(self, timeout: float) -> None: ...

    def set_auth(self, credentials: tuple[str, str] | None) -> None: ...

    def set_method(self, method: str, content: bytes | None = None) -> None: ...

    def execute(self) -> TransportResponse: ...

    def redirect_signal(self, response: TransportResponse) -> RedirectSignal | None: ...

    def close(self) -> None: ...


@dataclass(slots=True)
class _RequestConfig:
    url: str | None = None
    follow_redirects: bool = True
    pinned_host: str | None = None
    pinned_port: int | None = None
    pinned_addresses: tuple[str, ...] = ()
    headers: dict[str, str] = field(default_factory=dict)
    timeout: float | None = None
    auth: tuple[str, str] | None = None
    method: str = "GET"
    content: bytes | None = None


class HttpxTransport:
    """Transport backed by httpx.

    Args:
        verify: TLS verification setting passed to httpx
        mounted_transport: Optional httpx transport (e.g. httpx.MockTransport
            in tests); every ephemeral client is created with it
    """

    def __init__(self, *, verify: bool = True, mounted_transport: httpx.BaseTransport | None = None) -> None:
        self._verify = verify
        self._mounted_transport = mounted_transport
        self._config = _RequestConfig()
        self._closed = False

    def reset(self) -> None:
        self._config = _RequestConfig()

    def set_url(self, url: str) -> None:
        self._config.url = url

    def disable_redirects(self) -> None:
        self._config.follow_redirects = False

    def pin_host(self, host: str, port: int, addresses: Sequence[str]) -> None:
        if not addresses:
            raise ValueError(f"Cannot pin {host} to an empty address set")
        self._config.pinned_host = host
        self._config.pinned_port = port
        self._config.pinned_addresses = tuple(addresses)

    def set_headers(self, headers: Mapping[str, str]) -> None:
        self._config.headers = dict(headers)

    def set_timeout(self, timeout: float) -> None:
        self._config.timeout = timeout

    def set_auth(self, credentials: tuple[str, str] | None) -> None:
        self._config.auth = credentials

    def set_method(self, method: str, content: bytes | None = None) -> None:
        self._config.method = method.upper()
        self._config.content = content

    def execute(self) -> TransportResponse:
        config = self._config
        if self._closed:
            raise RuntimeError("Transport is closed")
        if config.url is None:
            raise RuntimeError("execute() called before set_url()")

        logical_url = httpx.URL(config.url)
        if not config.pinned_addresses:
            return self._send(config, logical_url, config.url, extensions=None)

        # raw_host is the IDNA-encoded form, as validated
        url_host = logical_url.raw_host.decode("ascii")
        if url_host != config.pinned_host:
            raise RuntimeError(f"URL host {url_host!r} does not match pinned host {config.pinned_host!r}")

        # Try pinned addresses in order, like a resolver-provided list;
        # only connection failures fall through to the next address
        raw_path = logical_url.raw_path.decode("ascii")
        last_error: TransportException | None = None
        for ip in config.pinned_addresses:
            ip_host = f"[{ip}]" if ":" in ip else ip
            target = f"{logical_url.scheme}://{ip_host}:{config.pinned_port}{raw_path}"
            extensions = {"sni_hostname": config.pinned_host} if logical_url.scheme == "https" else None
            try:
                return self._send(config, logical_url, target, extensions=extensions)
            except TransportException as e:
                if not isinstance(e.__cause__, httpx.ConnectError):
                    raise
                logger.debug("pinned_address_unreachable", host=config.pinned_host, ip=ip, error=str(e))
                last_error = e
        assert last_error is not None
        raise last_error

    def _send(
        self,
        config: _RequestConfig,
        logical_url: httpx.URL,
        target: str,
        *,
        extensions: dict[str, str] | None,
    ) -> TransportResponse:
        headers = dict(config.headers)
        if config.pinned_host is not None:
            default_port = 443 if logical_url.scheme == "https" else 80
            host_value = f"[{config.pinned_host}]" if ":" in config.pinned_host else config.pinned_host
            if config.pinned_port != default_port:
                host_value = f"{host_value}:{config.pinned_port}"
            headers = {k: v for k, v in headers.items() if k.lower() != "host"}
            headers["Host"] = host_value

        try:
            with httpx.Client(
                timeout=config.timeout,
                follow_redirects=config.follow_redirects,
                verify=self._verify,
                trust_env=False,
                transport=self._mounted_transport,
            ) as client:
                response = client.request(
                    config.method,
                    target,
                    headers=headers,
                    content=config.content,
                    auth=config.auth,
                    extensions=extensions,
                )
                content = response.content
                # httpx falls back to UTF-8 for unknown or missing charsets
                encoding = response.encoding or "utf-8"
        except httpx.HTTPError as e:
            # Partial bodies are discarded; the caller gets no response at all
            raise TransportException(str(logical_url), str(e) or type(e).__name__) from e

        return TransportResponse(
            status_code=response.status_code,
            headers=response.headers,
            content=content,
            url=str(logical_url),
            encoding=encoding,
        )

    def redirect_signal(self, response: TransportResponse) -> RedirectSignal | None:
        """Extract the redirect target, resolved against the logical URL.

        The request went to an IP-based URL, so relative Location headers
        must be joined with the hostname URL to keep the right Host and SNI.
        """
        if not response.is_redirect:
            return None
        location = response.headers.get("location")
        if not location:
            return None
        try:
            target = httpx.URL(response.url).join(location)
        except httpx.InvalidURL:
            # Leave the rejection to the validator on the next hop
            return RedirectSignal(response.status_code, location)
        return RedirectSignal(response.status_code, str(target))

    def close(self) -> None:
        self._closed = True

    def __enter__(self) -> HttpxTransport:
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.close()
