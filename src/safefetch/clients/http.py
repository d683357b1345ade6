# src/safefetch/clients/http.py
"""SSRF-safe fetch with per-hop validation.

FetchOrchestrator is the sole authority over redirects and DNS: the
transport's own redirect following is always disabled and, with pin_dns,
the transport connects only to addresses the validator approved. Every
redirect target goes back through the validator before any connection is
made, closing the classic hole:

    allowed.example.com -> 302 -> http://169.254.169.254/latest/meta-data/

State machine (one hop per PREPARING..INSPECTING pass):

    PREPARING -> EXECUTING -> INSPECTING -> DONE
                                        -> REDIRECTING -> PREPARING
    (any state) -> FAILED
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

import structlog

from safefetch.clients.transport import HttpxTransport, RedirectSignal, Transport, TransportResponse
from safefetch.core.security.errors import RedirectLimitException, redact_url
from safefetch.core.security.policy import PolicyConfig
from safefetch.core.security.web import HostResolver, ValidatedTarget, Validator

logger = structlog.get_logger(__name__)


class FetchState(StrEnum):
    """States of one fetch call."""

    PREPARING = "preparing"
    EXECUTING = "executing"
    INSPECTING = "inspecting"
    REDIRECTING = "redirecting"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class FetchResult:
    """Final response of a fetch and how it was reached.

    Attributes:
        response: The last response (never a followed redirect)
        target: ValidatedTarget of the final hop
        history: Every URL requested, in order (clean URLs, final one last)
    """

    response: TransportResponse
    target: ValidatedTarget
    history: tuple[str, ...]

    @property
    def status_code(self) -> int:
        return self.response.status_code

    @property
    def content(self) -> bytes:
        return self.response.content

    @property
    def text(self) -> str:
        return self.response.text

    @property
    def url(self) -> str:
        return self.target.url

    @property
    def redirect_count(self) -> int:
        return len(self.history) - 1


def _method_after_redirect(status_code: int, method: str) -> str:
    # RFC 9110 15.4: 303 always becomes GET (except HEAD); 301/302 turn POST
    # into GET the way every browser does; 307/308 keep the method
    if status_code == 303 and method != "HEAD":
        return "GET"
    if status_code in (301, 302) and method == "POST":
        return "GET"
    return method


class FetchOrchestrator:
    """Runs one fetch: validate, configure transport, execute, follow redirects.

    Example:
        orchestrator = FetchOrchestrator(PolicyConfig(), HttpxTransport())
        result = orchestrator.run("https://example.com/")
        print(result.status_code, result.text)
    """

    def __init__(
        self,
        policy: PolicyConfig,
        transport: Transport,
        *,
        resolver: HostResolver | None = None,
    ) -> None:
        self.policy = policy
        self.transport = transport
        self.validator = Validator(policy, resolver)
        self.state = FetchState.PREPARING

    def run(self, url: str, *, method: str = "GET", content: bytes | None = None) -> FetchResult:
        """Fetch ``url`` under the policy.

        Raises:
            InvalidURLException: If the URL or any redirect target is rejected
            RedirectLimitException: If the hop limit is hit
            TransportException: If the transport fails on any hop
        """
        policy = self.policy
        current_url = url
        current_method = method.upper()
        current_content = content
        hops = 0
        history: list[str] = []
        target: ValidatedTarget | None = None
        response: TransportResponse | None = None
        signal: RedirectSignal | None = None
        self.state = FetchState.PREPARING

        try:
            while True:
                if self.state == FetchState.PREPARING:
                    target = self.validator.validate(current_url)
                    self._configure(target, current_method, current_content)
                    history.append(target.url)
                    self.state = FetchState.EXECUTING

                elif self.state == FetchState.EXECUTING:
                    assert target is not None
                    response = self.transport.execute()
                    logger.debug(
                        "hop_completed",
                        url=target.url,
                        status_code=response.status_code,
                        hop=hops,
                    )
                    self.state = FetchState.INSPECTING

                elif self.state == FetchState.INSPECTING:
                    assert response is not None
                    signal = self.transport.redirect_signal(response) if policy.follow_redirects else None
                    self.state = FetchState.REDIRECTING if signal is not None else FetchState.DONE

                elif self.state == FetchState.REDIRECTING:
                    assert signal is not None and target is not None
                    hops += 1
                    if policy.redirect_limit and hops >= policy.redirect_limit:
                        raise RedirectLimitException(signal.location, policy.redirect_limit)
                    logger.info(
                        "redirect_followed",
                        status_code=signal.status_code,
                        redirect_from=target.url,
                        redirect_to=redact_url(signal.location),
                        hop=hops,
                    )
                    next_method = _method_after_redirect(signal.status_code, current_method)
                    if next_method != current_method:
                        current_content = None
                    current_method = next_method
                    current_url = signal.location
                    self.state = FetchState.PREPARING

                elif self.state == FetchState.DONE:
                    assert response is not None and target is not None
                    return FetchResult(response=response, target=target, history=tuple(history))

        except Exception as e:
            # Not only SafeFetchError: a transport bug must also end in FAILED
            failed_in = self.state
            self.state = FetchState.FAILED
            logger.warning(
                "fetch_failed",
                url=redact_url(current_url),
                state=failed_in.value,
                hops=hops,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise

    def _configure(self, target: ValidatedTarget, method: str, content: bytes | None) -> None:
        """Reconfigure the transport from scratch for one hop."""
        transport = self.transport
        policy = self.policy
        transport.reset()
        transport.set_url(target.url)
        transport.disable_redirects()
        if policy.pin_dns:
            transport.pin_host(target.host, target.port, target.pinned_ips)
        transport.set_headers(dict(policy.headers or {}))
        transport.set_timeout(policy.timeout)
        transport.set_auth(target.credentials)
        transport.set_method(method, content)


def fetch(
    url: str,
    policy: PolicyConfig | None = None,
    transport: Transport | None = None,
    *,
    method: str = "GET",
    content: bytes | None = None,
    resolver: HostResolver | None = None,
) -> FetchResult:
    """Fetch ``url`` with SSRF protection.

    Args:
        url: URL to fetch
        policy: Policy to enforce (default: restrictive PolicyConfig())
        transport: Transport handle; a fresh HttpxTransport is created and
            closed when omitted. A caller-supplied transport is not closed.
        method: HTTP method for the first hop
        content: Request body for the first hop
        resolver: DNS resolver override (default: system resolver)

    Returns:
        FetchResult for the final (non-redirect) response

    Raises:
        InvalidURLException: If the URL or any redirect target is rejected
        RedirectLimitException: If the hop limit is hit
        TransportException: If the transport fails on any hop
    """
    policy = policy if policy is not None else PolicyConfig()
    if transport is not None:
        return FetchOrchestrator(policy, transport, resolver=resolver).run(url, method=method, content=content)
    with HttpxTransport() as owned:
        return FetchOrchestrator(policy, owned, resolver=resolver).run(url, method=method, content=content)
