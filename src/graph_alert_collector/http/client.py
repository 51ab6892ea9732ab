from __future__ import annotations

import time
from typing import Callable, Optional, Protocol

import requests

from graph_alert_collector.core.errors import HttpStatusError, RateLimited, TransportError
from graph_alert_collector.core.models import RequestSpec
from graph_alert_collector.http.policies import RetryPolicy, call_with_backoff
from graph_alert_collector.http.response import HttpResponse
from graph_alert_collector.utils.logging import get_logger

PARTIAL_CONTENT = 206
SECURITY_ERROR_CODES_DOC = "https://docs.microsoft.com/en-us/graph/api/resources/security-error-codes"


class HttpClient(Protocol):
    """Protocol for HTTP clients."""

    def send(self, req: RequestSpec) -> HttpResponse: ...


class RequestsHttpClient:
    """HTTP client using the requests library.

    Throttled responses are retried according to ``retry``. Network errors
    and every other non-2xx status are raised straight away; retrying a whole
    cycle is the scheduler's job.
    """

    def __init__(
        self,
        timeout_s: float = 10,
        retry: RetryPolicy | None = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session = session or requests.Session()
        self.timeout_s = timeout_s
        self.retry = retry or RetryPolicy()
        self.sleep = sleep
        self.log = get_logger("graph_alert_collector.http")

    def send(self, req: RequestSpec) -> HttpResponse:
        """Send an HTTP request, backing off while the server throttles us."""
        self.log.debug("Calling %s %s", req.method, req.url)
        resp = call_with_backoff(
            send=lambda: self._send_once(req),
            status_of=lambda r: r.status_code,
            policy=self.retry,
            sleep=self.sleep,
        )
        return self._check_status(req, resp)

    def close(self) -> None:
        self.session.close()

    def _send_once(self, req: RequestSpec) -> HttpResponse:
        try:
            r = self.session.request(
                method=req.method,
                url=req.url,
                headers=req.headers,
                params=req.params or None,
                data=req.data,
                timeout=self.timeout_s,
            )
        except requests.RequestException as e:
            raise TransportError(f"{req.method} {req.url} failed: {type(e).__name__}: {e}") from e

        ct = r.headers.get("Content-Type", "")
        js = None
        if "application/json" in ct.lower():
            try:
                js = r.json()
            except ValueError:
                js = None

        return HttpResponse(
            status_code=r.status_code,
            reason=r.reason or "",
            headers=dict(r.headers),
            text=r.text,
            json=js,
        )

    def _check_status(self, req: RequestSpec, resp: HttpResponse) -> HttpResponse:
        if resp.status_code == PARTIAL_CONTENT:
            # A provider behind the security API failed; the body still holds the partial results.
            self.log.warning("Partial content from %s - `Warning: %s`", req.url, resp.headers.get("Warning", ""))
            self.log.warning("This means that a security provider returned an error code, see %s", SECURITY_ERROR_CODES_DOC)
            return resp

        if self.retry.is_retryable(resp.status_code):
            raise RateLimited(resp.status_code, resp.reason, resp.text)

        if not 200 <= resp.status_code < 300:
            raise HttpStatusError(resp.status_code, resp.reason, resp.text)

        return resp
