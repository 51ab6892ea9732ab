from __future__ import annotations

import json
from typing import Any, Callable, Dict, Optional
from urllib.parse import parse_qs, urlparse

from graph_alert_collector.core.errors import AuthError, ParseError
from graph_alert_collector.core.models import AlertsPage, Credentials, PollWindow, RequestSpec, SessionToken
from graph_alert_collector.fetch.auth import request_token
from graph_alert_collector.http.client import HttpClient
from graph_alert_collector.http.response import HttpResponse
from graph_alert_collector.utils.logging import get_logger

ALERTS_URL = "https://graph.microsoft.com/v1.0/security/alerts"
SKIP_TOKEN_PARAM = "$skiptoken"
NEXT_LINK_KEY = "@odata.nextLink"
CONTEXT_KEY = "@odata.context"


def build_filter(window: PollWindow) -> str:
    """OData filter selecting alerts created inside ``window``."""
    gt, le = window.filter_bounds()
    return f"createdDateTime gt {gt} and createdDateTime le {le}"


def extract_skip_token(next_link: str) -> str:
    """Pull the $skiptoken value out of an @odata.nextLink URL ("" if it has none)."""
    try:
        query = urlparse(next_link).query
    except ValueError as e:
        raise ParseError(f"unparsable next link: {next_link!r}") from e
    values = parse_qs(query, keep_blank_values=True).get(SKIP_TOKEN_PARAM)
    return values[0] if values else ""


def serialize_alert(value: Any) -> str:
    """Compact single-line JSON for one alert."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def parse_alerts_page(resp: HttpResponse) -> AlertsPage:
    payload = resp.json
    if payload is None:
        try:
            payload = json.loads(resp.text)
        except ValueError as e:
            raise ParseError(f"alerts response is not valid JSON: {e}", body=resp.text) from e

    if not isinstance(payload, dict):
        raise ParseError("alerts response is not a JSON object", body=resp.text)

    values = payload.get("value") or []
    if not isinstance(values, list):
        raise ParseError("alerts response 'value' is not a list", body=resp.text)

    return AlertsPage(
        values=values,
        next_link=str(payload.get(NEXT_LINK_KEY) or ""),
        context=str(payload.get(CONTEXT_KEY) or ""),
    )


class GraphAlertsFetcher:
    """
    Fetches security alerts from Microsoft Graph for one tenant.

    The fetcher owns its session token: ``login`` replaces it and every
    request of ``fetch_alerts`` reuses it. Nothing refreshes the token on
    expiry; callers log in again at the start of each cycle.
    """

    def __init__(self, credentials: Credentials, client: HttpClient, alerts_url: str = ALERTS_URL):
        self.credentials = credentials
        self.client = client
        self.alerts_url = alerts_url
        self.session_token: Optional[SessionToken] = None
        self.log = get_logger("graph_alert_collector.fetch")

    def login(self) -> SessionToken:
        """Acquire a fresh bearer token and cache it on this fetcher."""
        self.session_token = request_token(self.client, self.credentials)
        self.log.debug("Logged in to tenant %s", self.credentials.tenant_id)
        return self.session_token

    def fetch_alerts(self, window: PollWindow, push: Callable[[str], None]) -> int:
        """
        Page through alerts created inside ``window`` and hand each one to ``push``.

        Args:
            window: Poll window; its upper bound stays fixed for every page.
            push: Receives one compact JSON string per alert. May block.

        Returns:
            Number of alerts pushed.

        Raises:
            AuthError: If ``login`` has not been called.
            FetchError: On the first transport, status or parse failure.
        """
        if self.session_token is None:
            raise AuthError("fetch_alerts called before login")

        params: Dict[str, str] = {"$filter": build_filter(window)}
        count = 0
        previous_link: Optional[str] = None
        page_index = 0

        while True:
            page = parse_alerts_page(self.client.send(self._alerts_request(params)))
            page_index += 1
            self.log.debug("Page %s had %s values (%s)", page_index, len(page.values), page.context or "no context")

            # An empty page ends the run even when a next link is present.
            if not page.values:
                return count

            for value in page.values:
                push(serialize_alert(value))
            count += len(page.values)

            if not page.next_link:
                return count

            if page.next_link == previous_link:
                self.log.warning("Next link repeated after page %s, stopping pagination", page_index)
                return count

            skip_token = extract_skip_token(page.next_link)
            if not skip_token:
                self.log.warning("Next link without %s after page %s, stopping pagination", SKIP_TOKEN_PARAM, page_index)
                return count

            params[SKIP_TOKEN_PARAM] = skip_token
            previous_link = page.next_link

    def _alerts_request(self, params: Dict[str, str]) -> RequestSpec:
        return RequestSpec(
            url=self.alerts_url,
            method="GET",
            headers={
                "Accept": "*/*",
                "Content-Type": "application/json",
                "Authorization": self.session_token.authorization_header(),
            },
            params=dict(params),
        )
