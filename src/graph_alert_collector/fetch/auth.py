from __future__ import annotations

import json
from typing import Any, Optional

from graph_alert_collector.core.errors import AuthError, CollectorError
from graph_alert_collector.core.models import Credentials, RequestSpec, SessionToken
from graph_alert_collector.http.client import HttpClient

LOGIN_URL_TEMPLATE = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


def build_token_request(credentials: Credentials) -> RequestSpec:
    """Build the client-credentials POST for the identity endpoint."""
    return RequestSpec(
        url=LOGIN_URL_TEMPLATE.format(tenant=credentials.tenant_id),
        method="POST",
        headers={"Accept": "*/*", "Content-Type": FORM_CONTENT_TYPE},
        data={
            "scope": GRAPH_SCOPE,
            "client_id": credentials.client_id,
            "client_secret": credentials.client_secret,
            "grant_type": "client_credentials",
        },
    )


def request_token(client: HttpClient, credentials: Credentials) -> SessionToken:
    """Run the client-credentials exchange and return the bearer token.

    Any failure along the way, transport or parsing, surfaces as AuthError.
    """
    try:
        resp = client.send(build_token_request(credentials))
    except CollectorError as e:
        raise AuthError(f"login for tenant {credentials.tenant_id} failed: {e}") from e

    payload = resp.json
    if payload is None:
        try:
            payload = json.loads(resp.text)
        except ValueError as e:
            raise AuthError(f"error on unmarshal login response body: {e}") from e

    if not isinstance(payload, dict):
        raise AuthError("login response is not a JSON object")

    access_token = payload.get("access_token")
    if not access_token or not isinstance(access_token, str):
        raise AuthError("login response carries no access_token")

    return SessionToken(
        access_token=access_token,
        token_type=str(payload.get("token_type") or "Bearer"),
        expires_in=_as_int(payload.get("expires_in")),
        ext_expires_in=_as_int(payload.get("ext_expires_in")),
    )


def _as_int(value: Any) -> Optional[int]:
    # The identity endpoint has sent these both as numbers and as strings.
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
