"""
Tests for login and alert pagination against a fake HTTP client.
"""

import json
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

from graph_alert_collector.core.errors import AuthError, HttpStatusError, ParseError, TransportError
from graph_alert_collector.core.models import Credentials, PollWindow
from graph_alert_collector.fetch.alerts import (
    ALERTS_URL,
    GraphAlertsFetcher,
    build_filter,
    extract_skip_token,
    serialize_alert,
)
from graph_alert_collector.fetch.auth import GRAPH_SCOPE
from graph_alert_collector.http.response import HttpResponse

CREDS = Credentials(tenant_id="tenant-1", client_id="client-1", client_secret="s3cret")

WINDOW = PollWindow(
    lower=datetime(2024, 1, 1, 11, 0, 0, tzinfo=timezone.utc),
    upper=datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc),
)


def _json_response(payload, status_code=200):
    return HttpResponse(
        status_code=status_code,
        reason="OK",
        headers={"Content-Type": "application/json"},
        text=json.dumps(payload),
        json=payload,
    )


def _token_response():
    return _json_response(
        {"token_type": "Bearer", "expires_in": "3599", "ext_expires_in": 3599, "access_token": "tok-123"}
    )


def _page(values, skip_token=None):
    payload = {"@odata.context": "https://graph.microsoft.com/v1.0/$metadata#Security/alerts", "value": values}
    if skip_token is not None:
        payload["@odata.nextLink"] = f"{ALERTS_URL}?$filter=x&$skiptoken={skip_token}"
    return _json_response(payload)


class TestLogin(unittest.TestCase):
    def test_login_posts_client_credentials_and_caches_token(self):
        client = Mock()
        client.send.return_value = _token_response()
        fetcher = GraphAlertsFetcher(CREDS, client)

        token = fetcher.login()

        self.assertEqual(token.access_token, "tok-123")
        self.assertEqual(token.expires_in, 3599)
        self.assertIs(fetcher.session_token, token)

        req = client.send.call_args.args[0]
        self.assertEqual(req.method, "POST")
        self.assertEqual(req.url, "https://login.microsoftonline.com/tenant-1/oauth2/v2.0/token")
        self.assertEqual(req.headers["Content-Type"], "application/x-www-form-urlencoded")
        self.assertEqual(
            req.data,
            {
                "scope": GRAPH_SCOPE,
                "client_id": "client-1",
                "client_secret": "s3cret",
                "grant_type": "client_credentials",
            },
        )

    def test_login_transport_failure_is_auth_error(self):
        client = Mock()
        client.send.side_effect = TransportError("connection refused")
        with self.assertRaises(AuthError) as ctx:
            GraphAlertsFetcher(CREDS, client).login()
        self.assertIsInstance(ctx.exception.__cause__, TransportError)

    def test_login_status_failure_is_auth_error(self):
        client = Mock()
        client.send.side_effect = HttpStatusError(401, "Unauthorized", '{"error":"invalid_client"}')
        with self.assertRaisesRegex(AuthError, "401 Unauthorized"):
            GraphAlertsFetcher(CREDS, client).login()

    def test_login_unparsable_body_is_auth_error(self):
        client = Mock()
        client.send.return_value = HttpResponse(200, "OK", {}, "<html>nope</html>", None)
        with self.assertRaises(AuthError):
            GraphAlertsFetcher(CREDS, client).login()

    def test_login_without_access_token_is_auth_error(self):
        client = Mock()
        client.send.return_value = _json_response({"token_type": "Bearer"})
        with self.assertRaisesRegex(AuthError, "access_token"):
            GraphAlertsFetcher(CREDS, client).login()

    def test_secret_not_in_repr(self):
        self.assertNotIn("s3cret", repr(CREDS))


class TestFetchAlerts(unittest.TestCase):
    def setUp(self):
        self.client = Mock()
        self.fetcher = GraphAlertsFetcher(CREDS, self.client)
        self.client.send.return_value = _token_response()
        self.fetcher.login()
        self.client.send.reset_mock()
        self.pushed = []

    def _requests(self):
        return [c.args[0] for c in self.client.send.call_args_list]

    def test_filter_uses_utc_second_precision(self):
        window = PollWindow(
            lower=datetime(2024, 1, 1, 6, 0, 0, 123456, tzinfo=timezone(timedelta(hours=-5))),
            upper=datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc),
        )
        self.assertEqual(
            build_filter(window),
            "createdDateTime gt 2024-01-01T11:00:00Z and createdDateTime le 2024-01-01T12:00:00Z",
        )

    def test_pages_are_pushed_in_order_and_counted(self):
        self.client.send.side_effect = [
            _page([{"id": "a1"}, {"id": "a2"}], skip_token="t1"),
            _page([{"id": "b1"}], skip_token="t2"),
            _page([{"id": "c1"}, {"id": "c2"}, {"id": "c3"}]),
        ]

        count = self.fetcher.fetch_alerts(WINDOW, self.pushed.append)

        self.assertEqual(count, 6)
        self.assertEqual(
            [json.loads(p)["id"] for p in self.pushed],
            ["a1", "a2", "b1", "c1", "c2", "c3"],
        )

        reqs = self._requests()
        self.assertEqual(len(reqs), 3)
        self.assertNotIn("$skiptoken", reqs[0].params)
        self.assertEqual(reqs[1].params["$skiptoken"], "t1")
        self.assertEqual(reqs[2].params["$skiptoken"], "t2")
        for req in reqs:
            self.assertEqual(req.url, ALERTS_URL)
            self.assertEqual(req.headers["Authorization"], "Bearer tok-123")
            self.assertEqual(req.params["$filter"], build_filter(WINDOW))

    def test_page_context_is_logged(self):
        self.client.send.side_effect = [_page([{"id": "a1"}])]

        with self.assertLogs("graph_alert_collector.fetch", level="DEBUG") as logs:
            self.fetcher.fetch_alerts(WINDOW, self.pushed.append)

        self.assertTrue(any("$metadata#Security/alerts" in line for line in logs.output))

    def test_repeated_next_link_stops_after_second_occurrence(self):
        self.client.send.side_effect = [
            _page([{"id": 1}], skip_token="same"),
            _page([{"id": 2}], skip_token="same"),
            _page([{"id": 3}], skip_token="same"),
        ]

        with self.assertLogs("graph_alert_collector.fetch", level="WARNING"):
            count = self.fetcher.fetch_alerts(WINDOW, self.pushed.append)

        self.assertEqual(count, 2)
        self.assertEqual(self.client.send.call_count, 2)

    def test_empty_first_page_returns_zero_despite_next_link(self):
        self.client.send.side_effect = [_page([], skip_token="more")]
        count = self.fetcher.fetch_alerts(WINDOW, self.pushed.append)
        self.assertEqual(count, 0)
        self.assertEqual(self.pushed, [])
        self.assertEqual(self.client.send.call_count, 1)

    def test_empty_later_page_ends_with_accumulated_count(self):
        self.client.send.side_effect = [
            _page([{"id": 1}, {"id": 2}], skip_token="t1"),
            _page([], skip_token="t2"),
            _page([{"id": 3}]),
        ]
        count = self.fetcher.fetch_alerts(WINDOW, self.pushed.append)
        self.assertEqual(count, 2)
        self.assertEqual(self.client.send.call_count, 2)

    def test_records_are_compact_single_line(self):
        alert = {"id": "x", "title": "Suspicious\nlogin", "nested": {"a": [1, 2]}, "name": "Ünïcode"}
        self.client.send.side_effect = [_page([alert])]

        self.fetcher.fetch_alerts(WINDOW, self.pushed.append)

        self.assertEqual(len(self.pushed), 1)
        self.assertNotIn("\n", self.pushed[0])
        self.assertNotIn(", ", self.pushed[0])
        self.assertIn("Ünïcode", self.pushed[0])
        self.assertEqual(json.loads(self.pushed[0]), alert)

    def test_invalid_json_is_parse_error(self):
        self.client.send.side_effect = [HttpResponse(200, "OK", {}, "{not json", None)]
        with self.assertRaises(ParseError):
            self.fetcher.fetch_alerts(WINDOW, self.pushed.append)

    def test_non_list_value_is_parse_error(self):
        self.client.send.side_effect = [_json_response({"value": {"id": 1}})]
        with self.assertRaises(ParseError):
            self.fetcher.fetch_alerts(WINDOW, self.pushed.append)

    def test_transport_error_on_later_page_propagates(self):
        self.client.send.side_effect = [
            _page([{"id": 1}], skip_token="t1"),
            TransportError("timeout"),
        ]
        with self.assertRaises(TransportError):
            self.fetcher.fetch_alerts(WINDOW, self.pushed.append)
        self.assertEqual(len(self.pushed), 1)

    def test_fetch_before_login_is_auth_error(self):
        fetcher = GraphAlertsFetcher(CREDS, Mock())
        with self.assertRaises(AuthError):
            fetcher.fetch_alerts(WINDOW, self.pushed.append)


class TestHelpers(unittest.TestCase):
    def test_extract_skip_token(self):
        link = "https://graph.microsoft.com/v1.0/security/alerts?$filter=a%20gt%20b&$skiptoken=abc%3D%3D"
        self.assertEqual(extract_skip_token(link), "abc==")

    def test_extract_skip_token_missing(self):
        self.assertEqual(extract_skip_token("https://graph.microsoft.com/v1.0/security/alerts?$top=5"), "")

    def test_serialize_alert(self):
        self.assertEqual(serialize_alert({"a": 1, "b": [1, 2]}), '{"a":1,"b":[1,2]}')

    def test_poll_window_rejects_inverted_bounds(self):
        with self.assertRaises(ValueError):
            PollWindow(lower=WINDOW.upper, upper=WINDOW.lower)

    def test_poll_window_rejects_naive_datetimes(self):
        with self.assertRaises(ValueError):
            PollWindow(lower=datetime(2024, 1, 1), upper=datetime(2024, 1, 2))


if __name__ == "__main__":
    unittest.main()
