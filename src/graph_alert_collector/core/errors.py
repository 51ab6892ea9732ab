from __future__ import annotations

from typing import Optional


class CollectorError(Exception):
    """Base class for all collector failures."""


class AuthError(CollectorError):
    """The client-credentials login exchange failed or returned an unusable token."""


class FetchError(CollectorError):
    """A page of alerts could not be fetched or understood."""


class TransportError(FetchError):
    """Network-level failure (connection refused, DNS, timeout)."""


class HttpStatusError(FetchError):
    """The server answered with a non-success status."""

    def __init__(self, status_code: int, reason: str = "", body: str = ""):
        self.status_code = status_code
        self.reason = reason
        self.body = body
        super().__init__(self.status_text)

    @property
    def status_text(self) -> str:
        return f"{self.status_code} {self.reason}".strip()


class RateLimited(HttpStatusError):
    """Still rate limited after the backoff budget was spent."""


class ParseError(FetchError):
    """A response envelope was not the JSON object we expected."""

    def __init__(self, message: str, body: Optional[str] = None):
        self.body = body
        super().__init__(message)


class PersistenceError(CollectorError):
    """Watermark, artifact or output write failed."""
