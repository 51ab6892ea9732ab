from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from graph_alert_collector.utils.time import format_filter_timestamp


class CycleState(str, Enum):
    """States of the poll scheduler."""

    IDLE = "IDLE"
    FETCHING = "FETCHING"
    DRAINING = "DRAINING"
    ADVANCING = "ADVANCING"
    CLOSED = "CLOSED"


@dataclass(frozen=True)
class RequestSpec:
    """Specification for an HTTP request."""

    url: str
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    params: Dict[str, Any] = field(default_factory=dict)
    data: Optional[Dict[str, str]] = None


@dataclass(frozen=True)
class Credentials:
    """Client-credentials identity for one tenant."""

    tenant_id: str
    client_id: str
    client_secret: str = field(repr=False)


@dataclass(frozen=True)
class SessionToken:
    """Bearer token returned by the identity endpoint."""

    access_token: str = field(repr=False)
    token_type: str = "Bearer"
    expires_in: Optional[int] = None
    ext_expires_in: Optional[int] = None
    acquired_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def authorization_header(self) -> str:
        return f"Bearer {self.access_token}"


@dataclass(frozen=True)
class PollWindow:
    """Half-open time range (lower, upper] for one poll cycle."""

    lower: datetime
    upper: datetime

    def __post_init__(self) -> None:
        if self.lower.tzinfo is None or self.upper.tzinfo is None:
            raise ValueError("PollWindow bounds must be timezone-aware")
        if self.lower > self.upper:
            raise ValueError(
                f"PollWindow lower bound {self.lower.isoformat()} is after upper bound {self.upper.isoformat()}"
            )

    def filter_bounds(self) -> tuple[str, str]:
        """Return (gt, le) formatted for the createdDateTime filter."""
        return format_filter_timestamp(self.lower), format_filter_timestamp(self.upper)


@dataclass(frozen=True)
class AlertsPage:
    """One parsed response envelope from the alerts endpoint."""

    values: List[Any]
    next_link: str = ""
    context: str = ""


@dataclass
class CycleReport:
    """Summary of one poll cycle."""

    window: Optional[PollWindow] = None
    state: CycleState = CycleState.IDLE
    records_fetched: int = 0
    artifact_path: Optional[Path] = None
    advanced: bool = False
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.advanced and self.error is None
