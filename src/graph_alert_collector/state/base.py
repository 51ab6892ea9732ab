from __future__ import annotations

from typing import Optional, Protocol


class WatermarkStore(Protocol):
    """Protocol for watermark backends.

    ``load`` returns the last persisted RFC 3339 timestamp, or None when no
    poll has completed yet.
    """

    def load(self) -> Optional[str]: ...

    def save(self, timestamp: str) -> None: ...
