from __future__ import annotations
from pathlib import Path
from typing import Protocol


class OutputDispatcher(Protocol):
    """Protocol for delivering a finalized artifact to its destination."""

    def dispatch(self, artifact_path: Path, cycle_marker: str) -> None: ...
