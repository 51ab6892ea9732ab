from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Optional

from graph_alert_collector.core.errors import PersistenceError
from graph_alert_collector.utils.time import utc_now_iso

STATE_KEY = "last_poll_timestamp"


class FileWatermarkStore:
    """JSON state file holding the last poll timestamp."""

    def __init__(self, path: str):
        self.path = Path(path)

    def load(self) -> Optional[str]:
        if not self.path.exists():
            return None
        try:
            with self.path.open("r", encoding="utf-8") as f:
                payload = json.load(f)
        except (OSError, ValueError) as e:
            raise PersistenceError(f"error reading state file {self.path}: {e}") from e

        if not isinstance(payload, dict):
            raise PersistenceError(f"state file {self.path} is not a JSON object")
        value = payload.get(STATE_KEY)
        return str(value) if value else None

    def save(self, timestamp: str) -> None:
        payload = {STATE_KEY: timestamp, "updated_at_utc": utc_now_iso()}
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self._ensure_parent_dir()
            with tmp_path.open("w", encoding="utf-8") as f:
                json.dump(payload, f)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise PersistenceError(f"error saving state file {self.path}: {e}") from e

    def _ensure_parent_dir(self) -> None:
        parent = self.path.parent
        if str(parent) not in {"", "."}:
            parent.mkdir(parents=True, exist_ok=True)
