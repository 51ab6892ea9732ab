from __future__ import annotations

import shutil
from pathlib import Path

from graph_alert_collector.core.errors import PersistenceError
from graph_alert_collector.sinks.base import OutputDispatcher
from graph_alert_collector.utils.logging import get_logger


class FileOutputDispatcher(OutputDispatcher):
    """Delivers finalized artifacts to a local JSON Lines file."""

    def __init__(self, path: str, write_mode: str = "append"):
        write_mode = str(write_mode).lower()
        if write_mode not in {"overwrite", "append"}:
            raise ValueError("file output write_mode must be 'overwrite' or 'append'")
        self.path = Path(path)
        self.write_mode = write_mode
        self.log = get_logger("graph_alert_collector.sink.file")

    def dispatch(self, artifact_path: Path, cycle_marker: str) -> None:
        """Copy every line of ``artifact_path`` into the destination file."""
        self._ensure_parent_dir(self.path)
        file_mode = "w" if self.write_mode == "overwrite" else "a"

        try:
            with open(artifact_path, "r", encoding="utf-8") as src, open(self.path, file_mode, encoding="utf-8") as dst:
                shutil.copyfileobj(src, dst)
        except OSError as e:
            raise PersistenceError(f"unable to write {artifact_path} to {self.path}: {e}") from e

        self.log.info(
            "File write: path=%s source=%s bytes=%d cycle=%s write_mode=%s",
            self.path,
            artifact_path.name,
            artifact_path.stat().st_size,
            cycle_marker,
            self.write_mode,
        )

    def _ensure_parent_dir(self, path: Path) -> None:
        parent = path.parent
        if str(parent) not in {"", "."}:
            parent.mkdir(parents=True, exist_ok=True)
