from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path
from typing import IO, Optional

from graph_alert_collector.utils.time import utc_now
from graph_alert_collector.utils.logging import get_logger


class TempArtifactWriter:
    """Line-oriented temporary file that can be rotated into a finalized artifact."""

    def __init__(self, directory: Optional[str] = None, prefix: str = "graph-alerts"):
        self._owns_directory = directory is None
        self.directory = Path(directory) if directory else Path(tempfile.mkdtemp(prefix=f"{prefix}-"))
        self.directory.mkdir(parents=True, exist_ok=True)
        self.prefix = prefix
        self.write_count = 0
        self.previous_path: Optional[Path] = None
        self._sequence = 0
        self._current_path: Path = self.directory / f"{prefix}.current"
        self._fh: Optional[IO[str]] = None
        self.log = get_logger("graph_alert_collector.sink.tmp")
        self._open()

    @property
    def current_path(self) -> Path:
        return self._current_path

    def write_line(self, line: str) -> None:
        """Append one record; the record must already be single-line."""
        if self._fh is None:
            raise OSError("temporary artifact is closed")
        self._fh.write(line.rstrip("\r\n") + "\n")
        self.write_count += 1

    def rotate(self) -> Path:
        """Finalize the current file under a timestamped name and start a fresh one."""
        self._close_handle()
        self._sequence += 1
        stamp = utc_now().strftime("%Y%m%dT%H%M%SZ")
        final_path = self.directory / f"{self.prefix}-{stamp}-{self._sequence:06d}.jsonl"
        os.replace(self._current_path, final_path)
        self.previous_path = final_path
        self.write_count = 0
        self._open()
        self.log.debug("Rotated temporary artifact to %s", final_path)
        return final_path

    def delete_previous(self) -> None:
        if self.previous_path is not None and self.previous_path.exists():
            self.previous_path.unlink()
        self.previous_path = None

    def exit(self) -> None:
        """Close the writer and remove everything it created."""
        self._close_handle()
        if self._current_path.exists():
            self._current_path.unlink()
        self.delete_previous()
        if self._owns_directory:
            shutil.rmtree(self.directory, ignore_errors=True)

    def _open(self) -> None:
        self._fh = open(self._current_path, "w", encoding="utf-8", newline="\n")

    def _close_handle(self) -> None:
        if self._fh is not None:
            self._fh.flush()
            self._fh.close()
            self._fh = None
