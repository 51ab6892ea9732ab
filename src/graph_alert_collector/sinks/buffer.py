from __future__ import annotations

import queue
import threading
from pathlib import Path
from typing import Optional

from graph_alert_collector.core.errors import PersistenceError
from graph_alert_collector.sinks.tmp_writer import TempArtifactWriter
from graph_alert_collector.utils.logging import get_logger

DEFAULT_MAX_MESSAGES = 5000

_CLOSE = object()


class StreamingSinkCoordinator:
    """
    Moves records from the fetch loop into a rotatable temporary artifact.

    A bounded queue sits between the producer (``push``) and a single
    consumer thread that writes each record to the artifact. ``push`` blocks
    while the queue is full. ``drain`` waits until the consumer has
    physically written the expected number of records for the current cycle,
    after which ``rotate`` can finalize the artifact.

    Each queued record is tagged with the cycle generation it was pushed in.
    ``rotate`` starts a new generation, and the consumer drops records left
    over from an earlier one without writing or counting them, so a cycle
    abandoned mid-drain never leaks into the next artifact.
    """

    def __init__(
        self,
        writer: TempArtifactWriter,
        max_messages: int = DEFAULT_MAX_MESSAGES,
        drain_timeout_s: Optional[float] = None,
    ):
        if max_messages < 1:
            raise ValueError("max_messages must be >= 1")
        self.writer = writer
        self.drain_timeout_s = drain_timeout_s
        self._queue: "queue.Queue[object]" = queue.Queue(maxsize=max_messages)
        self._cond = threading.Condition()
        self._written = 0
        self._failed = 0
        self._dropped = 0
        self._generation = 0
        self._closed = False
        self._consumer = threading.Thread(target=self._consume, name="graph-alert-sink", daemon=True)
        self.log = get_logger("graph_alert_collector.sink")

    @property
    def written(self) -> int:
        with self._cond:
            return self._written

    @property
    def dropped(self) -> int:
        with self._cond:
            return self._dropped

    def start(self) -> "StreamingSinkCoordinator":
        self._consumer.start()
        return self

    def push(self, record: str) -> None:
        """Enqueue one record, blocking while the channel is full."""
        if self._closed:
            raise PersistenceError("sink coordinator is closed")
        with self._cond:
            generation = self._generation
        self._queue.put((generation, record))

    def drain(self, expected_count: int, timeout_s: Optional[float] = None) -> None:
        """Block until ``expected_count`` records of this cycle have been written.

        Raises:
            PersistenceError: If the wait times out or any record failed to write.
        """
        timeout = self.drain_timeout_s if timeout_s is None else timeout_s
        with self._cond:
            done = self._cond.wait_for(
                lambda: self._queue.empty() and self._written + self._failed >= expected_count,
                timeout=timeout,
            )
            if not done:
                raise PersistenceError(
                    f"drain timed out: {self._written} of {expected_count} records written"
                )
            if self._failed:
                raise PersistenceError(
                    f"{self._failed} of {expected_count} records could not be written to {self.writer.current_path}"
                )

    def rotate(self) -> Path:
        """Finalize the current artifact and return its path."""
        with self._cond:
            try:
                path = self.writer.rotate()
            except OSError as e:
                raise PersistenceError(f"unable to rotate temporary artifact: {e}") from e
            self._written = 0
            self._failed = 0
            self._generation += 1
            return path

    def discard(self) -> None:
        """Throw away the current cycle so the next one starts from an empty artifact.

        Records of this cycle still in the channel are dropped by the consumer.
        """
        self.rotate()
        self.delete_previous()

    def delete_previous(self) -> None:
        try:
            self.writer.delete_previous()
        except OSError as e:
            raise PersistenceError(f"unable to remove temporary artifact: {e}") from e

    def close(self) -> None:
        """Stop the consumer once it has emptied the channel, then remove temporary files."""
        if self._closed:
            return
        self._closed = True
        self._queue.put(_CLOSE)
        self._consumer.join()
        self.log.debug("Sink consumer stopped, removing temporary files")
        self.writer.exit()

    def _consume(self) -> None:
        while True:
            item = self._queue.get()
            if item is _CLOSE:
                return
            generation, record = item
            with self._cond:
                if generation != self._generation:
                    self._dropped += 1
                    self.log.debug("Dropped record from abandoned cycle %s", generation)
                    self._cond.notify_all()
                    continue
                try:
                    self.writer.write_line(record)
                    self._written += 1
                except OSError as e:
                    self._failed += 1
                    self.log.error("Unable to write to temporary artifact: %s", e)
                self._cond.notify_all()
