from __future__ import annotations

import signal
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

from graph_alert_collector.core.errors import AuthError, CollectorError, FetchError, PersistenceError
from graph_alert_collector.core.models import CycleReport, CycleState, PollWindow
from graph_alert_collector.fetch.alerts import GraphAlertsFetcher
from graph_alert_collector.sinks.base import OutputDispatcher
from graph_alert_collector.sinks.buffer import StreamingSinkCoordinator
from graph_alert_collector.state.base import WatermarkStore
from graph_alert_collector.utils.logging import get_logger
from graph_alert_collector.utils.time import format_rfc3339, parse_rfc3339, utc_now

JOB_ID = "graph_alert_poll"


class PollScheduler:
    """
    Drives poll cycles: fetch a window, drain it to the sink, dispatch, advance the watermark.

    The watermark only moves after a cycle's records have been handed to the
    outputs (or the cycle found nothing). Any failure leaves it in place so the
    next tick asks for the same window again.
    """

    def __init__(
        self,
        fetcher: GraphAlertsFetcher,
        coordinator: StreamingSinkCoordinator,
        outputs: OutputDispatcher,
        store: WatermarkStore,
        interval_seconds: int = 30,
        initial_lookback: timedelta = timedelta(minutes=60),
        run_on_start: bool = False,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Args:
            fetcher: Logs in and pages through alerts.
            coordinator: Bounded channel plus temporary artifact.
            outputs: Receives each finalized artifact.
            store: Watermark persistence; read once here.
            interval_seconds: Fixed wait between cycle starts.
            initial_lookback: Window size for the very first cycle when no watermark exists.
            run_on_start: Fire the first cycle immediately instead of after one interval.
            clock: Source of "now"; must return timezone-aware datetimes.
        """
        self.fetcher = fetcher
        self.coordinator = coordinator
        self.outputs = outputs
        self.store = store
        self.interval_seconds = interval_seconds
        self.initial_lookback = initial_lookback
        self.run_on_start = run_on_start
        self.clock = clock
        self.state = CycleState.IDLE
        self.log = get_logger("graph_alert_collector.scheduler")
        self._scheduler: Optional[BlockingScheduler] = None
        self.watermark = self._load_watermark()

    def run_cycle(self) -> CycleReport:
        """Run one fetch -> drain -> advance cycle."""
        report = CycleReport(state=self.state)
        if self.state is CycleState.CLOSED:
            report.error = "scheduler is closed"
            return report

        try:
            self._run_cycle(report)
        finally:
            report.state = self.state
            if self.state is not CycleState.CLOSED:
                self._set_state(CycleState.IDLE)
        return report

    def _run_cycle(self, report: CycleReport) -> None:
        lower = parse_rfc3339(self.watermark)
        window = PollWindow(lower=lower, upper=max(lower, self.clock()))
        report.window = window

        self._set_state(CycleState.FETCHING)
        self.log.info("Getting microsoft graph security alerts for window %s..%s", *window.filter_bounds())

        pushed = 0

        def push(record: str) -> None:
            nonlocal pushed
            self.coordinator.push(record)
            pushed += 1

        try:
            self.fetcher.login()
            count = self.fetcher.fetch_alerts(window, push)
        except (AuthError, FetchError, PersistenceError) as e:
            self.log.error("Error getting alerts: %s", e)
            report.error = str(e)
            self._discard_partial(pushed)
            return

        report.records_fetched = count

        if count > 0:
            self._set_state(CycleState.DRAINING)
            try:
                report.artifact_path = self._drain_and_dispatch(count, window)
            except CollectorError as e:
                self.log.error("Output for window ending %s failed, keeping watermark: %s", format_rfc3339(window.upper), e)
                report.error = str(e)
                return

        self._set_state(CycleState.ADVANCING)
        self._advance(window.upper)
        report.advanced = True
        self.log.info("%s events processed", count)

    def start(self) -> None:
        """Block, running a cycle every ``interval_seconds`` until ``stop`` is called."""
        self._scheduler = BlockingScheduler(timezone="UTC")
        job_kwargs = {}
        if self.run_on_start:
            job_kwargs["next_run_time"] = datetime.now(timezone.utc)

        self._scheduler.add_job(
            self.run_cycle,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=JOB_ID,
            name="Poll Microsoft Graph security alerts",
            max_instances=1,
            coalesce=True,
            **job_kwargs,
        )

        self.log.info("Starting collector (every %s seconds)", self.interval_seconds)
        try:
            self._scheduler.start()
        except (KeyboardInterrupt, SystemExit):
            self.log.info("Collector interrupted")
        finally:
            self.close()

    def run_once(self) -> CycleReport:
        """Run a single cycle, then release resources."""
        try:
            return self.run_cycle()
        finally:
            self.close()

    def stop(self) -> None:
        """Stop scheduling; waits for a running cycle to finish."""
        if self._scheduler is not None and self._scheduler.running:
            self.log.debug("Shutting down scheduler, waiting for the current cycle")
            self._scheduler.shutdown(wait=True)

    def close(self) -> None:
        """Close the channel and clean up; idempotent."""
        if self.state is CycleState.CLOSED:
            return
        self.stop()
        self._set_state(CycleState.CLOSED)
        self.log.debug("Closed channel, doing cleanup...")
        self.coordinator.close()

        client = getattr(self.fetcher, "client", None)
        if client is not None and hasattr(client, "close"):
            client.close()
        self.log.info("Collector closed successfully")

    def install_signal_handlers(self) -> None:
        """Soft close on SIGINT/SIGTERM."""

        def handler(signum: int, frame: object) -> None:
            self.log.info("Received signal %s, shutting down", signum)
            self.stop()

        signal.signal(signal.SIGINT, handler)
        signal.signal(signal.SIGTERM, handler)

    def _drain_and_dispatch(self, count: int, window: PollWindow) -> Path:
        try:
            self.coordinator.drain(count)
        except PersistenceError:
            self._discard_artifact()
            raise

        artifact = self.coordinator.rotate()
        try:
            if artifact.stat().st_size == 0:
                raise PersistenceError(f"temporary artifact {artifact.name} is 0 bytes with {count} events")
            self.outputs.dispatch(artifact, format_rfc3339(window.upper))
        except CollectorError:
            raise
        except Exception as e:
            raise PersistenceError(f"unable to dispatch {artifact.name}: {type(e).__name__}: {e}") from e
        finally:
            try:
                self.coordinator.delete_previous()
            except PersistenceError as e:
                self.log.error("Unable to remove temporary artifact: %s", e)
        return artifact

    def _discard_partial(self, pushed: int) -> None:
        if not pushed:
            return
        self.log.warning("Discarding %s records from the failed cycle", pushed)
        try:
            self.coordinator.discard()
        except PersistenceError as e:
            self.log.error("Unable to discard partial cycle: %s", e)

    def _discard_artifact(self) -> None:
        try:
            self.coordinator.discard()
        except PersistenceError as e:
            self.log.error("Unable to reset temporary artifact: %s", e)

    def _advance(self, upper: datetime) -> None:
        self.watermark = format_rfc3339(upper)
        try:
            self.store.save(self.watermark)
        except PersistenceError as e:
            self.log.error("Unable to persist watermark %s: %s", self.watermark, e)

    def _load_watermark(self) -> str:
        raw = self.store.load()
        if raw is None:
            start = self.clock() - self.initial_lookback
            self.log.info("No previous state, starting from %s", format_rfc3339(start))
            return format_rfc3339(start)
        try:
            parse_rfc3339(raw)
        except ValueError as e:
            raise PersistenceError(f"stored watermark {raw!r} is not an RFC 3339 timestamp") from e
        self.log.info("Restored watermark %s", raw)
        return raw

    def _set_state(self, state: CycleState) -> None:
        self.log.debug("State %s -> %s", self.state.value, state.value)
        self.state = state
