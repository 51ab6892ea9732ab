from __future__ import annotations

from datetime import timedelta

from graph_alert_collector.config_models import CollectorConfig
from graph_alert_collector.core.models import Credentials
from graph_alert_collector.core.scheduler import PollScheduler
from graph_alert_collector.fetch.alerts import GraphAlertsFetcher
from graph_alert_collector.http.client import RequestsHttpClient
from graph_alert_collector.http.policies import RetryPolicy
from graph_alert_collector.sinks.buffer import StreamingSinkCoordinator
from graph_alert_collector.sinks.file_output import FileOutputDispatcher
from graph_alert_collector.sinks.tmp_writer import TempArtifactWriter
from graph_alert_collector.state.base import WatermarkStore
from graph_alert_collector.state.file_store import FileWatermarkStore
from graph_alert_collector.state.sqlite_store import SQLiteWatermarkStore


class ComponentFactory:
    """Factory for wiring collector components from a validated config."""

    def __init__(self, config: CollectorConfig):
        self.config = config

    def build(self) -> PollScheduler:
        """
        Build a scheduler with its fetcher, sink coordinator, output and watermark store.

        The sink consumer thread is started here, so the returned scheduler
        must be closed (``run_once``/``start`` do that) to release it.
        """
        cfg = self.config
        fetcher = GraphAlertsFetcher(
            credentials=self.build_credentials(),
            client=self.build_http_client(),
        )
        store = self.build_store()
        coordinator = StreamingSinkCoordinator(
            writer=TempArtifactWriter(directory=cfg.buffer.tmp_dir),
            max_messages=cfg.buffer.max_messages,
            drain_timeout_s=cfg.buffer.drain_timeout_s,
        )
        outputs = FileOutputDispatcher(path=cfg.output.path, write_mode=cfg.output.write_mode)

        try:
            scheduler = PollScheduler(
                fetcher=fetcher,
                coordinator=coordinator,
                outputs=outputs,
                store=store,
                interval_seconds=cfg.schedule.interval_seconds,
                initial_lookback=timedelta(minutes=cfg.initial_lookback_minutes),
                run_on_start=cfg.schedule.run_on_start,
            )
        except Exception:
            coordinator.writer.exit()
            raise
        coordinator.start()
        return scheduler

    def build_credentials(self) -> Credentials:
        c = self.config.credentials
        return Credentials(tenant_id=c.tenant_id, client_id=c.client_id, client_secret=c.client_secret)

    def build_http_client(self) -> RequestsHttpClient:
        h = self.config.http
        retry = RetryPolicy(
            initial_delay_ms=h.initial_backoff_ms,
            max_delay_ms=h.max_backoff_ms,
            factor=h.backoff_factor,
        )
        return RequestsHttpClient(timeout_s=h.timeout_s, retry=retry)

    def build_store(self) -> WatermarkStore:
        s = self.config.state
        if s.backend == "sqlite":
            return SQLiteWatermarkStore(s.path, key=s.key)
        return FileWatermarkStore(s.path)
