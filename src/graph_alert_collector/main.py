from __future__ import annotations

import sys

from graph_alert_collector.config_models import CollectorConfig, load_and_validate_config
from graph_alert_collector.core.errors import CollectorError
from graph_alert_collector.core.factory import ComponentFactory
from graph_alert_collector.utils.logging import get_logger, setup_logging

log = get_logger("graph_alert_collector.main")


def run_one(config: CollectorConfig) -> int:
    """Run a single poll cycle and report whether it advanced the watermark."""
    scheduler = ComponentFactory(config).build()
    report = scheduler.run_once()
    log.info(
        "DONE: records=%s advanced=%s error=%s",
        report.records_fetched,
        report.advanced,
        report.error,
    )
    return 0 if report.ok else 1


def run_schedule(config: CollectorConfig) -> int:
    """Poll on the configured interval until interrupted."""
    scheduler = ComponentFactory(config).build()
    scheduler.install_signal_handlers()
    scheduler.start()
    return 0


def main() -> None:
    """Main entry point for the collector."""
    if len(sys.argv) < 2:
        print("Usage: graph-alert-collector configs/collector.yaml")
        raise SystemExit(2)

    config_path = sys.argv[1]

    try:
        config = load_and_validate_config(config_path)
    except (FileNotFoundError, ValueError) as e:
        setup_logging()
        log.error("initialization failed: %s", e)
        raise SystemExit(1)

    setup_logging(config.logging_config, verbose=config.verbose)

    try:
        if config.schedule.enabled:
            log.info("Running in scheduled mode")
            code = run_schedule(config)
        else:
            log.info("Running in one-time mode")
            code = run_one(config)
    except CollectorError as e:
        log.error("initialization failed: %s", e)
        raise SystemExit(1)

    raise SystemExit(code)


if __name__ == "__main__":
    main()
