from __future__ import annotations
import logging
import logging.config
from pathlib import Path
import yaml

ROOT_LOGGER = "graph_alert_collector"
DEFAULT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def setup_logging(config_path: str = "configs/logging.yaml", verbose: bool = False) -> None:
    """Setup logging configuration from YAML file, then apply the verbosity switch."""
    path = Path(config_path)
    if not path.exists():
        # Safe fallback
        logging.basicConfig(level=logging.INFO, format=DEFAULT_FORMAT)
    else:
        with path.open("r", encoding="utf-8") as f:
            cfg = yaml.safe_load(f)
        logging.config.dictConfig(cfg)

    if verbose:
        logging.getLogger(ROOT_LOGGER).setLevel(logging.DEBUG)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance."""
    return logging.getLogger(name)
