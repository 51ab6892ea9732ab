from graph_alert_collector.state.base import WatermarkStore
from graph_alert_collector.state.file_store import FileWatermarkStore
from graph_alert_collector.state.sqlite_store import SQLiteWatermarkStore

__all__ = [
    "FileWatermarkStore",
    "SQLiteWatermarkStore",
    "WatermarkStore",
]
