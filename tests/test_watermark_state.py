import json
import os
import shutil
import tempfile
import unittest

from graph_alert_collector.core.errors import PersistenceError
from graph_alert_collector.state import FileWatermarkStore, SQLiteWatermarkStore


class TestFileWatermarkStore(unittest.TestCase):
    def setUp(self):
        self.tmp_dir = tempfile.mkdtemp()
        self.path = os.path.join(self.tmp_dir, "nested", "state.json")
        self.store = FileWatermarkStore(self.path)

    def tearDown(self):
        shutil.rmtree(self.tmp_dir, ignore_errors=True)

    def test_absent_file_loads_none(self):
        self.assertIsNone(self.store.load())

    def test_save_then_load(self):
        self.store.save("2024-01-01T12:00:00Z")
        self.assertEqual(self.store.load(), "2024-01-01T12:00:00Z")
        self.assertEqual(FileWatermarkStore(self.path).load(), "2024-01-01T12:00:00Z")

        with open(self.path, "r", encoding="utf-8") as f:
            self.assertEqual(json.load(f)["last_poll_timestamp"], "2024-01-01T12:00:00Z")
        self.assertFalse(os.path.exists(self.path + ".tmp"))

    def test_corrupt_file_raises(self):
        os.makedirs(os.path.dirname(self.path), exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            f.write("{broken")
        with self.assertRaises(PersistenceError):
            self.store.load()


class TestSQLiteWatermarkStore(unittest.TestCase):
    def setUp(self):
        self.tmp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.tmp_dir, "state.db")

    def tearDown(self):
        shutil.rmtree(self.tmp_dir, ignore_errors=True)

    def test_roundtrip_and_overwrite(self):
        store = SQLiteWatermarkStore(self.db_path)
        self.assertIsNone(store.load())

        store.save("2024-01-01T12:00:00Z")
        store.save("2024-01-01T12:00:30Z")
        self.assertEqual(SQLiteWatermarkStore(self.db_path).load(), "2024-01-01T12:00:30Z")

    def test_keys_are_independent(self):
        a = SQLiteWatermarkStore(self.db_path, key="a")
        b = SQLiteWatermarkStore(self.db_path, key="b")
        a.save("2024-01-01T00:00:00Z")
        self.assertIsNone(b.load())
        self.assertEqual(a.load(), "2024-01-01T00:00:00Z")


if __name__ == "__main__":
    unittest.main()
