#!/usr/bin/env python3
"""
Unit tests for the state repositories.
"""

import os
import sys
import tempfile
import unittest

# Add parent directory to path for imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from wellness_engine.exceptions import StorageError
from wellness_engine.storage import InMemoryRepository, JsonFileRepository


class TestJsonFileRepository(unittest.TestCase):
    """Tests for the JsonFileRepository class."""

    def setUp(self):
        """Set up test fixtures."""
        self.tmpdir = tempfile.TemporaryDirectory()
        self.repository = JsonFileRepository(os.path.join(self.tmpdir.name, "state"))

    def tearDown(self):
        """Clean up after tests."""
        self.tmpdir.cleanup()

    def test_missing_key_loads_none(self):
        self.assertIsNone(self.repository.load("ledger"))

    def test_save_and_load(self):
        self.repository.save("battery", {"snapshots": [{"level": 50}]})
        self.assertEqual(self.repository.load("battery"), {"snapshots": [{"level": 50}]})
        self.assertEqual(os.listdir(self.repository.directory), ["battery.json"])

    def test_corrupt_file_raises(self):
        with open(os.path.join(self.repository.directory, "baseline.json"), "w") as f:
            f.write("{broken")
        with self.assertRaises(StorageError):
            self.repository.load("baseline")

    def test_invalid_key(self):
        with self.assertRaises(StorageError):
            self.repository.save("../escape", {})

    def test_unserializable_data_leaves_no_temp_file(self):
        with self.assertRaises(StorageError):
            self.repository.save("ledger", {"bad": object()})
        self.assertEqual(os.listdir(self.repository.directory), [])


class TestInMemoryRepository(unittest.TestCase):
    """Tests for the InMemoryRepository class."""

    def test_returns_copies(self):
        repository = InMemoryRepository()
        data = {"events": [1, 2]}
        repository.save("ledger", data)
        data["events"].append(3)

        self.assertEqual(repository.load("ledger"), {"events": [1, 2]})
        self.assertEqual(repository.keys(), ["ledger"])


if __name__ == "__main__":
    unittest.main()
