import json
import os
import sys
import tempfile
from decimal import Decimal

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, os.pardir))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from momentum_bot.execution.bootstrap import load_position
from momentum_bot.execution.errors import CheckpointError
from momentum_bot.execution.models import Position
from momentum_bot.utils.persistence import CheckpointStore

import unittest


class TestCheckpointStore(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self._tmp.name, "positionData.json")
        self.store = CheckpointStore(self.path)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_round_trip(self) -> None:
        for position in (
            Position.flat(),
            Position(True, Decimal("100"), Decimal("100.5")),
            Position(True, Decimal("0.123456789012"), Decimal("5000.00000001")),
        ):
            self.store.save(position)
            self.assertEqual(self.store.load(), position)

    def test_file_layout(self) -> None:
        self.store.save(Position(True, Decimal("100"), Decimal("100.5")))
        with open(self.path, encoding="utf-8") as fh:
            data = json.load(fh)
        self.assertEqual(data, {"exists": True, "acquiredPrice": "100", "acquiredCost": "100.5"})

        self.store.save(Position.flat())
        with open(self.path, encoding="utf-8") as fh:
            self.assertEqual(json.load(fh), {"exists": False})

    def test_numeric_amounts_are_accepted(self) -> None:
        with open(self.path, "w", encoding="utf-8") as fh:
            json.dump({"exists": True, "acquiredPrice": 100, "acquiredCost": 100.5}, fh)
        self.assertEqual(self.store.load(), Position(True, Decimal("100"), Decimal("100.5")))

    def test_missing_file_is_not_found(self) -> None:
        self.assertIsNone(self.store.load())

    def test_corrupt_file_raises(self) -> None:
        with open(self.path, "w", encoding="utf-8") as fh:
            fh.write("{not json")
        with self.assertRaises(CheckpointError):
            self.store.load()

    def test_incomplete_position_raises(self) -> None:
        with open(self.path, "w", encoding="utf-8") as fh:
            json.dump({"exists": True, "acquiredPrice": "100"}, fh)
        with self.assertRaises(CheckpointError):
            self.store.load()

    def test_unreadable_checkpoint_starts_flat(self) -> None:
        with open(self.path, "w", encoding="utf-8") as fh:
            fh.write("[]")
        with self.assertLogs("momentum_bot.execution.bootstrap", level="ERROR"):
            self.assertEqual(load_position(self.store), Position.flat())

    def test_saved_position_is_loaded_at_startup(self) -> None:
        position = Position(True, Decimal("100"), Decimal("100.5"))
        self.store.save(position)
        self.assertEqual(load_position(self.store), position)
        self.assertEqual(load_position(None), Position.flat())


class TestPositionInvariant(unittest.TestCase):
    def test_open_position_needs_price_and_cost(self) -> None:
        with self.assertRaises(ValueError):
            Position(exists=True)
        with self.assertRaises(ValueError):
            Position(True, Decimal("-1"), Decimal("1"))


if __name__ == '__main__':
    unittest.main()
