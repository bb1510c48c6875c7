from __future__ import annotations

import unittest

from trading.positions import Position, PositionLedger

TOKEN = "0xaaaaaaaaaa1111111111111111111111111111bb"
CURVE = "0x2222222222222222222222222222222222222222"
CURVE_NEW = "0x5555555555555555555555555555555555555555"


class PositionLedgerTests(unittest.TestCase):
    def test_repeated_entries_accumulate_cost_and_keep_earliest_height(self) -> None:
        ledger = PositionLedger()
        ledger.record_entry(TOKEN, CURVE, 100, 10)
        ledger.record_entry(TOKEN, CURVE, 50, 8)
        ledger.record_entry(TOKEN, CURVE, 25, 12)

        position = ledger.get(TOKEN)
        self.assertIsNotNone(position)
        self.assertEqual(position.total_cost_basis, 175)
        self.assertEqual(position.first_seen_height, 8)
        self.assertEqual(len(ledger), 1)

    def test_later_entry_overwrites_venue(self) -> None:
        ledger = PositionLedger()
        ledger.record_entry(TOKEN, CURVE, 100, 10)
        ledger.record_entry(TOKEN, CURVE_NEW, 1, 11)
        self.assertEqual(ledger.get(TOKEN).venue_id, CURVE_NEW)

    def test_negative_cost_delta_is_rejected(self) -> None:
        ledger = PositionLedger()
        with self.assertRaises(ValueError):
            ledger.record_entry(TOKEN, CURVE, -1, 10)
        self.assertEqual(len(ledger), 0)

    def test_keys_are_case_insensitive(self) -> None:
        ledger = PositionLedger()
        ledger.record_entry("0x" + TOKEN[2:].upper(), CURVE, 100, 10)
        self.assertIn(TOKEN, ledger)
        self.assertIsNotNone(ledger.get(TOKEN))
        self.assertIsNotNone(ledger.remove(TOKEN))
        self.assertNotIn(TOKEN, ledger)

    def test_all_returns_snapshot_copies(self) -> None:
        ledger = PositionLedger()
        ledger.upsert(Position(asset_id=TOKEN, venue_id=CURVE, total_cost_basis=100, first_seen_height=1))
        snapshot = ledger.all()
        snapshot[0].total_cost_basis = 1
        for position in snapshot:
            ledger.remove(position.asset_id)
        self.assertEqual(len(snapshot), 1)
        self.assertEqual(len(ledger), 0)

    def test_remove_missing_returns_none_and_clear_empties(self) -> None:
        ledger = PositionLedger()
        self.assertIsNone(ledger.remove(TOKEN))
        ledger.record_entry(TOKEN, CURVE, 1, 1)
        ledger.clear()
        self.assertEqual(ledger.all(), [])


if __name__ == "__main__":
    unittest.main()
