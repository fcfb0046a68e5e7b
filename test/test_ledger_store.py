"""
Unit tests for saving and restoring model state.
"""

import json
import os
import sys
import tempfile
import unittest

# Add the core directory to the path
sys.path.append(os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "core"))

from economic_model import ZkusdEconomicModel
from fixed_point import to_fixed
from ledger_store import dumps_model, load_model, restore_model, save_model, snapshot_model
from trove_manager import Status


class TestLedgerStore(unittest.TestCase):
    def setUp(self):
        """Set up a model that has been through a liquidation and a reward issuance."""
        self.model = ZkusdEconomicModel(initial_price=to_fixed(2000))
        self.a = self.model.open_trove("UserA", to_fixed(2), to_fixed(2800))
        self.b = self.model.open_trove("UserB", to_fixed(10), to_fixed(1800))
        self.c = self.model.open_trove("UserC", to_fixed(10), to_fixed(1800))

        self.model.provide_to_stability_pool("alice", to_fixed(1000))
        self.model.provide_to_stability_pool("bob", to_fixed(3000))
        self.model.issue_rewards(to_fixed(7))
        self.model.update_price(to_fixed(1600))

    def test_snapshot_is_deterministic(self):
        self.assertEqual(dumps_model(self.model), dumps_model(self.model))

        data = json.loads(dumps_model(self.model))
        self.assertEqual(data["version"], 1)
        self.assertEqual(data["price"], to_fixed(1600))
        self.assertEqual([d["address"] for d in data["stability_pool"]["depositors"]], ["alice", "bob"])

    def test_file_round_trip(self):
        """Test that a saved model restores to identical state."""
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "model.json")
            save_model(path, self.model)
            restored = load_model(path)

        self.assertEqual(dumps_model(restored), dumps_model(self.model))
        self.assertEqual(restored.trove_manager.get_trove_status(self.a), Status.CLOSED_BY_LIQUIDATION)
        self.assertEqual(restored.check_invariants(), [])
        self.assertEqual(
            restored.stability_pool.get_collateral_gain("bob"),
            self.model.stability_pool.get_collateral_gain("bob"),
        )

    def test_restored_model_keeps_working(self):
        """Test that a restored model evolves exactly like the model it was saved from."""
        restored = restore_model(snapshot_model(self.model))

        for model in (self.model, restored):
            model.provide_to_stability_pool("carol", to_fixed(500))
            model.open_trove("UserD", to_fixed(3), to_fixed(2000))
            model.adjust_trove(self.b, coll_change=to_fixed(1))
            model.withdraw_from_stability_pool("alice", 0)

        self.assertEqual(dumps_model(restored), dumps_model(self.model))

        # The restored pools are wired to each other
        self.assertIs(restored.active_pool.default_pool, restored.default_pool)
        self.assertIs(restored.trove_manager.stability_pool, restored.stability_pool)

    def test_rejects_unknown_version(self):
        data = snapshot_model(self.model)
        data["version"] = 99

        with self.assertRaises(ValueError):
            restore_model(data)

    def test_rejects_malformed_values(self):
        data = snapshot_model(self.model)
        data["stability_pool"]["P"] = 0
        with self.assertRaises(ValueError):
            restore_model(data)

        data = snapshot_model(self.model)
        data["trove_manager"]["L_debt"] = "12"
        with self.assertRaises(TypeError):
            restore_model(data)

        data = snapshot_model(self.model)
        entries = data["stability_pool"]["epoch_to_scale_to_sum"]
        entries.append(dict(entries[0]))
        with self.assertRaises(ValueError):
            restore_model(data)

    def test_rejects_missing_active_trove(self):
        data = snapshot_model(self.model)
        data["trove_manager"]["troves"] = [t for t in data["trove_manager"]["troves"] if t["id"] != self.b]

        with self.assertRaises(ValueError):
            restore_model(data)

    def test_rejects_collateral_total_mismatch(self):
        data = snapshot_model(self.model)
        data["trove_manager"]["total_trove_coll"] += 1

        with self.assertRaises(ValueError):
            restore_model(data)


if __name__ == "__main__":
    unittest.main()
