"""
Unit tests for the StabilityPool module of the ZKUSD protocol.

Covers compounded deposits, collateral and reward gains across offsets, scale
changes and epoch resets, and the rejection paths that must leave state untouched.
"""

import copy
import unittest
import sys
import os

# Add the core directory to the path
sys.path.append(os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "core"))

from active_pool import ActivePool
from constants import DECIMAL_PRECISION
from fixed_point import from_fixed, to_fixed
from invariants import check_all
from protocol_errors import InsufficientBalanceError, InvalidAmountError, InvariantError
from stability_pool import StabilityPool


class TestStabilityPool(unittest.TestCase):
    def setUp(self):
        """Set up a standalone pool."""
        self.sp = StabilityPool()

        # Users for testing
        self.alice = "alice"
        self.bob = "bob"
        self.carol = "carol"

    def test_deposit(self):
        """Test that a deposit is recorded with a fresh snapshot."""
        update = self.sp.deposit(self.alice, to_fixed(1000))

        self.assertEqual(update.deposit_change, to_fixed(1000))
        self.assertEqual(update.new_deposit, to_fixed(1000))
        self.assertEqual(self.sp.get_total_deposits(), to_fixed(1000))
        self.assertEqual(self.sp.get_compounded_deposit(self.alice), to_fixed(1000))

        snapshot = self.sp.get_depositor_snapshot(self.alice)
        self.assertEqual(snapshot.P, DECIMAL_PRECISION)
        self.assertEqual((snapshot.epoch, snapshot.scale), (0, 0))

    def test_three_depositors_partial_offset(self):
        """Test three equal depositors absorbing 20,000 of debt for 200 collateral."""
        for depositor in (self.alice, self.bob, self.carol):
            self.sp.deposit(depositor, to_fixed(10000))

        self.sp.offset(to_fixed(20000), to_fixed(200))

        self.assertEqual(self.sp.get_total_deposits(), to_fixed(10000))
        for depositor in (self.alice, self.bob, self.carol):
            compounded = self.sp.get_compounded_deposit(depositor)
            gain = self.sp.get_collateral_gain(depositor)

            # Each depositor keeps a third of the remaining 10,000 and absorbed 6,666.67
            self.assertAlmostEqual(from_fixed(compounded), 3333.3333, places=3)
            self.assertAlmostEqual(from_fixed(to_fixed(10000) - compounded), 6666.6667, places=3)
            self.assertAlmostEqual(from_fixed(gain), 66.6667, places=3)

        self.assertEqual(check_all(self.sp), [])

    def test_gains_are_proportional(self):
        """Test that losses and gains are split pro rata."""
        self.sp.deposit(self.alice, to_fixed(1000))
        self.sp.deposit(self.bob, to_fixed(3000))

        self.sp.offset(to_fixed(2000), to_fixed(40))

        self.assertEqual(self.sp.get_collateral_gain(self.alice), to_fixed(10))
        self.assertEqual(self.sp.get_collateral_gain(self.bob), to_fixed(30))

        alice_deposit = self.sp.get_compounded_deposit(self.alice)
        bob_deposit = self.sp.get_compounded_deposit(self.bob)
        self.assertAlmostEqual(from_fixed(alice_deposit), 500.0, places=6)
        self.assertAlmostEqual(bob_deposit / alice_deposit, 3.0, places=9)

        # Rounding always favours the pool
        self.assertLessEqual(alice_deposit + bob_deposit, self.sp.get_total_deposits())

    def test_late_depositor_does_not_share_earlier_gains(self):
        self.sp.deposit(self.alice, to_fixed(1000))
        self.sp.offset(to_fixed(500), to_fixed(10))

        self.sp.deposit(self.bob, to_fixed(500))
        self.assertEqual(self.sp.get_collateral_gain(self.bob), 0)
        self.assertEqual(self.sp.get_compounded_deposit(self.bob), to_fixed(500))

        # Both now hold about 500 and share the next liquidation equally
        self.sp.offset(to_fixed(100), to_fixed(4))
        self.assertAlmostEqual(from_fixed(self.sp.get_collateral_gain(self.bob)), 2.0, places=6)
        self.assertAlmostEqual(from_fixed(self.sp.get_collateral_gain(self.alice)), 12.0, places=6)
        self.assertEqual(check_all(self.sp), [])

    def test_epoch_reset(self):
        """Test that an emptying offset starts a new epoch and zeroes older deposits."""
        self.sp.deposit(self.alice, to_fixed(10000))
        self.sp.offset(to_fixed(10000), to_fixed(100))

        self.assertEqual(self.sp.state.current_epoch, 1)
        self.assertEqual(self.sp.state.current_scale, 0)
        self.assertEqual(self.sp.state.P, DECIMAL_PRECISION)
        self.assertEqual(self.sp.get_total_deposits(), 0)
        self.assertEqual(self.sp.get_compounded_deposit(self.alice), 0)
        self.assertEqual(self.sp.get_collateral_gain(self.alice), to_fixed(100))

        self.sp.deposit(self.bob, to_fixed(5000))
        self.sp.offset(to_fixed(5000), to_fixed(60))

        self.assertEqual(self.sp.state.current_epoch, 2)
        self.assertEqual(self.sp.get_compounded_deposit(self.alice), 0)
        self.assertEqual(self.sp.get_compounded_deposit(self.bob), 0)

        # Each depositor's gain reflects only the liquidation it was exposed to
        self.assertEqual(self.sp.get_collateral_gain(self.alice), to_fixed(100))
        self.assertEqual(self.sp.get_collateral_gain(self.bob), to_fixed(60))
        self.assertEqual(self.sp.get_coll_balance(), to_fixed(160))

        # A stale depositor can still claim its gain
        update = self.sp.withdraw(self.alice, 0)
        self.assertEqual(update.coll_gain, to_fixed(100))
        self.assertEqual(update.new_deposit, 0)
        self.assertNotIn(self.alice, self.sp.depositors())
        self.assertEqual(self.sp.get_coll_balance(), to_fixed(60))

    def test_rounding_dust_is_dropped_on_epoch_reset(self):
        """Test that a loss rounded up to 100% empties the pool completely."""
        self.sp.deposit(self.alice, to_fixed(1000))

        self.sp.offset(to_fixed(1000) - 1, 0)

        self.assertEqual(self.sp.state.current_epoch, 1)
        self.assertEqual(self.sp.get_total_deposits(), 0)
        self.assertEqual(self.sp.get_compounded_deposit(self.alice), 0)

    def test_scale_change(self):
        """Test that P is rescaled instead of dropping below SCALE_FACTOR."""
        self.sp.deposit(self.alice, to_fixed(1000))

        # Leave 10**11 units, a factor of 10**-10 of the pool
        self.sp.offset(to_fixed(1000) - 10**11, to_fixed(10))

        self.assertEqual(self.sp.state.current_scale, 1)
        self.assertEqual(self.sp.state.P, 99999999 * 10**9)
        self.assertEqual(self.sp.get_compounded_deposit(self.alice), 99999999000)
        self.assertLessEqual(self.sp.get_compounded_deposit(self.alice), self.sp.get_total_deposits())
        self.assertEqual(self.sp.get_collateral_gain(self.alice), to_fixed(10))

    def test_deposit_survives_one_scale_change_only(self):
        """Test that a deposit is tracked across one scale change and is zero after two."""
        self.sp.deposit(self.alice, to_fixed(10**9))

        survived_first_scale = None
        for _ in range(200):
            if self.sp.state.current_scale >= 2:
                break
            total = self.sp.get_total_deposits()
            self.sp.offset(total - total // 100, 0)

            if self.sp.state.current_scale == 1 and survived_first_scale is None:
                survived_first_scale = self.sp.get_compounded_deposit(self.alice)
                self.assertGreater(survived_first_scale, self.sp.get_total_deposits() * 99 // 100)
                self.assertLessEqual(survived_first_scale, self.sp.get_total_deposits())
                self.sp.deposit(self.bob, to_fixed(1))

        self.assertEqual(self.sp.state.current_scale, 2)
        self.assertEqual(self.sp.state.current_epoch, 0)
        self.assertGreater(self.sp.get_total_deposits(), 0)

        # alice's snapshot is two scales behind, bob's only one
        self.assertEqual(self.sp.get_compounded_deposit(self.alice), 0)
        self.assertGreater(self.sp.get_compounded_deposit(self.bob), 0)
        self.assertEqual(check_all(self.sp), [])

    def test_withdraw(self):
        self.sp.deposit(self.alice, to_fixed(1000))
        self.sp.offset(to_fixed(500), to_fixed(5))

        update = self.sp.withdraw(self.alice, to_fixed(200))

        self.assertEqual(update.deposit_change, -to_fixed(200))
        self.assertEqual(update.coll_gain, to_fixed(5))
        self.assertAlmostEqual(from_fixed(update.new_deposit), 300.0, places=6)
        self.assertEqual(self.sp.get_collateral_gain(self.alice), 0)
        self.assertEqual(self.sp.get_coll_balance(), 0)

    def test_withdraw_zero_claims_gains(self):
        self.sp.deposit(self.alice, to_fixed(1000))
        self.sp.offset(to_fixed(100), to_fixed(2))
        compounded = self.sp.get_compounded_deposit(self.alice)

        update = self.sp.withdraw(self.alice, 0)

        self.assertEqual(update.coll_gain, to_fixed(2))
        self.assertEqual(update.new_deposit, compounded)
        self.assertEqual(self.sp.get_collateral_gain(self.alice), 0)
        self.assertEqual(self.sp.get_compounded_deposit(self.alice), compounded)

    def test_full_withdrawal_removes_depositor(self):
        self.sp.deposit(self.alice, to_fixed(1000))

        self.sp.withdraw(self.alice, to_fixed(1000))

        self.assertEqual(self.sp.depositors(), [])
        self.assertIsNone(self.sp.get_depositor_snapshot(self.alice))
        self.assertEqual(self.sp.get_total_deposits(), 0)

    def test_invalid_amounts(self):
        """Test that malformed amounts are rejected."""
        for amount in (0, -5, 1.5, True):
            with self.assertRaises(InvalidAmountError):
                self.sp.deposit(self.alice, amount)

        self.sp.deposit(self.alice, to_fixed(1))
        with self.assertRaises(InvalidAmountError):
            self.sp.withdraw(self.alice, -1)
        with self.assertRaises(InvalidAmountError):
            self.sp.offset(-1, 0)

    def test_withdraw_errors(self):
        with self.assertRaises(InsufficientBalanceError):
            self.sp.withdraw(self.alice, to_fixed(1))

        self.sp.deposit(self.alice, to_fixed(100))
        self.sp.offset(to_fixed(50), 0)
        with self.assertRaises(InsufficientBalanceError):
            self.sp.withdraw(self.alice, to_fixed(100))

    def test_offset_larger_than_pool_changes_nothing(self):
        """Test that a rejected offset leaves the pool untouched."""
        self.sp.deposit(self.alice, to_fixed(1000))
        self.sp.offset(to_fixed(300), to_fixed(3))
        before = copy.deepcopy(self.sp.state)

        with self.assertRaises(InvariantError):
            self.sp.offset(to_fixed(5000), to_fixed(50))

        self.assertEqual(self.sp.state, before)

    def test_offset_without_backing_changes_nothing(self):
        """Test that an offset the Active Pool cannot fund is rejected before any update."""
        sp = StabilityPool(ActivePool())
        sp.deposit(self.alice, to_fixed(1000))
        before = copy.deepcopy(sp.state)

        with self.assertRaises(InvariantError):
            sp.offset(to_fixed(100), to_fixed(1))

        self.assertEqual(sp.state, before)
        self.assertEqual(sp.get_compounded_deposit(self.alice), to_fixed(1000))

    def test_offset_on_empty_pool_is_a_no_op(self):
        self.sp.offset(to_fixed(100), to_fixed(1))

        self.assertEqual(self.sp.state.P, DECIMAL_PRECISION)
        self.assertEqual(self.sp.get_coll_balance(), 0)

    def test_reward_issuance(self):
        """Test that secondary rewards are shared by deposit size."""
        self.sp.deposit(self.alice, to_fixed(1000))
        self.sp.deposit(self.bob, to_fixed(3000))

        distributed = self.sp.issue_rewards(to_fixed(40))

        self.assertEqual(distributed, to_fixed(40))
        self.assertEqual(self.sp.get_reward_gain(self.alice), to_fixed(10))
        self.assertEqual(self.sp.get_reward_gain(self.bob), to_fixed(30))

        update = self.sp.withdraw(self.bob, 0)
        self.assertEqual(update.reward_gain, to_fixed(30))
        self.assertEqual(self.sp.state.reward_balance, to_fixed(10))

    def test_rewards_issued_to_empty_pool_are_held(self):
        self.assertEqual(self.sp.issue_rewards(to_fixed(50)), 0)
        self.assertEqual(self.sp.state.pending_reward_issuance, to_fixed(50))

        self.sp.deposit(self.alice, to_fixed(1000))
        self.assertEqual(self.sp.issue_rewards(to_fixed(10)), to_fixed(60))

        self.assertEqual(self.sp.state.pending_reward_issuance, 0)
        self.assertEqual(self.sp.get_reward_gain(self.alice), to_fixed(60))
        self.assertEqual(check_all(self.sp), [])

    def test_rewards_follow_compounded_deposit(self):
        """Test that a depositor who absorbed a loss earns rewards on what is left."""
        self.sp.deposit(self.alice, to_fixed(1000))
        self.sp.offset(to_fixed(500), 0)
        self.sp.deposit(self.bob, to_fixed(500))

        self.sp.issue_rewards(to_fixed(10))

        self.assertAlmostEqual(from_fixed(self.sp.get_reward_gain(self.alice)), 5.0, places=6)
        self.assertAlmostEqual(from_fixed(self.sp.get_reward_gain(self.bob)), 5.0, places=6)


if __name__ == "__main__":
    unittest.main()
