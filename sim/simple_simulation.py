"""
Simple simulation for ZKUSD Protocol Economic Model.

This script walks through two Stability Pool scenarios and a small trove system
where a liquidation is split between the pool and the remaining troves.
"""

import logging
import sys
import os

# Add the core directory to the path
sys.path.append(os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "core"))
from economic_model import ZkusdEconomicModel
from fixed_point import from_fixed, to_fixed
from stability_pool import StabilityPool


def run_partial_offset_scenario():
    """Three equal depositors absorb a liquidation that takes two thirds of the pool."""
    sp = StabilityPool()

    print("Three depositors provide 10,000 ZKUSD each...")
    for name in ("alice", "bob", "carol"):
        sp.deposit(name, to_fixed(10000))
    print(f"  Total deposits: {from_fixed(sp.get_total_deposits()):.2f} ZKUSD")

    print("\nOffsetting 20,000 ZKUSD of debt for 200 collateral...")
    sp.offset(to_fixed(20000), to_fixed(200))

    for name in ("alice", "bob", "carol"):
        print(f"  {name}: deposit {from_fixed(sp.get_compounded_deposit(name)):.2f} ZKUSD, "
              f"collateral gain {from_fixed(sp.get_collateral_gain(name)):.4f}")


def run_epoch_reset_scenario():
    """A liquidation empties the pool, then a new depositor absorbs a second one."""
    sp = StabilityPool()

    print("alice provides 10,000 ZKUSD...")
    sp.deposit("alice", to_fixed(10000))

    print("Offsetting exactly 10,000 ZKUSD of debt for 100 collateral...")
    sp.offset(to_fixed(10000), to_fixed(100))
    print(f"  Epoch is now {sp.state.current_epoch}, alice's deposit: "
          f"{from_fixed(sp.get_compounded_deposit('alice')):.2f} ZKUSD")

    print("\nbob provides 5,000 ZKUSD...")
    sp.deposit("bob", to_fixed(5000))

    print("Offsetting exactly 5,000 ZKUSD of debt for 60 collateral...")
    sp.offset(to_fixed(5000), to_fixed(60))

    for name in ("alice", "bob"):
        print(f"  {name}: deposit {from_fixed(sp.get_compounded_deposit(name)):.2f} ZKUSD, "
              f"collateral gain {from_fixed(sp.get_collateral_gain(name)):.4f}")


def run_trove_liquidation_scenario():
    model = ZkusdEconomicModel(initial_price=to_fixed(2000))

    print("Creating initial troves...")
    for i, (coll, debt) in enumerate([(3, 4000), (5, 6000), (8, 7000), (10, 5000)]):
        trove_id = model.open_trove(f"user{i}", to_fixed(coll), to_fixed(debt))
        print(f"Trove {trove_id}: {coll} collateral, {debt} ZKUSD")

    print("\nAdding 3,000 ZKUSD to the stability pool...")
    model.provide_to_stability_pool("sp_user_1", to_fixed(3000))

    new_price = to_fixed(1500)
    print(f"\nSimulating price drop to ${from_fixed(new_price):.2f}")
    liquidated = model.update_price(new_price)
    print(f"Liquidated troves: {liquidated}")

    state = model.get_system_state()
    print("\nFinal protocol state:")
    print(f"  Stability pool deposits: {from_fixed(state['stability_deposits']):.2f} ZKUSD")
    print(f"  Stability pool collateral: {from_fixed(state['stability_coll']):.4f}")
    print(f"  Redistributed debt pending: {from_fixed(state['default_debt']):.2f} ZKUSD")
    print(f"  Redistributed collateral pending: {from_fixed(state['default_coll']):.4f}")
    print(f"  Active troves: {state['active_troves']}")
    print(f"  Invariant violations: {model.check_invariants() or 'none'}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")

    print("=== Partial offset ===")
    run_partial_offset_scenario()
    print("\n=== Epoch reset ===")
    run_epoch_reset_scenario()
    print("\n=== Trove liquidation ===")
    run_trove_liquidation_scenario()
