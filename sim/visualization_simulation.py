"""
Visualization simulation for ZKUSD Protocol Economic Model.

This script runs a month of random price movements with visualizations.
"""

import logging
import numpy as np
import sys
import os

# Add the core directory to the path
sys.path.append(os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "core"))
from economic_model import ZkusdEconomicModel
from fixed_point import to_fixed


def run_visualization_simulation(seed=None):
    rng = np.random.default_rng(seed)

    # Initialize the protocol
    model = ZkusdEconomicModel(initial_price=to_fixed(2000))

    print("Creating initial troves...")
    # Create some initial troves with varying collateral and risk profiles
    for i in range(10):
        collateral = round(float(rng.uniform(2.0, 10.0)), 4)
        # Target different collateralization ratios from 120% to 200%
        target_cr = 1.2 + (i * 0.8 / 10)
        debt = round(collateral * 2000 / target_cr - 200, 2)
        trove_id = model.open_trove(f"user{i}", to_fixed(collateral), to_fixed(debt))
        print(f"Trove {trove_id}: {collateral:.2f} collateral, {debt:.2f} ZKUSD, CR: {target_cr*100:.0f}%")

    # Add to stability pool
    print("\nAdding to stability pool...")
    model.provide_to_stability_pool("sp_user_1", to_fixed(10000))
    model.provide_to_stability_pool("sp_user_2", to_fixed(5000))
    print("Added 15000 ZKUSD to stability pool")

    # Run a simulation with price movements and plot results
    print("\nRunning simulation with visualizations...")
    results = model.simulate_market_scenario(30, price_volatility=0.03, plot_results=True, seed=seed)

    print("\nSimulation Results:")
    for key, value in results.items():
        print(f"  {key}: {value}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")
    run_visualization_simulation()
