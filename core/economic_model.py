"""
Economic Model for ZKUSD Protocol.

This main module combines all the individual components to create a complete
economic model of the ZKUSD Protocol liquidation system. It can be used
to simulate various scenarios and test how the Stability Pool and the
redistribution mechanism share the losses of liquidated troves.
"""

import logging

import numpy as np
import matplotlib.pyplot as plt

from active_pool import ActivePool
from default_pool import DefaultPool
from fixed_point import from_fixed, mul_div, to_fixed
from invariants import assert_invariants, check_all
from stability_pool import StabilityPool
from trove_manager import MAX_ICR, TroveManager

logger = logging.getLogger(__name__)


class PriceFeed:
    """Simple price feed implementation for simulations."""

    def __init__(self, initial_price=to_fixed(2000)):
        self.price = initial_price

    def fetch_price(self):
        """Returns the current price as a fixed-point int."""
        return self.price

    def set_price(self, new_price):
        """Sets a new price."""
        if isinstance(new_price, bool) or not isinstance(new_price, int) or new_price <= 0:
            raise ValueError(f"Invalid price: {new_price!r}")
        self.price = new_price


class ZkusdEconomicModel:
    """
    Complete economic model of the ZKUSD Protocol.
    Combines all components and provides simulation capabilities.

    Every amount passed in or returned is a fixed-point int; use to_fixed/from_fixed
    to convert from and to human-readable quantities.
    """

    def __init__(self, initial_price=to_fixed(2000), price_feed=None, active_pool=None,
                 default_pool=None, stability_pool=None, trove_manager=None):
        # Set up price feed
        self.price_feed = price_feed if price_feed is not None else PriceFeed(initial_price)

        # Create pools
        self.active_pool = active_pool if active_pool is not None else ActivePool()
        self.default_pool = default_pool if default_pool is not None else DefaultPool(self.active_pool)
        self.active_pool.default_pool = self.default_pool
        self.stability_pool = stability_pool if stability_pool is not None else StabilityPool(self.active_pool)

        # Create trove manager
        self.trove_manager = trove_manager if trove_manager is not None else TroveManager(
            self.active_pool,
            self.stability_pool,
            self.default_pool,
            self.price_feed,
        )

        # History tracking for simulations
        self._reset_history()

    # --- Borrower operations ---

    def open_trove(self, owner, collateral, debt):
        """
        Opens a new trove.

        Args:
            owner: Address of the trove owner
            collateral: Amount of collateral to deposit
            debt: Amount of ZKUSD to borrow

        Returns:
            ID of the newly created trove
        """
        return self.trove_manager.open_trove(owner, collateral, debt)

    def adjust_trove(self, trove_id, coll_change=0, debt_change=0):
        return self.trove_manager.adjust_trove(trove_id, coll_change, debt_change)

    def close_trove(self, trove_id):
        return self.trove_manager.close_trove(trove_id)

    # --- Stability Pool operations ---

    def provide_to_stability_pool(self, depositor, amount):
        return self.stability_pool.deposit(depositor, amount)

    def withdraw_from_stability_pool(self, depositor, amount):
        return self.stability_pool.withdraw(depositor, amount)

    def issue_rewards(self, amount):
        """Issues secondary reward tokens to current Stability Pool depositors."""
        return self.stability_pool.issue_rewards(amount)

    # --- Liquidations ---

    def liquidate_trove(self, trove_id):
        return self.trove_manager.liquidate(trove_id)

    def batch_liquidate_troves(self, trove_ids):
        return self.trove_manager.batch_liquidate_troves(trove_ids)

    def update_price(self, new_price):
        """
        Updates the collateral price and liquidates every trove that fell below MCR.

        Args:
            new_price: New price, fixed-point

        Returns:
            List of liquidated trove IDs
        """
        self.price_feed.set_price(new_price)

        liquidatable_troves = self.trove_manager.get_liquidatable_troves(new_price)

        # The last trove cannot be liquidated
        if liquidatable_troves and len(liquidatable_troves) == self.trove_manager.get_trove_ids_count():
            liquidatable_troves = liquidatable_troves[:-1]

        liquidated = []
        if liquidatable_troves:
            liquidated = self.batch_liquidate_troves(liquidatable_troves).liquidated_troves
            logger.info("Liquidated %d troves at price %.2f", len(liquidated), from_fixed(new_price))

        return liquidated

    # --- Reporting ---

    def check_invariants(self):
        """Returns the names of all violated invariants."""
        return check_all(self.stability_pool, self.trove_manager)

    def get_system_state(self):
        """
        Returns the current state of the system.

        Returns:
            Dictionary with system state, amounts as fixed-point ints
        """
        price = self.price_feed.fetch_price()
        active_coll = self.active_pool.get_coll_balance()
        active_debt = self.active_pool.get_debt()
        default_coll = self.default_pool.get_coll_balance()
        default_debt = self.default_pool.get_debt()

        total_coll = active_coll + default_coll
        total_debt = active_debt + default_debt

        # Calculate Total Collateralization Ratio (TCR)
        tcr = mul_div(total_coll, price, total_debt) if total_debt > 0 else MAX_ICR

        sp_state = self.stability_pool.state
        return {
            'price': price,
            'active_coll': active_coll,
            'active_debt': active_debt,
            'default_coll': default_coll,
            'default_debt': default_debt,
            'stability_coll': self.stability_pool.get_coll_balance(),
            'stability_deposits': self.stability_pool.get_total_deposits(),
            'P': sp_state.P,
            'scale': sp_state.current_scale,
            'epoch': sp_state.current_epoch,
            'total_stakes': self.trove_manager.get_total_stakes(),
            'total_coll': total_coll,
            'total_debt': total_debt,
            'tcr': tcr,
            'active_troves': self.trove_manager.get_trove_ids_count(),
        }

    def _reset_history(self):
        self.price_history = []
        self.sp_deposits_history = []
        self.p_history = []
        self.total_stakes_history = []
        self.default_debt_history = []
        self.active_troves_history = []

    def _update_history(self):
        """Updates history tracking for simulations."""
        state = self.get_system_state()

        self.price_history.append(from_fixed(state['price']))
        self.sp_deposits_history.append(from_fixed(state['stability_deposits']))
        # log10 of P, less 9 decades per scale change
        self.p_history.append(np.log10(state['P']) - 9 * state['scale'])
        self.total_stakes_history.append(from_fixed(state['total_stakes']))
        self.default_debt_history.append(from_fixed(state['default_debt']))
        self.active_troves_history.append(state['active_troves'])

    def simulate_market_scenario(self, days, price_volatility=0.02, plot_results=True,
                                 seed=None, check_invariants=True, plot_path=None):
        """
        Runs a simulation with random price movements over the specified period.

        Args:
            days: Number of days to simulate
            price_volatility: Daily price volatility (standard deviation of log returns)
            plot_results: Whether to plot the results
            seed: Seed for the random price path
            check_invariants: Whether to verify all invariants after every step
            plot_path: If given, the figure is saved there instead of shown

        Returns:
            Dictionary with simulation results
        """
        steps = days * 24  # hourly steps
        rng = np.random.default_rng(seed)

        self._reset_history()
        self._update_history()
        initial_troves = self.trove_manager.get_trove_ids_count()

        # Generate random price movements (log-normal)
        hourly_volatility = price_volatility / np.sqrt(24)
        log_returns = rng.normal(0, hourly_volatility, steps)
        time_points = np.arange(steps + 1) / 24

        price = from_fixed(self.price_feed.fetch_price())
        liquidations = 0
        for i in range(steps):
            price *= np.exp(log_returns[i])
            liquidations += len(self.update_price(to_fixed(float(price))))

            if check_invariants:
                assert_invariants(self.stability_pool, self.trove_manager)

            self._update_history()

        if plot_results:
            fig, axs = plt.subplots(5, 1, figsize=(12, 20), sharex=True)

            # Plot collateral price
            axs[0].plot(time_points, self.price_history)
            axs[0].set_title('Collateral Price')
            axs[0].set_ylabel('USD')

            # Plot Stability Pool deposits
            axs[1].plot(time_points, self.sp_deposits_history)
            axs[1].set_title('Stability Pool Deposits')
            axs[1].set_ylabel('ZKUSD')

            # Plot P
            axs[2].plot(time_points, self.p_history)
            axs[2].set_title('Stability Pool Product P (log10, scale-adjusted)')
            axs[2].set_ylabel('log10 P')

            # Plot total stakes
            axs[3].plot(time_points, self.total_stakes_history)
            axs[3].set_title('Total Trove Stakes')
            axs[3].set_ylabel('Stake')

            # Plot redistributed debt awaiting application
            axs[4].plot(time_points, self.default_debt_history)
            axs[4].set_title('Redistributed Debt Not Yet Applied')
            axs[4].set_ylabel('ZKUSD')
            axs[4].set_xlabel('Days')

            plt.tight_layout()
            if plot_path:
                fig.savefig(plot_path)
                plt.close(fig)
            else:
                plt.show()

        final_state = self.get_system_state()
        return {
            'final_price': from_fixed(final_state['price']),
            'final_sp_deposits': from_fixed(final_state['stability_deposits']),
            'final_system_debt': from_fixed(final_state['total_debt']),
            'final_collateral': from_fixed(final_state['total_coll']),
            'active_troves': final_state['active_troves'],
            'initial_troves': initial_troves,
            'liquidations': liquidations,
            'epoch': final_state['epoch'],
            'scale': final_state['scale'],
        }
