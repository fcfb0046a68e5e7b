"""
Redistribution ledger for ZKUSD Protocol.

When a liquidated trove's debt cannot be absorbed by the Stability Pool, the remaining
debt and collateral are shared among all other active troves in proportion to their
stake. Rather than touching every trove, two global sums are bumped:

    L_coll, L_debt: collateral and debt redistributed per unit staked

and each trove keeps a RewardSnapshot of both. The trove's pending reward is
stake * (L - snapshot), and it is applied to the trove's raw collateral and debt
before anything reads or changes them.

A trove's stake is its collateral scaled by total_stakes_snapshot / total_collateral_snapshot,
both taken after the last liquidation. Troves opened after a redistribution therefore get
a stake that is comparable with the stakes of older troves whose collateral already
includes unapplied rewards.
"""

import logging
from dataclasses import dataclass, field, replace

from fixed_point import mul_div, require_amount
from protocol_errors import InvariantError
from reward_accumulator import ErrorFeedback, pending_reward, per_unit_staked

logger = logging.getLogger(__name__)


@dataclass
class RewardSnapshot:
    """
    Snapshot of a trove's rewards at the time of the last update.

    Records the global L_coll and L_debt values when the trove's pending rewards were
    last applied, so future redistribution gains can be calculated correctly.
    """
    coll: int = 0  # Value of L_coll at the time of snapshot
    debt: int = 0  # Value of L_debt at the time of snapshot


@dataclass
class RedistributionState:
    """Global accounting state of the redistribution mechanism."""
    total_stakes: int = 0
    total_stakes_snapshot: int = 0
    total_collateral_snapshot: int = 0
    total_trove_coll: int = 0     # Raw collateral of every trove holding a stake
    redistributed_coll: int = 0   # Redistributed collateral not yet applied to a trove
    L_coll: int = 0
    L_debt: int = 0
    last_coll_error_redistribution: ErrorFeedback = field(default_factory=ErrorFeedback)
    last_debt_error_redistribution: ErrorFeedback = field(default_factory=ErrorFeedback)


class RedistributionLedger:
    """
    Tracks stakes and the per-unit-staked redistribution sums for active troves.

    The ledger works on trove records that expose ``id``, ``coll``, ``debt``, ``stake``
    and ``reward_snapshot`` attributes; the trove manager owns those records.

    The system collateral used for stake snapshots is kept as a running total, so the
    ledger works the same with or without pools connected. Connected pools are only
    used to move balances and to cross-check that total.
    """

    def __init__(self, active_pool=None, default_pool=None, state=None):
        self.state = state if state is not None else RedistributionState()

        # Collateral last accounted for each trove, keyed by trove id
        self.trove_colls = {}

        # Connected contracts
        self.active_pool = active_pool
        self.default_pool = default_pool

    # --- Pending rewards ---

    def get_pending_coll_reward(self, trove):
        """Returns the collateral redistributed to a trove and not yet applied."""
        return pending_reward(trove.stake, self.state.L_coll, trove.reward_snapshot.coll)

    def get_pending_debt_reward(self, trove):
        """Returns the debt redistributed to a trove and not yet applied."""
        return pending_reward(trove.stake, self.state.L_debt, trove.reward_snapshot.debt)

    def has_pending_rewards(self, trove):
        # A trove with a fresh snapshot has no rewards, whatever its stake
        snapshot = trove.reward_snapshot
        return snapshot.coll < self.state.L_coll or snapshot.debt < self.state.L_debt

    def get_entire_debt_and_coll(self, trove):
        """
        Returns a trove's debt and collateral including pending rewards.

        Returns:
            Tuple of (debt, coll, pending_debt_reward, pending_coll_reward)
        """
        pending_debt = self.get_pending_debt_reward(trove)
        pending_coll = self.get_pending_coll_reward(trove)
        return (trove.debt + pending_debt, trove.coll + pending_coll, pending_debt, pending_coll)

    def apply_pending_rewards(self, trove):
        """
        Adds a trove's pending redistribution rewards to its raw collateral and debt.

        Must be called before any operation reads or changes the trove's collateral or
        debt. Calling it twice in a row applies nothing the second time.

        Args:
            trove: The trove record

        Returns:
            Tuple of (applied_debt, applied_coll)
        """
        pending_debt = 0
        pending_coll = 0
        if self.has_pending_rewards(trove):
            pending_debt = self.get_pending_debt_reward(trove)
            pending_coll = self.get_pending_coll_reward(trove)

            trove.coll += pending_coll
            trove.debt += pending_debt

            self.state.redistributed_coll -= pending_coll
            self.state.total_trove_coll += pending_coll
            self.trove_colls[trove.id] = self.trove_colls.get(trove.id, 0) + pending_coll

            self._move_pending_trove_rewards_to_active_pool(pending_debt, pending_coll)

        self.update_trove_reward_snapshots(trove)
        return (pending_debt, pending_coll)

    def update_trove_reward_snapshots(self, trove):
        """Updates a trove's reward snapshots to current values."""
        trove.reward_snapshot = RewardSnapshot(coll=self.state.L_coll, debt=self.state.L_debt)

    def _move_pending_trove_rewards_to_active_pool(self, debt, coll):
        """
        Moves pending trove rewards from Default Pool to Active Pool.

        Args:
            debt: Amount of ZKUSD debt to move
            coll: Amount of collateral to move
        """
        if self.default_pool is None:
            return

        if debt > 0:
            self.default_pool.decrease_debt(debt)
            if self.active_pool:
                self.active_pool.increase_debt(debt)

        if coll > 0:
            self.default_pool.send_coll_to_active_pool(coll)

    # --- Stakes ---

    def compute_new_stake(self, coll):
        """
        Calculates the stake for a given amount of collateral.

        The ratio total_stakes_snapshot / total_collateral_snapshot accounts for collateral
        that has been redistributed but not yet applied to every trove.
        """
        state = self.state
        if state.total_collateral_snapshot == 0:
            return coll

        if state.total_stakes_snapshot == 0:
            raise InvariantError("collateral snapshot present with zero stakes snapshot")
        return mul_div(coll, state.total_stakes_snapshot, state.total_collateral_snapshot)

    def update_stake_and_totals(self, trove):
        """
        Recomputes a trove's stake from its raw collateral and updates total stakes.

        Called after every operation that changes a trove's collateral, including opening it.

        Returns:
            The trove's new stake
        """
        old_stake = trove.stake
        new_stake = self.compute_new_stake(trove.coll)

        trove.stake = new_stake
        self.state.total_stakes = self.state.total_stakes - old_stake + new_stake

        self.state.total_trove_coll += trove.coll - self.trove_colls.get(trove.id, 0)
        self.trove_colls[trove.id] = trove.coll
        return new_stake

    def remove_stake(self, trove):
        """Removes a trove's stake and collateral from the system totals and zeroes its stake."""
        self.state.total_stakes -= trove.stake
        self.state.total_trove_coll -= self.trove_colls.pop(trove.id, 0)
        trove.stake = 0

    def close(self, trove):
        """
        Removes a trove from the set of troves that share redistributions.

        The trove's pending rewards must already have been applied.

        Raises:
            InvariantError: If the trove still has unapplied rewards
        """
        if trove.stake > 0 and self.has_pending_rewards(trove):
            raise InvariantError("closing a trove with unapplied redistribution rewards")

        self.remove_stake(trove)
        trove.reward_snapshot = RewardSnapshot()

    # --- Redistribution ---

    def redistribute(self, debt, coll):
        """
        Redistributes debt and collateral to all active troves.

        Args:
            debt: Amount of debt to redistribute
            coll: Amount of collateral to redistribute

        Raises:
            InvalidAmountError: If either amount is negative or not an integer
            InvariantError: If there is something to redistribute but no stake to receive it
        """
        require_amount(debt, "debt", allow_zero=True)
        require_amount(coll, "coll", allow_zero=True)

        if debt == 0 and coll == 0:
            return

        state = self.state
        if state.total_stakes == 0:
            raise InvariantError("redistribution with zero total stakes")

        # Work on copies of the error trackers so a failure commits nothing
        coll_error = replace(state.last_coll_error_redistribution)
        debt_error = replace(state.last_debt_error_redistribution)
        coll_reward_per_unit_staked = per_unit_staked(coll, state.total_stakes, coll_error)
        debt_reward_per_unit_staked = per_unit_staked(debt, state.total_stakes, debt_error)

        if self.active_pool and self.default_pool:
            self.active_pool.require_can_release(debt, coll)

            # Add redistributed debt and coll to DefaultPool
            if debt > 0:
                self.active_pool.decrease_debt(debt)
                self.default_pool.increase_debt(debt)
            if coll > 0:
                self.active_pool.send_coll_to_default_pool(coll)

        # Update L_coll and L_debt factors for redistributing rewards
        state.L_coll += coll_reward_per_unit_staked
        state.L_debt += debt_reward_per_unit_staked
        state.last_coll_error_redistribution = coll_error
        state.last_debt_error_redistribution = debt_error
        state.redistributed_coll += coll

        logger.debug(
            "Redistributed %d debt and %d collateral over %d stake, L_coll=%d L_debt=%d",
            debt, coll, state.total_stakes, state.L_coll, state.L_debt,
        )

    def get_system_coll(self):
        """Returns the collateral of all active troves, applied or still pending."""
        return self.state.total_trove_coll + self.state.redistributed_coll

    def update_system_snapshots(self, coll_remainder=0):
        """
        Updates system snapshots after liquidations.

        Args:
            coll_remainder: Collateral still held by the Active Pool that is about to leave it;
                only used to reconcile the connected pools with the running total

        Raises:
            InvariantError: If connected pools disagree with the ledger's collateral total
        """
        state = self.state
        system_coll = self.get_system_coll()

        if self.active_pool and self.default_pool:
            pool_coll = (
                self.active_pool.get_coll_balance() - coll_remainder + self.default_pool.get_coll_balance()
            )
            if pool_coll != system_coll:
                raise InvariantError(f"pools hold {pool_coll} collateral, troves account for {system_coll}")

        state.total_stakes_snapshot = state.total_stakes
        state.total_collateral_snapshot = system_coll
