"""
Trove Manager Model for ZKUSD Protocol.

This module simulates the TroveManager contract which handles troves and their liquidation.

The TroveManager is responsible for:
1. Keeping the record of every trove (collateral, debt, stake, reward snapshot)
2. A minimal trove lifecycle: open, adjust and close, each keeping stakes up to date
3. Liquidating undercollateralized troves, splitting each one between a Stability Pool
   offset and a redistribution to the remaining troves

The per-unit-staked accounting itself lives in the RedistributionLedger and the
StabilityPool; this module decides how much of each liquidation goes to which.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum

from constants import DECIMAL_PRECISION, GAS_COMPENSATION, MCR, MIN_NET_DEBT, PERCENT_DIVISOR
from fixed_point import mul_div, require_amount
from protocol_errors import InvalidAmountError, InvariantError
from redistribution import RedistributionLedger, RewardSnapshot

logger = logging.getLogger(__name__)

MAX_ICR = 2**256 - 1  # Reported for troves without debt


# Trove status enum
class Status(Enum):
    """
    Represents the possible states of a trove in the ZKUSD Protocol.

    A trove's status determines what operations can be performed on it and whether
    it takes part in redistributions.
    """
    NON_EXISTENT = 0  # Trove has not been created
    ACTIVE = 1        # Normal active trove with debt and collateral
    CLOSED_BY_OWNER = 2  # Trove was voluntarily closed by its owner
    CLOSED_BY_LIQUIDATION = 3  # Trove was liquidated due to insufficient collateral


@dataclass
class Trove:
    """
    Represents a single trove (borrower position) in the ZKUSD Protocol.

    ``coll`` and ``debt`` are raw values: redistribution rewards accrue outside them
    until they are applied.
    """
    id: int                 # Unique identifier for the trove
    owner: str = ""         # Address of the borrower
    debt: int = 0           # Recorded ZKUSD debt, including the gas compensation reserve
    coll: int = 0           # Recorded collateral amount
    stake: int = 0          # Stake for redistribution calculations
    status: Status = Status.NON_EXISTENT
    reward_snapshot: RewardSnapshot = field(default_factory=RewardSnapshot)


@dataclass
class LiquidationValues:
    """
    Values calculated during the liquidation of one or more troves.

    Tracks the components of each liquidation:
    1. Gas compensation for the liquidator
    2. Portions of debt and collateral offset using the Stability Pool
    3. Portions of debt and collateral redistributed to other troves
    """
    entire_debt: int = 0             # Debt of the liquidated troves, pending rewards included
    entire_coll: int = 0             # Collateral of the liquidated troves, pending rewards included
    coll_gas_compensation: int = 0   # Collateral paid to the liquidator
    debt_gas_compensation: int = 0   # ZKUSD paid to the liquidator from the gas reserve
    debt_to_offset: int = 0          # Debt offset using the Stability Pool
    coll_to_send_to_sp: int = 0      # Collateral sent to SP depositors as reward
    debt_to_redistribute: int = 0    # Debt spread among other troves
    coll_to_redistribute: int = 0    # Collateral spread among other troves
    liquidated_troves: list = field(default_factory=list)

    def add(self, other):
        """Adds another liquidation's values into these running totals."""
        self.entire_debt += other.entire_debt
        self.entire_coll += other.entire_coll
        self.coll_gas_compensation += other.coll_gas_compensation
        self.debt_gas_compensation += other.debt_gas_compensation
        self.debt_to_offset += other.debt_to_offset
        self.coll_to_send_to_sp += other.coll_to_send_to_sp
        self.debt_to_redistribute += other.debt_to_redistribute
        self.coll_to_redistribute += other.coll_to_redistribute
        self.liquidated_troves.extend(other.liquidated_troves)


class TroveManager:
    """
    Simulates the TroveManager contract which handles trove operations.

    Liquidation follows these steps for each trove:
    1. Check the trove is eligible (ICR < MCR) and is not the last trove
    2. Apply its pending redistribution rewards
    3. Take 0.5% of its collateral as gas compensation
    4. Offset as much debt as the Stability Pool holds, with proportional collateral
    5. Redistribute the remaining debt and collateral to the other troves
    6. Close the trove and refresh the stake snapshots

    The TroveManager interacts with several other components including:
    - ActivePool: Holds active collateral and debt
    - StabilityPool: Holds ZKUSD deposits for liquidations
    - DefaultPool: Holds redistributed collateral and debt
    """

    def __init__(self, active_pool=None, stability_pool=None, default_pool=None,
                 price_feed=None, redistribution=None):
        # Connected contracts
        self.active_pool = active_pool
        self.stability_pool = stability_pool
        self.default_pool = default_pool
        self.price_feed = price_feed
        self.redistribution = redistribution if redistribution is not None else RedistributionLedger(
            active_pool, default_pool
        )

        # State variables
        self.troves = {}  # id -> Trove
        self.trove_ids = []  # ids of active troves

        # Constants
        self.DECIMAL_PRECISION = DECIMAL_PRECISION
        self.MCR = MCR
        self.MIN_NET_DEBT = MIN_NET_DEBT
        self.GAS_COMPENSATION = GAS_COMPENSATION
        self.PERCENT_DIVISOR = PERCENT_DIVISOR

        # Next trove ID to use
        self.next_trove_id = 1

    # --- Getter functions ---

    def get_trove_ids_count(self):
        """Returns the number of active troves in the system."""
        return len(self.trove_ids)

    def get_trove(self, trove_id):
        if trove_id not in self.troves:
            raise ValueError(f"Trove {trove_id} does not exist")
        return self.troves[trove_id]

    def get_trove_status(self, trove_id):
        trove = self.troves.get(trove_id)
        return trove.status if trove else Status.NON_EXISTENT

    def get_entire_debt_and_coll(self, trove_id):
        """
        Returns a trove's debt and collateral including pending redistribution rewards.

        Returns:
            Tuple of (debt, coll, pending_debt_reward, pending_coll_reward)
        """
        return self.redistribution.get_entire_debt_and_coll(self.get_trove(trove_id))

    def get_current_icr(self, trove_id, price):
        """
        Calculates the current individual collateralization ratio of a trove.

        Args:
            trove_id: ID of the trove
            price: Collateral price, fixed-point

        Returns:
            coll * price / debt as a fixed-point ratio
        """
        debt, coll, _, _ = self.get_entire_debt_and_coll(trove_id)
        return self._compute_icr(coll, debt, price)

    def _compute_icr(self, coll, debt, price):
        if debt == 0:
            return MAX_ICR
        return mul_div(coll, price, debt)

    def get_total_stakes(self):
        return self.redistribution.state.total_stakes

    def get_liquidatable_troves(self, price=None):
        """Returns the ids of active troves below MCR, lowest ICR first."""
        price = self._fetch_price() if price is None else price
        icrs = [(self.get_current_icr(trove_id, price), trove_id) for trove_id in self.trove_ids]
        return [trove_id for icr, trove_id in sorted(icrs) if icr < self.MCR]

    # --- Trove lifecycle ---

    def open_trove(self, owner, coll, debt):
        """
        Opens a new trove.

        Args:
            owner: Address of the trove owner
            coll: Amount of collateral to deposit
            debt: Net amount of ZKUSD to borrow; the gas compensation reserve is added on top

        Returns:
            ID of the newly created trove

        Raises:
            InvalidAmountError: If an amount is malformed
            ValueError: If the debt is below the minimum or the trove would be below MCR
        """
        require_amount(coll, "collateral")
        require_amount(debt, "debt")
        if debt < self.MIN_NET_DEBT:
            raise ValueError(f"Debt must be at least {self.MIN_NET_DEBT} ZKUSD")

        composite_debt = debt + self.GAS_COMPENSATION
        price = self._fetch_price()
        if self._compute_icr(coll, composite_debt, price) < self.MCR:
            raise ValueError("Insufficient collateral: ICR would be below MCR")

        trove_id = self.next_trove_id
        self.next_trove_id += 1

        trove = Trove(id=trove_id, owner=owner, debt=composite_debt, coll=coll, status=Status.ACTIVE)
        self.troves[trove_id] = trove
        self.trove_ids.append(trove_id)

        self.redistribution.update_trove_reward_snapshots(trove)
        self.redistribution.update_stake_and_totals(trove)

        if self.active_pool:
            self.active_pool.receive_coll(coll)
            self.active_pool.increase_debt(composite_debt)

        logger.debug("Opened trove %d for %s with %d coll and %d debt", trove_id, owner, coll, composite_debt)
        return trove_id

    def adjust_trove(self, trove_id, coll_change=0, debt_change=0):
        """
        Adds or removes collateral and draws or repays debt.

        Args:
            trove_id: ID of the trove
            coll_change: Signed collateral change (positive adds collateral)
            debt_change: Signed debt change (positive draws more ZKUSD)

        Returns:
            The trove after the adjustment
        """
        trove = self._require_active(trove_id)
        for name, value in (("coll_change", coll_change), ("debt_change", debt_change)):
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidAmountError(f"{name} must be an integer amount, got {value!r}")
        if coll_change == 0 and debt_change == 0:
            raise InvalidAmountError("There must be either a collateral change or a debt change")

        # Validate against the entire position before touching anything
        entire_debt, entire_coll, _, _ = self.redistribution.get_entire_debt_and_coll(trove)
        new_coll = entire_coll + coll_change
        new_debt = entire_debt + debt_change
        if new_coll <= 0:
            raise ValueError("Cannot withdraw all collateral; close the trove instead")
        if new_debt - self.GAS_COMPENSATION < self.MIN_NET_DEBT:
            raise ValueError(f"Debt must be at least {self.MIN_NET_DEBT} ZKUSD")
        if self._compute_icr(new_coll, new_debt, self._fetch_price()) < self.MCR:
            raise ValueError("Insufficient collateral: ICR would be below MCR")

        self.redistribution.apply_pending_rewards(trove)
        trove.coll = new_coll
        trove.debt = new_debt
        self.redistribution.update_stake_and_totals(trove)

        if self.active_pool:
            if coll_change > 0:
                self.active_pool.receive_coll(coll_change)
            elif coll_change < 0:
                self.active_pool.send_coll(-coll_change)
            if debt_change > 0:
                self.active_pool.increase_debt(debt_change)
            elif debt_change < 0:
                self.active_pool.decrease_debt(-debt_change)

        return trove

    def close_trove(self, trove_id):
        """
        Closes a trove by repaying its entire debt and withdrawing its collateral.

        Returns:
            Tuple of (debt_repaid, coll_returned)
        """
        trove = self._require_active(trove_id)
        if self.get_trove_ids_count() <= 1:
            raise ValueError("Only one trove in the system")

        self.redistribution.apply_pending_rewards(trove)
        debt, coll = trove.debt, trove.coll

        self.redistribution.close(trove)
        self._close_trove(trove, Status.CLOSED_BY_OWNER)

        if self.active_pool:
            self.active_pool.decrease_debt(debt)
            self.active_pool.send_coll(coll)

        logger.debug("Closed trove %d, repaid %d debt", trove_id, debt)
        return (debt, coll)

    def _require_active(self, trove_id):
        trove = self.get_trove(trove_id)
        if trove.status != Status.ACTIVE:
            raise ValueError(f"Trove {trove_id} is not active")
        return trove

    def _close_trove(self, trove, status):
        trove.status = status
        trove.coll = 0
        trove.debt = 0
        trove.stake = 0
        if trove.id in self.trove_ids:
            self.trove_ids.remove(trove.id)

    # --- Liquidation functions ---

    def liquidate(self, trove_id):
        """
        Liquidates a single undercollateralized trove.

        Args:
            trove_id: ID of the trove to liquidate

        Returns:
            LiquidationValues with the detailed results of the liquidation

        Raises:
            ValueError: If the trove isn't eligible for liquidation or is the last trove
        """
        price = self._fetch_price()
        trove = self._require_active(trove_id)

        icr = self.get_current_icr(trove_id, price)
        if icr >= self.MCR:
            raise ValueError(f"Trove {trove_id} is not eligible for liquidation: ICR {icr} >= MCR")

        return self._liquidate(trove)

    def batch_liquidate_troves(self, trove_array):
        """
        Liquidates every eligible trove in a list.

        Ineligible and unknown troves are skipped. Each trove is liquidated on its own, with
        one Stability Pool offset and one redistribution, so later troves in the list see
        the redistributions of earlier ones.

        Args:
            trove_array: Array of trove IDs to attempt to liquidate

        Returns:
            LiquidationValues with the combined results of all liquidations

        Raises:
            ValueError: If no troves were eligible for liquidation
        """
        if not trove_array:
            raise ValueError("Empty trove array")

        price = self._fetch_price()
        totals = LiquidationValues()

        for trove_id in trove_array:
            trove = self.troves.get(trove_id)
            if trove is None or trove.status != Status.ACTIVE:
                continue
            if self.get_trove_ids_count() <= 1:
                break
            if self.get_current_icr(trove_id, price) < self.MCR:
                totals.add(self._liquidate(trove))

        if not totals.liquidated_troves:
            raise ValueError("Nothing to liquidate")

        return totals

    def _liquidate(self, trove):
        """
        Liquidates a trove already known to be eligible.

        Args:
            trove: The trove to liquidate

        Returns:
            LiquidationValues for this trove
        """
        if self.get_trove_ids_count() <= 1:
            raise ValueError("Only one trove in the system")

        entire_debt, entire_coll, _, _ = self.redistribution.get_entire_debt_and_coll(trove)
        single_liquidation = LiquidationValues(entire_debt=entire_debt, entire_coll=entire_coll)
        single_liquidation.liquidated_troves.append(trove.id)

        # Calculate gas compensation
        single_liquidation.coll_gas_compensation = entire_coll // self.PERCENT_DIVISOR
        single_liquidation.debt_gas_compensation = min(self.GAS_COMPENSATION, entire_debt)
        coll_to_liquidate = entire_coll - single_liquidation.coll_gas_compensation

        # Calculate how much debt to offset with SP and how much to redistribute
        zkusd_in_sp = self.stability_pool.get_total_deposits() if self.stability_pool else 0
        (
            single_liquidation.debt_to_offset,
            single_liquidation.coll_to_send_to_sp,
            single_liquidation.debt_to_redistribute,
            single_liquidation.coll_to_redistribute,
        ) = self._get_offset_and_redistribution_vals(entire_debt, coll_to_liquidate, zkusd_in_sp)

        # Validate everything that could fail before touching any state
        remaining_stakes = self.redistribution.state.total_stakes - trove.stake
        redistributes = single_liquidation.debt_to_redistribute > 0 or single_liquidation.coll_to_redistribute > 0
        if redistributes and remaining_stakes <= 0:
            raise InvariantError("redistribution with zero total stakes")
        self._require_can_release_trove(trove, entire_debt, entire_coll)

        # Close the trove
        self.redistribution.apply_pending_rewards(trove)
        self.redistribution.close(trove)
        self._close_trove(trove, Status.CLOSED_BY_LIQUIDATION)

        # Process SP offset
        if single_liquidation.debt_to_offset > 0 and self.stability_pool:
            self.stability_pool.offset(single_liquidation.debt_to_offset, single_liquidation.coll_to_send_to_sp)

        # Process redistribution
        self.redistribution.redistribute(
            single_liquidation.debt_to_redistribute, single_liquidation.coll_to_redistribute
        )

        # Update system snapshots, then pay the liquidator
        self.redistribution.update_system_snapshots(single_liquidation.coll_gas_compensation)
        if self.active_pool and single_liquidation.coll_gas_compensation > 0:
            self.active_pool.send_coll(single_liquidation.coll_gas_compensation)

        logger.debug(
            "Liquidated trove %d: offset %d debt, redistributed %d debt",
            trove.id, single_liquidation.debt_to_offset, single_liquidation.debt_to_redistribute,
        )
        return single_liquidation

    def _require_can_release_trove(self, trove, entire_debt, entire_coll):
        """
        Checks that the pools hold everything a liquidation of the trove will move.

        The trove's raw position is held by the Active Pool and its pending rewards by
        the Default Pool; the whole of it leaves the Active Pool once the rewards are applied.
        """
        if self.active_pool:
            self.active_pool.require_can_release(trove.debt, trove.coll)
        if self.default_pool:
            self.default_pool.require_can_release(entire_debt - trove.debt, entire_coll - trove.coll)

    def _get_offset_and_redistribution_vals(self, debt, coll, zkusd_in_sp):
        """
        Calculates the values for a trove's collateral and debt to be offset and redistributed.

        The Stability Pool absorbs as much debt as it holds and receives the same share of the
        collateral; whatever is left is redistributed.

        Args:
            debt: Total debt of the trove
            coll: Collateral to liquidate (after gas compensation)
            zkusd_in_sp: Amount of ZKUSD available in SP for offsets

        Returns:
            Tuple of (debt_to_offset, coll_to_send_to_sp, debt_to_redistribute, coll_to_redistribute)
        """
        if zkusd_in_sp > 0 and debt > 0:
            debt_to_offset = min(debt, zkusd_in_sp)
            coll_to_send_to_sp = mul_div(coll, debt_to_offset, debt)
        else:
            debt_to_offset = 0
            coll_to_send_to_sp = 0

        debt_to_redistribute = debt - debt_to_offset
        coll_to_redistribute = coll - coll_to_send_to_sp

        return (debt_to_offset, coll_to_send_to_sp, debt_to_redistribute, coll_to_redistribute)

    def _fetch_price(self):
        price = self.price_feed.fetch_price() if self.price_feed else 0
        if price <= 0:
            raise ValueError("Invalid price")
        return price
