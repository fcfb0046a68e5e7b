"""
Stability Pool Model for ZKUSD Protocol.

This module simulates the StabilityPool contract which holds ZKUSD tokens deposited by Stability Pool depositors.
When a trove is liquidated, the Stability Pool offsets the debt and receives collateral as compensation.

No depositor is ever iterated over. Each liquidation updates three pieces of global state:

- P, the running product of (1 - loss per unit staked) factors. A deposit made when the
  product was P_snapshot is now worth initial_value * P / P_snapshot.
- S, the running sum of (collateral gain per unit staked * P). A deposit earns
  initial_value * (S - S_snapshot) / P_snapshot in collateral.
- G, the same sum for the secondary reward token.

P is renormalised by SCALE_FACTOR whenever it would lose precision, which starts a new
scale. When a liquidation empties the pool exactly, P resets and a new epoch starts, and
every deposit made in an earlier epoch is worth zero.
"""

import logging
from dataclasses import dataclass, field, replace

from constants import DECIMAL_PRECISION, SCALE_FACTOR
from fixed_point import require_amount
from protocol_errors import InsufficientBalanceError, InvariantError
from reward_accumulator import ErrorFeedback, loss_per_unit_staked, per_unit_staked

logger = logging.getLogger(__name__)


@dataclass
class Deposit:
    """Represents a user's deposit in the Stability Pool."""
    initial_value: int = 0  # Deposit at the last deposit/withdrawal checkpoint


@dataclass
class DepositSnapshot:
    """Snapshots of system state when a deposit was last touched."""
    P: int = DECIMAL_PRECISION  # Product used to track compounded deposits
    S: int = 0  # Coll reward sum from liquidations
    G: int = 0  # Secondary reward sum from issuance
    scale: int = 0
    epoch: int = 0


@dataclass
class DepositUpdate:
    """Outcome of a deposit or withdrawal, including the gains paid out with it."""
    deposit_change: int = 0  # Amount deposited (positive) or withdrawn (negative)
    coll_gain: int = 0       # Collateral paid to the depositor
    reward_gain: int = 0     # Secondary reward tokens paid to the depositor
    new_deposit: int = 0     # Depositor's deposit after the operation


@dataclass
class StabilityPoolState:
    """
    Global accounting state of the Stability Pool.

    The epoch/scale maps are keyed by (epoch, scale) tuples; a missing key reads as zero.
    """
    total_deposits: int = 0
    coll_balance: int = 0
    P: int = DECIMAL_PRECISION
    current_scale: int = 0
    current_epoch: int = 0
    epoch_to_scale_to_sum: dict = field(default_factory=dict)  # (epoch, scale) -> S
    epoch_to_scale_to_g: dict = field(default_factory=dict)    # (epoch, scale) -> G
    last_coll_error_offset: ErrorFeedback = field(default_factory=ErrorFeedback)
    last_debt_loss_error_offset: ErrorFeedback = field(default_factory=ErrorFeedback)
    last_reward_error: ErrorFeedback = field(default_factory=ErrorFeedback)
    reward_balance: int = 0        # Secondary reward tokens held for depositors
    pending_reward_issuance: int = 0  # Issued while the pool was empty, not yet distributed


class StabilityPool:
    """
    Simulates the StabilityPool contract which holds ZKUSD deposits and absorbs liquidated debt.

    Operations run to completion one at a time and validate everything before they
    mutate state, so a raised error never leaves a partial update behind.
    """

    def __init__(self, active_pool=None, state=None):
        self.state = state if state is not None else StabilityPoolState()

        # User deposits and snapshots
        self.deposits = {}  # address -> Deposit
        self.deposit_snapshots = {}  # address -> DepositSnapshot

        # External contracts
        self.active_pool = active_pool

        # Constants
        self.DECIMAL_PRECISION = DECIMAL_PRECISION
        self.SCALE_FACTOR = SCALE_FACTOR

    # --- Getter functions ---

    def get_total_deposits(self):
        """Returns the total ZKUSD deposits in the Stability Pool."""
        return self.state.total_deposits

    def get_coll_balance(self):
        """Returns the collateral balance in the Stability Pool."""
        return self.state.coll_balance

    def get_sum(self, epoch, scale):
        """Returns the collateral gain sum S for an epoch and scale."""
        return self.state.epoch_to_scale_to_sum.get((epoch, scale), 0)

    def get_reward_sum(self, epoch, scale):
        """Returns the secondary reward sum G for an epoch and scale."""
        return self.state.epoch_to_scale_to_g.get((epoch, scale), 0)

    def get_depositor_snapshot(self, depositor):
        """Returns the depositor's snapshot, or None if it has no deposit."""
        return self.deposit_snapshots.get(depositor)

    def get_initial_deposit(self, depositor):
        return self.deposits.get(depositor, Deposit()).initial_value

    def depositors(self):
        """Returns the addresses that currently hold a non-zero initial deposit."""
        return [addr for addr, dep in self.deposits.items() if dep.initial_value > 0]

    # --- Depositor functions ---

    def deposit(self, depositor, amount):
        """
        Allows a user to provide ZKUSD to the Stability Pool.

        Any collateral and reward gains accrued since the depositor's last checkpoint
        are paid out, the compounded deposit is topped up, and the snapshot is refreshed.

        Args:
            depositor: Address of the depositor
            amount: Amount of ZKUSD to add to the pool

        Returns:
            DepositUpdate describing the change and the gains paid

        Raises:
            InvalidAmountError: If the amount is zero, negative or not an integer
        """
        require_amount(amount)

        coll_gain = self.get_collateral_gain(depositor)
        reward_gain = self.get_reward_gain(depositor)
        compounded_deposit = self.get_compounded_deposit(depositor)
        new_deposit = compounded_deposit + amount

        self._pay_out_gains(coll_gain, reward_gain)
        self.state.total_deposits += amount
        self._update_deposit_and_snapshots(depositor, new_deposit)

        logger.debug("Deposit of %d by %s, new deposit %d", amount, depositor, new_deposit)
        return DepositUpdate(amount, coll_gain, reward_gain, new_deposit)

    def withdraw(self, depositor, amount):
        """
        Allows a user to withdraw ZKUSD from the Stability Pool.

        A withdrawal of zero only claims the accrued gains.

        Args:
            depositor: Address of the depositor
            amount: Amount of ZKUSD to withdraw

        Returns:
            DepositUpdate describing the change and the gains paid

        Raises:
            InvalidAmountError: If the amount is negative or not an integer
            InsufficientBalanceError: If the depositor has no deposit, or the amount exceeds the compounded deposit
        """
        require_amount(amount, allow_zero=True)

        if self.get_initial_deposit(depositor) == 0:
            raise InsufficientBalanceError("User must have a non-zero deposit")

        compounded_deposit = self.get_compounded_deposit(depositor)
        if amount > compounded_deposit:
            raise InsufficientBalanceError(
                f"Withdrawal of {amount} exceeds compounded deposit of {compounded_deposit}"
            )
        if amount > self.state.total_deposits:
            raise InvariantError("compounded deposit exceeds total deposits")

        coll_gain = self.get_collateral_gain(depositor)
        reward_gain = self.get_reward_gain(depositor)
        new_deposit = compounded_deposit - amount

        self._pay_out_gains(coll_gain, reward_gain)
        self.state.total_deposits -= amount
        self._update_deposit_and_snapshots(depositor, new_deposit)

        logger.debug("Withdrawal of %d by %s, new deposit %d", amount, depositor, new_deposit)
        return DepositUpdate(-amount, coll_gain, reward_gain, new_deposit)

    # --- Depositor views ---

    def get_compounded_deposit(self, depositor):
        """
        Calculates a depositor's compounded ZKUSD deposit.

        Args:
            depositor: Address of the depositor

        Returns:
            The depositor's deposit after all losses since its snapshot
        """
        initial_deposit = self.get_initial_deposit(depositor)
        if initial_deposit == 0:
            return 0

        snapshot = self.deposit_snapshots[depositor]

        # The pool was emptied after the snapshot was taken
        if snapshot.epoch < self.state.current_epoch:
            return 0

        scale_diff = self.state.current_scale - snapshot.scale

        # Compute with the current P. A single scale change means P was multiplied up by
        # SCALE_FACTOR since the snapshot, so divide once; beyond that the deposit has
        # decayed below precision.
        if scale_diff == 0:
            return initial_deposit * self.state.P // snapshot.P
        if scale_diff == 1:
            return initial_deposit * self.state.P // snapshot.P // self.SCALE_FACTOR
        return 0

    def get_collateral_gain(self, depositor):
        """
        Calculates the collateral a depositor has earned since its snapshot.

        Gains are read from the snapshot's own scale and from the scale after it; the
        latter were accrued against a P that was SCALE_FACTOR times larger.

        Args:
            depositor: Address of the depositor

        Returns:
            The depositor's collateral gain
        """
        initial_deposit = self.get_initial_deposit(depositor)
        if initial_deposit == 0:
            return 0

        snapshot = self.deposit_snapshots[depositor]
        return self._gain_from_snapshots(
            initial_deposit, snapshot, self.get_sum, snapshot.S
        )

    def get_reward_gain(self, depositor):
        """Calculates the secondary reward tokens a depositor has earned since its snapshot."""
        initial_deposit = self.get_initial_deposit(depositor)
        if initial_deposit == 0:
            return 0

        snapshot = self.deposit_snapshots[depositor]
        return self._gain_from_snapshots(
            initial_deposit, snapshot, self.get_reward_sum, snapshot.G
        )

    def _gain_from_snapshots(self, initial_deposit, snapshot, sum_at, sum_snapshot):
        epoch = snapshot.epoch
        scale = snapshot.scale

        first_portion = sum_at(epoch, scale) - sum_snapshot
        second_portion = sum_at(epoch, scale + 1) // self.SCALE_FACTOR

        return initial_deposit * (first_portion + second_portion) // snapshot.P // self.DECIMAL_PRECISION

    # --- Liquidation functions ---

    def offset(self, debt_to_offset, coll_to_add):
        """
        Offsets debt with ZKUSD in the Stability Pool during liquidations.

        Cancels debt_to_offset of the pool's deposits and credits coll_to_add collateral
        to depositors, pro rata, in constant time.

        Args:
            debt_to_offset: Amount of debt to cancel with ZKUSD in the pool
            coll_to_add: Amount of collateral to add to the pool

        Raises:
            InvalidAmountError: If either amount is negative or not an integer
            InvariantError: If the debt exceeds the pool's total deposits
        """
        require_amount(debt_to_offset, "debt_to_offset", allow_zero=True)
        require_amount(coll_to_add, "coll_to_add", allow_zero=True)

        total_deposits = self.state.total_deposits
        if total_deposits == 0 or debt_to_offset == 0:
            return
        if debt_to_offset > total_deposits:
            raise InvariantError(
                f"offset of {debt_to_offset} exceeds total deposits of {total_deposits}"
            )
        if self.active_pool:
            self.active_pool.require_can_release(debt_to_offset, coll_to_add)

        # Work on copies of the error trackers so a failure commits nothing
        coll_error = replace(self.state.last_coll_error_offset)
        debt_loss_error = replace(self.state.last_debt_loss_error_offset)
        coll_gain_per_unit_staked = per_unit_staked(coll_to_add, total_deposits, coll_error)
        debt_loss_per_unit_staked = loss_per_unit_staked(debt_to_offset, total_deposits, debt_loss_error)

        pool_emptied = self._update_reward_sum_and_product(coll_gain_per_unit_staked, debt_loss_per_unit_staked)
        self.state.last_coll_error_offset = coll_error
        self.state.last_debt_loss_error_offset = debt_loss_error
        self._move_offset_coll_and_debt(coll_to_add, debt_to_offset, pool_emptied)

        logger.debug(
            "Offset %d debt for %d collateral, P=%d scale=%d epoch=%d",
            debt_to_offset, coll_to_add, self.state.P, self.state.current_scale, self.state.current_epoch,
        )

    def _update_reward_sum_and_product(self, coll_gain_per_unit_staked, debt_loss_per_unit_staked):
        """
        Updates S for the current epoch and scale, then P and the epoch/scale counters.

        Args:
            coll_gain_per_unit_staked: Collateral gain per unit of deposit
            debt_loss_per_unit_staked: Loss per unit of deposit, at most DECIMAL_PRECISION

        Returns:
            True if the offset emptied the pool and started a new epoch
        """
        state = self.state
        current_P = state.P

        if debt_loss_per_unit_staked > self.DECIMAL_PRECISION:
            raise InvariantError("loss per unit staked above 100%")

        new_product_factor = self.DECIMAL_PRECISION - debt_loss_per_unit_staked
        pool_emptied = new_product_factor == 0
        new_scale = False

        if pool_emptied:
            new_P = self.DECIMAL_PRECISION
        elif current_P * new_product_factor // self.DECIMAL_PRECISION < self.SCALE_FACTOR:
            # P would lose precision: multiply it back up before storing it
            new_P = current_P * new_product_factor * self.SCALE_FACTOR // self.DECIMAL_PRECISION
            new_scale = True
        else:
            new_P = current_P * new_product_factor // self.DECIMAL_PRECISION

        if new_P <= 0:
            raise InvariantError("P must never decrease to 0")

        # Weight the gain by the current P so later deposits only see their share
        key = (state.current_epoch, state.current_scale)
        state.epoch_to_scale_to_sum[key] = self.get_sum(*key) + coll_gain_per_unit_staked * current_P

        if pool_emptied:
            state.current_epoch += 1
            state.current_scale = 0
            state.epoch_to_scale_to_sum[(state.current_epoch, 0)] = 0
            state.epoch_to_scale_to_g[(state.current_epoch, 0)] = 0
            logger.info("Stability Pool emptied, starting epoch %d", state.current_epoch)
        elif new_scale:
            state.current_scale += 1
            logger.info("Stability Pool P rescaled, starting scale %d", state.current_scale)

        state.P = new_P
        return pool_emptied

    def _move_offset_coll_and_debt(self, coll_to_add, debt_to_offset, pool_emptied=False):
        """Cancels the offset ZKUSD against the pool and takes the collateral in."""
        state = self.state
        state.total_deposits -= debt_to_offset
        if pool_emptied and state.total_deposits:
            # Loss rounding consumed the last few units; no deposit can claim them
            logger.info("Dropping %d units of dust left by an emptying offset", state.total_deposits)
            state.total_deposits = 0
        state.coll_balance += coll_to_add

        if self.active_pool:
            self.active_pool.decrease_debt(debt_to_offset)
            if coll_to_add > 0:
                self.active_pool.send_coll(coll_to_add)

    # --- Secondary reward functions ---

    def issue_rewards(self, amount):
        """
        Distributes newly issued secondary reward tokens to current depositors.

        Rewards issued while the pool is empty are held and distributed with the
        next issuance that finds depositors.

        Args:
            amount: Amount of reward tokens issued

        Returns:
            The amount actually distributed by this call
        """
        require_amount(amount, allow_zero=True)
        state = self.state

        to_distribute = amount + state.pending_reward_issuance
        if to_distribute == 0:
            return 0
        if state.total_deposits == 0:
            state.pending_reward_issuance = to_distribute
            return 0

        reward_per_unit_staked = per_unit_staked(to_distribute, state.total_deposits, state.last_reward_error)

        key = (state.current_epoch, state.current_scale)
        state.epoch_to_scale_to_g[key] = self.get_reward_sum(*key) + reward_per_unit_staked * state.P
        state.reward_balance += to_distribute
        state.pending_reward_issuance = 0
        return to_distribute

    # --- Internal helpers ---

    def _pay_out_gains(self, coll_gain, reward_gain):
        state = self.state
        if coll_gain > state.coll_balance or reward_gain > state.reward_balance:
            raise InvariantError("depositor gain exceeds pool balance")
        state.coll_balance -= coll_gain
        state.reward_balance -= reward_gain

    def _update_deposit_and_snapshots(self, depositor, new_deposit):
        """
        Updates a depositor's deposit and snapshots.

        A zero deposit drops the snapshot entirely.
        """
        if new_deposit == 0:
            self.deposits.pop(depositor, None)
            self.deposit_snapshots.pop(depositor, None)
            return

        state = self.state

        self.deposits[depositor] = Deposit(new_deposit)
        self.deposit_snapshots[depositor] = DepositSnapshot(
            P=state.P,
            S=self.get_sum(state.current_epoch, state.current_scale),
            G=self.get_reward_sum(state.current_epoch, state.current_scale),
            scale=state.current_scale,
            epoch=state.current_epoch,
        )
