"""
Shared accumulator arithmetic for the ZKUSD Protocol model.

Both the Stability Pool and the trove redistribution mechanism distribute an
amount across many participants by bumping a single "reward per unit staked"
sum. A participant later reads its share as

    stake * (current_sum - sum_at_snapshot) / DECIMAL_PRECISION

The helpers here perform those divisions and carry the rounding remainder into
the next division, so the floor rounding of individual events never compounds.
"""

from dataclasses import dataclass

from constants import DECIMAL_PRECISION
from fixed_point import dec_mul
from protocol_errors import InvariantError


@dataclass
class ErrorFeedback:
    """Remainder carried from one per-unit-staked division to the next."""
    error: int = 0


def per_unit_staked(amount, total, feedback):
    """
    Computes the per-unit-staked share of a gain, rounding down.

    Args:
        amount: Amount being distributed
        total: Total stake it is distributed over
        feedback: ErrorFeedback carrying the remainder of the previous division

    Returns:
        The per-unit-staked increment, scaled by DECIMAL_PRECISION
    """
    if total <= 0:
        raise InvariantError("distribution over zero total stake")

    numerator = amount * DECIMAL_PRECISION + feedback.error
    per_unit = numerator // total
    feedback.error = numerator - per_unit * total
    return per_unit


def loss_per_unit_staked(debt, total, feedback):
    """
    Computes the per-unit-staked loss of an offset, rounding up.

    Rounding up makes depositors lose marginally more than their exact share,
    which keeps the pool able to pay every compounded deposit. The over-count is
    carried and subtracted from the next loss.

    Args:
        debt: Debt being cancelled against the pool
        total: Total deposits in the pool
        feedback: ErrorFeedback carrying the previous over-count

    Returns:
        The per-unit-staked loss, at most DECIMAL_PRECISION
    """
    if total <= 0:
        raise InvariantError("offset against an empty pool")
    if debt > total:
        raise InvariantError("offset debt exceeds total deposits")

    if debt == total:
        # The whole pool is consumed
        feedback.error = 0
        return DECIMAL_PRECISION

    numerator = debt * DECIMAL_PRECISION - feedback.error
    loss = numerator // total + 1
    feedback.error = loss * total - numerator
    return loss


def pending_reward(stake, current_sum, snapshot_sum):
    """Returns the share of a per-unit-staked sum earned since a snapshot."""
    return dec_mul(stake, current_sum - snapshot_sum)
