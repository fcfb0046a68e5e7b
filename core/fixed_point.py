"""
Fixed-point arithmetic for the ZKUSD Protocol model.

Amounts are plain Python ints scaled by DECIMAL_PRECISION. Every division floors,
which keeps both reward ledgers bit-exact and reproducible.
"""

import math
from decimal import ROUND_FLOOR, Decimal, InvalidOperation, localcontext

from constants import DECIMAL_PRECISION
from protocol_errors import InvalidAmountError


def dec_mul(x: int, y: int) -> int:
    """Multiplies two fixed-point numbers, flooring the result."""
    return x * y // DECIMAL_PRECISION


def mul_div(x: int, y: int, z: int) -> int:
    """Returns floor(x * y / z) without an intermediate rounding step."""
    if z == 0:
        raise ZeroDivisionError("mul_div by zero")
    return x * y // z


def require_amount(value, name="amount", allow_zero=False) -> int:
    """
    Validates a fixed-point token amount supplied by a caller.

    Args:
        value: Candidate amount
        name: Name used in the error message
        allow_zero: Whether zero is acceptable

    Returns:
        The amount as an int

    Raises:
        InvalidAmountError: If the amount is not an int, or is negative, or is zero when not allowed
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidAmountError(f"{name} must be an integer amount, got {value!r}")
    if value < 0:
        raise InvalidAmountError(f"{name} must not be negative: {value}")
    if value == 0 and not allow_zero:
        raise InvalidAmountError(f"{name} must be greater than zero")
    return value


def to_fixed(value) -> int:
    """
    Converts a human-readable quantity into a fixed-point amount.

    Floats go through their shortest decimal representation so 0.1 becomes
    exactly 10**17. Digits beyond 18 decimal places are floored away.
    """
    if isinstance(value, bool):
        raise InvalidAmountError(f"Cannot convert {value!r} to a fixed-point amount")
    if isinstance(value, int):
        return value * DECIMAL_PRECISION
    if isinstance(value, float):
        if not math.isfinite(value):
            raise InvalidAmountError(f"Cannot convert {value!r} to a fixed-point amount")
        value = repr(value)
    try:
        quantity = Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise InvalidAmountError(f"Cannot convert {value!r} to a fixed-point amount") from exc
    if not quantity.is_finite():
        raise InvalidAmountError(f"Cannot convert {value!r} to a fixed-point amount")
    with localcontext() as ctx:
        ctx.prec = 100
        return int((quantity * DECIMAL_PRECISION).to_integral_value(rounding=ROUND_FLOOR))


def from_fixed(amount: int) -> float:
    """Converts a fixed-point amount to a float, for reporting and plotting only."""
    return amount / DECIMAL_PRECISION
