"""
Error types for the ZKUSD Protocol model.

Rejected user input raises InvalidAmountError or InsufficientBalanceError, both of
which are also ValueErrors so callers can treat them like any other bad argument.
InvariantError signals an accounting impossibility and should never be seen by a
correctly behaving caller.
"""


class ProtocolError(Exception):
    """Base error class for protocol errors"""
    pass


class InvalidAmountError(ProtocolError, ValueError):
    """Zero, negative or malformed amount"""
    pass


class InsufficientBalanceError(ProtocolError, ValueError):
    """Withdrawal exceeds what the caller currently holds"""
    pass


class InvariantError(ProtocolError):
    """Raised when internal accounting would become impossible."""

    def __init__(self, violations):
        if isinstance(violations, str):
            violations = [violations]
        self.violations = list(violations)
        super().__init__(f"invariant violations: {', '.join(self.violations)}")
