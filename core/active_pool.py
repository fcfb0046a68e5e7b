"""
Active Pool Model for ZKUSD Protocol.

This module simulates the ActivePool contract which holds the collateral and ZKUSD debt for all active troves.
When a trove is liquidated, its collateral and debt are transferred from the Active Pool to either the
Stability Pool, the Default Pool, or both, depending on how much the Stability Pool can absorb.
"""

from fixed_point import require_amount
from protocol_errors import InvariantError


class ActivePool:
    """
    Simulates the ActivePool contract which manages collateral and debt for active troves.
    """

    def __init__(self):
        # Deposited collateral tracker
        self.coll_balance = 0

        # ZKUSD debt tracker, including each trove's gas compensation reserve
        self.debt = 0

        # References to other contracts
        self.default_pool = None

    def get_coll_balance(self):
        """Returns the collateral balance in the Active Pool."""
        return self.coll_balance

    def get_debt(self):
        """Returns the ZKUSD debt recorded in the Active Pool."""
        return self.debt

    def receive_coll(self, amount):
        """Receives collateral from a borrower or from the Default Pool."""
        require_amount(amount, "collateral")
        self.coll_balance += amount

    def send_coll(self, amount):
        """
        Sends collateral out of the Active Pool.
        Called when a borrower withdraws collateral, on liquidation offsets and for gas compensation.
        """
        require_amount(amount, "collateral")
        if amount > self.coll_balance:
            raise InvariantError(f"Active Pool cannot send {amount} collateral, holds {self.coll_balance}")
        self.coll_balance -= amount

    def send_coll_to_default_pool(self, amount):
        """Moves collateral to the Default Pool for redistribution."""
        if self.default_pool is None:
            raise ValueError("Default Pool not initialized")
        self.send_coll(amount)
        self.default_pool.receive_coll(amount)

    def increase_debt(self, amount):
        require_amount(amount, "debt")
        self.debt += amount

    def decrease_debt(self, amount):
        require_amount(amount, "debt")
        if amount > self.debt:
            raise InvariantError(f"Active Pool cannot decrease debt by {amount}, holds {self.debt}")
        self.debt -= amount

    def require_can_release(self, debt, coll):
        """
        Checks that the given debt and collateral can leave the Active Pool.

        Lets a caller reject the whole liquidation before mutating anything.
        """
        if debt > self.debt or coll > self.coll_balance:
            raise InvariantError(
                f"Active Pool cannot release {debt} debt and {coll} collateral"
            )
