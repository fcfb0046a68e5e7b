"""
Default Pool Model for ZKUSD Protocol.

This module simulates the DefaultPool contract which holds the collateral and ZKUSD debt
from liquidated troves that couldn't be offset with the StabilityPool.
Both are owed to the remaining active troves and move back to the Active Pool as each
trove's pending rewards are applied.
"""

from fixed_point import require_amount
from protocol_errors import InvariantError


class DefaultPool:
    """
    Simulates the DefaultPool contract which holds collateral and debt for redistribution.
    """

    def __init__(self, active_pool=None):
        # Deposited collateral tracker
        self.coll_balance = 0

        # ZKUSD debt tracker
        self.debt = 0

        # Reference to ActivePool
        self.active_pool = active_pool

    def get_coll_balance(self):
        """Returns the collateral balance in the Default Pool."""
        return self.coll_balance

    def get_debt(self):
        """Returns the ZKUSD debt in the Default Pool."""
        return self.debt

    def require_can_release(self, debt, coll):
        """Checks that pending rewards of the given size can be moved back to the Active Pool."""
        if debt > self.debt or coll > self.coll_balance:
            raise InvariantError(
                f"Default Pool cannot release {debt} debt and {coll} collateral"
            )

    def receive_coll(self, amount):
        """
        Receives collateral into the Default Pool.
        Called by the Active Pool when trove collateral is redistributed.
        """
        require_amount(amount, "collateral")
        self.coll_balance += amount

    def send_coll_to_active_pool(self, amount):
        """
        Sends collateral from the Default Pool to the Active Pool.
        Called when trove's pending collateral rewards are being claimed.
        """
        require_amount(amount, "collateral")
        if amount > self.coll_balance:
            raise InvariantError(f"Default Pool cannot send {amount} collateral, holds {self.coll_balance}")

        self.coll_balance -= amount

        # Transfer collateral to Active Pool
        if self.active_pool:
            self.active_pool.receive_coll(amount)

    def increase_debt(self, amount):
        """
        Increases the ZKUSD debt in the Default Pool.
        Called during liquidations when debt is redistributed.
        """
        require_amount(amount, "debt")
        self.debt += amount

    def decrease_debt(self, amount):
        """
        Decreases the ZKUSD debt in the Default Pool.
        Called when trove's pending debt rewards are being claimed.
        """
        require_amount(amount, "debt")
        if amount > self.debt:
            raise InvariantError(f"Default Pool cannot decrease debt by {amount}, holds {self.debt}")

        self.debt -= amount
