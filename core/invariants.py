"""
Invariant checkers for the ZKUSD Protocol model.

Each function returns True when the invariant holds, and check_all() returns the
list of violated invariant names (empty = all pass). These walk every depositor and
trove, so they belong in tests and simulations, never in the ledgers themselves.
"""

from protocol_errors import InvariantError
from trove_manager import Status


def inv_product_positive(sp):
    return sp.state.P > 0


def inv_deposits_cover_compounded(sp):
    """The pool holds at least the sum of all compounded deposits."""
    total = sum(sp.get_compounded_deposit(addr) for addr in sp.depositors())
    return total <= sp.get_total_deposits()


def inv_coll_covers_gains(sp):
    total = sum(sp.get_collateral_gain(addr) for addr in sp.depositors())
    return total <= sp.get_coll_balance()


def inv_rewards_cover_gains(sp):
    total = sum(sp.get_reward_gain(addr) for addr in sp.depositors())
    return total <= sp.state.reward_balance


def inv_snapshots_not_from_future(sp):
    state = sp.state
    for snapshot in sp.deposit_snapshots.values():
        if snapshot.epoch > state.current_epoch:
            return False
        if snapshot.epoch == state.current_epoch and snapshot.scale > state.current_scale:
            return False
    return True


def inv_total_stakes_match(tm):
    """Total stakes equals the sum of active trove stakes."""
    total = sum(tm.troves[trove_id].stake for trove_id in tm.trove_ids)
    return total == tm.redistribution.state.total_stakes


def inv_coll_totals_match(tm):
    """The ledger's running collateral totals agree with the troves and the Default Pool."""
    state = tm.redistribution.state
    if sum(tm.troves[trove_id].coll for trove_id in tm.trove_ids) != state.total_trove_coll:
        return False
    if tm.default_pool is not None and tm.default_pool.get_coll_balance() != state.redistributed_coll:
        return False
    return True


def inv_closed_troves_zeroed(tm):
    for trove in tm.troves.values():
        if trove.status != Status.ACTIVE and (trove.coll or trove.debt or trove.stake):
            return False
    return True


def inv_default_pool_covers_pending(tm):
    """The Default Pool holds at least the sum of all unapplied rewards."""
    if tm.default_pool is None:
        return True
    ledger = tm.redistribution
    troves = [tm.troves[trove_id] for trove_id in tm.trove_ids]
    pending_debt = sum(ledger.get_pending_debt_reward(t) for t in troves)
    pending_coll = sum(ledger.get_pending_coll_reward(t) for t in troves)
    return pending_debt <= tm.default_pool.get_debt() and pending_coll <= tm.default_pool.get_coll_balance()


def inv_active_pool_matches_troves(tm):
    """The Active Pool holds exactly the raw collateral and debt of the active troves."""
    if tm.active_pool is None:
        return True
    troves = [tm.troves[trove_id] for trove_id in tm.trove_ids]
    return (
        sum(t.coll for t in troves) == tm.active_pool.get_coll_balance()
        and sum(t.debt for t in troves) == tm.active_pool.get_debt()
    )


STABILITY_POOL_INVARIANTS = {
    "product_positive": inv_product_positive,
    "deposits_cover_compounded": inv_deposits_cover_compounded,
    "coll_covers_gains": inv_coll_covers_gains,
    "rewards_cover_gains": inv_rewards_cover_gains,
    "snapshots_not_from_future": inv_snapshots_not_from_future,
}

TROVE_MANAGER_INVARIANTS = {
    "total_stakes_match": inv_total_stakes_match,
    "closed_troves_zeroed": inv_closed_troves_zeroed,
    "coll_totals_match": inv_coll_totals_match,
    "default_pool_covers_pending": inv_default_pool_covers_pending,
    "active_pool_matches_troves": inv_active_pool_matches_troves,
}


def check_all(stability_pool=None, trove_manager=None):
    """Returns the names of all violated invariants."""
    violations = []
    if stability_pool is not None:
        violations.extend(name for name, check in STABILITY_POOL_INVARIANTS.items() if not check(stability_pool))
    if trove_manager is not None:
        violations.extend(name for name, check in TROVE_MANAGER_INVARIANTS.items() if not check(trove_manager))
    return violations


def assert_invariants(stability_pool=None, trove_manager=None):
    violations = check_all(stability_pool, trove_manager)
    if violations:
        raise InvariantError(violations)
