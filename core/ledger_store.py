"""
State snapshots for the ZKUSD Protocol model.

Goals:
- Deterministic JSON serialization of both ledgers, their per-entity records and the pools.
- Round-trippable into live StabilityPool / TroveManager objects.
- Explicit versioning so older files are rejected rather than misread.

Integers are written as JSON integers; Python's json module keeps them exact at any size.
"""

import json
from pathlib import Path

from active_pool import ActivePool
from constants import SNAPSHOT_VERSION
from default_pool import DefaultPool
from economic_model import PriceFeed, ZkusdEconomicModel
from redistribution import RedistributionLedger, RedistributionState, RewardSnapshot
from reward_accumulator import ErrorFeedback
from stability_pool import Deposit, DepositSnapshot, StabilityPool, StabilityPoolState
from trove_manager import Status, Trove, TroveManager


def _require_int(value, name, non_negative=True):
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"{name} must be an int")
    if non_negative and value < 0:
        raise ValueError(f"{name} must be non-negative")
    return value


def _sum_entries(sums):
    entries = [{"epoch": epoch, "scale": scale, "value": value} for (epoch, scale), value in sums.items()]
    entries.sort(key=lambda e: (e["epoch"], e["scale"]))
    return entries


def _sums_from_entries(entries, name):
    sums = {}
    for entry in entries:
        key = (_require_int(entry["epoch"], f"{name}.epoch"), _require_int(entry["scale"], f"{name}.scale"))
        if key in sums:
            raise ValueError(f"duplicate {name} entry for epoch {key[0]} scale {key[1]}")
        sums[key] = _require_int(entry["value"], f"{name}.value")
    return sums


def _check_version(data):
    version = data.get("version")
    if version != SNAPSHOT_VERSION:
        raise ValueError(f"unsupported snapshot version: {version!r}")


# --- Stability Pool ---

def snapshot_stability_pool(sp):
    state = sp.state
    depositors = []
    for addr in sorted(sp.deposits):
        snapshot = sp.deposit_snapshots[addr]
        depositors.append({
            "address": addr,
            "initial_value": sp.deposits[addr].initial_value,
            "P": snapshot.P,
            "S": snapshot.S,
            "G": snapshot.G,
            "scale": snapshot.scale,
            "epoch": snapshot.epoch,
        })

    return {
        "total_deposits": state.total_deposits,
        "coll_balance": state.coll_balance,
        "P": state.P,
        "current_scale": state.current_scale,
        "current_epoch": state.current_epoch,
        "epoch_to_scale_to_sum": _sum_entries(state.epoch_to_scale_to_sum),
        "epoch_to_scale_to_g": _sum_entries(state.epoch_to_scale_to_g),
        "last_coll_error_offset": state.last_coll_error_offset.error,
        "last_debt_loss_error_offset": state.last_debt_loss_error_offset.error,
        "last_reward_error": state.last_reward_error.error,
        "reward_balance": state.reward_balance,
        "pending_reward_issuance": state.pending_reward_issuance,
        "depositors": depositors,
    }


def restore_stability_pool(data, active_pool=None):
    state = StabilityPoolState(
        total_deposits=_require_int(data["total_deposits"], "total_deposits"),
        coll_balance=_require_int(data["coll_balance"], "coll_balance"),
        P=_require_int(data["P"], "P"),
        current_scale=_require_int(data["current_scale"], "current_scale"),
        current_epoch=_require_int(data["current_epoch"], "current_epoch"),
        epoch_to_scale_to_sum=_sums_from_entries(data["epoch_to_scale_to_sum"], "epoch_to_scale_to_sum"),
        epoch_to_scale_to_g=_sums_from_entries(data["epoch_to_scale_to_g"], "epoch_to_scale_to_g"),
        last_coll_error_offset=ErrorFeedback(_require_int(data["last_coll_error_offset"], "last_coll_error_offset")),
        last_debt_loss_error_offset=ErrorFeedback(
            _require_int(data["last_debt_loss_error_offset"], "last_debt_loss_error_offset")
        ),
        last_reward_error=ErrorFeedback(_require_int(data["last_reward_error"], "last_reward_error")),
        reward_balance=_require_int(data["reward_balance"], "reward_balance"),
        pending_reward_issuance=_require_int(data["pending_reward_issuance"], "pending_reward_issuance"),
    )
    if state.P == 0:
        raise ValueError("P must be positive")

    sp = StabilityPool(active_pool, state)
    for entry in data["depositors"]:
        addr = entry["address"]
        sp.deposits[addr] = Deposit(_require_int(entry["initial_value"], "initial_value"))
        sp.deposit_snapshots[addr] = DepositSnapshot(
            P=_require_int(entry["P"], "P"),
            S=_require_int(entry["S"], "S"),
            G=_require_int(entry["G"], "G"),
            scale=_require_int(entry["scale"], "scale"),
            epoch=_require_int(entry["epoch"], "epoch"),
        )
    return sp


# --- Trove Manager ---

def snapshot_trove_manager(tm):
    state = tm.redistribution.state
    troves = []
    for trove_id in sorted(tm.troves):
        trove = tm.troves[trove_id]
        troves.append({
            "id": trove.id,
            "owner": trove.owner,
            "debt": trove.debt,
            "coll": trove.coll,
            "stake": trove.stake,
            "status": trove.status.name,
            "snapshot_coll": trove.reward_snapshot.coll,
            "snapshot_debt": trove.reward_snapshot.debt,
        })

    return {
        "total_stakes": state.total_stakes,
        "total_stakes_snapshot": state.total_stakes_snapshot,
        "total_collateral_snapshot": state.total_collateral_snapshot,
        "total_trove_coll": state.total_trove_coll,
        "redistributed_coll": state.redistributed_coll,
        "L_coll": state.L_coll,
        "L_debt": state.L_debt,
        "last_coll_error_redistribution": state.last_coll_error_redistribution.error,
        "last_debt_error_redistribution": state.last_debt_error_redistribution.error,
        "next_trove_id": tm.next_trove_id,
        "trove_ids": list(tm.trove_ids),
        "troves": troves,
    }


def restore_trove_manager(data, active_pool=None, stability_pool=None, default_pool=None, price_feed=None):
    state = RedistributionState(
        total_stakes=_require_int(data["total_stakes"], "total_stakes"),
        total_stakes_snapshot=_require_int(data["total_stakes_snapshot"], "total_stakes_snapshot"),
        total_collateral_snapshot=_require_int(data["total_collateral_snapshot"], "total_collateral_snapshot"),
        total_trove_coll=_require_int(data["total_trove_coll"], "total_trove_coll"),
        redistributed_coll=_require_int(data["redistributed_coll"], "redistributed_coll"),
        L_coll=_require_int(data["L_coll"], "L_coll"),
        L_debt=_require_int(data["L_debt"], "L_debt"),
        last_coll_error_redistribution=ErrorFeedback(
            _require_int(data["last_coll_error_redistribution"], "last_coll_error_redistribution")
        ),
        last_debt_error_redistribution=ErrorFeedback(
            _require_int(data["last_debt_error_redistribution"], "last_debt_error_redistribution")
        ),
    )
    ledger = RedistributionLedger(active_pool, default_pool, state)
    tm = TroveManager(active_pool, stability_pool, default_pool, price_feed, ledger)

    for entry in data["troves"]:
        trove = Trove(
            id=_require_int(entry["id"], "id"),
            owner=entry["owner"],
            debt=_require_int(entry["debt"], "debt"),
            coll=_require_int(entry["coll"], "coll"),
            stake=_require_int(entry["stake"], "stake"),
            status=Status[entry["status"]],
            reward_snapshot=RewardSnapshot(
                coll=_require_int(entry["snapshot_coll"], "snapshot_coll"),
                debt=_require_int(entry["snapshot_debt"], "snapshot_debt"),
            ),
        )
        tm.troves[trove.id] = trove

    tm.trove_ids = [_require_int(trove_id, "trove_ids") for trove_id in data["trove_ids"]]
    for trove_id in tm.trove_ids:
        if trove_id not in tm.troves or tm.troves[trove_id].status != Status.ACTIVE:
            raise ValueError(f"active trove {trove_id} missing from snapshot")
        ledger.trove_colls[trove_id] = tm.troves[trove_id].coll
    if sum(ledger.trove_colls.values()) != state.total_trove_coll:
        raise ValueError("total_trove_coll does not match the active troves")
    tm.next_trove_id = _require_int(data["next_trove_id"], "next_trove_id")
    return tm


# --- Pools ---

def snapshot_pools(active_pool, default_pool):
    return {
        "active_coll": active_pool.coll_balance,
        "active_debt": active_pool.debt,
        "default_coll": default_pool.coll_balance,
        "default_debt": default_pool.debt,
    }


def restore_pools(data):
    active_pool = ActivePool()
    default_pool = DefaultPool(active_pool)
    active_pool.default_pool = default_pool

    active_pool.coll_balance = _require_int(data["active_coll"], "active_coll")
    active_pool.debt = _require_int(data["active_debt"], "active_debt")
    default_pool.coll_balance = _require_int(data["default_coll"], "default_coll")
    default_pool.debt = _require_int(data["default_debt"], "default_debt")
    return active_pool, default_pool


# --- Whole model ---

def snapshot_model(model):
    """Returns a versioned, JSON-serialisable snapshot of an economic model."""
    return {
        "version": SNAPSHOT_VERSION,
        "price": model.price_feed.fetch_price(),
        "pools": snapshot_pools(model.active_pool, model.default_pool),
        "stability_pool": snapshot_stability_pool(model.stability_pool),
        "trove_manager": snapshot_trove_manager(model.trove_manager),
    }


def dumps_model(model):
    return json.dumps(snapshot_model(model), sort_keys=True, separators=(",", ":"))


def save_model(path, model):
    """Writes the model's state to a JSON file."""
    Path(path).write_text(dumps_model(model), encoding="utf-8")


def restore_model(data):
    """Rebuilds an economic model from a snapshot_model() dictionary."""
    _check_version(data)

    active_pool, default_pool = restore_pools(data["pools"])
    price_feed = PriceFeed(_require_int(data["price"], "price"))
    stability_pool = restore_stability_pool(data["stability_pool"], active_pool)
    trove_manager = restore_trove_manager(
        data["trove_manager"], active_pool, stability_pool, default_pool, price_feed
    )
    return ZkusdEconomicModel(
        price_feed=price_feed,
        active_pool=active_pool,
        default_pool=default_pool,
        stability_pool=stability_pool,
        trove_manager=trove_manager,
    )


def load_model(path):
    """Reads a model previously written by save_model."""
    return restore_model(json.loads(Path(path).read_text(encoding="utf-8")))
