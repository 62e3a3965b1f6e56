# src/veledger/ledger/queries.py
from __future__ import annotations

"""Read-only voting power queries over the decay ledger.

None of these functions mutate state: aggregates are evaluated on rolled
copies, and historical values come from checkpoint histories.
"""

from typing import Any, Dict, Optional

from veledger.ledger.decay import balance_at, history_value_at, last_checkpoint_at, value_at
from veledger.ledger.ve_state import epoch_seconds

Json = Dict[str, Any]


def _ve(state: Json) -> Json:
    ve = state.get("ve")
    return ve if isinstance(ve, dict) else {}


def _account(state: Json, account: str) -> Json:
    accts = _ve(state).get("accounts")
    if not isinstance(accts, dict):
        return {}
    rec = accts.get(account)
    return rec if isinstance(rec, dict) else {}


def personal_power_at(state: Json, account: str, t: int) -> int:
    rec = _account(state, account)
    agg = rec.get("personal")
    if not isinstance(agg, dict):
        return 0
    return balance_at(agg, rec.get("personal_slope_changes") or {}, int(t), epoch_seconds(state))


def delegated_power_at(state: Json, delegate: str, t: int) -> int:
    """Power delegated to ``delegate`` at ``t`` (historical or future)."""
    rec = _account(state, delegate)
    agg = rec.get("delegated")
    if not isinstance(agg, dict):
        return 0
    schedule = rec.get("delegated_slope_changes") or {}
    e = epoch_seconds(state)
    if int(t) >= int(agg.get("ts", 0) or 0):
        return balance_at(agg, schedule, int(t), e)
    history = rec.get("delegated_history")
    if not isinstance(history, list):
        return 0
    return history_value_at(history, schedule, int(t), e)


def voting_power(state: Json, account: str, t: int, *, delegated: bool = False) -> int:
    if delegated:
        return delegated_power_at(state, account, t)
    return personal_power_at(state, account, t)


def total_voting_power(state: Json, t: int) -> int:
    ve = _ve(state)
    agg = ve.get("global")
    if not isinstance(agg, dict):
        return 0
    return balance_at(agg, ve.get("global_slope_changes") or {}, int(t), epoch_seconds(state))


def _lock_checkpoint_at(state: Json, lock_id: Any, t: int) -> Optional[Json]:
    hist = _ve(state).get("lock_checkpoints")
    if not isinstance(hist, dict):
        return None
    h = hist.get(str(lock_id))
    if not isinstance(h, list):
        return None
    return last_checkpoint_at(h, int(t))


def lock_power_at(state: Json, lock_id: Any, t: int) -> int:
    cp = _lock_checkpoint_at(state, lock_id, t)
    if cp is None:
        return 0
    return value_at(cp, int(t))


def lock_delegate_at(state: Json, lock_id: Any, t: int) -> Optional[str]:
    cp = _lock_checkpoint_at(state, lock_id, t)
    if cp is None:
        return None
    d = cp.get("delegate")
    return d if isinstance(d, str) and d else None


def delegator_power_at(state: Json, owner: str, delegate: str, t: int) -> int:
    """Power ``owner``'s locks contributed to ``delegate`` at ``t``."""
    rec = _account(state, owner)
    total = 0
    for lock_id in rec.get("lock_ids") or []:
        cp = _lock_checkpoint_at(state, lock_id, t)
        if cp is None or cp.get("delegate") != delegate:
            continue
        total += value_at(cp, int(t))
    return total


__all__ = [
    "delegated_power_at",
    "delegator_power_at",
    "lock_delegate_at",
    "lock_power_at",
    "personal_power_at",
    "total_voting_power",
    "voting_power",
]
