# src/veledger/ledger/ve_state.py
from __future__ import annotations

"""Container helpers for the veledger state tree.

The state is a nested JSON-like dict. Apply modules reach their sub-trees
through the ``ensure_*`` helpers here so every module agrees on the layout:

  state["ve"]        locks, lock checkpoints, global/account aggregates
  state["pools"]     pool registry
  state["epochs"]    epoch records and the current epoch number
  state["votes"]     per-epoch pool/user/delegate tallies and allocations
  state["delegates"] delegate registry and registration-fee accounting
  state["claims"]    per-epoch claim receipts

All map keys are strings so snapshots round-trip through canonical JSON.
"""

from typing import Any, Dict, List

from veledger.ledger import constants as C
from veledger.ledger.decay import empty_aggregate

Json = Dict[str, Any]


def _as_int(x: Any, default: int = 0) -> int:
    try:
        return int(x)
    except Exception:
        return int(default)


def _ensure_root_dict(state: Json, key: str) -> Json:
    cur = state.get(key)
    if not isinstance(cur, dict):
        cur = {}
        state[key] = cur
    return cur


def now_s(state: Json) -> int:
    return _as_int(state.get("time"), 0)


def params(state: Json) -> Json:
    return _ensure_root_dict(state, "params")


def param_int(state: Json, key: str, default: int) -> int:
    return _as_int(params(state).get(key), default)


def param_str(state: Json, key: str, default: str) -> str:
    v = params(state).get(key)
    return v if isinstance(v, str) and v.strip() else default


def epoch_seconds(state: Json) -> int:
    return param_int(state, "epoch_seconds", C.DEFAULT_EPOCH_SECONDS)


def genesis_time(state: Json) -> int:
    return param_int(state, "genesis_time", 0)


def epoch_start(state: Json, epoch: int) -> int:
    return genesis_time(state) + (int(epoch) - 1) * epoch_seconds(state)


def epoch_end(state: Json, epoch: int) -> int:
    return genesis_time(state) + int(epoch) * epoch_seconds(state)


# ---------------------------------------------------------------------------
# Decay ledger
# ---------------------------------------------------------------------------


def ensure_ve(state: Json) -> Json:
    ve = _ensure_root_dict(state, "ve")
    ve.setdefault("next_lock_id", 1)
    if not isinstance(ve.get("locks"), dict):
        ve["locks"] = {}
    if not isinstance(ve.get("lock_checkpoints"), dict):
        ve["lock_checkpoints"] = {}
    if not isinstance(ve.get("global"), dict):
        ve["global"] = empty_aggregate(genesis_time(state))
    if not isinstance(ve.get("global_slope_changes"), dict):
        ve["global_slope_changes"] = {}
    if not isinstance(ve.get("accounts"), dict):
        ve["accounts"] = {}
    if not isinstance(ve.get("locked_totals"), dict):
        ve["locked_totals"] = {}
    return ve


def ensure_ve_account(state: Json, account: str) -> Json:
    ve = ensure_ve(state)
    accts = ve["accounts"]
    rec = accts.get(account)
    if not isinstance(rec, dict):
        t = now_s(state)
        rec = {
            "personal": empty_aggregate(t),
            "personal_slope_changes": {},
            "delegated": empty_aggregate(t),
            "delegated_slope_changes": {},
            "delegated_history": [],
            "lock_ids": [],
        }
        accts[account] = rec
    return rec


def get_lock(state: Json, lock_id: Any) -> Json | None:
    ve = ensure_ve(state)
    lk = ve["locks"].get(str(lock_id))
    return lk if isinstance(lk, dict) else None


def lock_history(state: Json, lock_id: Any) -> List[Json]:
    ve = ensure_ve(state)
    h = ve["lock_checkpoints"].get(str(lock_id))
    if not isinstance(h, list):
        h = []
        ve["lock_checkpoints"][str(lock_id)] = h
    return h


# ---------------------------------------------------------------------------
# Pools / epochs / votes
# ---------------------------------------------------------------------------


def ensure_pools(state: Json) -> Json:
    pools = _ensure_root_dict(state, "pools")
    if not isinstance(pools.get("by_id"), dict):
        pools["by_id"] = {}
    return pools


def new_epoch_record(state: Json, epoch: int) -> Json:
    return {
        "epoch": int(epoch),
        "state": C.EPOCH_VOTING,
        "start": epoch_start(state, epoch),
        "end": epoch_end(state, epoch),
        "active_pools": [],
        "total_active_pools": 0,
        "pools_processed": 0,
        "processed_pools": [],
        "blocked": [],
        "reward_allocated": 0,
        "subsidy_allocated": 0,
        "reward_deposited": 0,
        "subsidy_deposited": 0,
        "reward_claimed": 0,
        "subsidy_claimed": 0,
        "reward_withdrawn": 0,
        "subsidy_withdrawn": 0,
        "reward_swept": False,
        "subsidy_swept": False,
        "ended_at": 0,
        "finalized_at": 0,
    }


def ensure_epochs(state: Json) -> Json:
    ep = _ensure_root_dict(state, "epochs")
    if not isinstance(ep.get("by_id"), dict):
        ep["by_id"] = {}
    if _as_int(ep.get("current"), 0) <= 0:
        ep["current"] = 1
    cur = str(ep["current"])
    if not isinstance(ep["by_id"].get(cur), dict):
        ep["by_id"][cur] = new_epoch_record(state, int(cur))
    return ep


def current_epoch(state: Json) -> int:
    return _as_int(ensure_epochs(state).get("current"), 1)


def get_epoch(state: Json, epoch: Any) -> Json | None:
    ep = ensure_epochs(state)
    rec = ep["by_id"].get(str(_as_int(epoch, 0)))
    return rec if isinstance(rec, dict) else None


def ensure_epoch_votes(state: Json, epoch: int) -> Json:
    votes = _ensure_root_dict(state, "votes")
    k = str(int(epoch))
    rec = votes.get(k)
    if not isinstance(rec, dict):
        rec = {"pools": {}, "users": {}, "delegates": {}}
        votes[k] = rec
    return rec


def peek_epoch_votes(state: Json, epoch: int) -> Json:
    """Read-only view of an epoch's tallies (no containers are created)."""
    votes = state.get("votes")
    if not isinstance(votes, dict):
        return {"pools": {}, "users": {}, "delegates": {}}
    rec = votes.get(str(int(epoch)))
    return rec if isinstance(rec, dict) else {"pools": {}, "users": {}, "delegates": {}}


def spent_votes(state: Json, epoch: int, account: str, *, as_delegate: bool = False) -> int:
    """Votes ``account`` already spent in ``epoch`` on the given track."""
    track = "delegates" if as_delegate else "users"
    rec = peek_epoch_votes(state, epoch).get(track, {}).get(account)
    if not isinstance(rec, dict):
        return 0
    return _as_int(rec.get("total"), 0)


def ensure_epoch_pool(epoch_votes: Json, pool_id: str) -> Json:
    pools = epoch_votes["pools"]
    rec = pools.get(pool_id)
    if not isinstance(rec, dict):
        rec = {
            "total": 0,
            "users": {},
            "delegates": {},
            "reward": 0,
            "subsidy": 0,
            "reward_claimed": 0,
            "subsidy_claimed": 0,
        }
        pools[pool_id] = rec
    return rec


# ---------------------------------------------------------------------------
# Delegates / claims
# ---------------------------------------------------------------------------


def ensure_delegates(state: Json) -> Json:
    d = _ensure_root_dict(state, "delegates")
    if not isinstance(d.get("by_id"), dict):
        d["by_id"] = {}
    d.setdefault("registration_fees_total", 0)
    d.setdefault("registration_fees_unswept", 0)
    return d


def get_delegate(state: Json, account: str) -> Json | None:
    rec = ensure_delegates(state)["by_id"].get(account)
    return rec if isinstance(rec, dict) else None


def is_registered_delegate(state: Json, account: str) -> bool:
    rec = get_delegate(state, account)
    return bool(rec and rec.get("registered"))


def ensure_epoch_claims(state: Json, epoch: int) -> Json:
    claims = _ensure_root_dict(state, "claims")
    k = str(int(epoch))
    rec = claims.get(k)
    if not isinstance(rec, dict):
        rec = {"reward": {}, "delegated": {}, "fee": {}, "subsidy": {}}
        claims[k] = rec
    return rec


__all__ = [
    "Json",
    "current_epoch",
    "ensure_delegates",
    "ensure_epoch_claims",
    "ensure_epoch_pool",
    "ensure_epoch_votes",
    "ensure_epochs",
    "ensure_pools",
    "ensure_ve",
    "ensure_ve_account",
    "epoch_end",
    "epoch_seconds",
    "epoch_start",
    "genesis_time",
    "get_delegate",
    "get_epoch",
    "get_lock",
    "is_registered_delegate",
    "lock_history",
    "new_epoch_record",
    "now_s",
    "param_int",
    "param_str",
    "params",
    "peek_epoch_votes",
    "spent_votes",
]
