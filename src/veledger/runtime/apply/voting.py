# src/veledger/runtime/apply/voting.py
from __future__ import annotations

"""Vote casting and migration.

These two handlers are the only writers of the epoch vote tallies:

  votes[epoch]["pools"][pool]["total"]              pool total
  votes[epoch]["pools"][pool]["users"|"delegates"]  per-account entries
  votes[epoch]["users"|"delegates"][acct]           {"total", "pools"}

Every increment is applied to all three levels together, so the pool total
always equals the sum of its per-account entries and an account's total
always equals the sum of its per-pool entries.
"""

from typing import Any, Dict, Optional, Set

from veledger.ledger import constants as C
from veledger.ledger.queries import voting_power
from veledger.ledger.ve_state import (
    current_epoch,
    ensure_epoch_pool,
    ensure_epoch_votes,
    epoch_end,
    get_epoch,
    is_registered_delegate,
    now_s,
    spent_votes,
)
from veledger.runtime.apply.context import ApplyContext
from veledger.runtime.apply.delegates import effective_fee_bps
from veledger.runtime.apply.pools import get_pool, is_pool_active
from veledger.runtime.authority import deny_if_paused
from veledger.runtime.errors import ApplyError
from veledger.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]


def _as_str(v: Any) -> str:
    return str(v).strip() if isinstance(v, (str, int)) else ""


def _as_int(v: Any, default: int = 0) -> int:
    try:
        return int(v)
    except Exception:
        return int(default)


def _as_dict(v: Any) -> Json:
    return v if isinstance(v, dict) else {}


def _positive_amount(payload: Json) -> int:
    raw = payload.get("amount")
    if isinstance(raw, bool):
        raise ApplyError("invalid_payload", "bad_amount", {"amount": raw})
    try:
        amt = int(raw)
    except Exception:
        raise ApplyError("invalid_payload", "bad_amount", {"amount": raw})
    if amt <= 0:
        raise ApplyError("invalid_payload", "amount_must_be_positive", {"amount": amt})
    return amt


def _require_voting_window(state: Json, env: TxEnvelope) -> int:
    epoch = current_epoch(state)
    rec = get_epoch(state, epoch)
    if rec is None or rec.get("state") != C.EPOCH_VOTING:
        raise ApplyError("invalid_state", "epoch_not_voting", {"epoch": epoch, "tx_type": env.tx_type})
    now = now_s(state)
    end = epoch_end(state, epoch)
    if now > end:
        raise ApplyError("invalid_time", "voting_window_elapsed", {"epoch": epoch, "end": end, "now": now})
    return epoch


def _account_entry(votes: Json, track: str, account: str) -> Json:
    entries = votes[track]
    rec = entries.get(account)
    if not isinstance(rec, dict):
        rec = {"total": 0, "pools": {}}
        entries[account] = rec
    return rec


def _bump_pool_total(state: Json, pool_id: str, delta: int) -> None:
    pool = get_pool(state, pool_id)
    if pool is not None:
        pool["total_votes"] = _as_int(pool.get("total_votes"), 0) + int(delta)


def _apply_vote_cast(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Json:
    deny_if_paused(ctx.authority, state, tx_type=env.tx_type)
    account = _as_str(env.signer)
    payload = _as_dict(env.payload)
    as_delegate = bool(payload.get("as_delegate", False))
    pool_id = _as_str(payload.get("pool_id"))
    if not account:
        raise ApplyError("invalid_payload", "missing_signer", {"tx_type": env.tx_type})
    if not pool_id:
        raise ApplyError("invalid_payload", "missing_pool_id", {"tx_type": env.tx_type})
    amount = _positive_amount(payload)

    epoch = _require_voting_window(state, env)
    if not is_pool_active(state, pool_id):
        raise ApplyError("invalid_state", "pool_inactive", {"pool_id": pool_id})
    if as_delegate and not is_registered_delegate(state, account):
        raise ApplyError("forbidden", "delegate_not_registered", {"delegate": account})

    power = voting_power(state, account, epoch_end(state, epoch), delegated=as_delegate)
    spent = spent_votes(state, epoch, account, as_delegate=as_delegate)
    if amount > power - spent:
        raise ApplyError(
            "insufficient_power",
            "amount_exceeds_remaining_power",
            {"account": account, "delegated": as_delegate, "power": power, "spent": spent, "amount": amount},
        )

    track = "delegates" if as_delegate else "users"
    votes = ensure_epoch_votes(state, epoch)
    ep_pool = ensure_epoch_pool(votes, pool_id)
    entry = _account_entry(votes, track, account)

    ep_pool["total"] = _as_int(ep_pool.get("total"), 0) + amount
    ep_pool[track][account] = _as_int(ep_pool[track].get(account), 0) + amount
    entry["pools"][pool_id] = _as_int(entry["pools"].get(pool_id), 0) + amount
    entry["total"] = _as_int(entry.get("total"), 0) + amount
    _bump_pool_total(state, pool_id, amount)

    meta: Json = {
        "applied": "VOTE_CAST",
        "epoch": epoch,
        "pool_id": pool_id,
        "amount": amount,
        "as_delegate": as_delegate,
        "remaining": power - spent - amount,
    }
    if as_delegate:
        entry["fee_bps"] = effective_fee_bps(state, account, epoch)
        meta["fee_bps"] = entry["fee_bps"]
    return meta


def _apply_vote_migrate(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Json:
    deny_if_paused(ctx.authority, state, tx_type=env.tx_type)
    account = _as_str(env.signer)
    payload = _as_dict(env.payload)
    as_delegate = bool(payload.get("as_delegate", False))
    src = _as_str(payload.get("src_pool"))
    dst = _as_str(payload.get("dst_pool"))
    if not src or not dst:
        raise ApplyError("invalid_payload", "missing_pool_id", {"tx_type": env.tx_type})
    if src == dst:
        raise ApplyError("invalid_payload", "same_pool", {"pool_id": src})
    amount = _positive_amount(payload)

    epoch = _require_voting_window(state, env)
    if not is_pool_active(state, dst):
        raise ApplyError("invalid_state", "pool_inactive", {"pool_id": dst})

    track = "delegates" if as_delegate else "users"
    votes = ensure_epoch_votes(state, epoch)
    entry = _as_dict(votes[track].get(account))
    have = _as_int(_as_dict(entry.get("pools")).get(src), 0)
    if have < amount:
        raise ApplyError(
            "insufficient_power",
            "source_votes_too_low",
            {"account": account, "pool_id": src, "have": have, "amount": amount},
        )

    src_pool = ensure_epoch_pool(votes, src)
    dst_pool = ensure_epoch_pool(votes, dst)

    left = have - amount
    if left:
        entry["pools"][src] = left
        src_pool[track][account] = left
    else:
        entry["pools"].pop(src, None)
        src_pool[track].pop(account, None)
    src_pool["total"] = _as_int(src_pool.get("total"), 0) - amount

    entry["pools"][dst] = _as_int(entry["pools"].get(dst), 0) + amount
    dst_pool[track][account] = _as_int(dst_pool[track].get(account), 0) + amount
    dst_pool["total"] = _as_int(dst_pool.get("total"), 0) + amount

    _bump_pool_total(state, src, -amount)
    _bump_pool_total(state, dst, amount)

    return {
        "applied": "VOTE_MIGRATE",
        "epoch": epoch,
        "src_pool": src,
        "dst_pool": dst,
        "amount": amount,
        "as_delegate": as_delegate,
    }


VOTING_TX_TYPES: Set[str] = {"VOTE_CAST", "VOTE_MIGRATE"}


def apply_voting(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Optional[Json]:
    t = _as_str(env.tx_type).upper()
    if t not in VOTING_TX_TYPES:
        return None
    if t == "VOTE_CAST":
        return _apply_vote_cast(state, env, ctx)
    if t == "VOTE_MIGRATE":
        return _apply_vote_migrate(state, env, ctx)
    return None


__all__ = ["VOTING_TX_TYPES", "apply_voting"]
