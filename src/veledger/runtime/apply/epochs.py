# src/veledger/runtime/apply/epochs.py
from __future__ import annotations

"""Epoch lifecycle.

Per-epoch state machine, strictly forward-only:

    Voting -> Ended -> Verified -> Processed -> Finalized

ForceFinalized is reachable from any non-terminal state once the epoch end
has passed. It deposits nothing, so nothing becomes claimable.

Every transition is its own tx. Nothing advances on a timer: a transition
whose time precondition is not met is rejected and must be re-submitted
later.
"""

from typing import Any, Dict, List, Optional, Set

from veledger.ledger import constants as C
from veledger.ledger.ve_state import (
    current_epoch,
    ensure_epoch_pool,
    ensure_epoch_votes,
    ensure_epochs,
    epoch_end,
    get_epoch,
    new_epoch_record,
    now_s,
    param_int,
    param_str,
    peek_epoch_votes,
)
from veledger.runtime.apply.context import ApplyContext
from veledger.runtime.apply.pools import active_pool_ids
from veledger.runtime.authority import deny_if_paused, require_role
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


def reward_asset(state: Json) -> str:
    return param_str(state, "reward_asset", C.DEFAULT_REWARD_ASSET)


def _require_epoch(state: Json, env: TxEnvelope) -> Json:
    payload = _as_dict(env.payload)
    epoch = _as_int(payload.get("epoch"), 0)
    if epoch <= 0:
        raise ApplyError("invalid_payload", "missing_epoch", {"tx_type": env.tx_type})
    rec = get_epoch(state, epoch)
    if rec is None:
        raise ApplyError("not_found", "epoch_not_found", {"epoch": epoch})
    return rec


def _require_state(rec: Json, want: str, tx_type: str) -> None:
    have = rec.get("state")
    if have != want:
        raise ApplyError(
            "invalid_state",
            "wrong_epoch_state",
            {"epoch": rec.get("epoch"), "state": have, "required": want, "tx_type": tx_type},
        )


def _require_predecessor_terminal(state: Json, rec: Json) -> None:
    epoch = _as_int(rec.get("epoch"), 0)
    if epoch <= 1:
        return
    prev = get_epoch(state, epoch - 1)
    prev_state = prev.get("state") if prev else None
    if prev_state not in C.EPOCH_TERMINAL_STATES:
        raise ApplyError("invalid_state", "previous_epoch_not_finalized", {"epoch": epoch, "previous_state": prev_state})


def _snapshot_and_open_next(state: Json, rec: Json) -> int:
    """Freeze the active pool set of the Voting epoch and open its successor."""
    pools = active_pool_ids(state)
    rec["active_pools"] = pools
    rec["total_active_pools"] = len(pools)
    rec["ended_at"] = now_s(state)

    ep = ensure_epochs(state)
    nxt = _as_int(rec.get("epoch"), 0) + 1
    ep["by_id"][str(nxt)] = new_epoch_record(state, nxt)
    ep["current"] = nxt
    return nxt


def _apply_epoch_end(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Json:
    deny_if_paused(ctx.authority, state, tx_type=env.tx_type)
    require_role(ctx.authority, state, env.signer, [C.ROLE_EPOCH_ADMIN], tx_type=env.tx_type)

    epoch = current_epoch(state)
    rec = get_epoch(state, epoch)
    if rec is None:
        raise ApplyError("invalid_state", "current_epoch_missing", {"epoch": epoch})
    _require_state(rec, C.EPOCH_VOTING, env.tx_type)
    now = now_s(state)
    end = epoch_end(state, epoch)
    if now <= end:
        raise ApplyError("invalid_time", "epoch_not_over", {"epoch": epoch, "end": end, "now": now})

    nxt = _snapshot_and_open_next(state, rec)
    rec["state"] = C.EPOCH_ENDED
    return {
        "applied": "EPOCH_END",
        "epoch": epoch,
        "total_active_pools": rec["total_active_pools"],
        "next_epoch": nxt,
    }


def _apply_epoch_verify(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Json:
    deny_if_paused(ctx.authority, state, tx_type=env.tx_type)
    require_role(ctx.authority, state, env.signer, [C.ROLE_EPOCH_ADMIN], tx_type=env.tx_type)
    rec = _require_epoch(state, env)
    _require_state(rec, C.EPOCH_ENDED, env.tx_type)

    payload = _as_dict(env.payload)
    raw = payload.get("block_list") or []
    if not isinstance(raw, list):
        raise ApplyError("invalid_payload", "block_list_not_list", {"tx_type": env.tx_type})
    blocked = set(rec.get("blocked") or [])
    blocked.update(a for a in (_as_str(x) for x in raw) if a)
    rec["blocked"] = sorted(blocked)

    if not bool(payload.get("all_cleared", False)):
        return {"applied": "EPOCH_VERIFY", "epoch": rec["epoch"], "cleared": False, "blocked": rec["blocked"]}

    rec["state"] = C.EPOCH_VERIFIED
    if _as_int(rec.get("total_active_pools"), 0) == 0:
        # Nothing to allocate.
        rec["state"] = C.EPOCH_PROCESSED
    return {
        "applied": "EPOCH_VERIFY",
        "epoch": rec["epoch"],
        "cleared": True,
        "state": rec["state"],
        "blocked": rec["blocked"],
    }


def _amount_list(payload: Json, key: str, n: int) -> List[int]:
    raw = payload.get(key)
    if not isinstance(raw, list) or len(raw) != n:
        raise ApplyError("invalid_payload", f"{key}_length_mismatch", {"expected": n})
    out: List[int] = []
    for v in raw:
        if isinstance(v, bool):
            raise ApplyError("invalid_payload", f"bad_{key}", {"value": v})
        try:
            amt = int(v)
        except Exception:
            raise ApplyError("invalid_payload", f"bad_{key}", {"value": v})
        if amt < 0:
            raise ApplyError("invalid_payload", f"negative_{key}", {"value": amt})
        out.append(amt)
    return out


def _apply_epoch_allocate(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Json:
    deny_if_paused(ctx.authority, state, tx_type=env.tx_type)
    require_role(ctx.authority, state, env.signer, [C.ROLE_EPOCH_ADMIN], tx_type=env.tx_type)
    rec = _require_epoch(state, env)
    _require_state(rec, C.EPOCH_VERIFIED, env.tx_type)
    epoch = _as_int(rec["epoch"], 0)

    payload = _as_dict(env.payload)
    pools = payload.get("pools")
    if not isinstance(pools, list) or not pools:
        raise ApplyError("invalid_payload", "missing_pools", {"tx_type": env.tx_type})
    pool_ids = [_as_str(p) for p in pools]
    rewards = _amount_list(payload, "reward_amounts", len(pool_ids))
    subsidies = _amount_list(payload, "subsidy_amounts", len(pool_ids))

    snapshot = set(rec.get("active_pools") or [])
    processed = set(rec.get("processed_pools") or [])
    seen: Set[str] = set()
    votes = ensure_epoch_votes(state, epoch)

    for pid, reward, subsidy in zip(pool_ids, rewards, subsidies):
        if pid not in snapshot:
            raise ApplyError("invalid_payload", "pool_not_in_epoch", {"epoch": epoch, "pool_id": pid})
        if pid in processed or pid in seen:
            raise ApplyError("conflict", "pool_already_processed", {"epoch": epoch, "pool_id": pid})
        seen.add(pid)
        pool_votes = _as_int(_as_dict(peek_epoch_votes(state, epoch)["pools"].get(pid)).get("total"), 0)
        if pool_votes == 0 and (reward or subsidy):
            raise ApplyError(
                "invalid_payload",
                "allocation_to_zero_vote_pool",
                {"epoch": epoch, "pool_id": pid, "reward": reward, "subsidy": subsidy},
            )

    for pid, reward, subsidy in zip(pool_ids, rewards, subsidies):
        ep_pool = ensure_epoch_pool(votes, pid)
        ep_pool["reward"] = _as_int(ep_pool.get("reward"), 0) + reward
        ep_pool["subsidy"] = _as_int(ep_pool.get("subsidy"), 0) + subsidy
        rec["reward_allocated"] = _as_int(rec.get("reward_allocated"), 0) + reward
        rec["subsidy_allocated"] = _as_int(rec.get("subsidy_allocated"), 0) + subsidy
        rec.setdefault("processed_pools", []).append(pid)

    rec["pools_processed"] = len(rec["processed_pools"])
    if rec["pools_processed"] >= _as_int(rec.get("total_active_pools"), 0):
        rec["state"] = C.EPOCH_PROCESSED

    return {
        "applied": "EPOCH_ALLOCATE",
        "epoch": epoch,
        "pools_processed": rec["pools_processed"],
        "total_active_pools": rec["total_active_pools"],
        "state": rec["state"],
    }


def _apply_epoch_finalize(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Json:
    deny_if_paused(ctx.authority, state, tx_type=env.tx_type)
    require_role(ctx.authority, state, env.signer, [C.ROLE_REWARDS_FUNDER], tx_type=env.tx_type)
    rec = _require_epoch(state, env)
    _require_state(rec, C.EPOCH_PROCESSED, env.tx_type)
    _require_predecessor_terminal(state, rec)

    reward = _as_int(rec.get("reward_allocated"), 0)
    subsidy = _as_int(rec.get("subsidy_allocated"), 0)
    receipt = ctx.custody.transfer_in(state, env.signer, reward_asset(state), reward + subsidy)

    rec["reward_deposited"] = reward
    rec["subsidy_deposited"] = subsidy
    rec["finalized_at"] = now_s(state)
    rec["state"] = C.EPOCH_FINALIZED
    return {"applied": "EPOCH_FINALIZE", "epoch": rec["epoch"], "deposit": receipt}


def _apply_epoch_force_finalize(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Json:
    deny_if_paused(ctx.authority, state, tx_type=env.tx_type)
    require_role(ctx.authority, state, env.signer, [C.ROLE_EMERGENCY_OPERATOR], tx_type=env.tx_type)
    rec = _require_epoch(state, env)
    epoch = _as_int(rec["epoch"], 0)
    prior = rec.get("state")
    if prior in C.EPOCH_TERMINAL_STATES:
        raise ApplyError("invalid_state", "epoch_already_terminal", {"epoch": epoch, "state": prior})
    now = now_s(state)
    end = epoch_end(state, epoch)
    if now <= end:
        raise ApplyError("invalid_time", "epoch_not_over", {"epoch": epoch, "end": end, "now": now})
    _require_predecessor_terminal(state, rec)

    next_epoch = None
    if prior == C.EPOCH_VOTING:
        next_epoch = _snapshot_and_open_next(state, rec)

    rec["state"] = C.EPOCH_FORCE_FINALIZED
    rec["finalized_at"] = now
    return {"applied": "EPOCH_FORCE_FINALIZE", "epoch": epoch, "from_state": prior, "next_epoch": next_epoch}


def _apply_epoch_sweep(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Json:
    deny_if_paused(ctx.authority, state, tx_type=env.tx_type)
    require_role(ctx.authority, state, env.signer, [C.ROLE_COLLECTOR], tx_type=env.tx_type)
    rec = _require_epoch(state, env)
    _require_state(rec, C.EPOCH_FINALIZED, env.tx_type)
    if rec.get("reward_swept") and rec.get("subsidy_swept"):
        raise ApplyError("conflict", "epoch_already_swept", {"epoch": rec["epoch"]})

    now = now_s(state)
    cooldown = param_int(state, "sweep_cooldown_seconds", C.DEFAULT_SWEEP_COOLDOWN_SECONDS)
    ready_at = _as_int(rec.get("finalized_at"), 0) + cooldown
    if now < ready_at:
        raise ApplyError("invalid_time", "sweep_cooldown_active", {"epoch": rec["epoch"], "ready_at": ready_at, "now": now})

    swept: Json = {}
    total = 0
    for track in ("reward", "subsidy"):
        if rec.get(f"{track}_swept"):
            swept[track] = 0
            continue
        left = (
            _as_int(rec.get(f"{track}_deposited"), 0)
            - _as_int(rec.get(f"{track}_claimed"), 0)
            - _as_int(rec.get(f"{track}_withdrawn"), 0)
        )
        if left < 0:
            raise ApplyError("invalid_state", "track_overdrawn", {"epoch": rec["epoch"], "track": track, "left": left})
        rec[f"{track}_withdrawn"] = _as_int(rec.get(f"{track}_withdrawn"), 0) + left
        rec[f"{track}_swept"] = True
        swept[track] = left
        total += left

    receipt = ctx.custody.transfer_out(state, env.signer, reward_asset(state), total)
    return {"applied": "EPOCH_SWEEP", "epoch": rec["epoch"], "swept": swept, "transfer": receipt}


EPOCH_TX_TYPES: Set[str] = {
    "EPOCH_END",
    "EPOCH_VERIFY",
    "EPOCH_ALLOCATE",
    "EPOCH_FINALIZE",
    "EPOCH_FORCE_FINALIZE",
    "EPOCH_SWEEP",
}


def apply_epochs(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Optional[Json]:
    t = _as_str(env.tx_type).upper()
    if t not in EPOCH_TX_TYPES:
        return None

    if t == "EPOCH_END":
        return _apply_epoch_end(state, env, ctx)
    if t == "EPOCH_VERIFY":
        return _apply_epoch_verify(state, env, ctx)
    if t == "EPOCH_ALLOCATE":
        return _apply_epoch_allocate(state, env, ctx)
    if t == "EPOCH_FINALIZE":
        return _apply_epoch_finalize(state, env, ctx)
    if t == "EPOCH_FORCE_FINALIZE":
        return _apply_epoch_force_finalize(state, env, ctx)
    if t == "EPOCH_SWEEP":
        return _apply_epoch_sweep(state, env, ctx)

    return None


__all__ = ["EPOCH_TX_TYPES", "apply_epochs", "reward_asset"]
