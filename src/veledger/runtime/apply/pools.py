# src/veledger/runtime/apply/pools.py
from __future__ import annotations

from typing import Any, Dict, List, Optional, Set

from veledger.ledger import constants as C
from veledger.ledger.ve_state import current_epoch, ensure_pools, epoch_end, get_epoch, now_s
from veledger.runtime.apply.context import ApplyContext
from veledger.runtime.authority import deny_if_paused, require_role
from veledger.runtime.errors import ApplyError
from veledger.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]


def _as_str(v: Any) -> str:
    return str(v).strip() if isinstance(v, (str, int)) else ""


def _as_dict(v: Any) -> Json:
    return v if isinstance(v, dict) else {}


def get_pool(state: Json, pool_id: str) -> Optional[Json]:
    rec = ensure_pools(state)["by_id"].get(pool_id)
    return rec if isinstance(rec, dict) else None


def is_pool_active(state: Json, pool_id: str) -> bool:
    rec = get_pool(state, pool_id)
    return bool(rec and rec.get("active"))


def active_pool_ids(state: Json) -> List[str]:
    return sorted(pid for pid, rec in ensure_pools(state)["by_id"].items() if isinstance(rec, dict) and rec.get("active"))


def _require_pool_window(state: Json, env: TxEnvelope) -> int:
    """Pools change only in a Voting epoch whose predecessor is terminal."""
    epoch = current_epoch(state)
    rec = get_epoch(state, epoch)
    if rec is None or rec.get("state") != C.EPOCH_VOTING:
        raise ApplyError("invalid_state", "epoch_not_voting", {"epoch": epoch, "tx_type": env.tx_type})
    now = now_s(state)
    if now > epoch_end(state, epoch):
        raise ApplyError("invalid_time", "voting_window_elapsed", {"epoch": epoch, "now": now})
    if epoch > 1:
        prev = get_epoch(state, epoch - 1)
        prev_state = prev.get("state") if prev else None
        if prev_state not in C.EPOCH_TERMINAL_STATES:
            raise ApplyError(
                "invalid_state",
                "previous_epoch_not_finalized",
                {"epoch": epoch, "previous_state": prev_state},
            )
    return epoch


def _pool_ids(env: TxEnvelope) -> List[Any]:
    raw = _as_dict(env.payload).get("pools")
    if not isinstance(raw, list) or not raw:
        raise ApplyError("invalid_payload", "missing_pools", {"tx_type": env.tx_type})
    return raw


def _apply_pool_create_batch(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Json:
    deny_if_paused(ctx.authority, state, tx_type=env.tx_type)
    require_role(ctx.authority, state, env.signer, [C.ROLE_POOL_ADMIN], tx_type=env.tx_type)
    epoch = _require_pool_window(state, env)

    by_id = ensure_pools(state)["by_id"]
    now = now_s(state)
    results: List[Json] = []
    for raw in _pool_ids(env):
        pid = _as_str(raw)
        if not pid:
            results.append({"pool_id": raw, "ok": False, "code": "invalid_pool_id"})
            continue
        rec = by_id.get(pid)
        if isinstance(rec, dict):
            if rec.get("active"):
                results.append({"pool_id": pid, "ok": False, "code": "pool_exists"})
                continue
            rec["active"] = True
            rec["reactivated_epoch"] = epoch
            results.append({"pool_id": pid, "ok": True, "reactivated": True})
            continue
        by_id[pid] = {
            "pool_id": pid,
            "active": True,
            "total_votes": 0,
            "created_at": now,
            "created_epoch": epoch,
        }
        results.append({"pool_id": pid, "ok": True})

    return {
        "applied": "POOL_CREATE_BATCH",
        "epoch": epoch,
        "created": sum(1 for r in results if r["ok"]),
        "results": results,
    }


def _apply_pool_remove_batch(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Json:
    deny_if_paused(ctx.authority, state, tx_type=env.tx_type)
    require_role(ctx.authority, state, env.signer, [C.ROLE_POOL_ADMIN], tx_type=env.tx_type)
    epoch = _require_pool_window(state, env)

    by_id = ensure_pools(state)["by_id"]
    results: List[Json] = []
    for raw in _pool_ids(env):
        pid = _as_str(raw)
        rec = by_id.get(pid) if pid else None
        if not isinstance(rec, dict):
            results.append({"pool_id": raw, "ok": False, "code": "pool_not_found"})
            continue
        if not rec.get("active"):
            results.append({"pool_id": pid, "ok": False, "code": "pool_inactive"})
            continue
        rec["active"] = False
        rec["removed_epoch"] = epoch
        results.append({"pool_id": pid, "ok": True})

    return {
        "applied": "POOL_REMOVE_BATCH",
        "epoch": epoch,
        "removed": sum(1 for r in results if r["ok"]),
        "results": results,
    }


POOL_TX_TYPES: Set[str] = {"POOL_CREATE_BATCH", "POOL_REMOVE_BATCH"}


def apply_pools(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Optional[Json]:
    t = _as_str(env.tx_type).upper()
    if t not in POOL_TX_TYPES:
        return None
    if t == "POOL_CREATE_BATCH":
        return _apply_pool_create_batch(state, env, ctx)
    if t == "POOL_REMOVE_BATCH":
        return _apply_pool_remove_batch(state, env, ctx)
    return None


__all__ = ["POOL_TX_TYPES", "active_pool_ids", "apply_pools", "get_pool", "is_pool_active"]
