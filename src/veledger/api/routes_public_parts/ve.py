from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Request

from veledger.api.errors import ApiError
from veledger.api.routes_public_parts.common import _int_param, _snapshot, _time_param
from veledger.ledger.queries import delegated_power_at, lock_power_at, personal_power_at, total_voting_power
from veledger.ledger.ve_state import current_epoch, epoch_end, get_lock, spent_votes

router = APIRouter()

Json = Dict[str, Any]


@router.get("/ve/power/{account}")
def ve_power(request: Request, account: str, t: Optional[str] = None) -> Json:
    """Personal and delegated voting power of ``account`` at ``t`` (default: now).

    Also reports what is still spendable in the current epoch on each track.
    """
    st = _snapshot(request)
    ts = _time_param(st, t)
    cur = current_epoch(st)
    end = epoch_end(st, cur)

    personal_end = personal_power_at(st, account, end)
    delegated_end = delegated_power_at(st, account, end)
    return {
        "ok": True,
        "account": account,
        "t": ts,
        "personal": personal_power_at(st, account, ts),
        "delegated": delegated_power_at(st, account, ts),
        "epoch": cur,
        "available": {
            "personal": max(0, personal_end - spent_votes(st, cur, account)),
            "delegated": max(0, delegated_end - spent_votes(st, cur, account, as_delegate=True)),
        },
    }


@router.get("/ve/total")
def ve_total(request: Request, t: Optional[str] = None) -> Json:
    st = _snapshot(request)
    ts = _time_param(st, t)
    return {"ok": True, "t": ts, "total": total_voting_power(st, ts)}


@router.get("/ve/locks/{lock_id}")
def ve_lock(request: Request, lock_id: str, t: Optional[str] = None) -> Json:
    st = _snapshot(request)
    lid = _int_param(lock_id, 0)
    lk = get_lock(st, lid)
    if lk is None:
        raise ApiError.not_found("lock_not_found", "no such lock", {"lock_id": lid})
    ts = _time_param(st, t)
    return {"ok": True, "lock": lk, "t": ts, "power": lock_power_at(st, lid, ts)}


@router.get("/ve/accounts/{account}/locks")
def ve_account_locks(request: Request, account: str) -> Json:
    st = _snapshot(request)
    accts = (st.get("ve") or {}).get("accounts") or {}
    rec = accts.get(account) if isinstance(accts, dict) else None
    ids = list((rec or {}).get("lock_ids") or [])
    locks = [lk for lk in (get_lock(st, i) for i in ids) if lk is not None]
    return {"ok": True, "account": account, "locks": locks}
