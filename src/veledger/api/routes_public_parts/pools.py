from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from veledger.api.errors import ApiError
from veledger.api.routes_public_parts.common import _snapshot
from veledger.ledger.ve_state import current_epoch, ensure_delegates, ensure_pools, get_delegate
from veledger.runtime.apply.delegates import effective_fee_bps
from veledger.runtime.apply.pools import active_pool_ids, get_pool

router = APIRouter()

Json = Dict[str, Any]


@router.get("/pools")
def pools_list(request: Request) -> Json:
    st = _snapshot(request)
    by_id = ensure_pools(st)["by_id"]
    return {"ok": True, "active": active_pool_ids(st), "pools": [by_id[k] for k in sorted(by_id.keys())]}


@router.get("/pools/{pool_id}")
def pools_get(request: Request, pool_id: str) -> Json:
    st = _snapshot(request)
    rec = get_pool(st, pool_id)
    if rec is None:
        raise ApiError.not_found("pool_not_found", "no such pool", {"pool_id": pool_id})
    return {"ok": True, "pool": rec}


@router.get("/delegates/{account}")
def delegates_get(request: Request, account: str) -> Json:
    st = _snapshot(request)
    rec = get_delegate(st, account)
    if rec is None:
        raise ApiError.not_found("delegate_not_found", "no such delegate", {"delegate": account})
    # Works on a copy: promoting a due pending fee here is never persisted.
    fee = effective_fee_bps(st, account, current_epoch(st))
    return {"ok": True, "delegate": rec, "effective_fee_bps": fee}


@router.get("/delegates")
def delegates_summary(request: Request) -> Json:
    reg = ensure_delegates(_snapshot(request))
    registered = sorted(k for k, v in reg["by_id"].items() if isinstance(v, dict) and v.get("registered"))
    return {
        "ok": True,
        "registered": registered,
        "registration_fees_total": int(reg.get("registration_fees_total") or 0),
        "registration_fees_unswept": int(reg.get("registration_fees_unswept") or 0),
    }
