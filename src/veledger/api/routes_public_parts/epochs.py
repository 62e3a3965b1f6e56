from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from veledger.api.errors import ApiError
from veledger.api.routes_public_parts.common import _int_param, _snapshot
from veledger.ledger.ve_state import current_epoch, get_epoch, peek_epoch_votes

router = APIRouter()

Json = Dict[str, Any]


def _epoch_or_404(st: Json, epoch: int) -> Json:
    rec = get_epoch(st, epoch)
    if rec is None:
        raise ApiError.not_found("epoch_not_found", "no such epoch", {"epoch": epoch})
    return rec


@router.get("/epochs/current")
def epochs_current(request: Request) -> Json:
    st = _snapshot(request)
    cur = current_epoch(st)
    return {"ok": True, "epoch": _epoch_or_404(st, cur)}


@router.get("/epochs/{epoch}")
def epochs_get(request: Request, epoch: str) -> Json:
    st = _snapshot(request)
    n = _int_param(epoch, 0)
    rec = _epoch_or_404(st, n)
    votes = peek_epoch_votes(st, n)
    pools = {
        pid: {k: v for k, v in p.items() if k not in ("users", "delegates")}
        for pid, p in (votes.get("pools") or {}).items()
    }
    return {"ok": True, "epoch": rec, "pools": pools}


@router.get("/epochs/{epoch}/pools/{pool_id}")
def epochs_pool(request: Request, epoch: str, pool_id: str) -> Json:
    """Full tally of one pool in one epoch, including per-voter entries."""
    st = _snapshot(request)
    n = _int_param(epoch, 0)
    _epoch_or_404(st, n)
    p = (peek_epoch_votes(st, n).get("pools") or {}).get(pool_id)
    if not isinstance(p, dict):
        raise ApiError.not_found("pool_not_in_epoch", "pool has no votes in epoch", {"epoch": n, "pool_id": pool_id})
    claims = (st.get("claims") or {}).get(str(n)) or {}
    per_track = {track: (claims.get(track) or {}).get(pool_id) or {} for track in ("reward", "delegated", "fee", "subsidy")}
    return {"ok": True, "epoch": n, "pool_id": pool_id, "tally": p, "claims": per_track}
