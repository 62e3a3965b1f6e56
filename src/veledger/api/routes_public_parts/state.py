# src/veledger/api/routes_public_parts/state.py
from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from veledger.api.routes_public_parts.common import _snapshot
from veledger.runtime.state_invariants import ledger_violations

router = APIRouter()

Json = Dict[str, Any]


@router.get("/state/snapshot")
def state_snapshot(request: Request) -> Json:
    """Return the full ledger state.

    Production note:
      - This endpoint grows with the number of locks and epochs.
      - Operators may disable it at the edge.
    """
    return {"ok": True, "state": _snapshot(request)}


@router.get("/state/violations")
def state_violations(request: Request) -> Json:
    v = ledger_violations(_snapshot(request))
    return {"ok": not v, "violations": v}
