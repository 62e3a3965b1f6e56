from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from veledger.api.routes_public_parts.common import _executor

router = APIRouter()

Json = Dict[str, Any]


@router.get("/status")
def status(request: Request) -> Json:
    """
    Ledger status summary.

    Mounted under /v1 by routes_public.py, so the full path is:
      GET /v1/status
    """
    out: Json = {"ok": True}
    out.update(_executor(request).snapshot())
    return out
