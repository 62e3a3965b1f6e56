from __future__ import annotations

import time
from typing import Any, Dict

from fastapi import APIRouter, Request

router = APIRouter()


def _now_ms() -> int:
    return int(time.time() * 1000)


@router.get("/health")
def health(request: Request) -> Dict[str, Any]:
    # health must never crash: best-effort telemetry only
    ex = getattr(request.app.state, "executor", None)
    return {
        "ok": True,
        "service": "veledger",
        "version": "v1",
        "ts_ms": _now_ms(),
        "chain_id": getattr(ex, "chain_id", None),
        "executor_attached": ex is not None,
    }


@router.get("/readyz")
def readyz(request: Request) -> Dict[str, Any]:
    """Ready only once an executor is attached and state is loaded."""
    ex = getattr(request.app.state, "executor", None)
    seq = getattr(ex, "seq", None) if ex is not None else None
    return {"ok": ex is not None and isinstance(seq, int), "ts_ms": _now_ms(), "seq": seq}
