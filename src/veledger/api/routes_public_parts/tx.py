from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Request

from veledger.api.errors import ApiError
from veledger.api.routes_public_parts.common import _executor, _int_param
from veledger.runtime.batch import summarize

router = APIRouter()

Json = Dict[str, Any]

MAX_BATCH_TXS = 256


@router.post("/tx/submit")
async def tx_submit(request: Request) -> Json:
    """Submit a single tx envelope.

    Body: {tx_type, signer, nonce?, payload, time?}

    Returns the executor receipt. A rejection maps to a 4xx with the
    ledger's error code.
    """
    ex = _executor(request)

    body = await request.json()
    if not isinstance(body, dict):
        raise ApiError.bad_request("bad_request", "Body must be a tx envelope object", {})

    res = ex.submit_tx(body)
    if not res.get("ok"):
        raise ApiError.from_rejection(res.get("error") or {})
    return res


@router.post("/tx/batch")
async def tx_batch(request: Request) -> Json:
    """Submit envelopes in order. Each item succeeds or fails on its own.

    Body: {"txs": [envelope, ...]}
    """
    ex = _executor(request)

    body = await request.json()
    txs = body.get("txs") if isinstance(body, dict) else None
    if not isinstance(txs, list) or not txs:
        raise ApiError.bad_request("bad_request", "Body must be {\"txs\": [envelope, ...]}", {})
    if len(txs) > MAX_BATCH_TXS:
        raise ApiError.bad_request("batch_too_large", "too many txs in one batch", {"max": MAX_BATCH_TXS})

    outcomes = ex.submit_batch(txs)
    return {"ok": True, "summary": summarize(outcomes), "results": outcomes}


@router.get("/tx/receipts")
def tx_receipts(request: Request, limit: Optional[str] = None, signer: Optional[str] = None) -> Json:
    ex = _executor(request)
    rows = ex.receipts(limit=_int_param(limit, 50), signer=(signer or "").strip() or None)
    return {"ok": True, "receipts": rows}
