from __future__ import annotations

from typing import Any, Dict

from fastapi import Request

from veledger.api.errors import ApiError

Json = Dict[str, Any]


def _executor(request: Request):
    ex = getattr(request.app.state, "executor", None)
    if ex is None:
        raise ApiError.internal("not_ready", "executor not attached to app.state", {})
    return ex


def _snapshot(request: Request) -> Json:
    """Deep copy of the current ledger state (safe to query and mutate)."""
    st = _executor(request).read_state()
    if not isinstance(st, dict):
        raise ApiError.internal("bad_state", "executor state is not a dict", {})
    return st


def _int_param(v: Any, default: int) -> int:
    """Parse an int-ish query param safely."""
    if v is None:
        return int(default)
    try:
        s = str(v).strip()
        if s == "":
            return int(default)
        return int(s)
    except ValueError:
        raise ApiError.bad_request("bad_param", "expected an integer", {"value": str(v)}) from None


def _time_param(st: Json, v: Any) -> int:
    """Timestamp query param, defaulting to the ledger's current time."""
    return _int_param(v, int(st.get("time") or 0))
