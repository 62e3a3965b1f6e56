# src/veledger/runtime/batch.py
from __future__ import annotations

"""Ordered multi-tx application with per-item outcomes.

Each envelope is applied atomically on its own, in order, against the state
left by the previous ones. A rejected item is recorded with its error and
does not stop the items after it; nothing is silently dropped.
"""

from typing import Any, Dict, Iterable, List, Optional

from veledger.runtime.apply.context import ApplyContext
from veledger.runtime.domain_apply import apply_tx_atomic
from veledger.runtime.errors import ApplyError

Json = Dict[str, Any]


def _tx_type(env: Any) -> str:
    if isinstance(env, dict):
        return str(env.get("tx_type") or "").strip().upper()
    return str(getattr(env, "tx_type", "") or "").strip().upper()


def apply_batch(state: Json, envs: Iterable[Any], ctx: Optional[ApplyContext] = None) -> List[Json]:
    outcomes: List[Json] = []
    for i, env in enumerate(envs):
        item: Json = {"index": i, "tx_type": _tx_type(env)}
        try:
            meta = apply_tx_atomic(state, env, ctx)
        except ApplyError as e:
            item["ok"] = False
            item["error"] = e.to_json()
        else:
            item["ok"] = True
            item["meta"] = meta
        outcomes.append(item)
    return outcomes


def summarize(outcomes: List[Json]) -> Json:
    ok = sum(1 for o in outcomes if o.get("ok"))
    return {"total": len(outcomes), "applied": ok, "rejected": len(outcomes) - ok}


__all__ = ["apply_batch", "summarize"]
