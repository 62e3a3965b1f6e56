# src/veledger/ledger/decay.py
from __future__ import annotations

"""
Linear-decay voting power arithmetic.

A balance is a JSON dict ``{"bias": int, "slope": int}``. Voting power at
time ``t`` is ``bias - slope * t`` clamped at zero. For a single lock
``bias = slope * expiry`` so the power reaches exactly zero at expiry.

Balances are additive: aggregates (global, per-account personal, per-account
delegated) are plain sums of lock balances. An aggregate additionally carries
``ts``, the last time it was rolled forward, and is paired with a slope-change
schedule ``{str(expiry): slope_reduction}``.

Rolling forward walks epoch boundaries only, so the cost is bounded by the
number of epochs elapsed, never by the number of locks. At a boundary ``T``
with scheduled reduction ``d`` every lock contributing ``d`` has
``bias = slope * T``; removing ``d`` from the slope and ``d * T`` from the
bias drops those locks from the aggregate exactly.

Everything here is pure integer math on dicts. No state lookups.
"""

import copy
from typing import Any, Dict, Optional

Json = Dict[str, Any]


def _as_int(x: Any, default: int = 0) -> int:
    try:
        return int(x)
    except Exception:
        return int(default)


def empty_balance() -> Json:
    return {"bias": 0, "slope": 0}


def empty_aggregate(ts: int) -> Json:
    return {"bias": 0, "slope": 0, "ts": int(ts)}


def is_epoch_aligned(ts: int, epoch_seconds: int) -> bool:
    return int(ts) % int(epoch_seconds) == 0


def epoch_floor(ts: int, epoch_seconds: int) -> int:
    e = int(epoch_seconds)
    return (int(ts) // e) * e


def lock_slope(amount_a: int, amount_b: int, max_lock_seconds: int) -> int:
    """Slope of a lock. Truncating; small principals may decay from zero."""
    return (int(amount_a) + int(amount_b)) // int(max_lock_seconds)


def lock_balance(amount_a: int, amount_b: int, expiry: int, max_lock_seconds: int) -> Json:
    slope = lock_slope(amount_a, amount_b, max_lock_seconds)
    return {"bias": slope * int(expiry), "slope": slope}


def value_at(balance: Json, t: int) -> int:
    """Voting power of a balance at time ``t`` (never negative)."""
    bias = _as_int(balance.get("bias"), 0)
    slope = _as_int(balance.get("slope"), 0)
    v = bias - slope * int(t)
    return v if v > 0 else 0


def add_balance(agg: Json, delta: Json) -> Json:
    agg["bias"] = _as_int(agg.get("bias"), 0) + _as_int(delta.get("bias"), 0)
    agg["slope"] = _as_int(agg.get("slope"), 0) + _as_int(delta.get("slope"), 0)
    return agg


def sub_balance(agg: Json, delta: Json) -> Json:
    bias = _as_int(agg.get("bias"), 0) - _as_int(delta.get("bias"), 0)
    slope = _as_int(agg.get("slope"), 0) - _as_int(delta.get("slope"), 0)
    if bias < 0 or slope < 0:
        raise ValueError(f"aggregate underflow: bias={bias} slope={slope}")
    agg["bias"] = bias
    agg["slope"] = slope
    return agg


def schedule_add(schedule: Json, expiry: int, slope: int) -> None:
    if int(slope) == 0:
        return
    k = str(int(expiry))
    schedule[k] = _as_int(schedule.get(k), 0) + int(slope)


def schedule_sub(schedule: Json, expiry: int, slope: int) -> None:
    if int(slope) == 0:
        return
    k = str(int(expiry))
    cur = _as_int(schedule.get(k), 0) - int(slope)
    if cur < 0:
        raise ValueError(f"slope schedule underflow at {k}: {cur}")
    if cur == 0:
        schedule.pop(k, None)
    else:
        schedule[k] = cur


def roll_forward(agg: Json, schedule: Json, to_ts: int, epoch_seconds: int) -> Json:
    """Advance ``agg`` to ``to_ts``, applying each scheduled slope reduction once.

    Boundaries strictly after ``agg["ts"]`` and at or before ``to_ts`` are
    crossed. Calling again with the same ``to_ts`` is a no-op.
    """
    e = int(epoch_seconds)
    last = _as_int(agg.get("ts"), 0)
    target = int(to_ts)
    if target <= last:
        return agg

    bias = _as_int(agg.get("bias"), 0)
    slope = _as_int(agg.get("slope"), 0)

    boundary = (last // e + 1) * e
    while boundary <= target:
        d = _as_int(schedule.get(str(boundary)), 0)
        if d:
            slope -= d
            bias -= d * boundary
            if slope < 0:
                slope = 0
            if bias < 0:
                bias = 0
        boundary += e

    agg["bias"] = bias
    agg["slope"] = slope
    agg["ts"] = target
    return agg


def balance_at(agg: Json, schedule: Json, t: int, epoch_seconds: int) -> int:
    """Voting power of an aggregate at ``t`` without mutating it.

    ``t`` may lie in the future. For ``t`` earlier than the aggregate's last
    roll the linear form is evaluated directly, which is exact as long as no
    scheduled boundary lies between ``t`` and ``agg["ts"]``; callers needing
    historical values use a checkpoint history instead.
    """
    tmp = copy.deepcopy(agg)
    roll_forward(tmp, schedule, int(t), epoch_seconds)
    return value_at(tmp, int(t))


def history_value_at(history: list, schedule: Json, t: int, epoch_seconds: int) -> int:
    """Evaluate a checkpoint history at ``t``.

    Uses the last checkpoint with ``ts <= t``. Schedule entries at or before
    ``t`` cannot have changed since that checkpoint, because any mutation of
    an entry ``T`` happens strictly before ``T`` and records a checkpoint.
    """
    cp = last_checkpoint_at(history, t)
    if cp is None:
        return 0
    return balance_at(cp, schedule, t, epoch_seconds)


def last_checkpoint_at(history: list, t: int) -> Optional[Json]:
    lo, hi = 0, len(history)
    while lo < hi:
        mid = (lo + hi) // 2
        if _as_int(history[mid].get("ts"), 0) <= int(t):
            lo = mid + 1
        else:
            hi = mid
    if lo == 0:
        return None
    cp = history[lo - 1]
    return cp if isinstance(cp, dict) else None


def push_checkpoint(history: list, cp: Json) -> None:
    """Append a checkpoint, replacing the tail when it shares the timestamp."""
    snap = dict(cp)
    if history and _as_int(history[-1].get("ts"), -1) == _as_int(snap.get("ts"), 0):
        history[-1] = snap
    else:
        history.append(snap)


__all__ = [
    "Json",
    "add_balance",
    "balance_at",
    "empty_aggregate",
    "empty_balance",
    "epoch_floor",
    "history_value_at",
    "is_epoch_aligned",
    "last_checkpoint_at",
    "lock_balance",
    "lock_slope",
    "push_checkpoint",
    "roll_forward",
    "schedule_add",
    "schedule_sub",
    "sub_balance",
    "value_at",
]
