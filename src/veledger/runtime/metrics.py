from __future__ import annotations

import os
import threading
import time
from typing import Dict


_lock = threading.Lock()
_counters: Dict[str, int] = {}
_gauges: Dict[str, int] = {}
_started_ms = int(time.time() * 1000)


def metrics_enabled() -> bool:
    v = (os.environ.get("VELEDGER_METRICS_ENABLED") or "").strip().lower()
    if not v:
        return False
    return v in {"1", "true", "yes", "y", "on"}


def _metric_name(name: str) -> str:
    return "".join(ch if (ch.isalnum() or ch == "_") else "_" for ch in str(name or "").strip().lower())


def inc_counter(name: str, value: int = 1) -> None:
    n = _metric_name(name)
    if not n:
        return
    try:
        v = int(value)
    except Exception:
        v = 1
    with _lock:
        _counters[n] = int(_counters.get(n, 0)) + int(v)


def set_gauge(name: str, value: int) -> None:
    n = _metric_name(name)
    if not n:
        return
    try:
        v = int(value)
    except Exception:
        v = 0
    with _lock:
        _gauges[n] = int(v)


def snapshot() -> dict:
    with _lock:
        return {
            "ts_ms": int(time.time() * 1000),
            "started_ms": int(_started_ms),
            "uptime_ms": int(time.time() * 1000) - int(_started_ms),
            "counters": dict(_counters),
            "gauges": dict(_gauges),
        }


def reset() -> None:
    with _lock:
        _counters.clear()
        _gauges.clear()


def format_prometheus(prefix: str = "veledger_") -> str:
    """Prometheus exposition text (integer counters and gauges only)."""
    pre = str(prefix or "").strip() or "veledger_"
    snap = snapshot()
    lines: list[str] = [f"{pre}uptime_ms {int(snap.get('uptime_ms') or 0)}"]

    for kind in ("counters", "gauges"):
        vals = snap.get(kind) if isinstance(snap.get(kind), dict) else {}
        for name in sorted(vals.keys()):
            lines.append(f"{pre}{name} {int(vals[name])}")

    return "\n".join(lines) + "\n"
