# src/veledger/runtime/state_invariants.py
from __future__ import annotations

"""State invariants / normalization helpers.

``ensure_state`` is the single place that checks the state is dict-like and
creates the core containers every domain relies on.

``ledger_violations`` audits the accounting rules of a full state tree and
returns a list of human-readable violations (empty when consistent). It is
read-only and is used by tests and the status endpoint; appliers never
depend on it.
"""

from collections.abc import MutableMapping
from typing import Any, Dict, List

from veledger.ledger import constants as C
from veledger.ledger.queries import voting_power
from veledger.ledger.ve_state import epoch_end

Json = Dict[str, Any]


def ensure_state(st: Any) -> Json:
    """Ensure `st` is a dict and contains core keys.

    Raises:
        TypeError: if st is not a MutableMapping
    """
    if not isinstance(st, MutableMapping):
        raise TypeError(f"state must be MutableMapping, got {type(st)}")

    for key in ("accounts", "params", "roles"):
        cur = st.get(key)
        if cur is None:
            st[key] = {}
        elif not isinstance(cur, dict):
            # Fail closed: do not attempt to coerce arbitrary types.
            raise TypeError(f"state[{key!r}] must be dict, got {type(cur)}")

    if "time" not in st:
        st["time"] = 0
    return st  # type: ignore[return-value]


def _as_int(x: Any) -> int:
    try:
        return int(x)
    except Exception:
        return 0


def _vote_violations(state: Json) -> List[str]:
    out: List[str] = []
    votes = state.get("votes") or {}
    current = _as_int((state.get("epochs") or {}).get("current"))
    exempt = ((state.get("ve") or {}).get("exit_exempt") or {}).get(str(current)) or []
    for ek, ev in votes.items():
        if not isinstance(ev, dict):
            continue
        per_pool: Dict[str, int] = {}
        for track in ("users", "delegates"):
            for acct, entry in (ev.get(track) or {}).items():
                pools = entry.get("pools") or {}
                s = sum(_as_int(v) for v in pools.values())
                if s != _as_int(entry.get("total")):
                    out.append(f"epoch {ek}: {track}[{acct}] total {entry.get('total')} != sum {s}")
                for pid, v in pools.items():
                    per_pool[pid] = per_pool.get(pid, 0) + _as_int(v)
                # Emergency exits this epoch may leave spent votes above the remaining power.
                if int(ek) != current or f"{track}:{acct}" in exempt:
                    continue
                # Personal aggregates keep no history, so only the open epoch can be checked.
                power = voting_power(state, acct, epoch_end(state, current), delegated=(track == "delegates"))
                if _as_int(entry.get("total")) > power:
                    out.append(f"epoch {ek}: {track}[{acct}] spent {entry.get('total')} > power {power}")
        for pid, p in (ev.get("pools") or {}).items():
            s = sum(_as_int(v) for v in (p.get("users") or {}).values())
            s += sum(_as_int(v) for v in (p.get("delegates") or {}).values())
            if s != _as_int(p.get("total")):
                out.append(f"epoch {ek}: pool {pid} total {p.get('total')} != entries {s}")
            if s != per_pool.get(pid, 0):
                out.append(f"epoch {ek}: pool {pid} entries {s} != account pools {per_pool.get(pid, 0)}")
            for track in ("reward", "subsidy"):
                if _as_int(p.get(f"{track}_claimed")) > _as_int(p.get(track)):
                    out.append(f"epoch {ek}: pool {pid} {track} over-claimed")
    return out


def _epoch_violations(state: Json) -> List[str]:
    out: List[str] = []
    outstanding = 0
    by_id = (state.get("epochs") or {}).get("by_id") or {}
    for ek, rec in by_id.items():
        for track in ("reward", "subsidy"):
            alloc = _as_int(rec.get(f"{track}_allocated"))
            claimed = _as_int(rec.get(f"{track}_claimed"))
            withdrawn = _as_int(rec.get(f"{track}_withdrawn"))
            if claimed + withdrawn > alloc:
                out.append(f"epoch {ek}: {track} claimed+withdrawn {claimed + withdrawn} > allocated {alloc}")
            if rec.get("state") == C.EPOCH_FINALIZED:
                outstanding += _as_int(rec.get(f"{track}_deposited")) - claimed - withdrawn

    params = state.get("params") or {}
    asset = str(params.get("reward_asset") or C.DEFAULT_REWARD_ASSET)
    held = _as_int(((state.get("custody") or {}).get("held") or {}).get(asset))
    # Principal and registration fees share custody with rewards when the assets coincide.
    held -= _as_int(((state.get("ve") or {}).get("locked_totals") or {}).get(asset))
    held -= _as_int((state.get("delegates") or {}).get("registration_fees_unswept"))
    if held < outstanding:
        out.append(f"custody {asset} {held} available < outstanding claims {outstanding}")
    return out


def ledger_violations(state: Json) -> List[str]:
    return _vote_violations(state) + _epoch_violations(state)


__all__ = ["ensure_state", "ledger_violations"]
