from __future__ import annotations

import copy
import logging
import threading
import time
from typing import Any, Callable, Dict, Iterable, List, Optional

from veledger.ledger.ve_state import current_epoch, get_epoch
from veledger.runtime.apply.context import ApplyContext, default_context
from veledger.runtime.chain_config import ChainConfig, load_chain_config
from veledger.runtime.domain_apply import ApplyError, apply_tx
from veledger.runtime.genesis import build_genesis_state
from veledger.runtime.metrics import inc_counter, set_gauge
from veledger.runtime.sqlite_db import SqliteDB, SqliteLedgerStore
from veledger.runtime.state_invariants import ledger_violations
from veledger.runtime.structured_log import log_event
from veledger.runtime.tx_admission_types import TxEnvelope
from veledger.runtime.tx_schema import validate_payload

Json = Dict[str, Any]

log = logging.getLogger("veledger.executor")


def _safe_int(v: Any, default: int) -> int:
    try:
        return int(v)
    except Exception:
        return int(default)


def _wall_clock_s() -> int:
    return int(time.time())


class ExecutorError(RuntimeError):
    pass


class VeExecutor:
    """Single-writer ledger executor persisted in SQLite.

    Every accepted tx advances ``seq`` by one and is written together with
    its receipt in one SQLite transaction. A rejected tx leaves both the
    in-memory state and the database untouched.

    Ledger time is the wall clock. Outside prod mode a tx envelope may carry
    an explicit ``time`` (seconds) to drive the ledger through epochs in
    tests and simulations. Time never moves backwards.
    """

    def __init__(
        self,
        *,
        cfg: ChainConfig,
        ctx: Optional[ApplyContext] = None,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        self.cfg = cfg
        self.chain_id = str(cfg.chain_id)
        self.db_path = str(cfg.db_path)
        self._ctx = ctx or default_context()
        self._clock = clock or _wall_clock_s
        self._lock = threading.Lock()

        self._db = SqliteDB(path=self.db_path)
        self._db.init_schema()
        self._store = SqliteLedgerStore(db=self._db)

        if self._store.exists():
            self.state = self._store.read()
        else:
            self.state = build_genesis_state(cfg)
            self._store.write(self.state)

        # Fail-closed on chain_id mismatch once state is present.
        st_chain_id = str(self.state.get("chain_id") or "").strip()
        if st_chain_id and st_chain_id != self.chain_id:
            raise ExecutorError(
                f"chain_id mismatch: db={st_chain_id!r} executor={self.chain_id!r}. Refuse to start."
            )

        log_event(log, "executor_ready", chain_id=self.chain_id, seq=self.seq, db_path=self.db_path)

    # ----------------------------
    # Public accessors
    # ----------------------------

    @property
    def seq(self) -> int:
        return _safe_int(self.state.get("seq"), 0)

    @property
    def allows_time_override(self) -> bool:
        return str(self.cfg.mode or "").strip().lower() != "prod"

    def read_state(self) -> Json:
        with self._lock:
            return copy.deepcopy(self.state)

    def receipts(self, *, limit: int = 50, signer: Optional[str] = None) -> List[Json]:
        return self._store.receipts(limit=limit, signer=signer)

    def snapshot(self) -> Json:
        """Compact status view used by /v1/status."""
        with self._lock:
            st = self.state
            cur = current_epoch(st)
            rec = get_epoch(st, cur) or {}
            return {
                "chain_id": self.chain_id,
                "mode": self.cfg.mode,
                "seq": self.seq,
                "time": _safe_int(st.get("time"), 0),
                "current_epoch": cur,
                "epoch_state": str(rec.get("state") or ""),
                "epoch_end": _safe_int(rec.get("end"), 0),
                "paused": bool((st.get("params") or {}).get("paused", False)),
                "frozen": bool((st.get("params") or {}).get("frozen", False)),
                "violations": len(ledger_violations(st)),
            }

    # ----------------------------
    # Tx submission
    # ----------------------------

    def _ledger_time(self, env: Json) -> int:
        cur = _safe_int(self.state.get("time"), 0)
        t = env.get("time")
        if t is not None and self.allows_time_override:
            want = _safe_int(t, cur)
        else:
            want = _safe_int(self._clock(), cur)
        return max(cur, want)

    def _reject(self, tx_type: str, signer: str, err: ApplyError) -> Json:
        inc_counter("tx_rejected_total", 1)
        inc_counter(f"tx_rejected_{err.code}_total", 1)
        log_event(
            log,
            "tx_rejected",
            level=logging.WARNING,
            tx_type=tx_type,
            signer=signer,
            code=err.code,
            reason=err.reason,
        )
        return {"ok": False, "tx_type": tx_type, "signer": signer, "error": err.to_json()}

    def submit_tx(self, env: Json) -> Json:
        """Validate, apply and persist a single tx envelope.

        Returns a receipt: {"ok": True, "seq", "tx_type", "signer", "time", "meta"}
        or {"ok": False, "tx_type", "signer", "error": {code, reason, details}}.
        """
        if not isinstance(env, dict):
            return self._reject("", "", ApplyError("invalid_payload", "bad_env:not_object"))

        tx_type = str(env.get("tx_type") or "").strip().upper()
        signer = str(env.get("signer") or "").strip()

        ok, code, reason, details = validate_payload(tx_type=tx_type, payload=env.get("payload"))
        if not ok:
            return self._reject(tx_type, signer, ApplyError(code, reason, details))

        try:
            norm = TxEnvelope.from_json(env)
        except (TypeError, ValueError) as e:
            return self._reject(tx_type, signer, ApplyError("invalid_payload", "bad_envelope", {"error": str(e)}))

        with self._lock:
            staged = copy.deepcopy(self.state)
            staged["time"] = self._ledger_time(env)
            try:
                meta = apply_tx(staged, norm, self._ctx)
            except ApplyError as e:
                return self._reject(tx_type, signer, e)

            staged["seq"] = self.seq + 1
            receipt: Json = {
                "ok": True,
                "seq": staged["seq"],
                "tx_type": tx_type,
                "signer": signer,
                "time": staged["time"],
                "meta": meta,
            }
            # Persist first; only a durable write replaces the live state.
            self._store.write(staged, receipt=receipt)
            self.state = staged

        inc_counter("tx_applied_total", 1)
        inc_counter(f"tx_applied_{tx_type}_total", 1)
        set_gauge("ledger_seq", receipt["seq"])
        set_gauge("current_epoch", current_epoch(staged))
        log_event(log, "tx_applied", tx_type=tx_type, signer=signer, seq=receipt["seq"], time=receipt["time"])
        return receipt

    def submit_batch(self, envs: Iterable[Any]) -> List[Json]:
        """Submit envelopes in order; each is applied and persisted on its own."""
        out: List[Json] = []
        for i, env in enumerate(envs):
            res = self.submit_tx(env)
            res["index"] = i
            out.append(res)
        return out

    # ----------------------------
    # Compatibility / orchestration hooks
    # ----------------------------

    @classmethod
    def from_env(cls) -> "VeExecutor":
        return cls(cfg=load_chain_config())


__all__ = ["ExecutorError", "VeExecutor"]
