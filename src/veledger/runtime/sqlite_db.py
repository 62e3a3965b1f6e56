# src/veledger/runtime/sqlite_db.py
from __future__ import annotations

import json
import os
import random
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

Json = Dict[str, Any]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _canon_json(obj: Any) -> str:
    """Canonical JSON encoding.

    Do not silently coerce unknown types (e.g. default=str): a non-JSON value
    in the ledger state must fail the write instead of persisting something
    that reads back differently.
    """
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _env_int(name: str, default: int) -> int:
    try:
        raw = str(os.environ.get(name, "")).strip()
        return int(raw) if raw else int(default)
    except Exception:
        return int(default)


class SqliteDB:
    """SQLite manager for the ledger runtime.

    Design goals:
      - single durable DB file for the ledger snapshot and tx receipts
      - cross-thread safe by never sharing connections

    SQLite allows only one writer at a time, so BEGIN IMMEDIATE can
    transiently fail with "database is locked". write_tx() retries within a
    bounded deadline.
    """

    SCHEMA_VERSION = 1

    def __init__(self, *, path: str) -> None:
        self.path = str(path)

    @staticmethod
    def _sqlite_synchronous_pragma() -> str:
        """Return a safe PRAGMA synchronous value.

        Defaults:
          - prod        -> FULL
          - dev/testnet -> NORMAL

        Override with VELEDGER_SQLITE_SYNCHRONOUS in {OFF,NORMAL,FULL,EXTRA}.
        """
        mode = (os.environ.get("VELEDGER_MODE") or "prod").strip().lower()
        default = "FULL" if mode == "prod" else "NORMAL"
        raw = (os.environ.get("VELEDGER_SQLITE_SYNCHRONOUS") or default).strip().upper()
        if raw not in {"OFF", "NORMAL", "FULL", "EXTRA"}:
            raw = default
        return raw

    def ensure_parent_dir(self) -> None:
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        self.ensure_parent_dir()

        connect_timeout_s = float(_env_int("VELEDGER_SQLITE_CONNECT_TIMEOUT_MS", 30_000)) / 1000.0
        con = sqlite3.connect(
            self.path,
            timeout=connect_timeout_s,
            isolation_level=None,  # we manage BEGIN/COMMIT ourselves
            check_same_thread=False,
        )
        con.row_factory = sqlite3.Row

        row = con.execute("PRAGMA journal_mode=WAL;").fetchone()
        mode = str(row[0]).strip().lower() if row is not None else ""
        allow_non_wal = (os.environ.get("VELEDGER_SQLITE_ALLOW_NON_WAL") or "").strip().lower() in {"1", "true"}
        if mode and mode != "wal" and not allow_non_wal:
            con.close()
            raise RuntimeError(f"sqlite journal_mode is '{mode}', expected 'wal'")

        con.execute(f"PRAGMA synchronous={self._sqlite_synchronous_pragma()};")
        con.execute("PRAGMA foreign_keys=ON;")
        con.execute("PRAGMA temp_store=MEMORY;")

        busy_ms = max(0, _env_int("VELEDGER_SQLITE_BUSY_TIMEOUT_MS", int(connect_timeout_s * 1000)))
        con.execute(f"PRAGMA busy_timeout={busy_ms};")
        return con

    def init_schema(self) -> None:
        with self.write_tx() as con:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS meta (
                  key TEXT PRIMARY KEY,
                  value TEXT NOT NULL
                );
                """
            )
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS ledger_state (
                  id INTEGER PRIMARY KEY CHECK (id = 1),
                  seq INTEGER NOT NULL,
                  state_json TEXT NOT NULL,
                  updated_ts_ms INTEGER NOT NULL
                );
                """
            )
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS tx_log (
                  seq INTEGER PRIMARY KEY,
                  tx_type TEXT NOT NULL,
                  signer TEXT NOT NULL,
                  ok INTEGER NOT NULL,
                  ledger_time INTEGER NOT NULL,
                  result_json TEXT NOT NULL,
                  created_ts_ms INTEGER NOT NULL
                );
                """
            )
            con.execute("CREATE INDEX IF NOT EXISTS idx_tx_log_signer ON tx_log(signer);")
            con.execute(
                "INSERT OR IGNORE INTO meta(key, value) VALUES('schema_version', ?);",
                (str(self.SCHEMA_VERSION),),
            )

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        con = self._connect()
        try:
            yield con
        finally:
            con.close()

    @staticmethod
    def _is_locked_error(e: Exception) -> bool:
        msg = str(e).lower()
        return ("database is locked" in msg) or ("database is busy" in msg)

    @contextmanager
    def write_tx(self) -> Iterator[sqlite3.Connection]:
        """Open a write transaction with bounded retry on writer-lock contention.

        Policy:
          - retry BEGIN IMMEDIATE until a deadline
          - exponential backoff with jitter
          - then raise (fail closed) if we cannot acquire within deadline
        """
        deadline_ms = max(250, _env_int("VELEDGER_SQLITE_WRITE_DEADLINE_MS", 30_000))
        deadline_ts = _now_ms() + deadline_ms
        base_sleep = max(0.001, float(_env_int("VELEDGER_SQLITE_WRITE_BACKOFF_BASE_MS", 5)) / 1000.0)
        max_sleep = max(base_sleep, float(_env_int("VELEDGER_SQLITE_WRITE_BACKOFF_MAX_MS", 250)) / 1000.0)

        with self.connection() as con:
            attempt = 0
            while True:
                try:
                    con.execute("BEGIN IMMEDIATE;")
                    break
                except sqlite3.OperationalError as e:
                    if not self._is_locked_error(e) or _now_ms() >= deadline_ts:
                        raise
                    sleep_s = min(max_sleep, base_sleep * (2.0 ** min(attempt, 8)))
                    time.sleep(sleep_s * (0.5 + random.random()))
                    attempt += 1

            try:
                yield con
                con.execute("COMMIT;")
            except Exception:
                con.execute("ROLLBACK;")
                raise


class SqliteLedgerStore:
    """Ledger snapshot store persisted in SQLite.

    The authoritative snapshot is a single row, overwritten atomically
    together with the receipt of the tx that produced it.
    """

    def __init__(self, *, db: SqliteDB) -> None:
        self._db = db
        self._db.init_schema()

    def exists(self) -> bool:
        with self._db.connection() as con:
            return con.execute("SELECT 1 FROM ledger_state WHERE id=1;").fetchone() is not None

    def read(self) -> Json:
        with self._db.connection() as con:
            row = con.execute("SELECT state_json FROM ledger_state WHERE id=1;").fetchone()
            if row is None:
                raise FileNotFoundError("sqlite ledger_state is missing")
            st = json.loads(str(row["state_json"]))
            if not isinstance(st, dict):
                raise ValueError("ledger_state is not a JSON object")
            return st

    def write(self, st: Json, *, receipt: Optional[Json] = None) -> None:
        if not isinstance(st, dict):
            raise ValueError("ledger write expects dict")
        seq = int(st.get("seq", 0))
        now = _now_ms()
        payload = _canon_json(st)
        with self._db.write_tx() as con:
            con.execute(
                """
                INSERT INTO ledger_state(id, seq, state_json, updated_ts_ms)
                VALUES(1, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                  seq=excluded.seq,
                  state_json=excluded.state_json,
                  updated_ts_ms=excluded.updated_ts_ms;
                """,
                (seq, payload, now),
            )
            if receipt is not None:
                self._insert_receipt(con, seq, st, receipt, now)

    @staticmethod
    def _insert_receipt(con: sqlite3.Connection, seq: int, st: Json, receipt: Json, now: int) -> None:
        con.execute(
            """
            INSERT INTO tx_log(seq, tx_type, signer, ok, ledger_time, result_json, created_ts_ms)
            VALUES(?, ?, ?, ?, ?, ?, ?);
            """,
            (
                seq,
                str(receipt.get("tx_type") or ""),
                str(receipt.get("signer") or ""),
                1 if receipt.get("ok") else 0,
                int(st.get("time", 0)),
                _canon_json(receipt),
                now,
            ),
        )

    def receipts(self, *, limit: int = 50, signer: Optional[str] = None) -> List[Json]:
        lim = max(1, min(int(limit), 1000))
        with self._db.connection() as con:
            if signer:
                rows = con.execute(
                    "SELECT result_json FROM tx_log WHERE signer=? ORDER BY seq DESC LIMIT ?;",
                    (signer, lim),
                ).fetchall()
            else:
                rows = con.execute("SELECT result_json FROM tx_log ORDER BY seq DESC LIMIT ?;", (lim,)).fetchall()
        return [json.loads(str(r["result_json"])) for r in rows]


__all__ = ["SqliteDB", "SqliteLedgerStore", "_canon_json"]
