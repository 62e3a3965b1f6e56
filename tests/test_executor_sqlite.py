from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

import pytest

from veledger.ledger.queries import personal_power_at
from veledger.runtime import metrics
from veledger.runtime.executor import ExecutorError, VeExecutor
from veledger.runtime.sqlite_db import SqliteDB
from veledger.testing.ledger import GENESIS_TIME, UNIT, chain_config_for_tests, envelope

E = 604_800


def _executor(tmp_path: Path, **overrides) -> VeExecutor:
    overrides.setdefault("genesis_balances", {"alice": {"NATIVE": 100 * UNIT}})
    cfg = chain_config_for_tests(db_path=str(tmp_path / "veledger.db"), **overrides)
    return VeExecutor(cfg=cfg, clock=lambda: GENESIS_TIME)


def _lock(ex: VeExecutor, amount: int = 10 * UNIT) -> dict:
    return ex.submit_tx(
        envelope("VE_LOCK_CREATE", "alice", 1, expiry=GENESIS_TIME + 4 * E, amount_a=amount, amount_b=0)
    )


def test_sqlite_pragmas_are_applied(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("VELEDGER_MODE", "prod")
    monkeypatch.delenv("VELEDGER_SQLITE_SYNCHRONOUS", raising=False)
    monkeypatch.setenv("VELEDGER_SQLITE_BUSY_TIMEOUT_MS", "1234")

    db = SqliteDB(path=str(tmp_path / "veledger.db"))
    db.init_schema()
    with db.connection() as con:
        assert str(con.execute("PRAGMA journal_mode;").fetchone()[0]).lower() == "wal"
        assert int(con.execute("PRAGMA synchronous;").fetchone()[0]) == 2
        assert int(con.execute("PRAGMA busy_timeout;").fetchone()[0]) == 1234
        version = con.execute("SELECT value FROM meta WHERE key='schema_version';").fetchone()[0]
        assert version == str(SqliteDB.SCHEMA_VERSION)


def test_genesis_is_written_once(tmp_path: Path) -> None:
    ex = _executor(tmp_path)
    assert ex.seq == 0
    assert ex.read_state()["balances"]["alice"]["NATIVE"] == 100 * UNIT
    assert ex.snapshot()["current_epoch"] == 1
    assert ex.snapshot()["epoch_state"] == "Voting"


def test_accepted_tx_is_persisted_with_receipt(tmp_path: Path) -> None:
    ex = _executor(tmp_path)
    r = _lock(ex)
    assert r["ok"] is True
    assert r["seq"] == 1
    assert r["meta"]["lock_id"] == 1

    ex2 = _executor(tmp_path)
    assert ex2.seq == 1
    st = ex2.read_state()
    assert personal_power_at(st, "alice", GENESIS_TIME) > 0
    receipts = ex2.receipts()
    assert [x["seq"] for x in receipts] == [1]
    assert ex2.receipts(signer="bob") == []


def test_rejected_tx_does_not_advance_seq(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    ex = _executor(tmp_path)
    with caplog.at_level(logging.WARNING, logger="veledger.executor"):
        r = _lock(ex, amount=1000 * UNIT)
    assert r["ok"] is False
    assert r["error"]["code"] == "insufficient_funds"
    assert ex.seq == 0
    assert ex.receipts() == []
    assert any("tx_rejected" in rec.getMessage() for rec in caplog.records)
    assert metrics.snapshot()["counters"]["tx_rejected_insufficient_funds_total"] == 1


def test_schema_rejection_happens_before_apply(tmp_path: Path) -> None:
    ex = _executor(tmp_path)
    r = ex.submit_tx(envelope("VOTE_CAST", "alice", 1, pool_id="p1", amount="lots"))
    assert r["ok"] is False
    assert r["error"]["reason"] == "payload_schema_mismatch"

    r = ex.submit_tx(["not", "an", "envelope"])  # type: ignore[arg-type]
    assert r["error"]["reason"] == "bad_env:not_object"


def test_time_override_is_monotonic_and_dev_only(tmp_path: Path) -> None:
    ex = _executor(tmp_path)
    end = GENESIS_TIME + E
    env = envelope("EPOCH_END", "admin", 1)
    env["time"] = end + 1
    assert ex.submit_tx(env)["ok"] is True
    assert ex.snapshot()["current_epoch"] == 2

    # Earlier times never move the ledger clock back.
    env = envelope("DELEGATE_REGISTER", "carol", 2, fee_bps=0)
    env["time"] = GENESIS_TIME
    r = ex.submit_tx(env)
    assert r["ok"] is True
    assert r["time"] == end + 1


def test_prod_ignores_time_override(tmp_path: Path) -> None:
    ex = _executor(tmp_path, mode="prod")
    env = envelope("EPOCH_END", "admin", 1)
    env["time"] = GENESIS_TIME + 10 * E
    r = ex.submit_tx(env)
    assert r["ok"] is False
    assert r["error"]["reason"] == "epoch_not_over"


def test_chain_id_mismatch_refuses_to_start(tmp_path: Path) -> None:
    _executor(tmp_path)
    with pytest.raises(ExecutorError):
        _executor(tmp_path, chain_id="other-chain")


def test_submit_batch_indexes_results(tmp_path: Path) -> None:
    ex = _executor(tmp_path)
    out = ex.submit_batch(
        [
            envelope("POOL_CREATE_BATCH", "admin", 1, pools=["p1"]),
            envelope("POOL_CREATE_BATCH", "mallory", 2, pools=["p2"]),
        ]
    )
    assert [(r["index"], r["ok"]) for r in out] == [(0, True), (1, False)]
    assert ex.seq == 1


def test_tx_log_rows_match_receipts(tmp_path: Path) -> None:
    ex = _executor(tmp_path)
    _lock(ex)
    con = sqlite3.connect(str(tmp_path / "veledger.db"))
    try:
        rows = con.execute("SELECT seq, tx_type, signer, ok FROM tx_log;").fetchall()
    finally:
        con.close()
    assert rows == [(1, "VE_LOCK_CREATE", "alice", 1)]
