from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from veledger.api.app import create_app
from veledger.runtime.executor import VeExecutor
from veledger.testing.ledger import GENESIS_TIME, UNIT, chain_config_for_tests, envelope

E = 604_800


@pytest.fixture()
def client(tmp_path: Path) -> TestClient:
    cfg = chain_config_for_tests(
        db_path=str(tmp_path / "veledger.db"),
        genesis_balances={"alice": {"NATIVE": 100 * UNIT}},
    )
    app = create_app(boot_runtime=False)
    app.state.executor = VeExecutor(cfg=cfg, clock=lambda: GENESIS_TIME)
    return TestClient(app)


def _submit(c: TestClient, tx_type: str, signer: str, **payload):
    return c.post("/v1/tx/submit", json=envelope(tx_type, signer, 1, **payload))


def _lock(c: TestClient, amount: int = 10 * UNIT):
    return _submit(c, "VE_LOCK_CREATE", "alice", expiry=GENESIS_TIME + 4 * E, amount_a=amount, amount_b=0)


def test_health_and_status(client: TestClient) -> None:
    r = client.get("/v1/health")
    assert r.status_code == 200
    assert r.json()["executor_attached"] is True
    assert r.json()["chain_id"] == "veledger-test"

    assert client.get("/v1/readyz").json()["ok"] is True

    j = client.get("/v1/status").json()
    assert j["ok"] is True
    assert j["seq"] == 0
    assert j["current_epoch"] == 1
    assert j["epoch_state"] == "Voting"
    assert j["violations"] == 0


def test_submit_and_query_lock(client: TestClient) -> None:
    r = _lock(client)
    assert r.status_code == 200
    assert r.json()["seq"] == 1
    assert r.headers.get("x-request-id")

    j = client.get("/v1/ve/power/alice").json()
    assert j["personal"] > 0
    assert j["delegated"] == 0
    assert 0 < j["available"]["personal"] < j["personal"]

    total = client.get("/v1/ve/total").json()["total"]
    assert total == j["personal"]

    assert client.get(f"/v1/ve/total?t={GENESIS_TIME + 4 * E}").json()["total"] == 0

    lk = client.get("/v1/ve/locks/1").json()
    assert lk["lock"]["owner"] == "alice"
    assert lk["power"] == j["personal"]

    locks = client.get("/v1/ve/accounts/alice/locks").json()["locks"]
    assert [x["lock_id"] for x in locks] == [1]

    receipts = client.get("/v1/tx/receipts?signer=alice").json()["receipts"]
    assert [x["tx_type"] for x in receipts] == ["VE_LOCK_CREATE"]


def test_rejections_map_to_http_statuses(client: TestClient) -> None:
    r = _lock(client, amount=1000 * UNIT)
    assert r.status_code == 422
    assert r.json()["error"]["code"] == "insufficient_funds"

    r = _submit(client, "POOL_CREATE_BATCH", "mallory", pools=["p1"])
    assert r.status_code == 403

    r = _submit(client, "VOTE_CAST", "alice", pool_id="p1", amount=-1)
    assert r.status_code == 400
    assert r.json()["error"]["message"] == "payload_schema_mismatch"

    r = _submit(client, "EPOCH_END", "admin")
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "invalid_time"

    r = _submit(client, "NOT_A_TX", "alice")
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "tx_unimplemented"

    assert client.get("/v1/status").json()["seq"] == 0


def test_batch_endpoint(client: TestClient) -> None:
    body = {
        "txs": [
            envelope("POOL_CREATE_BATCH", "admin", 1, pools=["p1", "p2"]),
            envelope("VE_LOCK_CREATE", "alice", 2, expiry=GENESIS_TIME + 4 * E, amount_a=10 * UNIT, amount_b=0),
            envelope("VOTE_CAST", "alice", 3, pool_id="p3", amount=5),
            envelope("VOTE_CAST", "alice", 4, pool_id="p1", amount=5),
        ]
    }
    j = client.post("/v1/tx/batch", json=body).json()
    assert j["summary"] == {"total": 4, "applied": 3, "rejected": 1}
    assert j["results"][2]["error"]["reason"] == "pool_inactive"

    assert client.post("/v1/tx/batch", json={"txs": []}).status_code == 400


def test_pool_epoch_and_delegate_views(client: TestClient) -> None:
    _lock(client)
    _submit(client, "POOL_CREATE_BATCH", "admin", pools=["p1", "p2"])
    _submit(client, "DELEGATE_REGISTER", "carol", fee_bps=250)
    _submit(client, "VOTE_CAST", "alice", pool_id="p1", amount=40)

    pools = client.get("/v1/pools").json()
    assert pools["active"] == ["p1", "p2"]
    assert client.get("/v1/pools/p1").json()["pool"]["total_votes"] == 40
    assert client.get("/v1/pools/zzz").status_code == 404

    cur = client.get("/v1/epochs/current").json()["epoch"]
    assert cur["epoch"] == 1
    assert cur["state"] == "Voting"

    ep = client.get("/v1/epochs/1").json()
    assert ep["pools"]["p1"]["total"] == 40
    assert "users" not in ep["pools"]["p1"]

    tally = client.get("/v1/epochs/1/pools/p1").json()
    assert tally["tally"]["users"] == {"alice": 40}
    assert tally["claims"]["reward"] == {}

    assert client.get("/v1/epochs/1/pools/p2").status_code == 404
    assert client.get("/v1/epochs/9").json()["error"]["code"] == "epoch_not_found"

    d = client.get("/v1/delegates/carol").json()
    assert d["effective_fee_bps"] == 250
    assert client.get("/v1/delegates").json()["registered"] == ["carol"]
    assert client.get("/v1/delegates/nobody").status_code == 404


def test_query_params_are_validated(client: TestClient) -> None:
    r = client.get("/v1/ve/power/alice?t=soon")
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "bad_param"

    r = client.get("/v1/ve/locks/77")
    assert r.status_code == 404
    assert r.json()["error"]["code"] == "lock_not_found"


def test_state_views(client: TestClient) -> None:
    _lock(client)
    st = client.get("/v1/state/snapshot").json()["state"]
    assert st["seq"] == 1
    assert client.get("/v1/state/violations").json() == {"ok": True, "violations": []}


def test_metrics_endpoint_is_opt_in(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("VELEDGER_METRICS_ENABLED", raising=False)
    assert client.get("/v1/metrics").status_code == 404

    _lock(client)
    monkeypatch.setenv("VELEDGER_METRICS_ENABLED", "1")
    r = client.get("/v1/metrics")
    assert r.status_code == 200
    assert "veledger_tx_applied_total 1" in r.text
    assert "veledger_ledger_seq 1" in r.text


def test_routes_without_executor_report_not_ready() -> None:
    c = TestClient(create_app(boot_runtime=False))
    r = c.get("/v1/status")
    assert r.status_code == 500
    assert r.json()["error"]["code"] == "not_ready"
    assert c.get("/v1/readyz").json()["ok"] is False
