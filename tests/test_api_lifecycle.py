from __future__ import annotations

from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient


class _FakeExecutor(SimpleNamespace):
    """Minimal executor stub for API lifecycle tests."""


def test_create_app_boot_runtime_false_does_not_attach_executor() -> None:
    from veledger.api.app import create_app

    app = create_app(boot_runtime=False)
    assert getattr(app.state, "executor", None) is None

    # App should still be startable for route/middleware tests.
    with TestClient(app) as _client:
        pass


def test_create_app_boot_runtime_true_attaches_executor(monkeypatch: pytest.MonkeyPatch) -> None:
    from veledger.api import app as api_app

    def _fake_build_executor():
        return _FakeExecutor(chain_id="veledger-test", seq=3)

    monkeypatch.setattr(api_app, "build_executor", _fake_build_executor)

    app = api_app.create_app(boot_runtime=True)
    assert getattr(app.state.executor, "chain_id", "") == "veledger-test"

    with TestClient(app) as client:
        j = client.get("/v1/readyz").json()
        assert j["ok"] is True
        assert j["seq"] == 3


def test_docs_disabled_in_prod(monkeypatch: pytest.MonkeyPatch) -> None:
    from veledger.api.app import create_app

    monkeypatch.setenv("VELEDGER_MODE", "prod")
    assert TestClient(create_app(boot_runtime=False)).get("/docs").status_code == 404

    monkeypatch.setenv("VELEDGER_MODE", "dev")
    assert TestClient(create_app(boot_runtime=False)).get("/docs").status_code == 200


def test_wildcard_cors_rejected_in_prod(monkeypatch: pytest.MonkeyPatch) -> None:
    from veledger.api.app import create_app

    monkeypatch.setenv("VELEDGER_MODE", "prod")
    monkeypatch.setenv("VELEDGER_CORS_ORIGINS", "*")
    with pytest.raises(RuntimeError):
        create_app(boot_runtime=False)
