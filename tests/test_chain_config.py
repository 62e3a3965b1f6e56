from __future__ import annotations

import json
from dataclasses import replace
from pathlib import Path

import pytest

from veledger.ledger import constants as C
from veledger.runtime.chain_config import (
    chain_config_from_json,
    default_chain_config,
    genesis_params,
    load_chain_config,
    read_chain_config_file,
    validate_chain_config,
)
from veledger.runtime.executor_boot import boot_config_from_env


def test_defaults_are_valid_and_prod() -> None:
    cfg = default_chain_config()
    validate_chain_config(cfg)
    assert cfg.mode == "prod"
    assert cfg.epoch_seconds == C.WEEK_SECONDS
    assert cfg.max_lock_seconds == 4 * 52 * C.WEEK_SECONDS


def test_from_json_overrides_and_fills_defaults() -> None:
    cfg = chain_config_from_json(
        {
            "chain_id": "veledger-local",
            "mode": "DEV",
            "epoch_seconds": 100,
            "max_lock_seconds": 1000,
            "genesis_time": 500,
            "genesis_balances": {"alice": {"NATIVE": 7}},
        }
    )
    assert cfg.mode == "dev"
    assert cfg.epoch_seconds == 100
    assert cfg.genesis_balances == {"alice": {"NATIVE": 7}}
    assert cfg.reward_asset == C.DEFAULT_REWARD_ASSET


@pytest.mark.parametrize(
    "overrides",
    [
        {"mode": "staging"},
        {"chain_id": " "},
        {"epoch_seconds": 0},
        {"genesis_time": 3},
        {"max_lock_seconds": C.WEEK_SECONDS * 3 + 1},
        {"max_lock_seconds": C.WEEK_SECONDS},
        {"min_lock_epochs": 0},
        {"fee_increase_delay_epochs": 0},
        {"max_delegate_fee_bps": 10_001},
        {"wrapped_asset": C.DEFAULT_NATIVE_ASSET},
        {"api_port": 0},
        {"genesis_balances": {"alice": {"NATIVE": -1}}},
    ],
)
def test_invalid_configs_fail_fast(overrides: dict) -> None:
    with pytest.raises(ValueError):
        validate_chain_config(replace(default_chain_config(), **overrides))


def test_read_config_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    p = tmp_path / "chain.json"
    p.write_text(json.dumps({"chain_id": "from-file", "mode": "testnet"}), encoding="utf-8")

    assert read_chain_config_file(str(p)).chain_id == "from-file"

    monkeypatch.setenv("VELEDGER_CHAIN_CONFIG_PATH", str(p))
    assert load_chain_config().mode == "testnet"


def test_bad_genesis_balances_shape() -> None:
    with pytest.raises(ValueError):
        chain_config_from_json({"genesis_balances": ["alice"]})


def test_boot_config_env_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("VELEDGER_CHAIN_CONFIG_PATH", raising=False)
    monkeypatch.setenv("VELEDGER_DOTENV_PATH", str(tmp_path / "missing.env"))
    monkeypatch.setenv("VELEDGER_DB_PATH", str(tmp_path / "x.db"))
    monkeypatch.setenv("VELEDGER_CHAIN_ID", "veledger-env")
    monkeypatch.setenv("VELEDGER_MODE", "dev")

    cfg = boot_config_from_env()
    assert cfg.db_path == str(tmp_path / "x.db")
    assert cfg.chain_id == "veledger-env"
    assert cfg.mode == "dev"


def test_genesis_params_carry_protocol_settings() -> None:
    p = genesis_params(default_chain_config())
    assert p["paused"] is False
    assert p["frozen"] is False
    assert p["min_lock_epochs"] == C.DEFAULT_MIN_LOCK_EPOCHS
    assert p["wrapped_asset"] == C.DEFAULT_WRAPPED_ASSET
