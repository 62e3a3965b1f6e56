# src/veledger/runtime/chain_config.py
from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from veledger.ledger import constants as C

Json = Dict[str, Any]


def _as_int(v: Any, default: int) -> int:
    try:
        return int(v)
    except Exception:
        return int(default)


def _as_str(v: Any, default: str) -> str:
    if v is None:
        return str(default)
    s = str(v)
    return s if s.strip() else str(default)


def _as_balances(v: Any, default: Dict[str, Dict[str, int]]) -> Dict[str, Dict[str, int]]:
    if v is None:
        return dict(default)
    if not isinstance(v, dict):
        raise ValueError("genesis_balances must be an object of {account: {asset: amount}}")
    out: Dict[str, Dict[str, int]] = {}
    for acct, wallet in v.items():
        if not isinstance(wallet, dict):
            raise ValueError(f"genesis_balances[{acct!r}] must be an object")
        out[str(acct)] = {str(asset): int(amt) for asset, amt in wallet.items()}
    return out


@dataclass(frozen=True)
class ChainConfig:
    chain_id: str
    mode: str  # "dev" | "testnet" | "prod"

    # Single SQLite DB file path for the ledger snapshot.
    db_path: str

    # Decay ledger timing.
    genesis_time: int
    epoch_seconds: int
    max_lock_seconds: int
    min_lock_epochs: int

    # Delegates.
    fee_increase_delay_epochs: int
    max_delegate_fee_bps: int
    delegate_registration_fee: int

    sweep_cooldown_seconds: int

    # Asset kinds.
    lock_asset_a: str
    lock_asset_b: str
    reward_asset: str
    native_asset: str
    wrapped_asset: str

    api_host: str
    api_port: int

    log_level: str

    # Bootstrap: receives every role at genesis.
    admin_account: str
    genesis_balances: Dict[str, Dict[str, int]]


_ALLOWED_MODES = {"dev", "testnet", "prod"}


def validate_chain_config(cfg: ChainConfig) -> None:
    """Fail-fast validation for operator config.

    Misaligned timing parameters would make every lock expiry and epoch
    boundary disagree, so they are rejected before any state is created.
    """

    if not isinstance(cfg.chain_id, str) or not cfg.chain_id.strip():
        raise ValueError("chain_id must be a non-empty string")

    mode = str(cfg.mode or "").strip().lower()
    if mode not in _ALLOWED_MODES:
        raise ValueError(f"mode must be one of {_ALLOWED_MODES}; got: {cfg.mode!r}")

    if not isinstance(cfg.db_path, str) or not cfg.db_path.strip():
        raise ValueError("db_path must be a non-empty string")

    e = int(cfg.epoch_seconds)
    if e <= 0:
        raise ValueError(f"epoch_seconds must be > 0; got: {cfg.epoch_seconds}")
    if int(cfg.genesis_time) < 0 or int(cfg.genesis_time) % e != 0:
        raise ValueError(f"genesis_time must be a non-negative multiple of epoch_seconds; got: {cfg.genesis_time}")
    if int(cfg.min_lock_epochs) < 1:
        raise ValueError(f"min_lock_epochs must be >= 1; got: {cfg.min_lock_epochs}")
    if int(cfg.max_lock_seconds) % e != 0:
        raise ValueError(f"max_lock_seconds must be a multiple of epoch_seconds; got: {cfg.max_lock_seconds}")
    if int(cfg.max_lock_seconds) < int(cfg.min_lock_epochs) * e:
        raise ValueError("max_lock_seconds must cover at least min_lock_epochs epochs")

    if int(cfg.fee_increase_delay_epochs) < 1:
        raise ValueError(f"fee_increase_delay_epochs must be >= 1; got: {cfg.fee_increase_delay_epochs}")
    if not 0 <= int(cfg.max_delegate_fee_bps) <= C.BPS_DENOMINATOR:
        raise ValueError(f"max_delegate_fee_bps must be 0..{C.BPS_DENOMINATOR}; got: {cfg.max_delegate_fee_bps}")
    if int(cfg.delegate_registration_fee) < 0:
        raise ValueError("delegate_registration_fee must be >= 0")
    if int(cfg.sweep_cooldown_seconds) < 0:
        raise ValueError("sweep_cooldown_seconds must be >= 0")

    for name in ("lock_asset_a", "lock_asset_b", "reward_asset", "native_asset", "wrapped_asset"):
        v = getattr(cfg, name)
        if not isinstance(v, str) or not v.strip():
            raise ValueError(f"{name} must be a non-empty string")
    if cfg.native_asset == cfg.wrapped_asset:
        raise ValueError("wrapped_asset must differ from native_asset")

    if int(cfg.api_port) <= 0 or int(cfg.api_port) > 65535:
        raise ValueError(f"api_port must be 1..65535; got: {cfg.api_port}")

    if not isinstance(cfg.admin_account, str) or not cfg.admin_account.strip():
        raise ValueError("admin_account must be a non-empty string")

    for acct, wallet in (cfg.genesis_balances or {}).items():
        for asset, amt in wallet.items():
            if int(amt) < 0:
                raise ValueError(f"genesis balance for {acct}/{asset} must be >= 0")


def default_chain_config() -> ChainConfig:
    return ChainConfig(
        chain_id="veledger-dev",
        # Production-safe defaults: never drop silently into a dev posture.
        mode="prod",
        db_path="./data/veledger.db",
        genesis_time=0,
        epoch_seconds=C.DEFAULT_EPOCH_SECONDS,
        max_lock_seconds=C.DEFAULT_MAX_LOCK_SECONDS,
        min_lock_epochs=C.DEFAULT_MIN_LOCK_EPOCHS,
        fee_increase_delay_epochs=C.DEFAULT_FEE_INCREASE_DELAY_EPOCHS,
        max_delegate_fee_bps=C.DEFAULT_MAX_DELEGATE_FEE_BPS,
        delegate_registration_fee=C.DEFAULT_DELEGATE_REGISTRATION_FEE,
        sweep_cooldown_seconds=C.DEFAULT_SWEEP_COOLDOWN_SECONDS,
        lock_asset_a=C.DEFAULT_LOCK_ASSET_A,
        lock_asset_b=C.DEFAULT_LOCK_ASSET_B,
        reward_asset=C.DEFAULT_REWARD_ASSET,
        native_asset=C.DEFAULT_NATIVE_ASSET,
        wrapped_asset=C.DEFAULT_WRAPPED_ASSET,
        api_host="127.0.0.1",
        api_port=8000,
        log_level="INFO",
        admin_account="admin",
        genesis_balances={},
    )


def chain_config_from_json(raw: Json) -> ChainConfig:
    if not isinstance(raw, dict):
        raise ValueError("chain config must be a JSON object")

    d = default_chain_config()

    cfg = ChainConfig(
        chain_id=_as_str(raw.get("chain_id"), d.chain_id),
        mode=_as_str(raw.get("mode"), d.mode).strip().lower(),
        db_path=_as_str(raw.get("db_path"), d.db_path),
        genesis_time=_as_int(raw.get("genesis_time"), d.genesis_time),
        epoch_seconds=_as_int(raw.get("epoch_seconds"), d.epoch_seconds),
        max_lock_seconds=_as_int(raw.get("max_lock_seconds"), d.max_lock_seconds),
        min_lock_epochs=_as_int(raw.get("min_lock_epochs"), d.min_lock_epochs),
        fee_increase_delay_epochs=_as_int(raw.get("fee_increase_delay_epochs"), d.fee_increase_delay_epochs),
        max_delegate_fee_bps=_as_int(raw.get("max_delegate_fee_bps"), d.max_delegate_fee_bps),
        delegate_registration_fee=_as_int(raw.get("delegate_registration_fee"), d.delegate_registration_fee),
        sweep_cooldown_seconds=_as_int(raw.get("sweep_cooldown_seconds"), d.sweep_cooldown_seconds),
        lock_asset_a=_as_str(raw.get("lock_asset_a"), d.lock_asset_a),
        lock_asset_b=_as_str(raw.get("lock_asset_b"), d.lock_asset_b),
        reward_asset=_as_str(raw.get("reward_asset"), d.reward_asset),
        native_asset=_as_str(raw.get("native_asset"), d.native_asset),
        wrapped_asset=_as_str(raw.get("wrapped_asset"), d.wrapped_asset),
        api_host=_as_str(raw.get("api_host"), d.api_host),
        api_port=_as_int(raw.get("api_port"), d.api_port),
        log_level=_as_str(raw.get("log_level"), d.log_level),
        admin_account=_as_str(raw.get("admin_account"), d.admin_account),
        genesis_balances=_as_balances(raw.get("genesis_balances"), d.genesis_balances),
    )

    validate_chain_config(cfg)
    return cfg


def read_chain_config_file(path: str) -> ChainConfig:
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    return chain_config_from_json(raw)


def load_chain_config(*, config_path: Optional[str] = None) -> ChainConfig:
    p = config_path or os.environ.get("VELEDGER_CHAIN_CONFIG_PATH")
    if p:
        return read_chain_config_file(p)

    cfg = default_chain_config()
    validate_chain_config(cfg)
    return cfg


def genesis_params(cfg: ChainConfig) -> Json:
    """Protocol parameters seeded into state["params"]."""
    return {
        "genesis_time": int(cfg.genesis_time),
        "epoch_seconds": int(cfg.epoch_seconds),
        "max_lock_seconds": int(cfg.max_lock_seconds),
        "min_lock_epochs": int(cfg.min_lock_epochs),
        "fee_increase_delay_epochs": int(cfg.fee_increase_delay_epochs),
        "max_delegate_fee_bps": int(cfg.max_delegate_fee_bps),
        "delegate_registration_fee": int(cfg.delegate_registration_fee),
        "sweep_cooldown_seconds": int(cfg.sweep_cooldown_seconds),
        "lock_asset_a": cfg.lock_asset_a,
        "lock_asset_b": cfg.lock_asset_b,
        "reward_asset": cfg.reward_asset,
        "native_asset": cfg.native_asset,
        "wrapped_asset": cfg.wrapped_asset,
        "paused": False,
        "frozen": False,
    }


__all__ = [
    "ChainConfig",
    "chain_config_from_json",
    "default_chain_config",
    "genesis_params",
    "load_chain_config",
    "read_chain_config_file",
    "validate_chain_config",
]
