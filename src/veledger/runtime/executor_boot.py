# src/veledger/runtime/executor_boot.py

from __future__ import annotations

import os
from dataclasses import replace
from typing import Optional

from veledger.env import load_dotenv_if_present
from veledger.runtime.chain_config import ChainConfig, load_chain_config, validate_chain_config
from veledger.runtime.executor import VeExecutor


def boot_config_from_env() -> ChainConfig:
    """Chain config with the common env overrides applied.

    VELEDGER_CHAIN_CONFIG_PATH selects the JSON config file; VELEDGER_DB_PATH,
    VELEDGER_CHAIN_ID and VELEDGER_MODE override single fields on top of it.
    """
    load_dotenv_if_present()
    cfg = load_chain_config()

    db_path = (os.environ.get("VELEDGER_DB_PATH") or "").strip()
    chain_id = (os.environ.get("VELEDGER_CHAIN_ID") or "").strip()
    mode = (os.environ.get("VELEDGER_MODE") or "").strip().lower()

    if db_path:
        cfg = replace(cfg, db_path=db_path)
    if chain_id:
        cfg = replace(cfg, chain_id=chain_id)
    if mode:
        cfg = replace(cfg, mode=mode)

    validate_chain_config(cfg)
    return cfg


def build_executor(cfg: Optional[ChainConfig] = None) -> VeExecutor:
    """
    Build a VeExecutor from an explicit chain config or, if omitted,
    from environment variables.

    `veledger.api.app` calls build_executor() with no args in production.
    """
    return VeExecutor(cfg=cfg or boot_config_from_env())


__all__ = ["boot_config_from_env", "build_executor"]
