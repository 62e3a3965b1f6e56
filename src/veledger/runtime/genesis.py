# src/veledger/runtime/genesis.py
from __future__ import annotations

from typing import Any, Dict

from veledger.ledger import constants as C
from veledger.ledger.ve_state import ensure_delegates, ensure_epochs, ensure_pools, ensure_ve
from veledger.runtime.chain_config import ChainConfig, genesis_params
from veledger.runtime.state_invariants import ensure_state

Json = Dict[str, Any]


def build_genesis_state(cfg: ChainConfig) -> Json:
    """Fresh ledger state for ``cfg``.

    Policy:
      - ledger time starts at genesis_time, epoch 1 is open for voting
      - admin_account holds every role
      - genesis_balances seed wallets (custody holdings start empty)
    """
    state: Json = {
        "chain_id": cfg.chain_id,
        "seq": 0,
        "time": int(cfg.genesis_time),
        "params": genesis_params(cfg),
        "roles": {role: [cfg.admin_account] for role in sorted(C.ALL_ROLES)},
        "balances": {acct: dict(wallet) for acct, wallet in (cfg.genesis_balances or {}).items()},
        "custody": {"held": {}},
    }
    ensure_state(state)
    ensure_ve(state)
    ensure_pools(state)
    ensure_epochs(state)
    ensure_delegates(state)
    return state


__all__ = ["build_genesis_state"]
