# src/veledger/runtime/apply/delegates.py
from __future__ import annotations

"""Delegate registry.

Fee policy:
  - a decrease applies immediately and drops any pending increase
  - an increase is parked as ``pending_fee_bps`` until
    ``current_epoch + fee_increase_delay_epochs`` and promoted lazily the
    first time the delegate is touched in or after that epoch
  - the fee in force for an epoch is copied into the delegate's epoch vote
    record, so later changes never reach back into settled epochs
"""

from typing import Any, Dict, Optional, Set

from veledger.ledger import constants as C
from veledger.ledger.ve_state import (
    current_epoch,
    ensure_delegates,
    get_delegate,
    now_s,
    param_int,
    peek_epoch_votes,
    spent_votes,
)
from veledger.runtime.apply.context import ApplyContext
from veledger.runtime.apply.epochs import reward_asset
from veledger.runtime.authority import deny_if_paused, require_role
from veledger.runtime.errors import ApplyError
from veledger.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]


def _as_str(v: Any) -> str:
    return str(v).strip() if isinstance(v, (str, int)) else ""


def _as_int(v: Any, default: int = 0) -> int:
    try:
        return int(v)
    except Exception:
        return int(default)


def _as_dict(v: Any) -> Json:
    return v if isinstance(v, dict) else {}


def _fee_bps(state: Json, env: TxEnvelope) -> int:
    raw = _as_dict(env.payload).get("fee_bps")
    if isinstance(raw, bool) or raw is None:
        raise ApplyError("invalid_payload", "missing_fee_bps", {"tx_type": env.tx_type})
    try:
        fee = int(raw)
    except Exception:
        raise ApplyError("invalid_payload", "bad_fee_bps", {"fee_bps": raw})
    cap = param_int(state, "max_delegate_fee_bps", C.DEFAULT_MAX_DELEGATE_FEE_BPS)
    if fee < 0 or fee > cap:
        raise ApplyError("invalid_payload", "fee_out_of_range", {"fee_bps": fee, "max": cap})
    return fee


def _require_registered(state: Json, account: str, tx_type: str) -> Json:
    rec = get_delegate(state, account)
    if rec is None or not rec.get("registered"):
        raise ApplyError("not_found", "delegate_not_registered", {"delegate": account, "tx_type": tx_type})
    return rec


def _refresh_epoch_fee(state: Json, account: str, epoch: int, fee: int) -> None:
    rec = peek_epoch_votes(state, epoch).get("delegates", {}).get(account)
    if isinstance(rec, dict):
        rec["fee_bps"] = int(fee)


def effective_fee_bps(state: Json, account: str, epoch: int) -> int:
    """Fee in force for ``account`` at ``epoch``; promotes a due pending increase."""
    rec = get_delegate(state, account)
    if rec is None:
        return 0
    pending_epoch = _as_int(rec.get("pending_epoch"), 0)
    if rec.get("pending_fee_bps") is not None and pending_epoch and int(epoch) >= pending_epoch:
        rec["fee_bps"] = _as_int(rec.get("pending_fee_bps"), 0)
        rec["pending_fee_bps"] = None
        rec["pending_epoch"] = 0
        _refresh_epoch_fee(state, account, int(epoch), rec["fee_bps"])
    return _as_int(rec.get("fee_bps"), 0)


def _apply_delegate_register(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Json:
    deny_if_paused(ctx.authority, state, tx_type=env.tx_type)
    account = _as_str(env.signer)
    if not account:
        raise ApplyError("invalid_payload", "missing_signer", {"tx_type": env.tx_type})
    fee = _fee_bps(state, env)

    reg = ensure_delegates(state)
    rec = reg["by_id"].get(account)
    if isinstance(rec, dict) and rec.get("registered"):
        raise ApplyError("conflict", "delegate_already_registered", {"delegate": account})

    reg_fee = param_int(state, "delegate_registration_fee", C.DEFAULT_DELEGATE_REGISTRATION_FEE)
    receipt = ctx.custody.transfer_in(state, account, reward_asset(state), reg_fee)
    reg["registration_fees_total"] = _as_int(reg.get("registration_fees_total"), 0) + reg_fee
    reg["registration_fees_unswept"] = _as_int(reg.get("registration_fees_unswept"), 0) + reg_fee

    meta: Json = {"applied": "DELEGATE_REGISTER", "delegate": account, "registration_fee": receipt}
    if not isinstance(rec, dict):
        rec = {"account": account, "registration_fees_paid": 0}
        reg["by_id"][account] = rec
        rec["fee_bps"] = fee
        rec["pending_fee_bps"] = None
        rec["pending_epoch"] = 0
    else:
        # Locks stay delegated across unregister, so a returning delegate
        # keeps its old fee and a higher one waits out the increase delay.
        epoch = current_epoch(state)
        cur = effective_fee_bps(state, account, epoch)
        if fee > cur:
            delay = param_int(state, "fee_increase_delay_epochs", C.DEFAULT_FEE_INCREASE_DELAY_EPOCHS)
            rec["pending_fee_bps"] = fee
            rec["pending_epoch"] = epoch + delay
            meta["pending_fee_bps"] = fee
            meta["pending_epoch"] = rec["pending_epoch"]
        else:
            rec["fee_bps"] = fee
            rec["pending_fee_bps"] = None
            rec["pending_epoch"] = 0
            _refresh_epoch_fee(state, account, epoch, fee)
    rec["registered"] = True
    rec["registered_at"] = now_s(state)
    rec["registration_fees_paid"] = _as_int(rec.get("registration_fees_paid"), 0) + reg_fee
    meta["fee_bps"] = _as_int(rec.get("fee_bps"), 0)
    return meta


def _apply_delegate_fee_update(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Json:
    deny_if_paused(ctx.authority, state, tx_type=env.tx_type)
    account = _as_str(env.signer)
    rec = _require_registered(state, account, env.tx_type)
    fee = _fee_bps(state, env)

    epoch = current_epoch(state)
    cur = effective_fee_bps(state, account, epoch)
    pending = rec.get("pending_fee_bps")

    if fee > cur:
        if pending is not None and _as_int(pending, -1) == fee:
            raise ApplyError("conflict", "pending_fee_unchanged", {"delegate": account, "pending_fee_bps": fee})
        delay = param_int(state, "fee_increase_delay_epochs", C.DEFAULT_FEE_INCREASE_DELAY_EPOCHS)
        rec["pending_fee_bps"] = fee
        rec["pending_epoch"] = epoch + delay
        return {
            "applied": "DELEGATE_FEE_UPDATE",
            "delegate": account,
            "fee_bps": cur,
            "pending_fee_bps": fee,
            "pending_epoch": rec["pending_epoch"],
        }

    if fee == cur and pending is None:
        raise ApplyError("conflict", "fee_unchanged", {"delegate": account, "fee_bps": fee})

    rec["fee_bps"] = fee
    rec["pending_fee_bps"] = None
    rec["pending_epoch"] = 0
    _refresh_epoch_fee(state, account, epoch, fee)
    return {"applied": "DELEGATE_FEE_UPDATE", "delegate": account, "fee_bps": fee, "pending_fee_bps": None}


def _apply_delegate_unregister(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Json:
    deny_if_paused(ctx.authority, state, tx_type=env.tx_type)
    account = _as_str(env.signer)
    rec = _require_registered(state, account, env.tx_type)

    epoch = current_epoch(state)
    spent = spent_votes(state, epoch, account, as_delegate=True)
    if spent > 0:
        raise ApplyError("invalid_state", "delegate_has_votes", {"delegate": account, "epoch": epoch, "spent": spent})

    rec["registered"] = False
    rec["pending_fee_bps"] = None
    rec["pending_epoch"] = 0
    rec["unregistered_at"] = now_s(state)
    return {"applied": "DELEGATE_UNREGISTER", "delegate": account}


def _apply_registration_fee_sweep(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Json:
    deny_if_paused(ctx.authority, state, tx_type=env.tx_type)
    require_role(ctx.authority, state, env.signer, [C.ROLE_COLLECTOR], tx_type=env.tx_type)

    reg = ensure_delegates(state)
    amount = _as_int(reg.get("registration_fees_unswept"), 0)
    reg["registration_fees_unswept"] = 0
    receipt = ctx.custody.transfer_out(state, env.signer, reward_asset(state), amount)
    return {"applied": "REGISTRATION_FEE_SWEEP", "amount": amount, "transfer": receipt}


DELEGATE_TX_TYPES: Set[str] = {
    "DELEGATE_REGISTER",
    "DELEGATE_FEE_UPDATE",
    "DELEGATE_UNREGISTER",
    "REGISTRATION_FEE_SWEEP",
}


def apply_delegates(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Optional[Json]:
    t = _as_str(env.tx_type).upper()
    if t not in DELEGATE_TX_TYPES:
        return None

    if t == "DELEGATE_REGISTER":
        return _apply_delegate_register(state, env, ctx)
    if t == "DELEGATE_FEE_UPDATE":
        return _apply_delegate_fee_update(state, env, ctx)
    if t == "DELEGATE_UNREGISTER":
        return _apply_delegate_unregister(state, env, ctx)
    if t == "REGISTRATION_FEE_SWEEP":
        return _apply_registration_fee_sweep(state, env, ctx)

    return None


__all__ = ["DELEGATE_TX_TYPES", "apply_delegates", "effective_fee_bps"]
