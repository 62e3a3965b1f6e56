# src/veledger/runtime/apply/control.py
from __future__ import annotations

"""Pause/freeze switches and role membership.

These are the only mutating txs that stay available while the ledger is
paused or frozen; otherwise operators could not lift a pause.
"""

from typing import Any, Dict, Optional, Set

from veledger.ledger import constants as C
from veledger.ledger.ve_state import now_s, params
from veledger.runtime.apply.context import ApplyContext
from veledger.runtime.authority import require_role
from veledger.runtime.errors import ApplyError
from veledger.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]


def _as_str(v: Any) -> str:
    return str(v).strip() if isinstance(v, (str, int)) else ""


def _as_dict(v: Any) -> Json:
    return v if isinstance(v, dict) else {}


def _flag(env: TxEnvelope, key: str) -> bool:
    raw = _as_dict(env.payload).get(key)
    if not isinstance(raw, bool):
        raise ApplyError("invalid_payload", f"{key}_must_be_bool", {"tx_type": env.tx_type, key: raw})
    return raw


def _role_and_account(env: TxEnvelope) -> tuple[str, str]:
    payload = _as_dict(env.payload)
    role = _as_str(payload.get("role")).lower()
    account = _as_str(payload.get("account"))
    if role not in C.ALL_ROLES:
        raise ApplyError("invalid_payload", "unknown_role", {"role": role})
    if not account:
        raise ApplyError("invalid_payload", "missing_account", {"tx_type": env.tx_type})
    return role, account


def _roles(state: Json) -> Json:
    r = state.get("roles")
    if not isinstance(r, dict):
        r = {}
        state["roles"] = r
    return r


def _apply_pause_set(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Json:
    require_role(ctx.authority, state, env.signer, [C.ROLE_EMERGENCY_OPERATOR, C.ROLE_ADMIN], tx_type=env.tx_type)
    paused = _flag(env, "paused")
    params(state)["paused"] = paused
    return {"applied": "CONTROL_PAUSE_SET", "paused": paused, "at": now_s(state)}


def _apply_freeze_set(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Json:
    require_role(ctx.authority, state, env.signer, [C.ROLE_ADMIN], tx_type=env.tx_type)
    frozen = _flag(env, "frozen")
    params(state)["frozen"] = frozen
    return {"applied": "CONTROL_FREEZE_SET", "frozen": frozen, "at": now_s(state)}


def _apply_role_grant(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Json:
    require_role(ctx.authority, state, env.signer, [C.ROLE_ADMIN], tx_type=env.tx_type)
    role, account = _role_and_account(env)
    members = _roles(state).setdefault(role, [])
    if account in members:
        raise ApplyError("conflict", "role_already_granted", {"role": role, "account": account})
    members.append(account)
    members.sort()
    return {"applied": "ROLE_GRANT", "role": role, "account": account}


def _apply_role_revoke(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Json:
    require_role(ctx.authority, state, env.signer, [C.ROLE_ADMIN], tx_type=env.tx_type)
    role, account = _role_and_account(env)
    members = _roles(state).get(role)
    if not isinstance(members, list) or account not in members:
        raise ApplyError("not_found", "role_not_granted", {"role": role, "account": account})
    if role == C.ROLE_ADMIN and len(members) == 1:
        raise ApplyError("invalid_state", "last_admin", {"account": account})
    members.remove(account)
    return {"applied": "ROLE_REVOKE", "role": role, "account": account}


CONTROL_TX_TYPES: Set[str] = {"CONTROL_PAUSE_SET", "CONTROL_FREEZE_SET", "ROLE_GRANT", "ROLE_REVOKE"}


def apply_control(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Optional[Json]:
    t = _as_str(env.tx_type).upper()
    if t not in CONTROL_TX_TYPES:
        return None

    if t == "CONTROL_PAUSE_SET":
        return _apply_pause_set(state, env, ctx)
    if t == "CONTROL_FREEZE_SET":
        return _apply_freeze_set(state, env, ctx)
    if t == "ROLE_GRANT":
        return _apply_role_grant(state, env, ctx)
    if t == "ROLE_REVOKE":
        return _apply_role_revoke(state, env, ctx)

    return None


__all__ = ["CONTROL_TX_TYPES", "apply_control"]
