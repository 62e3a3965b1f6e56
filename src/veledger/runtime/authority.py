"""
veledger: Authorization boundary

The ledger never decides how roles are stored. Appliers receive an
``Authority`` through the apply context and ask it capability questions.

The default ``StateRoleAuthority`` reads roles from the state tree:

  state["roles"][<role>] = ["alice", "bob", ...]

and the pause/freeze flags from state["params"]:

  state["params"]["paused"]: bool
  state["params"]["frozen"]: bool

Fail-closed helpers (``require_role``, ``deny_if_paused``) raise ApplyError
so callers cannot accidentally ignore a negative answer.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Protocol, runtime_checkable

from veledger.runtime.errors import ApplyError

Json = Dict[str, Any]


@runtime_checkable
class Authority(Protocol):
    """Capability checks consumed by the ledger."""

    def has_role(self, state: Json, account: str, role: str) -> bool: ...

    def is_paused(self, state: Json) -> bool: ...

    def is_frozen(self, state: Json) -> bool: ...


class StateRoleAuthority:
    """Role membership and pause flags read from the ledger state itself."""

    def has_role(self, state: Json, account: str, role: str) -> bool:
        roles = state.get("roles")
        if not isinstance(roles, dict):
            return False
        members = roles.get(role)
        if not isinstance(members, list):
            return False
        acct = str(account or "").strip()
        return bool(acct) and acct in members

    def is_paused(self, state: Json) -> bool:
        params = state.get("params") or {}
        return bool(params.get("paused", False)) or self.is_frozen(state)

    def is_frozen(self, state: Json) -> bool:
        params = state.get("params") or {}
        return bool(params.get("frozen", False))


def require_role(authority: Authority, state: Json, account: str, roles: Iterable[str], *, tx_type: str = "") -> None:
    wanted = [r for r in roles]
    for role in wanted:
        if authority.has_role(state, account, role):
            return
    raise ApplyError("forbidden", "role_required", {"tx_type": tx_type, "signer": account, "roles": wanted})


def deny_if_paused(authority: Authority, state: Json, *, tx_type: str = "") -> None:
    if authority.is_frozen(state):
        raise ApplyError("frozen", "ledger_frozen", {"tx_type": tx_type})
    if authority.is_paused(state):
        raise ApplyError("paused", "ledger_paused", {"tx_type": tx_type})


__all__ = ["Authority", "StateRoleAuthority", "deny_if_paused", "require_role"]
