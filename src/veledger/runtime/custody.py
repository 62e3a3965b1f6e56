"""
veledger: Custody boundary

Principal, rewards and registration fees move between account wallets and
ledger custody only through a ``Custody`` object injected via the apply
context. The ledger never assumes an outbound transfer cannot fail.

Default ``StateCustody`` layout:

  state["balances"][account][asset] = int     external wallet balances
  state["custody"]["held"][asset]   = int     funds held by the ledger

Native-asset fallback:
  An account flagged ``state["accounts"][acct]["rejects_native"] = True``
  cannot receive the native asset. ``transfer_out`` then credits the wrapped
  asset instead of failing the surrounding operation, and reports
  ``fallback="wrapped"`` in its receipt.
"""

from __future__ import annotations

from typing import Any, Dict, Protocol, runtime_checkable

from veledger.ledger import constants as C
from veledger.runtime.errors import ApplyError

Json = Dict[str, Any]


def _as_int(x: Any, default: int = 0) -> int:
    try:
        return int(x)
    except Exception:
        return int(default)


class NativeTransferRejected(RuntimeError):
    """Raised by a wallet credit when the recipient cannot take the native asset."""


@runtime_checkable
class Custody(Protocol):
    def balance(self, state: Json, account: str, asset: str) -> int: ...

    def held(self, state: Json, asset: str) -> int: ...

    def transfer_in(self, state: Json, account: str, asset: str, amount: int) -> Json: ...

    def transfer_out(self, state: Json, account: str, asset: str, amount: int) -> Json: ...


class StateCustody:
    """Custody kept inside the ledger state tree."""

    def _wallets(self, state: Json) -> Json:
        w = state.get("balances")
        if not isinstance(w, dict):
            w = {}
            state["balances"] = w
        return w

    def _wallet(self, state: Json, account: str) -> Json:
        wallets = self._wallets(state)
        w = wallets.get(account)
        if not isinstance(w, dict):
            w = {}
            wallets[account] = w
        return w

    def _held(self, state: Json) -> Json:
        c = state.get("custody")
        if not isinstance(c, dict):
            c = {}
            state["custody"] = c
        h = c.get("held")
        if not isinstance(h, dict):
            h = {}
            c["held"] = h
        return h

    def _assets(self, state: Json) -> tuple[str, str]:
        params = state.get("params") or {}
        native = str(params.get("native_asset") or C.DEFAULT_NATIVE_ASSET)
        wrapped = str(params.get("wrapped_asset") or C.DEFAULT_WRAPPED_ASSET)
        return native, wrapped

    def balance(self, state: Json, account: str, asset: str) -> int:
        wallets = state.get("balances")
        if not isinstance(wallets, dict):
            return 0
        w = wallets.get(account)
        if not isinstance(w, dict):
            return 0
        return _as_int(w.get(asset), 0)

    def held(self, state: Json, asset: str) -> int:
        c = state.get("custody")
        if not isinstance(c, dict) or not isinstance(c.get("held"), dict):
            return 0
        return _as_int(c["held"].get(asset), 0)

    def transfer_in(self, state: Json, account: str, asset: str, amount: int) -> Json:
        amt = int(amount)
        if amt < 0:
            raise ApplyError("invalid_payload", "negative_amount", {"asset": asset, "amount": amt})
        if amt == 0:
            return {"account": account, "asset": asset, "amount": 0}

        w = self._wallet(state, account)
        have = _as_int(w.get(asset), 0)
        if have < amt:
            raise ApplyError(
                "insufficient_funds",
                "wallet_balance_too_low",
                {"account": account, "asset": asset, "have": have, "need": amt},
            )
        w[asset] = have - amt
        held = self._held(state)
        held[asset] = _as_int(held.get(asset), 0) + amt
        return {"account": account, "asset": asset, "amount": amt}

    def _credit_native(self, state: Json, account: str, asset: str, amount: int) -> None:
        accts = state.get("accounts")
        rec = accts.get(account) if isinstance(accts, dict) else None
        if isinstance(rec, dict) and bool(rec.get("rejects_native", False)):
            raise NativeTransferRejected(account)
        w = self._wallet(state, account)
        w[asset] = _as_int(w.get(asset), 0) + int(amount)

    def transfer_out(self, state: Json, account: str, asset: str, amount: int) -> Json:
        amt = int(amount)
        if amt < 0:
            raise ApplyError("invalid_payload", "negative_amount", {"asset": asset, "amount": amt})
        if amt == 0:
            return {"account": account, "asset": asset, "amount": 0}

        held = self._held(state)
        have = _as_int(held.get(asset), 0)
        if have < amt:
            # Unreachable while the accounting rules hold.
            raise ApplyError("invalid_state", "custody_shortfall", {"asset": asset, "held": have, "need": amt})
        held[asset] = have - amt

        native, wrapped = self._assets(state)
        if asset != native:
            w = self._wallet(state, account)
            w[asset] = _as_int(w.get(asset), 0) + amt
            return {"account": account, "asset": asset, "amount": amt}

        try:
            self._credit_native(state, account, asset, amt)
        except NativeTransferRejected:
            w = self._wallet(state, account)
            w[wrapped] = _as_int(w.get(wrapped), 0) + amt
            return {"account": account, "asset": wrapped, "amount": amt, "fallback": "wrapped"}
        return {"account": account, "asset": asset, "amount": amt}


__all__ = ["Custody", "NativeTransferRejected", "StateCustody"]
