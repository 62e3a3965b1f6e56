# src/veledger/runtime/apply/escrow.py
from __future__ import annotations

"""Decay ledger: lock lifecycle.

Every lock contributes a linear-decay balance ``{bias, slope}`` to exactly
one account aggregate (the owner's personal aggregate, or the delegated
aggregate of its delegate) and to the global aggregate. Each contribution is
paired with a slope reduction scheduled at the lock's expiry.

Mutation rule: an aggregate is always rolled forward to ``now`` before it is
changed. Delegated aggregates additionally record a checkpoint after every
change so delegator shares can be evaluated at past epoch ends.
"""

from typing import Any, Dict, Optional, Set

from veledger.ledger import constants as C
from veledger.ledger.decay import (
    add_balance,
    empty_balance,
    epoch_floor,
    is_epoch_aligned,
    lock_balance,
    push_checkpoint,
    roll_forward,
    schedule_add,
    schedule_sub,
    sub_balance,
    value_at,
)
from veledger.ledger.queries import delegated_power_at, personal_power_at
from veledger.ledger.ve_state import (
    current_epoch,
    ensure_ve,
    ensure_ve_account,
    epoch_end,
    epoch_seconds,
    get_lock,
    is_registered_delegate,
    lock_history,
    now_s,
    param_int,
    param_str,
    spent_votes,
)
from veledger.runtime.apply.context import ApplyContext
from veledger.runtime.authority import deny_if_paused
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


def _opt_account(v: Any) -> Optional[str]:
    s = _as_str(v) if v is not None else ""
    return s or None


def _amount(payload: Json, key: str) -> int:
    raw = payload.get(key, 0)
    if isinstance(raw, bool):
        raise ApplyError("invalid_payload", f"bad_{key}", {key: raw})
    try:
        v = int(raw)
    except Exception:
        raise ApplyError("invalid_payload", f"bad_{key}", {key: raw})
    if v < 0:
        raise ApplyError("invalid_payload", f"negative_{key}", {key: v})
    return v


def _assets(state: Json) -> tuple[str, str]:
    return (
        param_str(state, "lock_asset_a", C.DEFAULT_LOCK_ASSET_A),
        param_str(state, "lock_asset_b", C.DEFAULT_LOCK_ASSET_B),
    )


def _max_lock(state: Json) -> int:
    return param_int(state, "max_lock_seconds", C.DEFAULT_MAX_LOCK_SECONDS)


def _require_owned_lock(state: Json, env: TxEnvelope) -> Json:
    payload = _as_dict(env.payload)
    lock_id = _as_int(payload.get("lock_id"), 0)
    if lock_id <= 0:
        raise ApplyError("invalid_payload", "missing_lock_id", {"tx_type": env.tx_type})
    lk = get_lock(state, lock_id)
    if lk is None:
        raise ApplyError("not_found", "lock_not_found", {"lock_id": lock_id})
    if lk.get("owner") != env.signer:
        raise ApplyError("forbidden", "not_lock_owner", {"lock_id": lock_id, "signer": env.signer})
    return lk


def _require_live(lk: Json, now: int) -> None:
    if bool(lk.get("is_unlocked", False)):
        raise ApplyError("invalid_state", "lock_unlocked", {"lock_id": lk.get("lock_id")})
    if _as_int(lk.get("expiry"), 0) <= now:
        raise ApplyError("invalid_state", "lock_expired", {"lock_id": lk.get("lock_id"), "expiry": lk.get("expiry")})


def _check_expiry(state: Json, expiry: int, now: int) -> None:
    e = epoch_seconds(state)
    if not is_epoch_aligned(expiry, e):
        raise ApplyError("invalid_payload", "expiry_not_epoch_aligned", {"expiry": expiry, "epoch_seconds": e})
    min_epochs = param_int(state, "min_lock_epochs", C.DEFAULT_MIN_LOCK_EPOCHS)
    earliest = epoch_floor(now, e) + min_epochs * e
    if expiry < earliest:
        raise ApplyError("invalid_payload", "expiry_too_soon", {"expiry": expiry, "earliest": earliest})
    latest = now + _max_lock(state)
    if expiry > latest:
        raise ApplyError("invalid_payload", "expiry_too_late", {"expiry": expiry, "latest": latest})


def _check_delegate_target(state: Json, owner: str, delegate: Optional[str]) -> None:
    if delegate is None:
        return
    if delegate == owner:
        raise ApplyError("invalid_payload", "delegate_is_owner", {"delegate": delegate})
    if not is_registered_delegate(state, delegate):
        raise ApplyError("not_found", "delegate_not_registered", {"delegate": delegate})


# ---------------------------------------------------------------------------
# Aggregate bookkeeping
# ---------------------------------------------------------------------------


def _bucket(state: Json, lk: Json) -> tuple[Json, str]:
    """Account record and aggregate kind the lock currently contributes to."""
    delegate = lk.get("delegate")
    if isinstance(delegate, str) and delegate:
        return ensure_ve_account(state, delegate), "delegated"
    return ensure_ve_account(state, str(lk["owner"])), "personal"


def _add_contribution(state: Json, rec: Json, kind: str, bal: Json, expiry: int) -> None:
    now = now_s(state)
    e = epoch_seconds(state)
    agg = rec[kind]
    sched = rec[f"{kind}_slope_changes"]
    roll_forward(agg, sched, now, e)
    add_balance(agg, bal)
    schedule_add(sched, expiry, _as_int(bal.get("slope"), 0))
    if kind == "delegated":
        push_checkpoint(rec["delegated_history"], agg)


def _remove_contribution(state: Json, rec: Json, kind: str, bal: Json, expiry: int) -> None:
    now = now_s(state)
    e = epoch_seconds(state)
    agg = rec[kind]
    sched = rec[f"{kind}_slope_changes"]
    roll_forward(agg, sched, now, e)
    sub_balance(agg, bal)
    schedule_sub(sched, expiry, _as_int(bal.get("slope"), 0))
    if kind == "delegated":
        push_checkpoint(rec["delegated_history"], agg)


def _global_add(state: Json, bal: Json, expiry: int) -> None:
    ve = ensure_ve(state)
    roll_forward(ve["global"], ve["global_slope_changes"], now_s(state), epoch_seconds(state))
    add_balance(ve["global"], bal)
    schedule_add(ve["global_slope_changes"], expiry, _as_int(bal.get("slope"), 0))


def _global_sub(state: Json, bal: Json, expiry: int) -> None:
    ve = ensure_ve(state)
    roll_forward(ve["global"], ve["global_slope_changes"], now_s(state), epoch_seconds(state))
    sub_balance(ve["global"], bal)
    schedule_sub(ve["global_slope_changes"], expiry, _as_int(bal.get("slope"), 0))


def _lock_bal(lk: Json) -> Json:
    return {"bias": _as_int(lk.get("bias"), 0), "slope": _as_int(lk.get("slope"), 0)}


def _checkpoint_lock(state: Json, lk: Json) -> None:
    push_checkpoint(
        lock_history(state, lk["lock_id"]),
        {
            "bias": _as_int(lk.get("bias"), 0),
            "slope": _as_int(lk.get("slope"), 0),
            "ts": now_s(state),
            "delegate": lk.get("delegate"),
        },
    )


def _rebalance_lock(state: Json, lk: Json, new_bal: Json, new_expiry: int) -> None:
    """Replace a live lock's contribution with ``new_bal`` expiring at ``new_expiry``."""
    rec, kind = _bucket(state, lk)
    old_bal = _lock_bal(lk)
    old_expiry = _as_int(lk.get("expiry"), 0)

    _global_sub(state, old_bal, old_expiry)
    _remove_contribution(state, rec, kind, old_bal, old_expiry)

    lk["bias"] = _as_int(new_bal["bias"], 0)
    lk["slope"] = _as_int(new_bal["slope"], 0)
    lk["expiry"] = int(new_expiry)

    _global_add(state, new_bal, new_expiry)
    _add_contribution(state, rec, kind, new_bal, new_expiry)
    _checkpoint_lock(state, lk)


def _bump_locked_total(state: Json, asset: str, delta: int) -> None:
    totals = ensure_ve(state)["locked_totals"]
    cur = _as_int(totals.get(asset), 0) + int(delta)
    if cur < 0:
        raise ApplyError("invalid_state", "locked_total_underflow", {"asset": asset, "value": cur})
    totals[asset] = cur


def _release_principal(state: Json, ctx: ApplyContext, lk: Json) -> list:
    asset_a, asset_b = _assets(state)
    owner = str(lk["owner"])
    receipts = []
    for asset, key in ((asset_a, "amount_a"), (asset_b, "amount_b")):
        amt = _as_int(lk.get(key), 0)
        if amt <= 0:
            continue
        _bump_locked_total(state, asset, -amt)
        receipts.append(ctx.custody.transfer_out(state, owner, asset, amt))
    return receipts


# ---------------------------------------------------------------------------
# Tx handlers
# ---------------------------------------------------------------------------


def _apply_lock_create(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Json:
    deny_if_paused(ctx.authority, state, tx_type=env.tx_type)
    owner = _as_str(env.signer)
    if not owner:
        raise ApplyError("invalid_payload", "missing_owner", {"tx_type": env.tx_type})

    payload = _as_dict(env.payload)
    now = now_s(state)
    expiry = _as_int(payload.get("expiry"), 0)
    amount_a = _amount(payload, "amount_a")
    amount_b = _amount(payload, "amount_b")
    delegate = _opt_account(payload.get("delegate"))

    _check_expiry(state, expiry, now)
    if amount_a + amount_b <= 0:
        raise ApplyError("invalid_payload", "zero_principal", {"amount_a": amount_a, "amount_b": amount_b})
    _check_delegate_target(state, owner, delegate)

    ve = ensure_ve(state)
    lock_id = _as_int(ve.get("next_lock_id"), 1)
    ve["next_lock_id"] = lock_id + 1

    bal = lock_balance(amount_a, amount_b, expiry, _max_lock(state))
    lk = {
        "lock_id": lock_id,
        "owner": owner,
        "delegate": delegate,
        "amount_a": amount_a,
        "amount_b": amount_b,
        "expiry": expiry,
        "bias": bal["bias"],
        "slope": bal["slope"],
        "is_unlocked": False,
        "created_at": now,
    }
    ve["locks"][str(lock_id)] = lk
    ensure_ve_account(state, owner)["lock_ids"].append(lock_id)

    _global_add(state, bal, expiry)
    rec, kind = _bucket(state, lk)
    _add_contribution(state, rec, kind, bal, expiry)
    _checkpoint_lock(state, lk)

    asset_a, asset_b = _assets(state)
    if amount_a:
        ctx.custody.transfer_in(state, owner, asset_a, amount_a)
        _bump_locked_total(state, asset_a, amount_a)
    if amount_b:
        ctx.custody.transfer_in(state, owner, asset_b, amount_b)
        _bump_locked_total(state, asset_b, amount_b)

    return {
        "applied": "VE_LOCK_CREATE",
        "lock_id": lock_id,
        "expiry": expiry,
        "bias": bal["bias"],
        "slope": bal["slope"],
        "power": value_at(bal, now),
    }


def _apply_lock_increase_amount(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Json:
    deny_if_paused(ctx.authority, state, tx_type=env.tx_type)
    lk = _require_owned_lock(state, env)
    now = now_s(state)
    _require_live(lk, now)

    payload = _as_dict(env.payload)
    add_a = _amount(payload, "amount_a")
    add_b = _amount(payload, "amount_b")
    if add_a + add_b <= 0:
        raise ApplyError("invalid_payload", "zero_increase", {"lock_id": lk["lock_id"]})

    amount_a = _as_int(lk.get("amount_a"), 0) + add_a
    amount_b = _as_int(lk.get("amount_b"), 0) + add_b
    expiry = _as_int(lk.get("expiry"), 0)
    new_bal = lock_balance(amount_a, amount_b, expiry, _max_lock(state))

    _rebalance_lock(state, lk, new_bal, expiry)
    lk["amount_a"] = amount_a
    lk["amount_b"] = amount_b

    asset_a, asset_b = _assets(state)
    if add_a:
        ctx.custody.transfer_in(state, env.signer, asset_a, add_a)
        _bump_locked_total(state, asset_a, add_a)
    if add_b:
        ctx.custody.transfer_in(state, env.signer, asset_b, add_b)
        _bump_locked_total(state, asset_b, add_b)

    return {
        "applied": "VE_LOCK_INCREASE_AMOUNT",
        "lock_id": lk["lock_id"],
        "amount_a": amount_a,
        "amount_b": amount_b,
        "slope": new_bal["slope"],
    }


def _apply_lock_extend(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Json:
    deny_if_paused(ctx.authority, state, tx_type=env.tx_type)
    lk = _require_owned_lock(state, env)
    now = now_s(state)
    _require_live(lk, now)

    payload = _as_dict(env.payload)
    new_expiry = _as_int(payload.get("expiry"), 0)
    old_expiry = _as_int(lk.get("expiry"), 0)
    if new_expiry <= old_expiry:
        raise ApplyError("invalid_payload", "expiry_not_later", {"expiry": new_expiry, "current": old_expiry})
    _check_expiry(state, new_expiry, now)

    new_bal = lock_balance(lk.get("amount_a"), lk.get("amount_b"), new_expiry, _max_lock(state))
    _rebalance_lock(state, lk, new_bal, new_expiry)
    return {"applied": "VE_LOCK_EXTEND", "lock_id": lk["lock_id"], "expiry": new_expiry, "bias": new_bal["bias"]}


def _source_power_after(state: Json, lk: Json, t: int) -> tuple[str, bool, int]:
    """(account, as_delegate, power at ``t``) for the lock's current bucket."""
    delegate = lk.get("delegate")
    if isinstance(delegate, str) and delegate:
        return delegate, True, delegated_power_at(state, delegate, t)
    owner = str(lk["owner"])
    return owner, False, personal_power_at(state, owner, t)


def _apply_lock_delegate(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Json:
    deny_if_paused(ctx.authority, state, tx_type=env.tx_type)
    lk = _require_owned_lock(state, env)
    now = now_s(state)
    _require_live(lk, now)

    payload = _as_dict(env.payload)
    target = _opt_account(payload.get("delegate"))
    current = _opt_account(lk.get("delegate"))
    if target == current:
        raise ApplyError("conflict", "already_in_target_state", {"lock_id": lk["lock_id"], "delegate": target})
    _check_delegate_target(state, str(lk["owner"]), target)

    bal = _lock_bal(lk)
    expiry = _as_int(lk.get("expiry"), 0)

    src_rec, src_kind = _bucket(state, lk)
    _remove_contribution(state, src_rec, src_kind, bal, expiry)

    # The source must still cover what it already spent this epoch.
    epoch = current_epoch(state)
    t_end = epoch_end(state, epoch)
    src_acct, src_is_delegate, src_power = _source_power_after(state, lk, t_end)
    spent = spent_votes(state, epoch, src_acct, as_delegate=src_is_delegate)
    if src_power < spent:
        raise ApplyError(
            "insufficient_power",
            "source_votes_exceed_remaining_power",
            {"account": src_acct, "delegated": src_is_delegate, "power": src_power, "spent": spent},
        )

    lk["delegate"] = target
    dst_rec, dst_kind = _bucket(state, lk)
    _add_contribution(state, dst_rec, dst_kind, bal, expiry)
    _checkpoint_lock(state, lk)

    if target is None:
        action = "undelegate"
    elif current is None:
        action = "delegate"
    else:
        action = "switch"
    return {"applied": "VE_LOCK_DELEGATE", "lock_id": lk["lock_id"], "action": action, "delegate": target, "previous": current}


def _apply_lock_unlock(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Json:
    deny_if_paused(ctx.authority, state, tx_type=env.tx_type)
    lk = _require_owned_lock(state, env)
    now = now_s(state)
    if bool(lk.get("is_unlocked", False)):
        raise ApplyError("conflict", "already_unlocked", {"lock_id": lk["lock_id"]})
    expiry = _as_int(lk.get("expiry"), 0)
    if now < expiry:
        raise ApplyError("invalid_time", "lock_not_expired", {"lock_id": lk["lock_id"], "expiry": expiry, "now": now})

    lk["is_unlocked"] = True
    lk["unlocked_at"] = now
    receipts = _release_principal(state, ctx, lk)
    _checkpoint_lock(state, {**lk, **empty_balance()})
    return {"applied": "VE_LOCK_UNLOCK", "lock_id": lk["lock_id"], "transfers": receipts}


def _exempt_from_power_bound(state: Json, lk: Json, kind: str) -> None:
    """Votes already spent this epoch stay; the audit skips the account for this epoch."""
    if kind == "delegated":
        key = f"delegates:{lk.get('delegate')}"
    else:
        key = f"users:{lk['owner']}"
    per_epoch = ensure_ve(state).setdefault("exit_exempt", {}).setdefault(str(current_epoch(state)), [])
    if key not in per_epoch:
        per_epoch.append(key)


def _apply_lock_emergency_exit(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Json:
    if not ctx.authority.is_frozen(state):
        raise ApplyError("forbidden", "emergency_exit_requires_frozen", {"tx_type": env.tx_type})
    lk = _require_owned_lock(state, env)
    now = now_s(state)
    if bool(lk.get("is_unlocked", False)):
        raise ApplyError("conflict", "already_unlocked", {"lock_id": lk["lock_id"]})

    expiry = _as_int(lk.get("expiry"), 0)
    if expiry > now:
        # Still decaying: pull its contribution out before the boundary is crossed.
        bal = _lock_bal(lk)
        rec, kind = _bucket(state, lk)
        _global_sub(state, bal, expiry)
        _remove_contribution(state, rec, kind, bal, expiry)
        _exempt_from_power_bound(state, lk, kind)

    lk["is_unlocked"] = True
    lk["unlocked_at"] = now
    lk["bias"] = 0
    lk["slope"] = 0
    receipts = _release_principal(state, ctx, lk)
    _checkpoint_lock(state, lk)
    return {"applied": "VE_LOCK_EMERGENCY_EXIT", "lock_id": lk["lock_id"], "transfers": receipts}


ESCROW_TX_TYPES: Set[str] = {
    "VE_LOCK_CREATE",
    "VE_LOCK_INCREASE_AMOUNT",
    "VE_LOCK_EXTEND",
    "VE_LOCK_DELEGATE",
    "VE_LOCK_UNLOCK",
    "VE_LOCK_EMERGENCY_EXIT",
}


def apply_escrow(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Optional[Json]:
    t = _as_str(env.tx_type).upper()
    if t not in ESCROW_TX_TYPES:
        return None

    if t == "VE_LOCK_CREATE":
        return _apply_lock_create(state, env, ctx)
    if t == "VE_LOCK_INCREASE_AMOUNT":
        return _apply_lock_increase_amount(state, env, ctx)
    if t == "VE_LOCK_EXTEND":
        return _apply_lock_extend(state, env, ctx)
    if t == "VE_LOCK_DELEGATE":
        return _apply_lock_delegate(state, env, ctx)
    if t == "VE_LOCK_UNLOCK":
        return _apply_lock_unlock(state, env, ctx)
    if t == "VE_LOCK_EMERGENCY_EXIT":
        return _apply_lock_emergency_exit(state, env, ctx)

    return None


__all__ = ["ESCROW_TX_TYPES", "apply_escrow"]
