# src/veledger/runtime/apply/claims.py
from __future__ import annotations

"""Reward, fee and subsidy claims against finalized epochs.

Payouts use truncating integer division only:

  personal reward   reward * user_votes // pool_votes
  delegate gross    reward * delegate_votes // pool_votes
  delegate fee      gross * fee_bps // 10000
  delegated reward  (gross - fee) * owner_power // delegate_power
  subsidy           subsidy * votes // pool_votes

Because every term rounds down, the sum of all payouts for a pool never
exceeds its allocation; the truncation dust stays in custody until the
epoch is swept.

Tx-level gates (epoch state, swept track, blocked claimant) fail the whole
tx. Everything that depends on the individual pool is reported per item and
does not stop the other pools from paying out.
"""

from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from veledger.ledger import constants as C
from veledger.ledger.queries import delegated_power_at, delegator_power_at
from veledger.ledger.ve_state import ensure_epoch_claims, epoch_end, get_epoch, peek_epoch_votes
from veledger.runtime.apply.context import ApplyContext
from veledger.runtime.apply.epochs import reward_asset
from veledger.runtime.authority import deny_if_paused
from veledger.runtime.errors import ApplyError
from veledger.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]

# (claim key, amount) or raises _Skip
PayoutFn = Callable[[str, Json], Tuple[str, int]]


class _Skip(Exception):
    def __init__(self, code: str) -> None:
        super().__init__(code)
        self.code = code


def _as_str(v: Any) -> str:
    return str(v).strip() if isinstance(v, (str, int)) else ""


def _as_int(v: Any, default: int = 0) -> int:
    try:
        return int(v)
    except Exception:
        return int(default)


def _as_dict(v: Any) -> Json:
    return v if isinstance(v, dict) else {}


def _claim_epoch(state: Json, env: TxEnvelope, track: str) -> Json:
    payload = _as_dict(env.payload)
    epoch = _as_int(payload.get("epoch"), 0)
    rec = get_epoch(state, epoch) if epoch > 0 else None
    if rec is None:
        raise ApplyError("not_found", "epoch_not_found", {"epoch": payload.get("epoch")})
    if rec.get("state") != C.EPOCH_FINALIZED:
        raise ApplyError("invalid_state", "epoch_not_finalized", {"epoch": epoch, "state": rec.get("state")})
    if rec.get(f"{track}_swept"):
        raise ApplyError("invalid_state", "track_swept", {"epoch": epoch, "track": track})
    if env.signer in (rec.get("blocked") or []):
        raise ApplyError("forbidden", "claimant_blocked", {"epoch": epoch, "account": env.signer})
    return rec


def _claim_pools(env: TxEnvelope) -> List[str]:
    raw = _as_dict(env.payload).get("pools")
    if not isinstance(raw, list) or not raw:
        raise ApplyError("invalid_payload", "missing_pools", {"tx_type": env.tx_type})
    return [_as_str(p) for p in raw]


def _share(amount: int, part: int, whole: int) -> int:
    if whole <= 0 or part <= 0 or amount <= 0:
        return 0
    return int(amount) * int(part) // int(whole)


def _run_claims(
    state: Json,
    env: TxEnvelope,
    ctx: ApplyContext,
    *,
    track: str,
    ledger: str,
    payout: PayoutFn,
) -> Json:
    """Pay out ``payout`` for every requested pool, collecting per-item outcomes.

    ``track`` is the allocation track ("reward" or "subsidy"); ``ledger`` is
    the claim-receipt book the claim is recorded in.
    """
    deny_if_paused(ctx.authority, state, tx_type=env.tx_type)
    rec = _claim_epoch(state, env, track)
    epoch = _as_int(rec["epoch"], 0)
    pools = _claim_pools(env)

    ep_votes = peek_epoch_votes(state, epoch)
    book = ensure_epoch_claims(state, epoch)[ledger]
    asset = reward_asset(state)

    results: List[Json] = []
    total = 0
    seen: Set[str] = set()
    for pid in pools:
        if pid in seen:
            results.append({"pool_id": pid, "ok": False, "code": "duplicate_pool"})
            continue
        seen.add(pid)
        ep_pool = ep_votes["pools"].get(pid)
        if not isinstance(ep_pool, dict):
            results.append({"pool_id": pid, "ok": False, "code": "pool_not_in_epoch"})
            continue
        try:
            key, amount = payout(pid, ep_pool)
        except _Skip as s:
            results.append({"pool_id": pid, "ok": False, "code": s.code})
            continue

        claimed_for_pool = book.setdefault(pid, {})
        if key in claimed_for_pool:
            results.append({"pool_id": pid, "ok": False, "code": "already_claimed"})
            continue

        pool_claimed = _as_int(ep_pool.get(f"{track}_claimed"), 0) + amount
        if pool_claimed > _as_int(ep_pool.get(track), 0):
            # Unreachable while payouts truncate.
            raise ApplyError("invalid_state", "pool_overclaim", {"epoch": epoch, "pool_id": pid, "track": track})

        claimed_for_pool[key] = amount
        ep_pool[f"{track}_claimed"] = pool_claimed
        rec[f"{track}_claimed"] = _as_int(rec.get(f"{track}_claimed"), 0) + amount
        receipt = ctx.custody.transfer_out(state, env.signer, asset, amount)
        total += amount
        item: Json = {"pool_id": pid, "ok": True, "amount": amount}
        if receipt.get("fallback"):
            item["fallback"] = receipt["fallback"]
        results.append(item)

    return {
        "applied": env.tx_type,
        "epoch": epoch,
        "claimed": total,
        "results": results,
    }


def _apply_claim_reward(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Json:
    account = env.signer

    def payout(pid: str, ep_pool: Json) -> Tuple[str, int]:
        votes = _as_int(_as_dict(ep_pool.get("users")).get(account), 0)
        if votes <= 0:
            raise _Skip("no_votes")
        return account, _share(_as_int(ep_pool.get("reward"), 0), votes, _as_int(ep_pool.get("total"), 0))

    return _run_claims(state, env, ctx, track="reward", ledger="reward", payout=payout)


def _delegate_gross(ep_pool: Json, delegate: str) -> int:
    votes = _as_int(_as_dict(ep_pool.get("delegates")).get(delegate), 0)
    if votes <= 0:
        raise _Skip("no_delegate_votes")
    return _share(_as_int(ep_pool.get("reward"), 0), votes, _as_int(ep_pool.get("total"), 0))


def _snapshot_fee_bps(state: Json, epoch: int, delegate: str) -> int:
    entry = _as_dict(peek_epoch_votes(state, epoch)["delegates"].get(delegate))
    return _as_int(entry.get("fee_bps"), 0)


def _apply_claim_delegate_fee(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Json:
    delegate = env.signer
    epoch = _as_int(_as_dict(env.payload).get("epoch"), 0)

    def payout(pid: str, ep_pool: Json) -> Tuple[str, int]:
        gross = _delegate_gross(ep_pool, delegate)
        fee_bps = _snapshot_fee_bps(state, epoch, delegate)
        if fee_bps <= 0:
            raise _Skip("no_fee")
        return delegate, gross * fee_bps // C.BPS_DENOMINATOR

    return _run_claims(state, env, ctx, track="reward", ledger="fee", payout=payout)


def _apply_claim_delegated_reward(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Json:
    owner = env.signer
    payload = _as_dict(env.payload)
    delegate = _as_str(payload.get("delegate"))
    if not delegate:
        raise ApplyError("invalid_payload", "missing_delegate", {"tx_type": env.tx_type})
    if delegate == owner:
        raise ApplyError("invalid_payload", "delegate_is_owner", {"delegate": delegate})
    epoch = _as_int(payload.get("epoch"), 0)
    t_end = epoch_end(state, epoch)
    owner_power = delegator_power_at(state, owner, delegate, t_end)
    delegate_power = delegated_power_at(state, delegate, t_end)

    def payout(pid: str, ep_pool: Json) -> Tuple[str, int]:
        gross = _delegate_gross(ep_pool, delegate)
        if owner_power <= 0:
            raise _Skip("no_delegated_power")
        fee = gross * _snapshot_fee_bps(state, epoch, delegate) // C.BPS_DENOMINATOR
        return f"{delegate}:{owner}", _share(gross - fee, owner_power, delegate_power)

    return _run_claims(state, env, ctx, track="reward", ledger="delegated", payout=payout)


def _apply_claim_subsidy(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Json:
    account = env.signer
    as_delegate = bool(_as_dict(env.payload).get("as_delegate", False))
    side = "delegates" if as_delegate else "users"

    def payout(pid: str, ep_pool: Json) -> Tuple[str, int]:
        votes = _as_int(_as_dict(ep_pool.get(side)).get(account), 0)
        if votes <= 0:
            raise _Skip("no_votes")
        key = f"{side}:{account}"
        return key, _share(_as_int(ep_pool.get("subsidy"), 0), votes, _as_int(ep_pool.get("total"), 0))

    return _run_claims(state, env, ctx, track="subsidy", ledger="subsidy", payout=payout)


CLAIM_TX_TYPES: Set[str] = {
    "CLAIM_REWARD",
    "CLAIM_DELEGATE_FEE",
    "CLAIM_DELEGATED_REWARD",
    "CLAIM_SUBSIDY",
}


def apply_claims(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Optional[Json]:
    t = _as_str(env.tx_type).upper()
    if t not in CLAIM_TX_TYPES:
        return None

    if t == "CLAIM_REWARD":
        return _apply_claim_reward(state, env, ctx)
    if t == "CLAIM_DELEGATE_FEE":
        return _apply_claim_delegate_fee(state, env, ctx)
    if t == "CLAIM_DELEGATED_REWARD":
        return _apply_claim_delegated_reward(state, env, ctx)
    if t == "CLAIM_SUBSIDY":
        return _apply_claim_subsidy(state, env, ctx)

    return None


__all__ = ["CLAIM_TX_TYPES", "apply_claims"]
