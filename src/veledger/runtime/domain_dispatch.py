# src/veledger/runtime/domain_dispatch.py

from __future__ import annotations

from typing import Any, Callable, Dict, FrozenSet, Optional

from veledger.runtime.apply.claims import CLAIM_TX_TYPES, apply_claims
from veledger.runtime.apply.context import ApplyContext, default_context
from veledger.runtime.apply.control import CONTROL_TX_TYPES, apply_control
from veledger.runtime.apply.delegates import DELEGATE_TX_TYPES, apply_delegates
from veledger.runtime.apply.epochs import EPOCH_TX_TYPES, apply_epochs
from veledger.runtime.apply.escrow import ESCROW_TX_TYPES, apply_escrow
from veledger.runtime.apply.pools import POOL_TX_TYPES, apply_pools
from veledger.runtime.apply.voting import VOTING_TX_TYPES, apply_voting
from veledger.runtime.errors import ApplyError
from veledger.runtime.state_invariants import ensure_state
from veledger.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]
ApplyFn = Callable[[Json, TxEnvelope, ApplyContext], Optional[Json]]


_APPLIERS: tuple[ApplyFn, ...] = (
    apply_control,
    apply_escrow,
    apply_pools,
    apply_epochs,
    apply_voting,
    apply_delegates,
    apply_claims,
)

SUPPORTED_TX_TYPES: FrozenSet[str] = frozenset(
    CONTROL_TX_TYPES
    | ESCROW_TX_TYPES
    | POOL_TX_TYPES
    | EPOCH_TX_TYPES
    | VOTING_TX_TYPES
    | DELEGATE_TX_TYPES
    | CLAIM_TX_TYPES
)


def apply_tx(state: Json, env: Any, ctx: Optional[ApplyContext] = None) -> Json:
    """Dispatch a TxEnvelope to the first domain applier that claims it."""

    ensure_state(state)
    ctx = ctx or default_context()

    # Tests and tools pass raw dict envelopes. Normalize to TxEnvelope so
    # domain appliers can rely on attribute access.
    try:
        env_norm = TxEnvelope.from_json(env)
    except (TypeError, ValueError) as e:
        raise ApplyError("invalid_payload", "bad_envelope", {"error": str(e)}) from e
    t = env_norm.tx_type
    if not t:
        raise ApplyError("invalid_payload", "missing_tx_type", {"tx_type": t})

    for fn in _APPLIERS:
        try:
            out = fn(state, env_norm, ctx)
        except ApplyError:
            raise
        except Exception as e:
            code = getattr(e, "code", None)
            reason = getattr(e, "reason", None)
            details = getattr(e, "details", None)

            if code is not None or reason is not None:
                raise ApplyError(
                    str(code or "domain_error"),
                    str(reason or type(e).__name__),
                    details if details is not None else {"tx_type": t, "domain": fn.__name__},
                ) from e

            raise ApplyError(
                "domain_error",
                type(e).__name__,
                {"tx_type": t, "domain": fn.__name__, "error": str(e)},
            ) from e

        if out is not None:
            return out

    raise ApplyError("tx_unimplemented", "tx_type_not_implemented", {"tx_type": t})


__all__ = ["SUPPORTED_TX_TYPES", "apply_tx"]
