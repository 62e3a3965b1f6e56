# src/veledger/runtime/domain_apply.py
# ---------------------------------------------------------------------------
# Public, stable import path for applying tx envelopes.
# ---------------------------------------------------------------------------

from __future__ import annotations

import copy
from typing import Any, Dict, Optional

from veledger.runtime.apply.context import ApplyContext
from veledger.runtime.domain_dispatch import apply_tx
from veledger.runtime.errors import ApplyError

Json = Dict[str, Any]


def apply_tx_atomic(state: Json, env: Any, ctx: Optional[ApplyContext] = None) -> Json:
    """Apply a tx with fail-atomic semantics.

    On success:
      - state is updated as if apply_tx() ran directly.

    On ApplyError:
      - state remains byte-for-byte unchanged.

    Custody moves happen inside the applier against the same snapshot, so a
    rejected tx can never leave funds half-transferred.
    """

    # Apply on a deep copy to guarantee atomicity.
    snapshot = copy.deepcopy(state)
    meta = apply_tx(snapshot, env, ctx)

    # Commit by replacing contents in-place so callers holding references
    # to `state` see the updated view.
    state.clear()
    state.update(snapshot)
    return meta


__all__ = ["ApplyError", "apply_tx", "apply_tx_atomic", "Json"]
