# tests/test_apply_fail_closed.py
from __future__ import annotations

import pytest

from veledger.runtime.domain_apply import ApplyError, apply_tx, apply_tx_atomic
from veledger.runtime.tx_admission_types import TxEnvelope
from veledger.testing.ledger import LedgerDriver, envelope


def test_apply_fails_closed_for_unknown_tx_types() -> None:
    env = TxEnvelope(tx_type="VE_LOCK_TELEPORT", signer="alice", nonce=1, payload={})

    with pytest.raises(ApplyError) as e:
        apply_tx({}, env)

    err = e.value
    assert err.code == "tx_unimplemented"
    assert err.reason == "tx_type_not_implemented"


def test_missing_tx_type_is_invalid() -> None:
    with pytest.raises(ApplyError) as e:
        apply_tx({}, {"signer": "alice", "payload": {}})
    assert (e.value.code, e.value.reason) == ("invalid_payload", "missing_tx_type")


def test_tx_type_is_case_insensitive() -> None:
    d = LedgerDriver()
    meta = apply_tx_atomic(d.state, envelope("pool_create_batch", d.admin, pools=["p1"]), d.ctx)
    assert meta["applied"] == "POOL_CREATE_BATCH"


def test_rejected_tx_leaves_state_untouched() -> None:
    d = LedgerDriver()
    d.create_pools("p1")
    before = repr(d.state)

    with pytest.raises(ApplyError):
        # Fails on missing funds after the lock and its aggregates were written.
        apply_tx_atomic(
            d.state,
            envelope("VE_LOCK_CREATE", "alice", expiry=d.epoch_end(2), amount_a=10**21, amount_b=0),
            d.ctx,
        )
    assert repr(d.state) == before


def test_unexpected_domain_errors_are_wrapped() -> None:
    d = LedgerDriver()
    d.lock("alice", 10**20)
    # Corrupt the aggregate so the next mutation underflows.
    d.state["ve"]["accounts"]["alice"]["personal"]["slope"] = 0

    err = d.reject("VE_LOCK_EXTEND", "alice", lock_id=1, expiry=d.epoch_end(6))
    assert err.code == "domain_error"
    assert err.reason == "ValueError"
    assert err.details["domain"] == "apply_escrow"
