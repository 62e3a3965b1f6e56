from __future__ import annotations

from veledger.ledger.ve_state import get_delegate, peek_epoch_votes
from veledger.runtime.apply.delegates import effective_fee_bps
from veledger.testing.ledger import UNIT, LedgerDriver


def _carol(fee_bps: int = 100) -> LedgerDriver:
    d = LedgerDriver()
    d.register_delegate("carol", fee_bps=fee_bps)
    d.lock("bob", 20 * UNIT, epochs=8, delegate="carol")
    d.create_pools("p1")
    return d


def test_register_twice_conflicts() -> None:
    d = _carol()
    rec = get_delegate(d.state, "carol")
    assert rec["registered"] is True
    assert rec["fee_bps"] == 100

    err = d.reject("DELEGATE_REGISTER", "carol", fee_bps=0)
    assert (err.code, err.reason) == ("conflict", "delegate_already_registered")


def test_fee_cap() -> None:
    d = LedgerDriver()
    err = d.reject("DELEGATE_REGISTER", "carol", fee_bps=d.cfg.max_delegate_fee_bps + 1)
    assert (err.code, err.reason) == ("invalid_payload", "fee_out_of_range")

    d.register_delegate("carol", fee_bps=d.cfg.max_delegate_fee_bps)
    err = d.reject("DELEGATE_FEE_UPDATE", "carol", fee_bps=-1)
    assert err.reason == "fee_out_of_range"


def test_fee_increase_waits_for_delay() -> None:
    d = _carol()
    d.vote("carol", "p1", 10, as_delegate=True)

    meta = d.tx("DELEGATE_FEE_UPDATE", "carol", fee_bps=300)
    assert meta["fee_bps"] == 100
    assert meta["pending_fee_bps"] == 300
    assert meta["pending_epoch"] == 1 + d.cfg.fee_increase_delay_epochs

    # The open epoch keeps the fee it was voted under.
    assert peek_epoch_votes(d.state, 1)["delegates"]["carol"]["fee_bps"] == 100

    d.end_epoch()
    assert effective_fee_bps(d.state, "carol", 2) == 100
    d.end_epoch()
    assert effective_fee_bps(d.state, "carol", 3) == 300

    rec = get_delegate(d.state, "carol")
    assert rec["fee_bps"] == 300
    assert rec["pending_fee_bps"] is None


def test_vote_promotes_due_fee_into_snapshot() -> None:
    d = _carol()
    d.tx("DELEGATE_FEE_UPDATE", "carol", fee_bps=300)
    d.end_epoch()
    d.end_epoch()

    meta = d.vote("carol", "p1", 10, as_delegate=True)
    assert meta["fee_bps"] == 300
    assert peek_epoch_votes(d.state, 3)["delegates"]["carol"]["fee_bps"] == 300


def test_fee_decrease_applies_immediately_and_drops_pending() -> None:
    d = _carol()
    d.vote("carol", "p1", 10, as_delegate=True)
    d.tx("DELEGATE_FEE_UPDATE", "carol", fee_bps=300)

    meta = d.tx("DELEGATE_FEE_UPDATE", "carol", fee_bps=50)
    assert meta == {"applied": "DELEGATE_FEE_UPDATE", "delegate": "carol", "fee_bps": 50, "pending_fee_bps": None}
    assert peek_epoch_votes(d.state, 1)["delegates"]["carol"]["fee_bps"] == 50
    assert get_delegate(d.state, "carol")["pending_epoch"] == 0


def test_unchanged_fee_updates_conflict() -> None:
    d = _carol()
    err = d.reject("DELEGATE_FEE_UPDATE", "carol", fee_bps=100)
    assert (err.code, err.reason) == ("conflict", "fee_unchanged")

    d.tx("DELEGATE_FEE_UPDATE", "carol", fee_bps=300)
    err = d.reject("DELEGATE_FEE_UPDATE", "carol", fee_bps=300)
    assert (err.code, err.reason) == ("conflict", "pending_fee_unchanged")

    # Re-asserting the current fee cancels the pending increase.
    meta = d.tx("DELEGATE_FEE_UPDATE", "carol", fee_bps=100)
    assert meta["pending_fee_bps"] is None


def test_unregister_blocked_while_votes_are_spent() -> None:
    d = _carol()
    d.vote("carol", "p1", 10, as_delegate=True)

    err = d.reject("DELEGATE_UNREGISTER", "carol")
    assert (err.code, err.reason) == ("invalid_state", "delegate_has_votes")

    d.end_epoch()
    meta = d.tx("DELEGATE_UNREGISTER", "carol")
    assert meta["delegate"] == "carol"
    assert get_delegate(d.state, "carol")["registered"] is False

    err = d.reject("DELEGATE_UNREGISTER", "carol")
    assert (err.code, err.reason) == ("not_found", "delegate_not_registered")
    err = d.reject("VOTE_CAST", "carol", pool_id="p1", amount=1, as_delegate=True)
    assert (err.code, err.reason) == ("forbidden", "delegate_not_registered")

    d.register_delegate("carol", fee_bps=0)
    assert get_delegate(d.state, "carol")["registered"] is True


def test_registration_fee_collected_and_swept() -> None:
    d = LedgerDriver(delegate_registration_fee=500)

    err = d.reject("DELEGATE_REGISTER", "carol", fee_bps=0)
    assert err.code == "insufficient_funds"

    meta = d.register_delegate("carol")
    assert meta["registration_fee"]["amount"] == 500
    assert d.held() == 500
    reg = d.state["delegates"]
    assert (reg["registration_fees_total"], reg["registration_fees_unswept"]) == (500, 500)

    err = d.reject("REGISTRATION_FEE_SWEEP", "carol")
    assert (err.code, err.reason) == ("forbidden", "role_required")

    meta = d.tx("REGISTRATION_FEE_SWEEP", d.admin)
    assert meta["amount"] == 500
    assert d.balance(d.admin) == 500
    assert d.held() == 0
    assert d.state["delegates"]["registration_fees_unswept"] == 0

    meta = d.tx("REGISTRATION_FEE_SWEEP", d.admin)
    assert meta["amount"] == 0


def test_reregistering_does_not_skip_the_increase_delay() -> None:
    d = _carol()
    d.end_epoch()
    d.tx("DELEGATE_UNREGISTER", "carol")

    meta = d.register_delegate("carol", fee_bps=5000)
    assert meta["fee_bps"] == 100
    assert meta["pending_fee_bps"] == 5000
    assert meta["pending_epoch"] == 2 + d.cfg.fee_increase_delay_epochs

    meta = d.vote("carol", "p1", 10, as_delegate=True)
    assert meta["fee_bps"] == 100
    assert peek_epoch_votes(d.state, 2)["delegates"]["carol"]["fee_bps"] == 100
    assert effective_fee_bps(d.state, "carol", 2) == 100

    d.end_epoch()
    d.end_epoch()
    assert effective_fee_bps(d.state, "carol", 4) == 5000


def test_reregistering_at_a_lower_fee_applies_at_once() -> None:
    d = _carol(fee_bps=400)
    d.tx("DELEGATE_UNREGISTER", "carol")

    meta = d.register_delegate("carol", fee_bps=150)
    assert meta["fee_bps"] == 150
    assert "pending_fee_bps" not in meta
    assert get_delegate(d.state, "carol")["pending_epoch"] == 0
