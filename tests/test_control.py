from __future__ import annotations

from veledger.ledger.queries import personal_power_at, total_voting_power
from veledger.ledger.ve_state import get_lock
from veledger.runtime.state_invariants import ledger_violations
from veledger.testing.ledger import GENESIS_TIME, UNIT, LedgerDriver


def test_pause_blocks_mutations_until_lifted() -> None:
    d = LedgerDriver()
    d.create_pools("p1")
    d.tx("CONTROL_PAUSE_SET", d.admin, paused=True)

    d.fund("alice", UNIT)
    err = d.reject("VE_LOCK_CREATE", "alice", expiry=GENESIS_TIME + 2 * d.e, amount_a=UNIT, amount_b=0)
    assert (err.code, err.reason) == ("paused", "ledger_paused")
    err = d.reject("POOL_CREATE_BATCH", d.admin, pools=["p2"])
    assert err.code == "paused"
    err = d.reject("VOTE_CAST", "alice", pool_id="p1", amount=1, as_delegate=False)
    assert err.code == "paused"

    d.tx("CONTROL_PAUSE_SET", d.admin, paused=False)
    d.lock("alice", UNIT, fund=False)


def test_pause_switch_validation() -> None:
    d = LedgerDriver()
    err = d.reject("CONTROL_PAUSE_SET", "alice", paused=True)
    assert (err.code, err.reason) == ("forbidden", "role_required")

    err = d.reject("CONTROL_PAUSE_SET", d.admin, paused="yes")
    assert (err.code, err.reason) == ("invalid_payload", "paused_must_be_bool")


def test_emergency_exit_only_while_frozen() -> None:
    d = LedgerDriver()
    lock_id = d.lock("alice", 50 * UNIT, epochs=10)
    d.lock("bob", 20 * UNIT, epochs=10)

    err = d.reject("VE_LOCK_EMERGENCY_EXIT", "alice", lock_id=lock_id)
    assert (err.code, err.reason) == ("forbidden", "emergency_exit_requires_frozen")

    d.tx("CONTROL_FREEZE_SET", d.admin, frozen=True)
    err = d.reject("VE_LOCK_UNLOCK", "bob", lock_id=2)
    assert (err.code, err.reason) == ("frozen", "ledger_frozen")

    meta = d.tx("VE_LOCK_EMERGENCY_EXIT", "alice", lock_id=lock_id)
    assert meta["applied"] == "VE_LOCK_EMERGENCY_EXIT"
    assert d.balance("alice") == 50 * UNIT
    assert personal_power_at(d.state, "alice", d.now) == 0
    assert total_voting_power(d.state, d.now) == personal_power_at(d.state, "bob", d.now)
    assert get_lock(d.state, lock_id)["is_unlocked"] is True

    err = d.reject("VE_LOCK_EMERGENCY_EXIT", "alice", lock_id=lock_id)
    assert (err.code, err.reason) == ("conflict", "already_unlocked")


def test_emergency_exit_of_expired_lock() -> None:
    d = LedgerDriver()
    lock_id = d.lock("alice", 50 * UNIT)
    d.at(GENESIS_TIME + 3 * d.e)
    d.tx("CONTROL_FREEZE_SET", d.admin, frozen=True)

    d.tx("VE_LOCK_EMERGENCY_EXIT", "alice", lock_id=lock_id)
    assert d.balance("alice") == 50 * UNIT
    assert d.state["ve"]["locked_totals"][d.cfg.lock_asset_a] == 0

    d.tx("CONTROL_FREEZE_SET", d.admin, frozen=False)
    assert d.state["params"]["frozen"] is False


def test_role_grant_and_revoke() -> None:
    d = LedgerDriver()
    err = d.reject("POOL_CREATE_BATCH", "alice", pools=["p1"])
    assert err.code == "forbidden"

    d.tx("ROLE_GRANT", d.admin, role="pool_admin", account="alice")
    d.tx("POOL_CREATE_BATCH", "alice", pools=["p1"])

    err = d.reject("ROLE_GRANT", d.admin, role="pool_admin", account="alice")
    assert (err.code, err.reason) == ("conflict", "role_already_granted")

    d.tx("ROLE_REVOKE", d.admin, role="pool_admin", account="alice")
    err = d.reject("POOL_CREATE_BATCH", "alice", pools=["p2"])
    assert err.code == "forbidden"

    err = d.reject("ROLE_REVOKE", d.admin, role="pool_admin", account="alice")
    assert (err.code, err.reason) == ("not_found", "role_not_granted")

    err = d.reject("ROLE_GRANT", d.admin, role="wizard", account="alice")
    assert (err.code, err.reason) == ("invalid_payload", "unknown_role")

    err = d.reject("ROLE_GRANT", "alice", role="admin", account="alice")
    assert err.code == "forbidden"


def test_last_admin_cannot_be_revoked() -> None:
    d = LedgerDriver()
    err = d.reject("ROLE_REVOKE", d.admin, role="admin", account=d.admin)
    assert (err.code, err.reason) == ("invalid_state", "last_admin")

    d.tx("ROLE_GRANT", d.admin, role="admin", account="alice")
    d.tx("ROLE_REVOKE", "alice", role="admin", account=d.admin)
    assert d.state["roles"]["admin"] == ["alice"]


def test_emergency_exit_keeps_spent_votes_and_exempts_only_the_exiting_account() -> None:
    d = LedgerDriver()
    lock_id = d.lock("alice", 50 * UNIT, epochs=10)
    d.lock("bob", 20 * UNIT, epochs=10)
    d.create_pools("p1")
    d.vote("alice", "p1", 10)
    d.vote("bob", "p1", 10)

    d.tx("CONTROL_FREEZE_SET", d.admin, frozen=True)
    d.tx("VE_LOCK_EMERGENCY_EXIT", "alice", lock_id=lock_id)

    assert d.state["votes"]["1"]["users"]["alice"]["total"] == 10
    assert d.state["ve"]["exit_exempt"] == {"1": ["users:alice"]}
    assert ledger_violations(d.state) == []
