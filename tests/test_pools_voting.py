from __future__ import annotations

from veledger.ledger.queries import personal_power_at
from veledger.ledger.ve_state import peek_epoch_votes
from veledger.runtime.state_invariants import ledger_violations
from veledger.testing.ledger import UNIT, LedgerDriver


def _voter(pools=("p1", "p2")) -> LedgerDriver:
    d = LedgerDriver()
    d.lock("alice", 100 * UNIT, epochs=8)
    d.create_pools(*pools)
    return d


def test_pool_create_batch_reports_per_item() -> None:
    d = LedgerDriver()
    meta = d.create_pools("p1", "p2")
    assert meta["created"] == 2
    assert [r["ok"] for r in meta["results"]] == [True, True]

    meta = d.create_pools("p2", "p3", "")
    assert meta["created"] == 1
    assert meta["results"][0] == {"pool_id": "p2", "ok": False, "code": "pool_exists"}
    assert meta["results"][1] == {"pool_id": "p3", "ok": True}
    assert meta["results"][2]["code"] == "invalid_pool_id"


def test_pool_remove_and_reactivate() -> None:
    d = LedgerDriver()
    d.create_pools("p1")

    meta = d.tx("POOL_REMOVE_BATCH", d.admin, pools=["p1", "ghost"])
    assert meta["removed"] == 1
    assert meta["results"][1]["code"] == "pool_not_found"
    assert d.state["pools"]["by_id"]["p1"]["active"] is False

    meta = d.tx("POOL_REMOVE_BATCH", d.admin, pools=["p1"])
    assert meta["results"][0]["code"] == "pool_inactive"

    meta = d.create_pools("p1")
    assert meta["results"][0] == {"pool_id": "p1", "ok": True, "reactivated": True}


def test_pool_admin_role_required() -> None:
    d = LedgerDriver()
    err = d.reject("POOL_CREATE_BATCH", "alice", pools=["p1"])
    assert (err.code, err.reason) == ("forbidden", "role_required")


def test_pool_changes_wait_for_previous_epoch_to_finalize() -> None:
    d = LedgerDriver()
    d.create_pools("p1")
    d.end_epoch()
    err = d.reject("POOL_CREATE_BATCH", d.admin, pools=["p2"])
    assert (err.code, err.reason) == ("invalid_state", "previous_epoch_not_finalized")

    d.settle(1, {"p1": (0, 0)})
    meta = d.create_pools("p2")
    assert meta["epoch"] == 2


def test_vote_then_migrate() -> None:
    d = _voter()
    d.vote("alice", "p1", 30)
    meta = d.tx("VOTE_MIGRATE", "alice", src_pool="p1", dst_pool="p2", amount=10, as_delegate=False)
    assert meta["amount"] == 10

    votes = peek_epoch_votes(d.state, 1)
    assert votes["pools"]["p1"]["total"] == 20
    assert votes["pools"]["p2"]["total"] == 10
    assert votes["pools"]["p1"]["users"] == {"alice": 20}
    assert votes["pools"]["p2"]["users"] == {"alice": 10}
    assert votes["users"]["alice"] == {"total": 30, "pools": {"p1": 20, "p2": 10}}
    assert d.state["pools"]["by_id"]["p1"]["total_votes"] == 20
    assert d.state["pools"]["by_id"]["p2"]["total_votes"] == 10
    assert ledger_violations(d.state) == []


def test_migrate_everything_drops_the_source_entry() -> None:
    d = _voter()
    d.vote("alice", "p1", 30)
    d.tx("VOTE_MIGRATE", "alice", src_pool="p1", dst_pool="p2", amount=30, as_delegate=False)

    votes = peek_epoch_votes(d.state, 1)
    assert votes["pools"]["p1"]["total"] == 0
    assert votes["pools"]["p1"]["users"] == {}
    assert votes["users"]["alice"]["pools"] == {"p2": 30}


def test_migrate_validation() -> None:
    d = _voter()
    d.vote("alice", "p1", 30)

    err = d.reject("VOTE_MIGRATE", "alice", src_pool="p1", dst_pool="p2", amount=31, as_delegate=False)
    assert (err.code, err.reason) == ("insufficient_power", "source_votes_too_low")

    err = d.reject("VOTE_MIGRATE", "alice", src_pool="p1", dst_pool="p1", amount=1, as_delegate=False)
    assert (err.code, err.reason) == ("invalid_payload", "same_pool")

    err = d.reject("VOTE_MIGRATE", "alice", src_pool="p1", dst_pool="p9", amount=1, as_delegate=False)
    assert (err.code, err.reason) == ("invalid_state", "pool_inactive")


def test_vote_bounded_by_power_at_epoch_end() -> None:
    d = _voter()
    power = personal_power_at(d.state, "alice", d.epoch_end(1))
    assert power < personal_power_at(d.state, "alice", d.now)

    d.vote("alice", "p1", power - 5)
    err = d.reject("VOTE_CAST", "alice", pool_id="p2", amount=6, as_delegate=False)
    assert (err.code, err.reason) == ("insufficient_power", "amount_exceeds_remaining_power")
    assert err.details["spent"] == power - 5

    meta = d.vote("alice", "p2", 5)
    assert meta["remaining"] == 0


def test_vote_requires_active_pool_and_positive_amount() -> None:
    d = _voter()
    err = d.reject("VOTE_CAST", "alice", pool_id="nope", amount=1, as_delegate=False)
    assert (err.code, err.reason) == ("invalid_state", "pool_inactive")

    err = d.reject("VOTE_CAST", "alice", pool_id="p1", amount=0, as_delegate=False)
    assert (err.code, err.reason) == ("invalid_payload", "amount_must_be_positive")


def test_vote_as_delegate_requires_registration() -> None:
    d = _voter()
    err = d.reject("VOTE_CAST", "alice", pool_id="p1", amount=1, as_delegate=True)
    assert (err.code, err.reason) == ("forbidden", "delegate_not_registered")


def test_voting_window_is_inclusive_of_epoch_end() -> None:
    d = _voter()
    end = d.epoch_end(1)
    d.at(end)
    d.vote("alice", "p1", 1)

    d.at(end + 1)
    err = d.reject("VOTE_CAST", "alice", pool_id="p1", amount=1, as_delegate=False)
    assert (err.code, err.reason) == ("invalid_time", "voting_window_elapsed")


def test_ended_epoch_opens_next_voting_epoch() -> None:
    d = _voter()
    d.vote("alice", "p1", 10)
    meta = d.end_epoch()
    assert meta == {"applied": "EPOCH_END", "epoch": 1, "total_active_pools": 2, "next_epoch": 2}

    d.vote("alice", "p1", 7)
    assert peek_epoch_votes(d.state, 2)["pools"]["p1"]["total"] == 7
    assert peek_epoch_votes(d.state, 1)["pools"]["p1"]["total"] == 10
