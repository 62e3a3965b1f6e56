from __future__ import annotations

import pytest

from veledger.ledger.decay import (
    add_balance,
    balance_at,
    empty_aggregate,
    epoch_floor,
    history_value_at,
    is_epoch_aligned,
    lock_balance,
    lock_slope,
    push_checkpoint,
    roll_forward,
    schedule_add,
    schedule_sub,
    sub_balance,
    value_at,
)

# Small numbers so every value can be checked by hand.
E = 100
MAX_LOCK = 1000


def _two_lock_aggregate():
    agg = empty_aggregate(0)
    sched: dict = {}
    for amount, expiry in ((2000, 200), (3000, 400)):
        bal = lock_balance(amount, 0, expiry, MAX_LOCK)
        add_balance(agg, bal)
        schedule_add(sched, expiry, bal["slope"])
    return agg, sched


def test_lock_balance_reaches_zero_exactly_at_expiry() -> None:
    bal = lock_balance(1000, 0, 500, MAX_LOCK)
    assert bal == {"bias": 500, "slope": 1}
    assert value_at(bal, 0) == 500
    assert value_at(bal, 499) == 1
    assert value_at(bal, 500) == 0
    assert value_at(bal, 900) == 0


def test_lock_slope_truncates_and_sums_both_assets() -> None:
    assert lock_slope(999, 0, MAX_LOCK) == 0
    assert lock_slope(600, 400, MAX_LOCK) == 1
    assert lock_slope(0, 2500, MAX_LOCK) == 2


def test_epoch_alignment_helpers() -> None:
    assert is_epoch_aligned(300, E)
    assert not is_epoch_aligned(301, E)
    assert epoch_floor(399, E) == 300
    assert epoch_floor(400, E) == 400


def test_roll_forward_drops_expired_contributions_exactly() -> None:
    agg, sched = _two_lock_aggregate()
    assert agg["slope"] == 5
    assert value_at(agg, 0) == 2 * 200 + 3 * 400

    # Without rolling, the stale slope undercounts after the first expiry.
    assert value_at(agg, 250) == 350

    roll_forward(agg, sched, 250, E)
    assert agg == {"bias": 1200, "slope": 3, "ts": 250}
    assert value_at(agg, 250) == 3 * (400 - 250)

    # Same target again is a no-op.
    roll_forward(agg, sched, 250, E)
    assert agg == {"bias": 1200, "slope": 3, "ts": 250}

    roll_forward(agg, sched, 1000, E)
    assert agg["bias"] == 0
    assert agg["slope"] == 0


def test_balance_at_does_not_mutate_the_aggregate() -> None:
    agg, sched = _two_lock_aggregate()
    before = dict(agg)
    assert balance_at(agg, sched, 250, E) == 450
    assert balance_at(agg, sched, 400, E) == 0
    assert agg == before


def test_history_value_at_uses_last_checkpoint_at_or_before_t() -> None:
    agg, sched = _two_lock_aggregate()
    history: list = []
    assert history_value_at(history, sched, 100, E) == 0

    push_checkpoint(history, agg)
    roll_forward(agg, sched, 250, E)
    push_checkpoint(history, agg)

    assert history_value_at(history, sched, 100, E) == 2 * 100 + 3 * 300
    assert history_value_at(history, sched, 300, E) == 3 * 100


def test_push_checkpoint_replaces_tail_with_same_timestamp() -> None:
    history: list = []
    push_checkpoint(history, {"bias": 10, "slope": 1, "ts": 5})
    push_checkpoint(history, {"bias": 20, "slope": 2, "ts": 5})
    push_checkpoint(history, {"bias": 30, "slope": 3, "ts": 6})
    assert [cp["bias"] for cp in history] == [20, 30]


def test_underflow_is_an_error() -> None:
    with pytest.raises(ValueError):
        sub_balance({"bias": 1, "slope": 1}, {"bias": 2, "slope": 0})
    sched: dict = {}
    schedule_add(sched, 200, 2)
    with pytest.raises(ValueError):
        schedule_sub(sched, 200, 3)
    schedule_sub(sched, 200, 2)
    assert sched == {}
