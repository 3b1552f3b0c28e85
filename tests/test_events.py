import time

import pytest

from errors import NotReadyError
from events import CARDS_CHANGED, TURN_CHANGED, Debouncer, EventBus, GameEvent, ReadyBarrier


def test_subscribers_only_get_their_channel() -> None:
    bus = EventBus()
    turns, cards = [], []
    bus.subscribe(TURN_CHANGED, turns.append)
    bus.subscribe(CARDS_CHANGED, cards.append)

    bus.emit(TURN_CHANGED, "Ann")

    assert turns == [GameEvent(channel=TURN_CHANGED, player="Ann", data={})]
    assert cards == []


def test_unknown_channel_is_rejected() -> None:
    with pytest.raises(ValueError):
        EventBus().subscribe("no-such-channel", lambda e: None)


def test_unsubscribe() -> None:
    bus = EventBus()
    seen = []
    unsubscribe = bus.subscribe(TURN_CHANGED, seen.append)
    unsubscribe()
    unsubscribe()
    assert bus.emit(TURN_CHANGED, "Ann") == 0
    assert seen == []


def test_failing_subscriber_is_isolated() -> None:
    bus = EventBus()
    seen = []

    def broken(_event):
        raise RuntimeError("boom")

    bus.subscribe(TURN_CHANGED, broken)
    bus.subscribe(TURN_CHANGED, seen.append)

    assert bus.emit(TURN_CHANGED, "Bob", reason="end") == 1
    assert seen[0].data == {"reason": "end"}


def test_debouncer_zero_delay_runs_immediately() -> None:
    calls = []
    Debouncer(0).submit("k", lambda: calls.append(1))
    assert calls == [1]


def test_debouncer_keeps_last_submission_per_key() -> None:
    d = Debouncer(60)
    calls = []
    d.submit("a", lambda: calls.append("a1"))
    d.submit("a", lambda: calls.append("a2"))
    d.submit("b", lambda: calls.append("b1"))
    assert sorted(d.pending_keys()) == ["a", "b"]

    d.flush("a")
    assert calls == ["a2"]
    d.flush()
    assert calls == ["a2", "b1"]
    assert d.pending_keys() == []


def test_debouncer_fires_after_delay() -> None:
    d = Debouncer(0.01)
    calls = []
    d.submit("a", lambda: calls.append(1))
    deadline = time.time() + 2
    while not calls and time.time() < deadline:
        time.sleep(0.005)
    assert calls == [1]


def test_debouncer_cancel_all() -> None:
    d = Debouncer(60)
    calls = []
    d.submit("a", lambda: calls.append(1))
    d.cancel_all()
    d.flush()
    assert calls == []


def test_ready_barrier_resolves_once() -> None:
    barrier = ReadyBarrier("board")
    assert barrier.is_ready is False
    assert barrier.resolve() is True
    assert barrier.resolve() is False
    assert barrier.fail(RuntimeError("late")) is False
    assert barrier.is_ready is True
    assert barrier.wait(0.01) is True


def test_ready_barrier_timeout_raises() -> None:
    with pytest.raises(NotReadyError):
        ReadyBarrier("cards").wait(0.01)


def test_ready_barrier_failure_is_reported() -> None:
    barrier = ReadyBarrier("cards")
    barrier.fail(ValueError("bad csv"))
    assert barrier.is_settled is True
    assert barrier.is_ready is False
    with pytest.raises(NotReadyError, match="bad csv"):
        barrier.wait(1)
