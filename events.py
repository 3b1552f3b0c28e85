#!/usr/bin/env python3
"""
events.py — Typed event channels, debounced delivery and readiness barriers

Observers (web views, the progress engine itself) subscribe to one CHANNEL
instead of receiving every change. A failing observer is logged and skipped;
the remaining observers still receive the event.

Debouncing collapses bursts of notifications for the same key into one
delivery carrying the LAST payload.

A ReadyBarrier is resolved exactly once per service when its data is loaded;
callers wait on it with a deadline instead of polling.

by Sziller
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Hashable, List, Optional

from errors import NotReadyError


log = logging.getLogger(__name__)


# -----------------------------
# Channels
# -----------------------------
POSITION_CHANGED = "position-changed"
ROLL_CHANGED = "roll-changed"
CARDS_CHANGED = "cards-changed"
TEMP_STATE_CHANGED = "temp-state-changed"
TURN_CHANGED = "turn-changed"
GAME_ENDED = "game-ended"
STORE_CHANGED = "store-changed"

CHANNELS = (
    POSITION_CHANGED,
    ROLL_CHANGED,
    CARDS_CHANGED,
    TEMP_STATE_CHANGED,
    TURN_CHANGED,
    GAME_ENDED,
    STORE_CHANGED,
)


@dataclass(frozen=True)
class GameEvent:
    channel: str
    player: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


EventCallback = Callable[[GameEvent], None]


class EventBus:
    """Per-channel fan-out with failure isolation between observers."""

    def __init__(self) -> None:
        self._subs: Dict[str, List[EventCallback]] = {ch: [] for ch in CHANNELS}
        self._lock = threading.Lock()

    def subscribe(self, channel: str, callback: EventCallback) -> Callable[[], None]:
        if channel not in self._subs:
            raise ValueError(f"Unknown event channel: {channel}")
        if not callable(callback):
            raise ValueError("Subscriber callback must be callable")

        with self._lock:
            self._subs[channel].append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subs[channel]:
                    self._subs[channel].remove(callback)

        return _unsubscribe

    def publish(self, event: GameEvent) -> int:
        """
        Deliver to every subscriber of event.channel.
        Returns how many callbacks completed without raising.
        """
        with self._lock:
            targets = list(self._subs.get(event.channel, []))

        delivered = 0
        for cb in targets:
            try:
                cb(event)
                delivered += 1
            except Exception:
                log.exception("Subscriber failed on channel %s", event.channel)
        return delivered

    def emit(self, channel: str, player: Optional[str] = None, **data: Any) -> int:
        return self.publish(GameEvent(channel=channel, player=player, data=data))

    def clear(self) -> None:
        with self._lock:
            for ch in self._subs:
                self._subs[ch].clear()


# -----------------------------
# Debounce
# -----------------------------
class Debouncer:
    """
    Collapse repeated calls per key into one delayed call.

    `submit(key, fn)` replaces any pending call for `key` and restarts its timer.
    With delay 0 the call runs immediately in the caller's thread.
    `flush()` runs pending calls now (used at shutdown and in tests).
    """

    def __init__(self, delay_s: float) -> None:
        self.delay_s = max(0.0, float(delay_s))
        self._pending: Dict[Hashable, Callable[[], None]] = {}
        self._timers: Dict[Hashable, threading.Timer] = {}
        self._lock = threading.Lock()

    def submit(self, key: Hashable, fn: Callable[[], None]) -> None:
        if self.delay_s <= 0:
            fn()
            return

        with self._lock:
            old = self._timers.pop(key, None)
            if old is not None:
                old.cancel()
            self._pending[key] = fn
            timer = threading.Timer(self.delay_s, self._fire, args=(key,))
            timer.daemon = True
            self._timers[key] = timer
            timer.start()

    def _fire(self, key: Hashable) -> None:
        with self._lock:
            fn = self._pending.pop(key, None)
            self._timers.pop(key, None)
        if fn is not None:
            fn()

    def pending_keys(self) -> List[Hashable]:
        with self._lock:
            return list(self._pending.keys())

    def flush(self, key: Optional[Hashable] = None) -> None:
        with self._lock:
            keys = [key] if key is not None else list(self._pending.keys())
            calls = []
            for k in keys:
                t = self._timers.pop(k, None)
                if t is not None:
                    t.cancel()
                fn = self._pending.pop(k, None)
                if fn is not None:
                    calls.append(fn)
        for fn in calls:
            fn()

    def cancel_all(self) -> None:
        with self._lock:
            for t in self._timers.values():
                t.cancel()
            self._timers.clear()
            self._pending.clear()


# -----------------------------
# Readiness
# -----------------------------
class ReadyBarrier:
    """
    One-shot readiness signal for a service.

    Resolved (or failed) exactly once; later calls are ignored and return False.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._event = threading.Event()
        self._error: Optional[BaseException] = None

    @property
    def is_ready(self) -> bool:
        return self._event.is_set() and self._error is None

    @property
    def is_settled(self) -> bool:
        return self._event.is_set()

    def resolve(self) -> bool:
        if self._event.is_set():
            return False
        self._event.set()
        return True

    def fail(self, error: BaseException) -> bool:
        if self._event.is_set():
            return False
        self._error = error
        self._event.set()
        return True

    def wait(self, timeout: float) -> bool:
        """
        Block until settled. Raises NotReadyError on timeout and re-raises the
        failure when the service failed to initialize.
        """
        if not self._event.wait(timeout):
            raise NotReadyError(f"{self.name} not ready after {timeout:.2f}s")
        if self._error is not None:
            raise NotReadyError(f"{self.name} failed to initialize: {self._error}") from self._error
        return True
