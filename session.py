#!/usr/bin/env python3
"""
session.py — Composition root for one game session

Builds the service objects once, in dependency order, and hands them to each
other explicitly:

    Settings -> EventBus -> Store -> BoardGraph -> CardManager
             -> ProgressManager -> OutcomeProcessor

`start()` loads the datasets and waits on every readiness barrier before any
turn logic runs. `close()` tears the session down.

The seven player verbs (roll, select_move, end_turn, negotiate, draw_card,
play_card, discard_card) and the read accessors used by a UI are exposed here.

by Sziller
"""

from __future__ import annotations

import logging
import random
from pathlib import Path
from typing import Any, Dict, List, Optional

from board import BoardGraph
from cards import CardManager
from config import Settings, START_POSITION
from errors import DataIntegrityError, GameError
from events import EventBus, GameEvent
from game_setup import setup_new_game
from outcomes import OutcomeProcessor
from players import PlayerTD, build_roster
from progress import ProgressManager
from state import CARD_TYPES
from store import FileBackend, MemoryBackend, Store


log = logging.getLogger(__name__)


class GameServices:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        board: Optional[BoardGraph] = None,
        cards: Optional[CardManager] = None,
        backend: Any = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.settings = settings or Settings()
        s = self.settings
        self.rng = rng or random.Random(s.seed)

        self.bus = EventBus()
        if backend is None:
            backend = FileBackend(Path(s.save_dir)) if s.save_dir else MemoryBackend()
        self.store = Store(backend, bus=self.bus, debounce_ms=s.debounce_ms)

        self.board = board or BoardGraph(s.data_dir)
        self.cards = cards or CardManager(s.data_dir, board=self.board, rng=self.rng)
        if self.cards.board is None:
            self.cards.board = self.board

        self.progress = ProgressManager(
            self.store, self.board, self.cards,
            bus=self.bus, rng=self.rng,
            retry_attempts=s.retry_attempts, retry_backoff_ms=s.retry_backoff_ms,
        )
        self.outcomes = OutcomeProcessor(self.board, self.cards, self.progress)
        self._started = False

    # -----------------------------
    # Lifecycle
    # -----------------------------
    def start(self) -> Dict[str, Any]:
        """
        Load board and card data, wait until both are ready, drop stale store
        versions and reconcile a saved game if there is one.
        Raises NotReadyError when a dataset fails to load in time.
        """
        board_result = self.board.initialize()
        card_result = self.cards.initialize()

        timeout = self.settings.ready_timeout_s
        self.board.ready.wait(timeout)
        self.cards.ready.wait(timeout)

        self.store.cleanup_old_versions()

        verify = None
        if not self.store.is_new_game():
            held: List[str] = []
            for buckets in (self.store.load("playerCards") or {}).values():
                for t in CARD_TYPES:
                    held.extend(c["card_id"] for c in buckets.get(t, []))
            self.cards.withdraw_held(held)
            verify = self.progress.verify_complete_state()
            if not verify["is_valid"]:
                log.warning("Saved game has problems: %s", "; ".join(verify["problems"]))

        self._started = True
        return {"board": board_result, "cards": card_result, "verify": verify}

    def close(self) -> None:
        self.store.close()
        self.bus.clear()
        self._started = False

    def _require_started(self) -> None:
        if not self._started:
            raise GameError("Session has not been started")

    def new_game(
        self,
        names: List[str],
        palettes: Optional[List[str]] = None,
        *,
        starting_money: int = 0,
    ) -> List[PlayerTD]:
        self._require_started()
        if not self.board.is_ready or not self.cards.is_ready:
            raise DataIntegrityError("Game data is not loaded")
        build_roster(names, palettes)
        self.progress.clear_all_temporary_state()
        self.cards.reset_decks()
        return setup_new_game(
            self.store, self.progress, self.board, names,
            palettes=palettes, start_position=START_POSITION, starting_money=starting_money,
        )

    def subscribe(self, channel: str, callback: Any):
        return self.bus.subscribe(channel, callback)

    # -----------------------------
    # Verbs
    # -----------------------------
    def roll(self, player: str, value: Optional[int] = None) -> Dict[str, Any]:
        self._require_started()
        return self.outcomes.roll_and_resolve(player, value)

    def select_move(self, player: str, target: str) -> str:
        self._require_started()
        return self.progress.select_move(player, target)

    def end_turn(self, player: str, move: Optional[str] = None) -> Dict[str, Any]:
        self._require_started()
        return self.progress.handle_end_turn(player, move)

    def negotiate(self, player: str) -> Dict[str, Any]:
        self._require_started()
        return self.progress.handle_negotiate(player)

    def draw_card(self, player: str, card_type: str) -> Optional[Dict[str, Any]]:
        self._require_started()
        return self.progress.stage_card_draw(player, card_type)

    def play_card(self, player: str, card_id: str) -> Optional[Dict[str, Any]]:
        self._require_started()
        return self.progress.stage_card_play(player, card_id)

    def discard_card(self, player: str, card_id: str) -> Optional[Dict[str, Any]]:
        self._require_started()
        return self.progress.stage_card_discard(player, card_id)

    # -----------------------------
    # Reads
    # -----------------------------
    def players(self) -> List[PlayerTD]:
        return list(self.store.load("players") or [])

    def current_player(self) -> Optional[str]:
        return self.progress.current_player()

    def position(self, player: str) -> Optional[str]:
        return self.progress.get_position(player)

    def available_moves(self, player: str) -> List[str]:
        return self.progress.get_available_moves(player)

    def roll_state(self) -> Dict[str, Any]:
        return dict(self.progress.get_roll_state())

    def turn(self) -> Optional[Dict[str, Any]]:
        return self.progress.get_turn()

    def cards_of(self, player: str) -> Dict[str, List[Dict[str, Any]]]:
        return self.progress.get_player_cards(player)

    def resources(self, player: str) -> Dict[str, int]:
        ps = self.progress.load_state()["player_states"].get(player)
        return dict(ps["resources"]) if ps else {}

    def temporary_state(self, player: str) -> Optional[Dict[str, Any]]:
        return self.progress.get_temporary_state(player)

    def end_turn_blockers(self, player: str) -> List[str]:
        return self.progress.end_turn_blockers(player)

    def rankings(self) -> List[Dict[str, Any]]:
        return list(self.progress.get_rankings())

    def game_ended(self) -> bool:
        progress = self.store.load("progressState")
        return bool(progress and progress["game_ended"])

    def game_log(self, limit: int = 200) -> List[Dict[str, Any]]:
        progress = self.store.load("progressState")
        if progress is None:
            return []
        return list(progress["game_log"])[-limit:]


def collect_events(services: GameServices, channels: List[str]) -> List[GameEvent]:
    """Subscribe a list to the given channels (handy for UIs and tests)."""
    seen: List[GameEvent] = []
    for ch in channels:
        services.subscribe(ch, seen.append)
    return seen
