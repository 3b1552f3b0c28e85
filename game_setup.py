#!/usr/bin/env python3
"""
game_setup.py — New-game records and starting conditions

This module is responsible for creating *legal initial session records*
from a player roster and a loaded board.

It does NOT:
- contain randomness
- implement turn transitions (see progress.py)

It DOES:
- validate the roster
- put every player on the start space with default resources
- create empty visit history, finish list, scores, card collections and history
- apply per-player starting defaults

by Sziller
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Sequence

from config import START_POSITION
from errors import DataIntegrityError, PersistenceError
from players import PlayerTD, build_roster, player_names
from state import (
    ProgressStateTD,
    broadcast,
    build_progress_state,
    empty_card_history,
    empty_cards,
    empty_player_state,
)


# -------------------------------------------------
# Player defaults
# -------------------------------------------------
def apply_player_defaults(
    progress: ProgressStateTD,
    player: str,
    *,
    money: int = 0,
    time: int = 0,
) -> None:
    """
    Apply starting values for a player ONCE at game setup.
    """
    ps = progress["player_states"].setdefault(player, empty_player_state())
    ps["resources"]["money"] = int(money)
    ps["resources"]["time"] = int(time)


# -------------------------------------------------
# Records
# -------------------------------------------------
def build_new_game_records(
    players: Sequence[PlayerTD],
    board: Any,
    *,
    start_position: str = START_POSITION,
    starting_money: int = 0,
    money_by_player: Optional[Dict[str, int]] = None,
) -> Dict[str, Any]:
    """
    Every record of a fresh session, keyed by record type.
    Raises DataIntegrityError if the board is not loaded or lacks the start space.
    """
    if not board.is_ready:
        raise DataIntegrityError("Board data is not loaded")
    if board.get_space_data(start_position) is None:
        raise DataIntegrityError(f"Start space {start_position} is not on the board")

    names = player_names(players)
    money_by_player = money_by_player or {}

    progress = build_progress_state(
        names,
        main_path=board.get_main_path(),
        valid_spaces=board.get_all_valid_spaces(),
        start_position=start_position,
    )
    for name in names:
        apply_player_defaults(progress, name, money=int(money_by_player.get(name, starting_money)))
    broadcast(progress, "game_started", None, players=names, start=start_position)

    return {
        "players": [dict(p) for p in players],
        "progressState": progress,
        "visitHistory": {},
        "finishedPlayers": [],
        "scores": {},
        "playerCards": {n: empty_cards() for n in names},
        "cardHistory": {n: empty_card_history() for n in names},
        "spaces": {"names": sorted(board.space_names()), "main_path": board.get_main_path()},
    }


def setup_new_game(
    store: Any,
    progress_manager: Any,
    board: Any,
    names: Iterable[str],
    *,
    palettes: Optional[List[str]] = None,
    start_position: str = START_POSITION,
    starting_money: int = 0,
) -> List[PlayerTD]:
    """
    One-call setup orchestrator: validate roster, write all records, open turn one.
    Raises RuleViolation for a bad roster and PersistenceError when nothing could be saved.
    """
    players = build_roster(names, palettes)
    records = build_new_game_records(
        players, board, start_position=start_position, starting_money=starting_money,
    )

    store.clear_all()
    if not store.save_many(records):
        raise PersistenceError("Could not save the new game")

    progress_manager.start_first_turn()
    return players
