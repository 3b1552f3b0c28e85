#!/usr/bin/env python3
"""
state.py — Session records, builders, validators and integrity checks

This module defines:
- the persisted record shapes (progress state, roll state, per-player resources,
  card collections, card history) as TypedDicts
- the per-turn TemporaryState (staged changes, memory only)
- builders for fresh records
- one validator per persisted record type (used by the Store on save/load)
- integrity checks (card conservation, finish-set vs positions)
- broadcast(): the public, append-only game log

Transitions belong in progress.py; card rules in cards.py.

by Sziller
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Literal, Optional, TypedDict

from config import GAME_LOG_LIMIT


log = logging.getLogger(__name__)


CARD_TYPES = ("B", "I", "W", "L", "E")

VisitType = Literal["First", "Subsequent"]


# -----------------------------
# TypedDicts
# -----------------------------
class CardTD(TypedDict, total=False):
    card_id: str
    card_type: str
    name: str
    description: str
    effect: str
    phase: str
    color: str
    amount: int
    loan_percent: int
    distribution_level: str
    skill_type: str
    skill_points: int
    return_amount: int
    return_turns: int
    disposition: str           # staged removals: "played" | "discarded"


class ResourcesTD(TypedDict):
    money: int
    debt: int
    time: int
    time_bonus: int
    scope: int
    quality: int
    expertise: int
    cost_reduction: int
    stress: int


class PlayerStateTD(TypedDict):
    resources: ResourcesTD
    skip_turns: int


class RollStateTD(TypedDict):
    has_rolled: bool
    rolls: List[int]
    rolls_required: int
    rolls_completed: int


class TurnTD(TypedDict):
    player: str
    space: str
    visit_type: VisitType
    pending_move: Optional[str]    # destination produced by a dice outcome
    selected_move: Optional[str]   # destination chosen by the player
    outcomes: List[str]


class LogEntryTD(TypedDict, total=False):
    action: str
    player: Optional[str]
    timestamp: int
    details: Dict[str, Any]


class ProgressStateTD(TypedDict):
    main_path: List[str]
    valid_spaces: List[str]
    player_positions: Dict[str, str]
    current_player_index: int
    roll_state: RollStateTD
    player_states: Dict[str, PlayerStateTD]
    game_ended: bool
    timestamp: int
    turn: Optional[TurnTD]
    roll_history: List[Dict[str, Any]]
    future_returns: List[Dict[str, Any]]
    game_log: List[LogEntryTD]


class StagedCardsTD(TypedDict):
    added: List[CardTD]
    removed: List[CardTD]


class StagedResourcesTD(TypedDict):
    money: int
    time: int


class StagedDiceTD(TypedDict):
    rolls: List[int]
    outcomes: List[str]


class TemporaryStateTD(TypedDict):
    cards: StagedCardsTD
    resources: StagedResourcesTD
    dice_rolls: StagedDiceTD


class CardHistoryTD(TypedDict):
    drawn: List[str]
    played: List[str]
    discarded: List[str]


# -----------------------------
# Small helpers
# -----------------------------
def now_ms() -> int:
    return int(time.time() * 1000)


def visit_key(player: str, space: str) -> str:
    return f"{player}-{space}"


def visit_type_for(count: int) -> VisitType:
    return "First" if count <= 0 else "Subsequent"


def broadcast(progress: ProgressStateTD, action: str, player: Optional[str] = None, **details: Any) -> LogEntryTD:
    """Public, transparent game-log entry + diagnostic echo."""
    entry: LogEntryTD = {
        "action": action,
        "player": player,
        "timestamp": now_ms(),
        "details": details,
    }
    game_log = progress["game_log"]
    game_log.append(entry)
    if len(game_log) > GAME_LOG_LIMIT:
        del game_log[:len(game_log) - GAME_LOG_LIMIT]
    log.info("[%s] %s %s", action, player or "-", details)
    return entry


# -----------------------------
# Builders
# -----------------------------
def empty_resources() -> ResourcesTD:
    return {
        "money": 0,
        "debt": 0,
        "time": 0,
        "time_bonus": 0,
        "scope": 100,
        "quality": 100,
        "expertise": 0,
        "cost_reduction": 0,
        "stress": 0,
    }


def empty_player_state() -> PlayerStateTD:
    return {"resources": empty_resources(), "skip_turns": 0}


def empty_cards() -> Dict[str, List[CardTD]]:
    return {t: [] for t in CARD_TYPES}


def empty_card_history() -> CardHistoryTD:
    return {"drawn": [], "played": [], "discarded": []}


def new_roll_state(rolls_required: int = 0) -> RollStateTD:
    required = max(0, int(rolls_required))
    return {
        "has_rolled": required == 0,
        "rolls": [],
        "rolls_required": required,
        "rolls_completed": 0,
    }


def new_temporary_state() -> TemporaryStateTD:
    return {
        "cards": {"added": [], "removed": []},
        "resources": {"money": 0, "time": 0},
        "dice_rolls": {"rolls": [], "outcomes": []},
    }


def build_progress_state(
    players: Iterable[str],
    *,
    main_path: List[str],
    valid_spaces: Iterable[str],
    start_position: str,
    rolls_required: int = 0,
) -> ProgressStateTD:
    """Fresh progress snapshot: everyone on the start space, first player to act."""
    names = list(players)
    return {
        "main_path": list(main_path),
        "valid_spaces": sorted(set(valid_spaces)),
        "player_positions": {n: start_position for n in names},
        "current_player_index": 0,
        "roll_state": new_roll_state(rolls_required),
        "player_states": {n: empty_player_state() for n in names},
        "game_ended": False,
        "timestamp": now_ms(),
        "turn": None,
        "roll_history": [],
        "future_returns": [],
        "game_log": [],
    }


def touch(progress: ProgressStateTD) -> None:
    """Bump the timestamp; strictly increasing even within one millisecond."""
    progress["timestamp"] = max(now_ms(), int(progress.get("timestamp", 0)) + 1)


# -----------------------------
# Record validators (Store)
# -----------------------------
def _is_str_list(v: Any) -> bool:
    return isinstance(v, list) and all(isinstance(x, str) for x in v)


def _is_int(v: Any) -> bool:
    return isinstance(v, int) and not isinstance(v, bool)


def validate_players(data: Any) -> bool:
    if not isinstance(data, list) or not data:
        return False
    for p in data:
        if not isinstance(p, dict):
            return False
        name = p.get("name")
        if not isinstance(name, str) or not name.strip():
            return False
    return True


def validate_roll_state(rs: Any) -> bool:
    if not isinstance(rs, dict):
        return False
    if not isinstance(rs.get("has_rolled"), bool):
        return False
    rolls = rs.get("rolls")
    if not isinstance(rolls, list) or not all(_is_int(r) and 1 <= r <= 6 for r in rolls):
        return False
    req, done = rs.get("rolls_required"), rs.get("rolls_completed")
    if not _is_int(req) or not _is_int(done) or req < 0 or done < 0:
        return False
    if done > req:
        return False
    return rs["has_rolled"] == (done >= req)


def validate_progress_state(data: Any) -> bool:
    if not isinstance(data, dict):
        return False
    positions = data.get("player_positions")
    if not isinstance(positions, dict) or not all(isinstance(v, str) for v in positions.values()):
        return False
    idx = data.get("current_player_index")
    if not _is_int(idx) or idx < 0 or (positions and idx >= len(positions)):
        return False
    if not isinstance(data.get("game_ended"), bool):
        return False
    if not isinstance(data.get("timestamp"), (int, float)):
        return False
    if not _is_str_list(data.get("main_path")):
        return False
    if not isinstance(data.get("player_states"), dict):
        return False
    return validate_roll_state(data.get("roll_state"))


def validate_visit_history(data: Any) -> bool:
    if not isinstance(data, dict):
        return False
    return all(isinstance(k, str) and _is_int(v) and v >= 0 for k, v in data.items())


def validate_finished_players(data: Any) -> bool:
    return _is_str_list(data) and len(set(data)) == len(data)


def validate_player_cards(data: Any) -> bool:
    if not isinstance(data, dict):
        return False
    for buckets in data.values():
        if not isinstance(buckets, dict):
            return False
        for t in CARD_TYPES:
            if not isinstance(buckets.get(t), list):
                return False
    return not find_duplicate_cards(data)


def validate_card_history(data: Any) -> bool:
    if not isinstance(data, dict):
        return False
    for h in data.values():
        if not isinstance(h, dict):
            return False
        if not all(_is_str_list(h.get(k)) for k in ("drawn", "played", "discarded")):
            return False
    return True


def validate_scores(data: Any) -> bool:
    if not isinstance(data, dict):
        return False
    return all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in data.values())


def validate_spaces(data: Any) -> bool:
    return isinstance(data, dict) and _is_str_list(data.get("names")) and _is_str_list(data.get("main_path"))


def validate_dice_roll(data: Any) -> bool:
    if not isinstance(data, dict):
        return False
    roll = data.get("roll")
    return isinstance(data.get("player"), str) and _is_int(roll) and 1 <= roll <= 6


RECORD_VALIDATORS: Dict[str, Callable[[Any], bool]] = {
    "players": validate_players,
    "progressState": validate_progress_state,
    "visitHistory": validate_visit_history,
    "finishedPlayers": validate_finished_players,
    "playerCards": validate_player_cards,
    "cardHistory": validate_card_history,
    "scores": validate_scores,
    "spaces": validate_spaces,
    "diceRoll": validate_dice_roll,
}


# -----------------------------
# Staged-change validators (TemporaryState)
# -----------------------------
def validate_staged_cards(change: Any) -> bool:
    if not isinstance(change, dict):
        return False
    for k in ("added", "removed"):
        v = change.get(k, [])
        if not isinstance(v, list):
            return False
        for card in v:
            if not isinstance(card, dict) or not card.get("card_id") or card.get("card_type") not in CARD_TYPES:
                return False
    return True


def validate_staged_resources(change: Any) -> bool:
    if not isinstance(change, dict) or not change:
        return False
    return all(k in ("money", "time") and _is_int(v) for k, v in change.items())


def validate_staged_dice(change: Any) -> bool:
    if not isinstance(change, dict):
        return False
    rolls = change.get("rolls", [])
    outcomes = change.get("outcomes", [])
    if not isinstance(rolls, list) or not all(_is_int(r) and 1 <= r <= 6 for r in rolls):
        return False
    return _is_str_list(outcomes)


STAGED_VALIDATORS: Dict[str, Callable[[Any], bool]] = {
    "cards": validate_staged_cards,
    "resources": validate_staged_resources,
    "dice_rolls": validate_staged_dice,
}


# -----------------------------
# Integrity checks
# -----------------------------
def find_duplicate_cards(player_cards: Dict[str, Dict[str, List[CardTD]]]) -> List[str]:
    """Card ids held more than once across all players' buckets."""
    seen: set[str] = set()
    dupes: List[str] = []
    for buckets in player_cards.values():
        for t in CARD_TYPES:
            for card in buckets.get(t, []):
                cid = card.get("card_id") if isinstance(card, dict) else None
                if cid is None:
                    continue
                if cid in seen and cid not in dupes:
                    dupes.append(cid)
                seen.add(cid)
    return dupes


def finish_consistency_problems(
    positions: Dict[str, str],
    finished: List[str],
    finish_space: str,
) -> List[str]:
    """Describe every player where 'finished' and 'stands on the finish space' disagree."""
    problems: List[str] = []
    fin = set(finished)
    for player, pos in positions.items():
        if player in fin and pos != finish_space:
            problems.append(f"{player} is finished but stands on {pos}")
        if pos == finish_space and player not in fin:
            problems.append(f"{player} stands on {finish_space} but is not finished")
    for player in fin:
        if player not in positions:
            problems.append(f"{player} is finished but not in the game")
    return problems
