#!/usr/bin/env python3
"""
progress.py — Turn / progress state machine

Per player, conceptually:

    AwaitingRoll -> Rolled -> MoveSelected -> Committed -> (next turn | Finished)

The ProgressManager owns:
- positions, roll state, the current turn record and the current player
- per-player TemporaryState (staged cards / resources / dice, memory only)
- the finish sequence, rankings and the full-state verification pass

All state lives in the Store. Every transition is a read-modify-write:
load fresh records, re-validate against them, mutate copies, save them
together. A failed save is retried (bounded, with backoff) from a fresh load;
rule violations are raised at once and leave state unchanged.

Visit semantics:
- the visit type of a turn (First / Subsequent) is resolved from the
  (player, space) visit count when the turn starts and frozen in the turn record
- the count for the departed space is bumped when the turn ends with a move
- negotiating never bumps it

by Sziller
"""

from __future__ import annotations

import copy
import logging
import random
import time
from typing import Any, Callable, Dict, List, Optional, Tuple, TypedDict

import players as roster
from cards import add_to_collection, card_counts, remove_from_collection
from config import FINISH_SPACE, NEGOTIATION_TIME_PENALTY
from errors import (
    GameError,
    InvalidMoveError,
    PersistenceError,
    RequirementError,
    RuleViolation,
    TurnOrderError,
)
from events import (
    CARDS_CHANGED,
    GAME_ENDED,
    POSITION_CHANGED,
    ROLL_CHANGED,
    TEMP_STATE_CHANGED,
    TURN_CHANGED,
    EventBus,
)
from state import (
    CARD_TYPES,
    STAGED_VALIDATORS,
    CardTD,
    ProgressStateTD,
    RollStateTD,
    TemporaryStateTD,
    TurnTD,
    broadcast,
    empty_card_history,
    empty_cards,
    empty_player_state,
    find_duplicate_cards,
    finish_consistency_problems,
    new_roll_state,
    new_temporary_state,
    touch,
    validate_roll_state,
    visit_key,
    visit_type_for,
)


log = logging.getLogger(__name__)


class RankingTD(TypedDict):
    player: str
    finished: bool
    score: int
    finish_order: Optional[int]
    position: str


class VerifyResultTD(TypedDict):
    is_valid: bool
    repaired: List[str]
    problems: List[str]


def compute_score(resources: Dict[str, int]) -> int:
    """funds + quality + scope - time - debt/1000, never below 0"""
    score = (
        int(resources.get("money", 0))
        + int(resources.get("quality", 0))
        + int(resources.get("scope", 0))
        - int(resources.get("time", 0))
        - int(resources.get("debt", 0)) // 1000
    )
    return max(0, score)


class ProgressManager:
    def __init__(
        self,
        store: Any,
        board: Any,
        cards: Any,
        *,
        bus: Optional[EventBus] = None,
        rng: Optional[random.Random] = None,
        retry_attempts: int = 3,
        retry_backoff_ms: int = 50,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.board = board
        self.cards = cards
        self.bus = bus if bus is not None else store.bus
        self.rng = rng or random.Random()
        self.retry_attempts = max(1, int(retry_attempts))
        self.retry_backoff_s = max(0, int(retry_backoff_ms)) / 1000.0
        self._sleep = sleep
        self._temp: Dict[str, TemporaryStateTD] = {}

    # -----------------------------
    # Record access
    # -----------------------------
    def load_state(self) -> ProgressStateTD:
        progress = self.store.load("progressState")
        if progress is None:
            raise GameError("No game in progress")
        return progress

    def _load(self, record_type: str, default: Any) -> Any:
        data = self.store.load(record_type)
        return default if data is None else data

    def player_names(self) -> List[str]:
        return roster.player_names(self._load("players", []))

    def finished_players(self) -> List[str]:
        return list(self._load("finishedPlayers", []))

    def visit_history(self) -> Dict[str, int]:
        return dict(self._load("visitHistory", {}))

    def save_records(self, label: str, build: Callable[[], Tuple[Dict[str, Any], Any]]) -> Any:
        """
        Run `build()` (load + validate + mutate copies) and save its records together.
        Retried from a fresh build when the save fails; rule violations propagate.
        Returns the second element produced by `build()`.
        """
        for attempt in range(1, self.retry_attempts + 1):
            records, result = build()
            if self.store.save_many(records):
                return result
            log.warning("%s: save failed (attempt %d/%d)", label, attempt, self.retry_attempts)
            if attempt < self.retry_attempts and self.retry_backoff_s:
                self._sleep(self.retry_backoff_s * attempt)
        raise PersistenceError(f"{label}: could not save state after {self.retry_attempts} attempts")

    # -----------------------------
    # Read accessors
    # -----------------------------
    def current_player(self) -> Optional[str]:
        progress = self.store.load("progressState")
        if progress is None or progress["game_ended"]:
            return None
        names = self.player_names()
        idx = progress["current_player_index"]
        return names[idx] if 0 <= idx < len(names) else None

    def get_position(self, player: str) -> Optional[str]:
        return self.load_state()["player_positions"].get(player)

    def get_roll_state(self) -> RollStateTD:
        return self.load_state()["roll_state"]

    def get_turn(self) -> Optional[TurnTD]:
        return self.load_state()["turn"]

    def get_visit_count(self, player: str, space: str) -> int:
        return int(self.visit_history().get(visit_key(player, space), 0))

    def get_visit_type(self, player: str, space: Optional[str] = None) -> str:
        """Visit type for `space` (default: where the player stands now)."""
        progress = self.load_state()
        turn = progress["turn"]
        here = space or progress["player_positions"].get(player, "")
        if turn and turn["player"] == player and turn["space"] == here:
            return turn["visit_type"]
        return visit_type_for(self.get_visit_count(player, here))

    def is_finished(self, player: str) -> bool:
        return player in self.finished_players()

    def _moves_for(self, progress: ProgressStateTD, player: str, finished: List[str]) -> List[str]:
        if player in finished:
            return []
        position = progress["player_positions"].get(player)
        if not position:
            return []

        turn = progress["turn"]
        if turn and turn["player"] == player and turn["space"] == position:
            rs = progress["roll_state"]
            moves = self.board.get_available_moves_for_space(
                position, visit_type=turn["visit_type"], has_rolled=rs["has_rolled"], rolls=rs["rolls"],
            )
        else:
            vt = visit_type_for(int(self._load("visitHistory", {}).get(visit_key(player, position), 0)))
            moves = self.board.get_available_moves_for_space(position, visit_type=vt)

        valid = self.board.get_all_valid_spaces()
        return [m for m in moves if m in valid]

    def get_available_moves(self, player: str) -> List[str]:
        progress = self.store.load("progressState")
        if progress is None:
            return []
        return self._moves_for(progress, player, self.finished_players())

    def get_player_cards(self, player: str, *, include_staged: bool = True) -> Dict[str, List[CardTD]]:
        buckets = copy.deepcopy(self._load("playerCards", {}).get(player, empty_cards()))
        if not include_staged or player not in self._temp:
            return buckets
        staged = self._temp[player]["cards"]
        removed = {c["card_id"] for c in staged["removed"]}
        for t in CARD_TYPES:
            buckets[t] = [c for c in buckets.get(t, []) if c["card_id"] not in removed]
        for c in staged["added"]:
            if c["card_id"] not in removed:
                buckets[c["card_type"]].append({k: v for k, v in c.items() if k != "disposition"})  # type: ignore[misc]
        return buckets

    # -----------------------------
    # Turn guards
    # -----------------------------
    def _require_turn(self, progress: ProgressStateTD, player: str) -> TurnTD:
        if progress["game_ended"]:
            raise TurnOrderError("The game has ended")
        if player in self.finished_players():
            raise TurnOrderError(f"{player} has already finished")
        names = self.player_names()
        if player not in names:
            raise RuleViolation(f"Unknown player: {player}")
        idx = progress["current_player_index"]
        current = names[idx] if 0 <= idx < len(names) else None
        if player != current:
            raise TurnOrderError(f"It is {current}'s turn, not {player}'s")
        turn = progress["turn"]
        if turn is None or turn["player"] != player:
            raise TurnOrderError(f"No active turn for {player}")
        return turn

    def _begin_turn(self, progress: ProgressStateTD, visits: Dict[str, int], player: str) -> ProgressStateTD:
        """Open the turn record and roll state for `player` (mutates and returns progress)."""
        if self.cards is not None:
            progress = self.cards.process_future_returns(progress, player)

        space = progress["player_positions"][player]
        vt = visit_type_for(int(visits.get(visit_key(player, space), 0)))
        progress["roll_state"] = new_roll_state(self.board.get_rolls_required(space, vt))
        progress["turn"] = {
            "player": player,
            "space": space,
            "visit_type": vt,
            "pending_move": None,
            "selected_move": None,
            "outcomes": [],
        }
        return progress

    def start_first_turn(self) -> None:
        """Open the very first turn of a freshly created game."""
        def build():
            progress = self.load_state()
            names = self.player_names()
            idx = roster.first_active_index(names, self.finished_players())
            if idx is None:
                return {"progressState": progress}, None
            progress["current_player_index"] = idx
            progress = self._begin_turn(progress, self.visit_history(), names[idx])
            touch(progress)
            return {"progressState": progress}, names[idx]

        player = self.save_records("start", build)
        if player:
            self.bus.emit(TURN_CHANGED, player)

    def _advance(self, progress: ProgressStateTD, visits: Dict[str, int], finished: List[str]) -> ProgressStateTD:
        names = self.player_names()

        def _should_skip(name: str) -> bool:
            ps = progress["player_states"].setdefault(name, empty_player_state())
            if ps["skip_turns"] > 0:
                ps["skip_turns"] -= 1
                broadcast(progress, "turn_skipped", name, remaining=ps["skip_turns"])
                return True
            return False

        nxt = roster.next_player_index(
            names, progress["current_player_index"], finished, should_skip=_should_skip,
        )
        if nxt is None:
            progress["turn"] = None
            progress["roll_state"] = new_roll_state(0)
            return progress
        progress["current_player_index"] = nxt
        return self._begin_turn(progress, visits, names[nxt])

    # -----------------------------
    # Temporary state
    # -----------------------------
    def get_temporary_state(self, player: str) -> Optional[TemporaryStateTD]:
        t = self._temp.get(player)
        return copy.deepcopy(t) if t is not None else None

    def stage_change(self, player: str, kind: str, change: Dict[str, Any]) -> TemporaryStateTD:
        """Merge a staged change (lists concatenate, numbers add). Raises RuleViolation if malformed."""
        validator = STAGED_VALIDATORS.get(kind)
        if validator is None:
            raise RuleViolation(f"Unknown staged change type: {kind}")
        if not validator(change):
            raise RuleViolation(f"Malformed {kind} change: {change!r}")

        temp = self._temp.setdefault(player, new_temporary_state())
        section = temp[kind]  # type: ignore[literal-required]
        for key, value in change.items():
            if isinstance(value, list):
                section[key] = section.get(key, []) + copy.deepcopy(value)
            else:
                section[key] = section.get(key, 0) + value

        self.bus.emit(TEMP_STATE_CHANGED, player, kind=kind)
        return copy.deepcopy(temp)

    def clear_temporary_state(self, player: str) -> None:
        """Drop staged changes. Staged draws go back to their deck."""
        temp = self._temp.pop(player, None)
        if temp is None:
            return
        if self.cards is not None:
            for card in temp["cards"]["added"]:
                self.cards.return_to_deck(card)
        self.bus.emit(TEMP_STATE_CHANGED, player, cleared=True)

    def clear_all_temporary_state(self) -> None:
        for player in list(self._temp):
            self.clear_temporary_state(player)

    def _merge_temporary(
        self,
        progress: ProgressStateTD,
        player_cards: Dict[str, Any],
        history: Dict[str, Any],
        player: str,
        temp: TemporaryStateTD,
    ) -> Tuple[ProgressStateTD, List[CardTD]]:
        """Fold staged changes into freshly loaded records. Returns (progress', cards to discard)."""
        player_cards.setdefault(player, empty_cards())
        hist = history.setdefault(player, empty_card_history())
        dispose: List[CardTD] = []

        for card in temp["cards"]["added"]:
            if add_to_collection(player_cards, player, card):
                hist["drawn"].append(card["card_id"])
                broadcast(progress, "card_drawn", player, card_id=card["card_id"], card_type=card["card_type"])
            else:
                log.warning("Card %s is already held; not added to %s", card["card_id"], player)

        for card in temp["cards"]["removed"]:
            held = remove_from_collection(player_cards, player, card["card_id"])
            if held is None:
                log.warning("Card %s not held by %s; removal skipped", card["card_id"], player)
                continue
            if card.get("disposition") == "played":
                if self.cards is not None:
                    progress = self.cards.apply_card_effect(held, progress, player)
                hist["played"].append(held["card_id"])
            else:
                hist["discarded"].append(held["card_id"])
                broadcast(progress, "card_discarded", player, card_id=held["card_id"])
            dispose.append(held)

        ps = progress["player_states"].setdefault(player, empty_player_state())
        ps["resources"]["money"] += int(temp["resources"]["money"])
        ps["resources"]["time"] += int(temp["resources"]["time"])

        rolls = temp["dice_rolls"]["rolls"]
        if rolls:
            progress["roll_history"].append({
                "player": player,
                "space": progress["player_positions"].get(player, ""),
                "rolls": list(rolls),
                "outcomes": list(temp["dice_rolls"]["outcomes"]),
            })
        return progress, dispose

    def _after_commit(self, player: str, disposed: List[CardTD]) -> None:
        if self.cards is not None:
            for card in disposed:
                self.cards.discard_card(card)
        if self._temp.pop(player, None) is not None:
            self.bus.emit(TEMP_STATE_CHANGED, player, committed=True)
            self.bus.emit(CARDS_CHANGED, player)

    def commit_temporary_state(self, player: str) -> bool:
        """
        Merge the staged changes into the persisted records, then clear them.
        If the records cannot be saved the staged changes are kept and
        PersistenceError is raised.
        """
        temp = self._temp.get(player)
        if temp is None:
            return True

        def build():
            player_cards = self._load("playerCards", {})
            history = self._load("cardHistory", {})
            progress, dispose = self._merge_temporary(self.load_state(), player_cards, history, player, temp)
            touch(progress)
            records = {"progressState": progress, "playerCards": player_cards, "cardHistory": history}
            return records, dispose

        self._after_commit(player, self.save_records(f"commit {player}", build))
        return True

    # -----------------------------
    # Cards (staged)
    # -----------------------------
    def stage_card_draw(self, player: str, card_type: str, filters: Optional[Dict[str, Any]] = None) -> Optional[CardTD]:
        progress = self.load_state()
        self._require_turn(progress, player)
        if card_type not in CARD_TYPES:
            raise RuleViolation(f"Unknown card type: {card_type}")
        card = self.cards.draw_card(card_type, filters)
        if card is None:
            return None
        self.stage_change(player, "cards", {"added": [card], "removed": []})
        self.bus.emit(CARDS_CHANGED, player, drawn=card["card_id"])
        return card

    def _held_card(self, player: str, card_id: str) -> Optional[CardTD]:
        for bucket in self.get_player_cards(player).values():
            for c in bucket:
                if c["card_id"] == card_id:
                    return c
        return None

    def stage_card_play(self, player: str, card_id: str) -> Optional[CardTD]:
        """Stage playing a held card. None when the card is not held; RuleViolation when not playable."""
        progress = self.load_state()
        self._require_turn(progress, player)
        card = self._held_card(player, card_id)
        if card is None:
            log.info("%s tried to play %s which is not in hand", player, card_id)
            return None
        reason = self.cards.play_blocker(card, progress, player)
        if reason:
            raise RuleViolation(f"Cannot play {card.get('name') or card_id}: {reason}")
        staged = dict(card)
        staged["disposition"] = "played"
        self.stage_change(player, "cards", {"added": [], "removed": [staged]})
        self.bus.emit(CARDS_CHANGED, player, played=card_id)
        return card

    def stage_card_discard(self, player: str, card_id: str) -> Optional[CardTD]:
        progress = self.load_state()
        self._require_turn(progress, player)
        card = self._held_card(player, card_id)
        if card is None:
            log.info("%s tried to discard %s which is not in hand", player, card_id)
            return None
        staged = dict(card)
        staged["disposition"] = "discarded"
        self.stage_change(player, "cards", {"added": [], "removed": [staged]})
        self.bus.emit(CARDS_CHANGED, player, discarded=card_id)
        return card

    # -----------------------------
    # Dice
    # -----------------------------
    def roll_value(self, value: Optional[int] = None) -> int:
        """A die value 1..6; random when omitted."""
        roll = self.rng.randint(1, 6) if value is None else value
        if isinstance(roll, bool) or not isinstance(roll, int) or not 1 <= roll <= 6:
            raise RuleViolation(f"Invalid die value: {value!r}")
        return roll

    def record_roll(self, progress: ProgressStateTD, player: str, roll: int) -> RollStateTD:
        """Add one roll to the current turn's roll state, in place. Caller saves."""
        self._require_turn(progress, player)
        rs = progress["roll_state"]
        if rs["rolls_completed"] >= rs["rolls_required"]:
            raise RuleViolation("No roll is needed here" if rs["rolls_required"] == 0 else "Already rolled")
        rs["rolls"].append(roll)
        rs["rolls_completed"] += 1
        rs["has_rolled"] = rs["rolls_completed"] >= rs["rolls_required"]
        return rs

    # -----------------------------
    # Moves
    # -----------------------------
    def check_move(self, progress: ProgressStateTD, player: str, target: str) -> None:
        """Raise InvalidMoveError unless `target` is a legal move right now."""
        moves = self._moves_for(progress, player, self.finished_players())
        if target not in moves:
            raise InvalidMoveError(
                f"{target} is not a legal move for {player}; available: {', '.join(moves) or 'none'}"
            )

    def stage_pending_move(self, progress: ProgressStateTD, player: str, target: str) -> ProgressStateTD:
        """Record a dice-driven destination on the turn (validated) in a copy of `progress`."""
        self.check_move(progress, player, target)
        new_state = copy.deepcopy(progress)
        if new_state["turn"] and new_state["turn"]["player"] == player:
            new_state["turn"]["pending_move"] = target
        return new_state

    def select_move(self, player: str, target: str) -> str:
        def build():
            progress = self.load_state()
            turn = self._require_turn(progress, player)
            self.check_move(progress, player, target)
            turn["selected_move"] = target
            progress["turn"] = turn
            touch(progress)
            return {"progressState": progress}, target

        return self.save_records(f"select move {player}", build)

    def _arrive(
        self,
        progress: ProgressStateTD,
        finished: List[str],
        scores: Dict[str, int],
        player: str,
        target: str,
    ) -> bool:
        """Place the player; run the finish sequence on the terminal space. True if finished."""
        progress["player_positions"][player] = target
        broadcast(progress, "move", player, to=target)
        if target != FINISH_SPACE:
            return False

        if player not in finished:
            finished.append(player)
        ps = progress["player_states"].setdefault(player, empty_player_state())
        scores[player] = compute_score(ps["resources"])
        broadcast(progress, "finished", player, order=finished.index(player) + 1, score=scores[player])

        was_ended = progress["game_ended"]
        progress["game_ended"] = len(finished) == len(self.player_names())
        if progress["game_ended"] and not was_ended:
            broadcast(progress, "game_ended", None, finish_order=list(finished))
        return True

    def update_player_position(self, player: str, target: str) -> str:
        """Move `player` to `target` after re-validating against the current moves."""
        def build():
            progress = self.load_state()
            finished = self.finished_players()
            scores = self._load("scores", {})
            self.check_move(progress, player, target)
            self._arrive(progress, finished, scores, player, target)
            touch(progress)
            return {"progressState": progress, "finishedPlayers": finished, "scores": scores}, target

        moved = self.save_records(f"move {player}", build)
        self.bus.emit(POSITION_CHANGED, player, position=moved)
        return moved

    # -----------------------------
    # Turn end / negotiate
    # -----------------------------
    def _choose_target(self, progress: ProgressStateTD, player: str, move: Optional[str]) -> str:
        turn = progress["turn"]
        moves = self._moves_for(progress, player, self.finished_players())
        if not moves:
            raise InvalidMoveError(f"No move is available from {turn['space'] if turn else '?'}")

        target = move or (turn and turn["selected_move"]) or None
        if target is None and turn and turn["pending_move"] in moves:
            target = turn["pending_move"]
        if target is None:
            if len(moves) > 1:
                raise RequirementError(f"Select a move before ending the turn: {', '.join(moves)}")
            target = moves[0]
        if target not in moves:
            raise InvalidMoveError(f"{target} is not a legal move; available: {', '.join(moves)}")
        return target

    def end_turn_blockers(self, player: str) -> List[str]:
        """Everything that still prevents `player` from ending the turn."""
        progress = self.load_state()
        turn = self._require_turn(progress, player)
        out: List[str] = []

        rs = progress["roll_state"]
        if rs["rolls_completed"] < rs["rolls_required"]:
            left = rs["rolls_required"] - rs["rolls_completed"]
            out.append(f"roll the dice ({left} roll{'s' if left > 1 else ''} left)")

        res = progress["player_states"].get(player, empty_player_state())["resources"]
        staged_money = self._temp.get(player, new_temporary_state())["resources"]["money"]
        out.extend(self.board.check_action_requirements(
            turn["space"], turn["visit_type"],
            money=res["money"] + staged_money,
            card_counts=card_counts(self.get_player_cards(player)),
        ))
        return out

    def handle_end_turn(self, player: str, move: Optional[str] = None) -> Dict[str, Any]:
        """
        Finish the current player's turn: requirements, move choice, time cost,
        visit count, move, finish detection, commit, next player.
        """
        blockers = self.end_turn_blockers(player)
        if blockers:
            raise RequirementError("Cannot end turn: " + "; ".join(blockers))
        self._choose_target(self.load_state(), player, move)

        def build():
            progress = self.load_state()
            turn = self._require_turn(progress, player)
            target = self._choose_target(progress, player, move)
            visits = self.visit_history()
            finished = self.finished_players()
            scores = self._load("scores", {})
            player_cards = self._load("playerCards", {})
            history = self._load("cardHistory", {})

            dispose: List[CardTD] = []
            temp = self._temp.get(player)
            if temp is not None:
                progress, dispose = self._merge_temporary(progress, player_cards, history, player, temp)

            ps = progress["player_states"].setdefault(player, empty_player_state())
            cost = self.board.get_time_cost(turn["space"], turn["visit_type"])
            ps["resources"]["time"] += cost

            key = visit_key(player, turn["space"])
            visits[key] = int(visits.get(key, 0)) + 1

            done = self._arrive(progress, finished, scores, player, target)
            progress = self._advance(progress, visits, finished)
            touch(progress)
            records = {
                "progressState": progress,
                "visitHistory": visits,
                "finishedPlayers": finished,
                "scores": scores,
                "playerCards": player_cards,
                "cardHistory": history,
            }
            return records, {"moved_to": target, "finished": done, "game_ended": progress["game_ended"],
                             "time_cost": cost, "progress": progress, "dispose": dispose}

        result = self.save_records(f"end turn {player}", build)
        self._after_commit(player, result.pop("dispose"))

        progress = result.pop("progress")
        self.bus.emit(POSITION_CHANGED, player, position=result["moved_to"])
        if result["game_ended"]:
            self.bus.emit(GAME_ENDED, None, rankings=self.get_rankings())
        nxt = progress["turn"]["player"] if progress["turn"] else None
        self.bus.emit(TURN_CHANGED, nxt)
        result["next_player"] = nxt
        return result

    def handle_negotiate(self, player: str) -> Dict[str, Any]:
        """
        Give up the turn in place: staged changes are dropped, the time penalty is
        paid at once, the player stays put and the next player is up.
        """
        progress = self.load_state()
        turn = self._require_turn(progress, player)
        if not self.board.can_negotiate(turn["space"]):
            raise RuleViolation(f"Negotiation is not possible at {turn['space']}")

        self.clear_temporary_state(player)

        def build():
            progress = self.load_state()
            turn = self._require_turn(progress, player)
            ps = progress["player_states"].setdefault(player, empty_player_state())
            ps["resources"]["time"] += NEGOTIATION_TIME_PENALTY
            broadcast(progress, "negotiate", player, space=turn["space"], time_penalty=NEGOTIATION_TIME_PENALTY)
            progress = self._advance(progress, self.visit_history(), self.finished_players())
            touch(progress)
            return {"progressState": progress}, progress

        progress = self.save_records(f"negotiate {player}", build)
        nxt = progress["turn"]["player"] if progress["turn"] else None
        self.bus.emit(ROLL_CHANGED, nxt, roll_state=progress["roll_state"])
        self.bus.emit(TURN_CHANGED, nxt)
        return {"next_player": nxt, "time_penalty": NEGOTIATION_TIME_PENALTY}

    def add_skip_turns(self, player: str, turns: int = 1) -> int:
        if player not in self.player_names():
            raise RuleViolation(f"Unknown player: {player}")

        def build():
            progress = self.load_state()
            ps = progress["player_states"].setdefault(player, empty_player_state())
            ps["skip_turns"] += max(0, int(turns))
            touch(progress)
            return {"progressState": progress}, ps["skip_turns"]

        return self.save_records(f"skip {player}", build)

    # -----------------------------
    # End of game
    # -----------------------------
    def get_rankings(self) -> List[RankingTD]:
        progress = self.store.load("progressState")
        if progress is None:
            return []
        finished = self.finished_players()
        scores = self._load("scores", {})
        out: List[RankingTD] = []
        for name in self.player_names():
            ps = progress["player_states"].get(name, empty_player_state())
            is_done = name in finished
            out.append({
                "player": name,
                "finished": is_done,
                "score": int(scores.get(name, compute_score(ps["resources"]))),
                "finish_order": finished.index(name) + 1 if is_done else None,
                "position": progress["player_positions"].get(name, ""),
            })
        out.sort(key=lambda r: (
            not r["finished"],
            -r["score"],
            r["finish_order"] if r["finish_order"] is not None else len(out) + 1,
        ))
        return out

    def verify_complete_state(self) -> VerifyResultTD:
        """
        Cross-check the persisted records; repair what can be derived
        (finish set vs positions, game-ended flag, scores, current player,
        roll-state flags) and report what cannot.
        """
        progress = self.store.load("progressState")
        if progress is None:
            return {"is_valid": False, "repaired": [], "problems": ["no progress state"]}

        names = self.player_names()
        finished = [p for p in self.finished_players() if p in names]
        scores = self._load("scores", {})
        repaired: List[str] = []
        problems: List[str] = []

        for issue in finish_consistency_problems(progress["player_positions"], finished, FINISH_SPACE):
            repaired.append(issue)
        for name in names:
            pos = progress["player_positions"].get(name)
            if name in finished and pos != FINISH_SPACE:
                progress["player_positions"][name] = FINISH_SPACE
            elif pos == FINISH_SPACE and name not in finished:
                finished.append(name)
            if pos is None and name not in finished:
                problems.append(f"{name} has no position")

        for name in finished:
            if name not in scores:
                ps = progress["player_states"].get(name, empty_player_state())
                scores[name] = compute_score(ps["resources"])
                repaired.append(f"score filled in for {name}")

        ended = bool(names) and len(finished) == len(names)
        if progress["game_ended"] != ended:
            progress["game_ended"] = ended
            repaired.append(f"game_ended recomputed as {ended}")

        idx = progress["current_player_index"]
        if not ended and names and (not 0 <= idx < len(names) or names[idx] in finished):
            fixed = roster.next_player_index(names, idx % len(names) if names else 0, finished)
            if fixed is not None:
                progress["current_player_index"] = fixed
                progress = self._begin_turn(progress, self.visit_history(), names[fixed])
                repaired.append(f"current player reset to {names[fixed]}")

        rs = progress["roll_state"]
        if not validate_roll_state(rs):
            rs["rolls_required"] = max(0, int(rs.get("rolls_required", 0)))
            rs["rolls_completed"] = min(max(0, int(rs.get("rolls_completed", 0))), rs["rolls_required"])
            rs["rolls"] = [r for r in rs.get("rolls", []) if isinstance(r, int) and 1 <= r <= 6][: rs["rolls_completed"]]
            rs["has_rolled"] = rs["rolls_completed"] >= rs["rolls_required"]
            repaired.append("roll state flags recomputed")

        dupes = find_duplicate_cards(self._load("playerCards", {}))
        if dupes:
            problems.append(f"cards held twice: {', '.join(dupes)}")

        if repaired:
            touch(progress)
            ok = self.store.save_many({"progressState": progress, "finishedPlayers": finished, "scores": scores})
            if not ok:
                problems.append("repaired state could not be saved")
            for r in repaired:
                log.warning("State repaired: %s", r)

        return {"is_valid": not problems, "repaired": repaired, "problems": problems}
