#!/usr/bin/env python3
"""
outcomes.py — Dice outcome processing pipeline

After a roll, the outcome texts for (space, visit type, roll) are turned into
state changes in four stages:

1) parse every outcome text and apply ALL resource effects (pay, gain, days,
   scope / quality percentages); queue card draws and movement directives
2) drain queued card draws through the card decks, log each result
3) drain queued moves through the progress engine's validated move path
   (a legal destination becomes the turn's pending move)
4) persist the roll and the resulting records in one write

A failing queued item is logged and skipped; the rest of its queue still runs.

by Sziller
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict, List, Optional, Tuple

from cards import add_to_collection
from errors import GameError, RuleViolation
from events import CARDS_CHANGED, ROLL_CHANGED
from outcome_rules import EffectTD, apply_resource_effects, parse_outcome, split_effects
from state import CardTD, ProgressStateTD, broadcast, empty_card_history, empty_cards, empty_player_state, touch


log = logging.getLogger(__name__)


class OutcomeProcessor:
    def __init__(self, board: Any, cards: Any, progress: Any) -> None:
        self.board = board
        self.cards = cards
        self.progress = progress

    # -----------------------------
    # Stage 1
    # -----------------------------
    def process_outcome(
        self,
        state: ProgressStateTD,
        player: str,
        space: str,
        roll: int,
        visit_type: str,
    ) -> Tuple[ProgressStateTD, List[EffectTD], List[str], Dict[str, str]]:
        """
        Apply resource effects of every outcome text for this roll.
        Returns (state', card-draw directives, move targets, texts by row label).
        """
        new_state: ProgressStateTD = copy.deepcopy(state)
        texts = self.board.get_dice_outcomes(space, roll, visit_type)

        draws: List[EffectTD] = []
        moves: List[str] = []
        ps = new_state["player_states"].setdefault(player, empty_player_state())

        for label, text in texts.items():
            res_effects, move_effects, draw_effects = split_effects(parse_outcome(text))
            if res_effects:
                ps["resources"] = apply_resource_effects(ps["resources"], res_effects)
            draws.extend(draw_effects)
            for m in move_effects:
                target = self.board.resolve_destination(m["target"])
                if target and target not in moves:
                    moves.append(target)
            broadcast(
                new_state, "dice_outcome", player,
                space=space, roll=roll, visit_type=visit_type, label=label, text=text,
                effects=[e["source"] for e in res_effects],
            )

        dest = self.board.get_dice_destination(space, roll, visit_type)
        if dest and dest not in moves:
            moves.insert(0, dest)

        turn = new_state.get("turn")
        if turn and turn["player"] == player:
            turn["outcomes"].extend(texts.values())
        return new_state, draws, moves, texts

    # -----------------------------
    # Stage 2
    # -----------------------------
    def drain_card_draws(
        self,
        state: ProgressStateTD,
        player_cards: Dict[str, Any],
        history: Dict[str, Any],
        player: str,
        draws: List[EffectTD],
    ) -> List[str]:
        """Draw every queued card into the player's collection. Returns drawn ids."""
        drawn: List[str] = []
        phase = self.cards.get_phase_for_space(state["player_positions"].get(player, ""))
        player_cards.setdefault(player, empty_cards())
        hist = history.setdefault(player, empty_card_history())

        for directive in draws:
            for _ in range(int(directive.get("count", 1))):
                try:
                    card = self.cards.draw_card(directive["card_type"], {"phase": phase})
                    if card is None:
                        card = self.cards.draw_card(directive["card_type"])
                    if card is None:
                        broadcast(state, "card_draw_failed", player, card_type=directive["card_type"],
                                  reason="deck empty")
                        continue
                    if not add_to_collection(player_cards, player, card):
                        self.cards.return_to_deck(card)
                        raise GameError(f"card {card['card_id']} is already held")
                    hist["drawn"].append(card["card_id"])
                    drawn.append(card["card_id"])
                    broadcast(state, "card_drawn", player, card_id=card["card_id"],
                              card_type=card["card_type"], source="dice")
                except (GameError, ValueError, KeyError) as exc:
                    log.warning("Card draw %s for %s failed: %s", directive.get("source"), player, exc)
        return drawn

    # -----------------------------
    # Stage 3
    # -----------------------------
    def drain_moves(self, state: ProgressStateTD, player: str, moves: List[str]) -> ProgressStateTD:
        """The first legal target becomes the turn's pending move."""
        for target in moves:
            turn = state.get("turn")
            if turn and turn.get("pending_move"):
                log.info("Pending move already set to %s; ignoring %s", turn["pending_move"], target)
                continue
            try:
                state = self.progress.stage_pending_move(state, player, target)
                broadcast(state, "dice_move", player, to=target)
            except RuleViolation as exc:
                log.info("Dice move to %s for %s not applied: %s", target, player, exc)
        return state

    # -----------------------------
    # Pipeline
    # -----------------------------
    def execute_outcome_processing(self, player: str, roll: int) -> ProgressStateTD:
        """
        Record `roll` on the current turn and apply its outcomes in ONE write.
        Every attempt starts from a fresh load. If the write fails the roll is
        not consumed and any drawn cards go back to their decks.
        """
        store = self.progress.store
        held: List[CardTD] = []

        def _release() -> None:
            while held:
                self.cards.return_to_deck(held.pop())

        def build():
            _release()
            state = self.progress.load_state()
            self.progress.record_roll(state, player, roll)
            turn = state["turn"]
            space, visit_type = turn["space"], turn["visit_type"]
            player_cards = store.load("playerCards") or {}
            history = store.load("cardHistory") or {}

            new_state, draws, moves, texts = self.process_outcome(state, player, space, roll, visit_type)
            drawn = self.drain_card_draws(new_state, player_cards, history, player, draws)
            held.extend(c for bucket in player_cards[player].values() for c in bucket if c["card_id"] in drawn)
            new_state = self.drain_moves(new_state, player, moves)
            touch(new_state)

            records: Dict[str, Any] = {
                "progressState": new_state,
                "diceRoll": {"player": player, "space": space, "roll": roll,
                             "visit_type": visit_type, "outcomes": texts},
                "playerCards": player_cards,
                "cardHistory": history,
            }
            return records, (new_state, drawn, texts)

        try:
            new_state, drawn, texts = self.progress.save_records(f"roll {player}", build)
        except GameError:
            _release()
            raise

        self.progress.stage_change(player, "dice_rolls", {"rolls": [roll], "outcomes": list(texts.values())})
        if drawn:
            self.progress.bus.emit(CARDS_CHANGED, player, drawn=drawn)
        self.progress.bus.emit(ROLL_CHANGED, player, roll=roll, roll_state=dict(new_state["roll_state"]),
                               outcomes=texts)
        return new_state

    def roll_and_resolve(self, player: str, value: Optional[int] = None) -> Dict[str, Any]:
        """Roll for the current turn and run the outcome pipeline on it."""
        roll = self.progress.roll_value(value)
        new_state = self.execute_outcome_processing(player, roll)
        return {
            "roll": roll,
            "roll_state": new_state["roll_state"],
            "outcomes": list(new_state["turn"]["outcomes"]) if new_state["turn"] else [],
            "pending_move": new_state["turn"]["pending_move"] if new_state["turn"] else None,
        }
