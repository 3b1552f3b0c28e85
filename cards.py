#!/usr/bin/env python3
"""
cards.py — Card decks, play legality and card effects

Five card types, one CSV deck each (data/<T>-cards.csv):
  B  bank / funding      (loan: money + principal, debt + principal + interest)
  I  investment          (pay now, scheduled return after N turns)
  W  work / scope
  L  life events
  E  expert help         (keyword effects + space-color bonus)

Decks are drawn WITHOUT replacement: a drawn card leaves the deck for good,
played / discarded cards go to the type's discard pile. Card effects are
dispatched by card type (CARD_EFFECT_HANDLERS) and every application is
written to the public game log.

Legality (can_play_card):
- E: phase match (or "Any Phase") AND space-color match (or "All Colors")
- W: phase match (or "Any Phase")
- B: debt + principal + interest must stay within 3x current money
- I: only in the Owner / Design / Funding phases
- L: always

by Sziller
"""

from __future__ import annotations

import copy
import logging
import random
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, TypedDict

from config import DEBT_CAPACITY_MULTIPLIER, DEFAULT_DATA_DIR, DEFAULT_LOAN_PERCENT
from csv_tables import ParsedTableTD, cell_text, read_csv_file
from errors import DataIntegrityError
from events import ReadyBarrier
from outcome_rules import apply_resource_effects, parse_card_effect, parse_outcome, split_effects
from state import CARD_TYPES, CardTD, ProgressStateTD, broadcast, empty_player_state


log = logging.getLogger(__name__)


CARD_REQUIRED_COLUMNS = ("Card ID", "Card Name")

ANY_PHASE = "Any Phase"
ALL_COLORS = "All Colors"
INVESTMENT_PHASES = frozenset({"Owner", "Design", "Funding"})

# space-name prefix -> color
SPACE_COLOR_MAP: Dict[str, str] = {
    "OWNER": "Green",
    "ARCH": "Yellow",
    "ENG": "Yellow",
    "REG": "Red",
    "DOB": "Red",
    "FDNY": "Red",
    "CON": "Purple",
    "PM": "Blue",
}

# space-name prefix -> phase, used when the board does not know the space
PHASE_FALLBACK_MAP: Dict[str, str] = {
    "OWNER": "Owner",
    "ARCH": "Design",
    "ENG": "Design",
    "REG": "Regulatory Review",
    "DOB": "Regulatory Review",
    "FDNY": "Regulatory Review",
    "CON": "Construction",
    "PM": "Management",
}

# Extra effect when an expert card's color matches the current space color
COLOR_MATCH_BONUS: Dict[str, Dict[str, int]] = {
    "Red": {"time_bonus": 2},
    "Yellow": {"quality_pct": 5},
    "Green": {"cost_reduction": 5},
    "Purple": {"scope_pct": 5},
    "Blue": {"time_bonus": 1, "cost_reduction": 2},
}


class InitResultTD(TypedDict):
    success: bool
    errors: List[str]


# -----------------------------
# Row -> card
# -----------------------------
def _int_cell(row: Dict[str, Any], column: str, default: int = 0) -> int:
    v = row.get(column, "")
    if isinstance(v, bool):
        return default
    if isinstance(v, (int, float)):
        return int(v)
    digits = "".join(ch for ch in str(v) if ch.isdigit())
    return int(digits) if digits else default


def card_from_row(card_type: str, row: Dict[str, Any]) -> CardTD:
    return {
        "card_id": cell_text(row, "Card ID"),
        "card_type": card_type,
        "name": cell_text(row, "Card Name"),
        "description": cell_text(row, "Description"),
        "effect": cell_text(row, "Effect"),
        "phase": cell_text(row, "Phase"),
        "color": cell_text(row, "Color"),
        "amount": _int_cell(row, "Amount"),
        "loan_percent": _int_cell(row, "Loan Percentage Cost", DEFAULT_LOAN_PERCENT),
        "distribution_level": cell_text(row, "Distribution Level"),
        "skill_type": cell_text(row, "Skill Type").lower() or "management",
        "skill_points": _int_cell(row, "Skill Points"),
        "return_amount": _int_cell(row, "Return Amount"),
        "return_turns": _int_cell(row, "Return Turns"),
    }


def _space_prefix(space: str) -> str:
    return space.split("-", 1)[0].upper() if space else ""


def space_color(space: str) -> str:
    return SPACE_COLOR_MAP.get(_space_prefix(space), "")


def loan_total(card: CardTD) -> int:
    """Principal + interest added to debt when a funding card is played."""
    amount = int(card.get("amount", 0))
    pct = int(card.get("loan_percent", DEFAULT_LOAN_PERCENT) or DEFAULT_LOAN_PERCENT)
    return amount + (amount * pct) // 100


# -----------------------------
# Effect handlers (per card type)
# -----------------------------
EffectHandler = Callable[["CardManager", CardTD, ProgressStateTD, str], Dict[str, Any]]


def _effect_funding(cm: "CardManager", card: CardTD, progress: ProgressStateTD, player: str) -> Dict[str, Any]:
    res = progress["player_states"][player]["resources"]
    amount = int(card.get("amount", 0))
    res["money"] += amount
    res["debt"] += loan_total(card)
    return {"money": amount, "debt": loan_total(card)}


def _effect_investment(cm: "CardManager", card: CardTD, progress: ProgressStateTD, player: str) -> Dict[str, Any]:
    res = progress["player_states"][player]["resources"]
    amount = int(card.get("amount", 0))
    res["money"] -= amount
    details: Dict[str, Any] = {"money": -amount}
    ret_amount = int(card.get("return_amount", 0))
    if ret_amount > 0:
        turns = max(1, int(card.get("return_turns", 0) or 1))
        progress["future_returns"].append({
            "player": player,
            "card_id": card.get("card_id", ""),
            "amount": ret_amount,
            "turns_remaining": turns,
        })
        details["return"] = {"amount": ret_amount, "turns": turns}
    return details


def _effect_expert(cm: "CardManager", card: CardTD, progress: ProgressStateTD, player: str) -> Dict[str, Any]:
    ps = progress["player_states"][player]
    effects = parse_card_effect(card.get("effect") or card.get("description"))

    points = int(card.get("skill_points", 0))
    if points:
        effects.append({"kind": "expertise", "amount": points, "source": f"{card.get('skill_type')} skill"})

    color = card.get("color", "")
    position = progress["player_positions"].get(player, "")
    color_match = bool(color) and color != ALL_COLORS and color == space_color(position)
    if color_match:
        effects.append({"kind": "expertise", "amount": 1, "source": "color match"})
        for kind, amount in COLOR_MATCH_BONUS.get(color, {}).items():
            effects.append({"kind": kind, "amount": amount, "source": f"{color} bonus"})

    ps["resources"] = apply_resource_effects(ps["resources"], effects)
    return {"effects": [e["source"] for e in effects], "color_match": color_match}


def _effect_text(cm: "CardManager", card: CardTD, progress: ProgressStateTD, player: str) -> Dict[str, Any]:
    """W / L cards: both grammars over the effect text; only resource effects apply."""
    ps = progress["player_states"][player]
    text = card.get("effect") or card.get("description")
    res_effects, _moves, _draws = split_effects(parse_outcome(text) + parse_card_effect(text))
    ps["resources"] = apply_resource_effects(ps["resources"], res_effects)
    return {"effects": [e["source"] for e in res_effects]}


CARD_EFFECT_HANDLERS: Dict[str, EffectHandler] = {
    "B": _effect_funding,
    "I": _effect_investment,
    "E": _effect_expert,
    "W": _effect_text,
    "L": _effect_text,
}


# -----------------------------
# CardManager
# -----------------------------
class CardManager:
    def __init__(
        self,
        data_dir: Path = DEFAULT_DATA_DIR,
        *,
        board: Any = None,
        rng: Optional[random.Random] = None,
        tables: Optional[Dict[str, ParsedTableTD]] = None,
    ) -> None:
        self.data_dir = Path(data_dir)
        self.board = board
        self.rng = rng or random.Random()
        self._tables = tables
        self.ready = ReadyBarrier("cards")
        self._result: Optional[InitResultTD] = None

        self.decks: Dict[str, List[CardTD]] = {t: [] for t in CARD_TYPES}
        self.discards: Dict[str, List[CardTD]] = {t: [] for t in CARD_TYPES}
        self._catalog: Dict[str, CardTD] = {}

    # ---- loading
    @property
    def is_ready(self) -> bool:
        return self._result is not None and self._result["success"]

    def initialize(self) -> InitResultTD:
        if self._result is not None:
            return self._result

        errors: List[str] = []
        for t in CARD_TYPES:
            try:
                if self._tables is not None and t in self._tables:
                    table = self._tables[t]
                else:
                    table = read_csv_file(self.data_dir / f"{t}-cards.csv", required=CARD_REQUIRED_COLUMNS)
            except DataIntegrityError as exc:
                errors.append(str(exc))
                continue

            for row in table["rows"]:
                card = card_from_row(t, row)
                if not card["card_id"]:
                    continue
                if card["card_id"] in self._catalog:
                    errors.append(f"Duplicate card id {card['card_id']}")
                    continue
                self._catalog[card["card_id"]] = card
                self.decks[t].append(card)

        if errors:
            log.error("Card data failed to load: %s", "; ".join(errors))
            self._result = {"success": False, "errors": errors}
            self.ready.fail(DataIntegrityError("; ".join(errors)))
            return self._result

        log.info("Cards loaded: %s", {t: len(d) for t, d in self.decks.items()})
        self._result = {"success": True, "errors": []}
        self.ready.resolve()
        return self._result

    def get_card(self, card_id: str) -> Optional[CardTD]:
        card = self._catalog.get(card_id)
        return copy.deepcopy(card) if card else None

    def deck_size(self, card_type: str) -> int:
        return len(self.decks.get(card_type, []))

    def reset_decks(self) -> None:
        """Every card back in its deck, discard piles emptied (new game)."""
        self.decks = {t: [] for t in CARD_TYPES}
        self.discards = {t: [] for t in CARD_TYPES}
        for card in self._catalog.values():
            self.decks[card["card_type"]].append(copy.deepcopy(card))

    def withdraw_held(self, held_ids: Iterable[str]) -> int:
        """Remove cards already held by players from the decks (after a reload)."""
        held = set(held_ids)
        removed = 0
        for t in CARD_TYPES:
            before = len(self.decks[t])
            self.decks[t] = [c for c in self.decks[t] if c["card_id"] not in held]
            removed += before - len(self.decks[t])
        return removed

    # ---- draw / discard
    @staticmethod
    def _matches(card: CardTD, filters: Dict[str, Any]) -> bool:
        phase = filters.get("phase")
        if phase and card.get("phase") and card["phase"] not in (phase, ANY_PHASE):
            return False
        level = filters.get("distribution_level")
        if level and card.get("distribution_level") != str(level):
            return False
        color = filters.get("color")
        if color and card.get("color") and card["color"] not in (color, ALL_COLORS):
            return False
        return True

    def draw_card(self, card_type: str, filters: Optional[Dict[str, Any]] = None) -> Optional[CardTD]:
        """Remove and return one matching card; None when nothing matches."""
        if card_type not in CARD_TYPES:
            raise ValueError(f"Unknown card type: {card_type}")
        deck = self.decks[card_type]
        candidates = [i for i, c in enumerate(deck) if self._matches(c, filters or {})]
        if not candidates:
            log.info("No %s card left matching %s", card_type, filters or {})
            return None
        idx = self.rng.choice(candidates)
        return copy.deepcopy(deck.pop(idx))

    def return_to_deck(self, card: CardTD) -> bool:
        """Put an uncommitted draw back into its deck."""
        card_type = card.get("card_type")
        if card_type not in CARD_TYPES or not card.get("card_id"):
            return False
        if any(c["card_id"] == card["card_id"] for c in self.decks[card_type]):
            return False
        self.decks[card_type].append({k: v for k, v in card.items() if k != "disposition"})  # type: ignore[misc]
        return True

    def discard_card(self, card: CardTD) -> bool:
        card_type = card.get("card_type")
        if card_type not in CARD_TYPES or not card.get("card_id"):
            return False
        if any(c["card_id"] == card["card_id"] for c in self.discards[card_type]):
            return False
        self.discards[card_type].append(copy.deepcopy(card))
        return True

    # ---- legality
    def get_phase_for_space(self, space: str) -> str:
        if self.board is not None and self.board.is_ready:
            phase = self.board.get_phase_for_space(space)
            if phase and phase != "UNKNOWN":
                return phase
        return PHASE_FALLBACK_MAP.get(_space_prefix(space), "")

    def play_blocker(self, card: CardTD, progress: ProgressStateTD, player: str) -> Optional[str]:
        """Reason the card cannot be played right now, or None."""
        card_type = card.get("card_type")
        if card_type not in CARD_TYPES:
            return "unknown card type"
        position = progress["player_positions"].get(player)
        if not position:
            return f"{player} has no position"

        phase = self.get_phase_for_space(position)
        card_phase = card.get("phase", "")

        if card_type in ("E", "W") and card_phase and card_phase not in (ANY_PHASE, phase):
            return f"card is for phase {card_phase}, current phase is {phase}"

        if card_type == "E":
            color = card.get("color", "")
            here = space_color(position)
            if color and color not in (ALL_COLORS, here):
                return f"card color {color} does not match space color {here or 'none'}"

        if card_type == "B":
            res = progress["player_states"].get(player, empty_player_state())["resources"]
            total = res["debt"] + loan_total(card)
            cap = res["money"] * DEBT_CAPACITY_MULTIPLIER
            if total > cap:
                return f"loan would raise debt to {total}, capacity is {cap}"

        if card_type == "I" and phase not in INVESTMENT_PHASES:
            return f"investments are not possible in the {phase or 'current'} phase"

        return None

    def can_play_card(self, card: CardTD, progress: ProgressStateTD, player: str) -> bool:
        reason = self.play_blocker(card, progress, player)
        if reason:
            log.debug("Card %s not playable for %s: %s", card.get("card_id"), player, reason)
        return reason is None

    # ---- effects
    def apply_card_effect(self, card: CardTD, progress: ProgressStateTD, player: str) -> ProgressStateTD:
        """Return a new progress state with the card's effect applied and logged."""
        new_state: ProgressStateTD = copy.deepcopy(progress)
        new_state["player_states"].setdefault(player, empty_player_state())

        handler = CARD_EFFECT_HANDLERS.get(card.get("card_type", ""))
        details = handler(self, card, new_state, player) if handler else {}

        broadcast(
            new_state, "card_played", player,
            card_id=card.get("card_id"),
            card_type=card.get("card_type"),
            card_name=card.get("name"),
            effect=card.get("effect") or card.get("description") or "",
            **details,
        )
        return new_state

    def process_future_returns(self, progress: ProgressStateTD, player: str) -> ProgressStateTD:
        """Count down this player's pending returns; pay out the ones that are due."""
        items = progress.get("future_returns", [])
        if not any(r["player"] == player for r in items):
            return progress

        new_state: ProgressStateTD = copy.deepcopy(progress)
        remaining = []
        for r in new_state["future_returns"]:
            if r["player"] != player:
                remaining.append(r)
                continue
            if r["turns_remaining"] <= 1:
                ps = new_state["player_states"].setdefault(player, empty_player_state())
                ps["resources"]["money"] += int(r["amount"])
                broadcast(new_state, "investment_return", player, card_id=r.get("card_id"), amount=r["amount"])
            else:
                r["turns_remaining"] -= 1
                remaining.append(r)
        new_state["future_returns"] = remaining
        return new_state


# -----------------------------
# Player collections (playerCards record)
# -----------------------------
def collection_holder(player_cards: Dict[str, Dict[str, List[CardTD]]], card_id: str) -> Optional[str]:
    for player, buckets in player_cards.items():
        for t in CARD_TYPES:
            if any(c.get("card_id") == card_id for c in buckets.get(t, [])):
                return player
    return None


def add_to_collection(player_cards: Dict[str, Dict[str, List[CardTD]]], player: str, card: CardTD) -> bool:
    """Add a card to a player's bucket. False if any player already holds that id."""
    card_type = card.get("card_type")
    if card_type not in CARD_TYPES or not card.get("card_id"):
        return False
    if collection_holder(player_cards, card["card_id"]) is not None:
        return False
    buckets = player_cards.setdefault(player, {t: [] for t in CARD_TYPES})
    stored = {k: v for k, v in card.items() if k != "disposition"}
    buckets.setdefault(card_type, []).append(stored)  # type: ignore[arg-type]
    return True


def remove_from_collection(
    player_cards: Dict[str, Dict[str, List[CardTD]]],
    player: str,
    card_id: str,
) -> Optional[CardTD]:
    """Remove and return the card; None when the player does not hold it."""
    buckets = player_cards.get(player)
    if not buckets:
        return None
    for t in CARD_TYPES:
        bucket = buckets.get(t, [])
        for i, c in enumerate(bucket):
            if c.get("card_id") == card_id:
                return bucket.pop(i)
    return None


def card_counts(buckets: Dict[str, List[CardTD]]) -> Dict[str, int]:
    return {t: len(buckets.get(t, [])) for t in CARD_TYPES}
