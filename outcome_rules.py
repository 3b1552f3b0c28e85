#!/usr/bin/env python3
"""
outcome_rules.py — Grammar for dice-outcome and card-effect text

Outcome and effect strings are semi-structured English:

    "Pay $500 and lose 2 days"
    "Move to ARCH-FEE-REVIEW - architect review"
    "Draw W card, scope increase 10%"

Each grammar is an ORDERED list of (pattern, effect-constructor) rules.
Every rule is scanned over the whole string and every match produces an effect,
so one string can yield several effects (payment AND time loss, ...).

Effects are plain dicts:
    {"kind": "money", "amount": -500, "source": "Pay $500"}
    {"kind": "move", "target": "ARCH-FEE-REVIEW", ...}
    {"kind": "draw_card", "card_type": "W", "count": 1, ...}

Applying effects to resources returns a NEW resources dict.

by Sziller
"""

from __future__ import annotations

import copy
import re
from typing import Callable, Dict, List, Optional, Pattern, Tuple, TypedDict

from state import ResourcesTD


SCOPE_MIN = 0
SCOPE_MAX = 150

MOVE_SEPARATOR = " - "


class EffectTD(TypedDict, total=False):
    kind: str
    amount: int
    target: str
    card_type: str
    count: int
    source: str


EffectFn = Callable[["re.Match[str]"], EffectTD]
RuleList = List[Tuple[Pattern[str], EffectFn]]


# -----------------------------
# Helpers
# -----------------------------
def _num(s: str) -> int:
    return int(s.replace(",", ""))


def clean_move_text(text: str) -> str:
    """'DEST - description' -> 'DEST' (only the part before the first ' - ')."""
    if not text:
        return ""
    return str(text).split(MOVE_SEPARATOR, 1)[0].strip()


# -----------------------------
# Dice outcome grammar
# -----------------------------
def _pay(m: "re.Match[str]") -> EffectTD:
    return {"kind": "money", "amount": -_num(m.group(1)), "source": m.group(0)}


def _gain(m: "re.Match[str]") -> EffectTD:
    return {"kind": "money", "amount": _num(m.group(1)), "source": m.group(0)}


def _lose_days(m: "re.Match[str]") -> EffectTD:
    return {"kind": "time_bonus", "amount": -int(m.group(1)), "source": m.group(0)}


def _save_days(m: "re.Match[str]") -> EffectTD:
    return {"kind": "time_bonus", "amount": int(m.group(1)), "source": m.group(0)}


def _move_to(m: "re.Match[str]") -> EffectTD:
    return {"kind": "move", "target": m.group(1).upper(), "source": m.group(0)}


def _draw(m: "re.Match[str]") -> EffectTD:
    count = int(m.group(1)) if m.group(1) else 1
    return {"kind": "draw_card", "card_type": m.group(2).upper(), "count": count, "source": m.group(0)}


def _pct(kind: str) -> EffectFn:
    def _fn(m: "re.Match[str]") -> EffectTD:
        sign = 1 if m.group(1).lower() == "increase" else -1
        return {"kind": kind, "amount": sign * int(m.group(2)), "source": m.group(0)}
    return _fn


DICE_OUTCOME_RULES: RuleList = [
    (re.compile(r"pay\s+\$?(\d[\d,]*)", re.I), _pay),
    (re.compile(r"gain\s+\$?(\d[\d,]*)", re.I), _gain),
    (re.compile(r"lose\s+(\d+)\s+days?", re.I), _lose_days),
    (re.compile(r"save\s+(\d+)\s+days?", re.I), _save_days),
    (re.compile(r"scope\s+(increase|decrease)\s+(\d+)%", re.I), _pct("scope_pct")),
    (re.compile(r"quality\s+(increase|decrease)\s+(\d+)%", re.I), _pct("quality_pct")),
    (re.compile(r"move\s+to\s+([A-Z0-9][A-Z0-9-]*)", re.I), _move_to),
    (re.compile(r"draw\s+(?:(\d+)\s+)?([BIWLE])\s+cards?", re.I), _draw),
]


# -----------------------------
# Card effect grammar
# -----------------------------
def _reduce_time(m: "re.Match[str]") -> EffectTD:
    return {"kind": "time_bonus", "amount": int(m.group(1)), "source": m.group(0)}


def _reduce_cost(m: "re.Match[str]") -> EffectTD:
    return {"kind": "cost_reduction", "amount": int(m.group(1)), "source": m.group(0)}


def _increase_quality(m: "re.Match[str]") -> EffectTD:
    return {"kind": "quality", "amount": int(m.group(1)), "source": m.group(0)}


def _expertise(m: "re.Match[str]") -> EffectTD:
    return {"kind": "expertise", "amount": 1, "source": m.group(0)}


CARD_EFFECT_RULES: RuleList = [
    (re.compile(r"reduce\s+(\d+)\s+(?:days?|time)", re.I), _reduce_time),
    (re.compile(r"reduce\s+(\d+)%\s+cost", re.I), _reduce_cost),
    (re.compile(r"increase\s+(\d+)%\s+quality", re.I), _increase_quality),
    (re.compile(r"\bexpert", re.I), _expertise),
]


# -----------------------------
# Parsing entry points
# -----------------------------
def parse_with(rules: RuleList, text: Optional[str]) -> List[EffectTD]:
    """Apply every rule, collecting every match, in rule order."""
    if not text:
        return []
    out: List[EffectTD] = []
    for pattern, fn in rules:
        for m in pattern.finditer(text):
            out.append(fn(m))
    return out


def parse_outcome(text: Optional[str]) -> List[EffectTD]:
    return parse_with(DICE_OUTCOME_RULES, text)


def parse_card_effect(text: Optional[str]) -> List[EffectTD]:
    return parse_with(CARD_EFFECT_RULES, text)


def split_effects(effects: List[EffectTD]) -> Tuple[List[EffectTD], List[EffectTD], List[EffectTD]]:
    """(resource effects, move directives, card-draw directives)"""
    moves = [e for e in effects if e["kind"] == "move"]
    draws = [e for e in effects if e["kind"] == "draw_card"]
    res = [e for e in effects if e["kind"] not in ("move", "draw_card")]
    return res, moves, draws


# -----------------------------
# Applying resource effects
# -----------------------------
def _clamp_pct(v: int) -> int:
    return max(SCOPE_MIN, min(SCOPE_MAX, v))


def _apply_scope_pct(r: ResourcesTD, amount: int) -> None:
    r["scope"] = _clamp_pct(r["scope"] + amount)


def _apply_quality_pct(r: ResourcesTD, amount: int) -> None:
    r["quality"] = _clamp_pct(r["quality"] + amount)


def _apply_plain(field: str) -> Callable[[ResourcesTD, int], None]:
    def _fn(r: ResourcesTD, amount: int) -> None:
        r[field] = r[field] + amount  # type: ignore[literal-required]
    return _fn


RESOURCE_APPLIERS: Dict[str, Callable[[ResourcesTD, int], None]] = {
    "money": _apply_plain("money"),
    "time_bonus": _apply_plain("time_bonus"),
    "cost_reduction": _apply_plain("cost_reduction"),
    "expertise": _apply_plain("expertise"),
    "scope_pct": _apply_scope_pct,
    "quality_pct": _apply_quality_pct,
    "quality": _apply_quality_pct,
    "scope": _apply_scope_pct,
}


def apply_resource_effects(resources: ResourcesTD, effects: List[EffectTD]) -> ResourcesTD:
    """Return a copy of `resources` with every resource effect applied; others are skipped."""
    out: ResourcesTD = copy.deepcopy(resources)
    for e in effects:
        fn = RESOURCE_APPLIERS.get(e["kind"])
        if fn is not None:
            fn(out, int(e.get("amount", 0)))
    return out
