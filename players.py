#!/usr/bin/env python3
"""
players.py — Player roster and turn rotation

The roster is an ordered list of {"name", "palette"}; order == turn order.

Rules:
- at least one player, at most one per palette
- names are non-blank and unique, palettes are unique
- rotation skips finished players; when everyone has finished there is no
  next player (None)

by Sziller
"""

from __future__ import annotations

from typing import Callable, Iterable, List, Optional, Sequence, TypedDict

from errors import RuleViolation


PALETTES = ("spring", "summer", "autumn", "winter")
MAX_PLAYERS = len(PALETTES)


class PlayerTD(TypedDict):
    name: str
    palette: str


def roster_problems(players: Sequence[PlayerTD]) -> List[str]:
    problems: List[str] = []
    if not players:
        return ["at least one player is required"]
    if len(players) > MAX_PLAYERS:
        problems.append(f"at most {MAX_PLAYERS} players are supported")

    names = [str(p.get("name", "")).strip() for p in players]
    if any(not n for n in names):
        problems.append("player names must not be blank")
    if len(set(names)) != len(names):
        problems.append("player names must be unique")

    palettes = [p.get("palette") for p in players]
    if any(pal not in PALETTES for pal in palettes):
        problems.append(f"palette must be one of {', '.join(PALETTES)}")
    if len(set(palettes)) != len(palettes):
        problems.append("each player needs a different palette")
    return problems


def build_roster(names: Iterable[str], palettes: Optional[Sequence[str]] = None) -> List[PlayerTD]:
    """Roster from names; palettes default to the palette order. Raises RuleViolation."""
    clean = [str(n).strip() for n in names]
    pals = list(palettes) if palettes else list(PALETTES[: len(clean)])
    if len(pals) < len(clean):
        pals += [""] * (len(clean) - len(pals))

    roster: List[PlayerTD] = [{"name": n, "palette": p} for n, p in zip(clean, pals)]
    problems = roster_problems(roster)
    if problems:
        raise RuleViolation("; ".join(problems))
    return roster


def player_names(players: Sequence[PlayerTD]) -> List[str]:
    return [p["name"] for p in players]


def next_player_index(
    names: Sequence[str],
    current_index: int,
    finished: Iterable[str],
    *,
    should_skip: Optional[Callable[[str], bool]] = None,
) -> Optional[int]:
    """
    Index of the next player after `current_index` who has not finished.
    `should_skip(name)` may veto a candidate once (it is expected to consume
    the skip). Returns None when every player has finished.
    """
    if not names:
        return None
    done = set(finished)
    if all(n in done for n in names):
        return None

    n = len(names)
    idx = current_index
    # two laps: the first may be spent on skips
    for _ in range(2 * n):
        idx = (idx + 1) % n
        name = names[idx]
        if name in done:
            continue
        if should_skip is not None and should_skip(name):
            continue
        return idx

    # everyone left was skipped; fall back to the first unfinished player
    idx = current_index
    for _ in range(n):
        idx = (idx + 1) % n
        if names[idx] not in done:
            return idx
    return None


def first_active_index(names: Sequence[str], finished: Iterable[str]) -> Optional[int]:
    done = set(finished)
    for i, name in enumerate(names):
        if name not in done:
            return i
    return None
