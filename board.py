#!/usr/bin/env python3
"""
board.py — Board graph: spaces, successors, dice tables and move legality

The board is a directed graph of named spaces loaded from two CSV datasets:

- spaces.csv       one row per (space, visit type): phase, texts, time, fee,
                   successors "Space 1".."Space 5", optional "Branch Paths",
                   negotiate flag, card/fee requirement columns
- dice_outcomes.csv one row per (space, visit type, roll label) with the
                   outcome text for each die value 1..6

Move resolution, in order:
1) the space has MOVEMENT dice and the player has not rolled -> no moves yet
2) rolled -> the destination resolved from the first roll is the only move
3) otherwise the successors + branch paths (deduplicated, in order)
4) nothing declared and no movement dice -> next space on the main path

Successor and outcome cells may read "DESTINATION - description"; only the
part before " - " is the space name.

Rules:
- dataset problems (missing file / columns, main path space missing) fail
  initialize() with a structured error list
- single bad cells (unknown target, missing dice row) are warnings and resolve
  to "no move" / "no outcome"
- query methods never raise for unknown spaces; they return None / [] / False

by Sziller
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Sequence, TypedDict

from config import DEFAULT_DATA_DIR, FINISH_SPACE, MAIN_PATH, MULTI_ROLL_SPACES
from csv_tables import ParsedTableTD, cell_text, parse_csv_text, read_csv_file, require_columns
from errors import DataIntegrityError
from events import ReadyBarrier
from outcome_rules import clean_move_text, parse_outcome


log = logging.getLogger(__name__)


SPACE_REQUIRED_COLUMNS = (
    "Space Name", "Phase", "Visit Type", "Event", "Action", "Outcome", "Time", "Fee",
    "Space 1", "Space 2", "Space 3", "Space 4", "Space 5", "Negotiate",
)
DICE_REQUIRED_COLUMNS = ("Space Name", "Die Roll", "Visit Type", "1", "2", "3", "4", "5", "6")

SUCCESSOR_COLUMNS = ("Space 1", "Space 2", "Space 3", "Space 4", "Space 5")

# requirement column -> card type
REQUIREMENT_CARD_COLUMNS = {
    "W Card": "W",
    "B Card": "B",
    "I Card": "I",
    "L card": "L",
    "E Card": "E",
}

# Dice rows with these labels never move a player
NON_MOVEMENT_LABELS = frozenset({
    "Time outcomes", "Quality", "Multiplier", "Fee Paid",
    "W Cards", "B Cards", "I Cards", "L Cards", "E Cards",
})

# Legacy spellings found in older datasets
SPACE_ALIASES = {
    "REG-FDNY-PLAN EXAM": "REG-FDNY-PLAN-EXAM",
}

EXCLUDED_CELLS = {"", "n/a", "na", "none", "-"}


# -----------------------------
# Records
# -----------------------------
class RequirementsTD(TypedDict):
    cards: Dict[str, int]   # card type -> minimum count held
    fee: int


class SpaceVisitTD(TypedDict):
    visit_type: str
    event: str
    action: str
    outcome: str
    time: int
    fee: int
    successors: List[str]
    requirements: RequirementsTD


class SpaceTD(TypedDict):
    name: str
    phase: str
    can_negotiate: bool
    branch_paths: List[str]
    visits: Dict[str, SpaceVisitTD]


class DiceEntryTD(TypedDict):
    space: str
    visit_type: str
    label: str
    outcomes: Dict[int, str]


class InitResultTD(TypedDict):
    success: bool
    errors: List[str]
    warnings: List[str]


# -----------------------------
# Cell helpers
# -----------------------------
def normalize_space_name(text: str) -> str:
    s = " ".join(str(text).split()).upper()
    return SPACE_ALIASES.get(s, s)


def normalize_visit_type(text: str) -> str:
    s = str(text).strip().lower()
    if s.startswith("sub"):
        return "Subsequent"
    if s.startswith("first"):
        return "First"
    return str(text).strip()


def parse_amount(text: str) -> int:
    """'$1,500' -> 1500 ; '3 days' -> 3 ; anything without digits -> 0."""
    digits = "".join(ch for ch in str(text).split(".")[0] if ch.isdigit())
    return int(digits) if digits else 0


def is_excluded(cell: str) -> bool:
    return cell.strip().lower() in EXCLUDED_CELLS


# -----------------------------
# BoardGraph
# -----------------------------
class BoardGraph:
    def __init__(
        self,
        data_dir: Path = DEFAULT_DATA_DIR,
        *,
        main_path: Sequence[str] = MAIN_PATH,
        spaces_file: str = "spaces.csv",
        dice_file: str = "dice_outcomes.csv",
        spaces_table: Optional[ParsedTableTD] = None,
        dice_table: Optional[ParsedTableTD] = None,
    ) -> None:
        self.data_dir = Path(data_dir)
        self.spaces_file = spaces_file
        self.dice_file = dice_file
        self._main_path: List[str] = [normalize_space_name(s) for s in main_path]
        self._spaces_table = spaces_table
        self._dice_table = dice_table

        self.ready = ReadyBarrier("board")
        self._result: Optional[InitResultTD] = None

        self._spaces: Dict[str, SpaceTD] = {}
        self._dice: Dict[str, List[DiceEntryTD]] = {}
        self._successor_cache: Dict[tuple, List[str]] = {}
        self._valid: FrozenSet[str] = frozenset()

    @classmethod
    def from_csv_text(cls, spaces_text: str, dice_text: str, *, main_path: Sequence[str] = MAIN_PATH) -> "BoardGraph":
        return cls(
            main_path=main_path,
            spaces_table=parse_csv_text(spaces_text),
            dice_table=parse_csv_text(dice_text),
        )

    # ---- loading
    @property
    def is_ready(self) -> bool:
        return self._result is not None and self._result["success"]

    def initialize(self) -> InitResultTD:
        """Load and index both datasets. Calling it again returns the first result."""
        if self._result is not None:
            return self._result

        warnings: List[str] = []
        try:
            spaces = self._spaces_table or read_csv_file(self.data_dir / self.spaces_file)
            dice = self._dice_table or read_csv_file(self.data_dir / self.dice_file)
            require_columns(spaces, SPACE_REQUIRED_COLUMNS, source=self.spaces_file)
            require_columns(dice, DICE_REQUIRED_COLUMNS, source=self.dice_file)

            self._index_spaces(spaces["rows"])
            self._index_dice(dice["rows"])

            missing = [s for s in self._main_path if s not in self._spaces]
            if missing:
                raise DataIntegrityError(f"Main path spaces missing from {self.spaces_file}: {', '.join(missing)}")

            warnings.extend(self._cross_validate())
        except DataIntegrityError as exc:
            log.error("Board data failed to load: %s", exc)
            self._spaces.clear()
            self._dice.clear()
            self._result = {"success": False, "errors": [str(exc)], "warnings": warnings}
            self.ready.fail(exc)
            return self._result

        self._valid = self._build_valid_spaces()
        for w in warnings:
            log.warning("Board data: %s", w)
        log.info("Board loaded: %d spaces, %d dice tables", len(self._spaces), len(self._dice))

        self._result = {"success": True, "errors": [], "warnings": warnings}
        self.ready.resolve()
        return self._result

    def _index_spaces(self, rows: List[Dict[str, Any]]) -> None:
        for row in rows:
            name = normalize_space_name(cell_text(row, "Space Name"))
            if not name:
                continue
            visit_type = normalize_visit_type(cell_text(row, "Visit Type")) or "First"

            sp = self._spaces.get(name)
            if sp is None:
                sp = {
                    "name": name,
                    "phase": cell_text(row, "Phase") or "UNKNOWN",
                    "can_negotiate": cell_text(row, "Negotiate").upper() == "YES",
                    "branch_paths": [],
                    "visits": {},
                }
                self._spaces[name] = sp

            for raw in cell_text(row, "Branch Paths").split(","):
                if raw.strip() and not is_excluded(raw):
                    bp = normalize_space_name(clean_move_text(raw))
                    if bp not in sp["branch_paths"]:
                        sp["branch_paths"].append(bp)

            successors: List[str] = []
            for col in SUCCESSOR_COLUMNS:
                cell = cell_text(row, col)
                if is_excluded(cell):
                    continue
                succ = normalize_space_name(clean_move_text(cell))
                if succ and succ not in successors:
                    successors.append(succ)

            cards = {}
            for col, card_type in REQUIREMENT_CARD_COLUMNS.items():
                v = row.get(col, "")
                if isinstance(v, int) and not isinstance(v, bool) and v > 0:
                    cards[card_type] = v

            sp["visits"][visit_type] = {
                "visit_type": visit_type,
                "event": cell_text(row, "Event"),
                "action": cell_text(row, "Action"),
                "outcome": cell_text(row, "Outcome"),
                "time": parse_amount(cell_text(row, "Time")),
                "fee": parse_amount(cell_text(row, "Fee")),
                "successors": successors,
                "requirements": {"cards": cards, "fee": parse_amount(cell_text(row, "Fee"))},
            }

    def _index_dice(self, rows: List[Dict[str, Any]]) -> None:
        for row in rows:
            name = normalize_space_name(cell_text(row, "Space Name"))
            if not name:
                continue
            entry: DiceEntryTD = {
                "space": name,
                "visit_type": normalize_visit_type(cell_text(row, "Visit Type")) or "First",
                "label": cell_text(row, "Die Roll"),
                "outcomes": {i: cell_text(row, str(i)) for i in range(1, 7)},
            }
            self._dice.setdefault(name, []).append(entry)

    def _cross_validate(self) -> List[str]:
        out: List[str] = []
        for name in self._dice:
            if name not in self._spaces:
                out.append(f"Dice outcomes reference unknown space {name}")
        for name, sp in self._spaces.items():
            for v in sp["visits"].values():
                if v["action"].upper() == "ROLL" and not self._dice.get(name):
                    out.append(f"Space {name} asks for a roll but has no dice outcomes")
                for succ in v["successors"]:
                    if succ not in self._spaces:
                        out.append(f"Space {name} points to unknown space {succ}")
            for bp in sp["branch_paths"]:
                if bp not in self._spaces:
                    out.append(f"Space {name} has unknown branch path {bp}")
        return out

    def _build_valid_spaces(self) -> FrozenSet[str]:
        valid = set(self._main_path)
        for name, sp in self._spaces.items():
            valid.add(name)
            for v in sp["visits"].values():
                valid.update(s for s in v["successors"] if s in self._spaces)
            valid.update(b for b in sp["branch_paths"] if b in self._spaces)
        return frozenset(valid)

    # ---- space queries
    def get_space_data(self, name: str) -> Optional[SpaceTD]:
        if not name:
            return None
        return self._spaces.get(normalize_space_name(name))

    def get_space_visit(self, name: str, visit_type: str = "First") -> Optional[SpaceVisitTD]:
        """Row for the visit type; falls back to the First row, then to any row."""
        sp = self.get_space_data(name)
        if sp is None or not sp["visits"]:
            return None
        visits = sp["visits"]
        return visits.get(visit_type) or visits.get("First") or next(iter(visits.values()))

    def space_names(self) -> List[str]:
        return list(self._spaces.keys())

    def get_all_valid_spaces(self) -> FrozenSet[str]:
        return self._valid

    def get_main_path(self) -> List[str]:
        return list(self._main_path)

    def is_on_main_path(self, name: str) -> bool:
        return normalize_space_name(name) in self._main_path if name else False

    def get_phase_for_space(self, name: str) -> str:
        sp = self.get_space_data(name)
        return sp["phase"] if sp else "UNKNOWN"

    def can_negotiate(self, name: str) -> bool:
        sp = self.get_space_data(name)
        return bool(sp and sp["can_negotiate"])

    def is_terminal(self, name: str) -> bool:
        return normalize_space_name(name) == FINISH_SPACE if name else False

    def get_time_cost(self, name: str, visit_type: str = "First") -> int:
        v = self.get_space_visit(name, visit_type)
        return v["time"] if v else 0

    def get_action_requirements(self, name: str, visit_type: str = "First") -> RequirementsTD:
        v = self.get_space_visit(name, visit_type)
        if v is None:
            return {"cards": {}, "fee": 0}
        return {"cards": dict(v["requirements"]["cards"]), "fee": v["requirements"]["fee"]}

    def check_action_requirements(
        self,
        name: str,
        visit_type: str,
        *,
        money: int,
        card_counts: Dict[str, int],
    ) -> List[str]:
        """Unmet requirements as readable reasons; [] when everything is satisfied."""
        req = self.get_action_requirements(name, visit_type)
        unmet: List[str] = []
        for card_type, needed in req["cards"].items():
            have = int(card_counts.get(card_type, 0))
            if have < needed:
                unmet.append(f"needs {needed} {card_type} card(s), holds {have}")
        if req["fee"] and money < req["fee"]:
            unmet.append(f"needs ${req['fee']} for the fee, has ${money}")
        return unmet

    # ---- dice queries
    def get_dice_entries(self, name: str, visit_type: Optional[str] = None) -> List[DiceEntryTD]:
        if not name:
            return []
        entries = self._dice.get(normalize_space_name(name), [])
        if visit_type is None:
            return list(entries)
        return [e for e in entries if e["visit_type"] == visit_type]

    def is_dice_roll_required(self, name: str, visit_type: str = "First") -> bool:
        return bool(self.get_dice_entries(name, visit_type))

    def get_rolls_required(self, name: str, visit_type: str = "First") -> int:
        key = normalize_space_name(name) if name else ""
        if key in MULTI_ROLL_SPACES:
            return MULTI_ROLL_SPACES[key]
        return 1 if self.is_dice_roll_required(key, visit_type) else 0

    def _movement_entries(self, name: str, visit_type: str) -> List[DiceEntryTD]:
        return [e for e in self.get_dice_entries(name, visit_type) if e["label"] not in NON_MOVEMENT_LABELS]

    def resolve_destination(self, text: Optional[str]) -> Optional[str]:
        """Known space named by an outcome: 'move to X ...' or 'X - description'."""
        if not text:
            return None
        for effect in parse_outcome(text):
            if effect["kind"] == "move":
                target = normalize_space_name(effect["target"])
                if target in self._spaces:
                    return target
        cand = normalize_space_name(clean_move_text(text))
        return cand if cand in self._spaces else None

    def has_movement_dice(self, name: str, visit_type: str = "First") -> bool:
        for e in self._movement_entries(name, visit_type):
            if any(self.resolve_destination(t) for t in e["outcomes"].values()):
                return True
        return False

    def get_dice_outcome(self, name: str, roll: int, visit_type: str = "First") -> Optional[str]:
        """Raw text of the movement row for this roll (None if there is none)."""
        if not name or not isinstance(roll, int) or not 1 <= roll <= 6:
            return None
        for e in self._movement_entries(name, visit_type):
            text = e["outcomes"].get(roll, "")
            if text and not is_excluded(text):
                return text
        return None

    def get_dice_outcomes(self, name: str, roll: int, visit_type: str = "First") -> Dict[str, str]:
        """Every row's text for this roll, keyed by the row label."""
        if not isinstance(roll, int) or not 1 <= roll <= 6:
            return {}
        out: Dict[str, str] = {}
        for e in self.get_dice_entries(name, visit_type):
            text = e["outcomes"].get(roll, "")
            if text and not is_excluded(text):
                out[e["label"]] = text
        return out

    def get_dice_destination(self, name: str, roll: int, visit_type: str = "First") -> Optional[str]:
        dest = self.resolve_destination(self.get_dice_outcome(name, roll, visit_type))
        if dest is None and self.get_dice_outcome(name, roll, visit_type):
            log.debug("Dice outcome at %s for roll %s names no known space", name, roll)
        return dest

    # ---- moves
    def _static_moves(self, name: str, visit_type: str) -> List[str]:
        key = (name, visit_type)
        if key in self._successor_cache:
            return list(self._successor_cache[key])

        sp = self._spaces.get(name)
        visit = self.get_space_visit(name, visit_type)
        moves: List[str] = []
        if sp is not None and visit is not None:
            for s in list(visit["successors"]) + list(sp["branch_paths"]):
                if s in self._spaces and s not in moves:
                    moves.append(s)
        self._successor_cache[key] = moves
        return list(moves)

    def get_available_moves_for_space(
        self,
        name: str,
        *,
        visit_type: str = "First",
        has_rolled: bool = False,
        rolls: Iterable[int] = (),
    ) -> List[str]:
        if not self.is_ready or not name:
            return []
        space = normalize_space_name(name)
        if space not in self._spaces or space == FINISH_SPACE:
            return []

        movement_dice = self.has_movement_dice(space, visit_type)
        if movement_dice:
            if not has_rolled:
                return []
            rolls = list(rolls)
            if rolls:
                dest = self.get_dice_destination(space, rolls[0], visit_type)
                if dest:
                    return [dest]

        moves = self._static_moves(space, visit_type)
        if not moves and not movement_dice and space in self._main_path:
            idx = self._main_path.index(space)
            if idx < len(self._main_path) - 1:
                moves = [self._main_path[idx + 1]]
        return moves

    def validate_move_sequence(
        self,
        from_space: str,
        to_space: str,
        *,
        visit_type: str = "First",
        has_rolled: bool = False,
        rolls: Iterable[int] = (),
    ) -> bool:
        if not from_space or not to_space:
            return False
        target = normalize_space_name(to_space)
        if target not in self._valid:
            return False
        moves = self.get_available_moves_for_space(
            from_space, visit_type=visit_type, has_rolled=has_rolled, rolls=rolls,
        )
        return target in moves

    def is_decision_point(self, name: str, visit_type: str = "First") -> bool:
        return len(self._static_moves(normalize_space_name(name), visit_type)) > 1 if name else False
