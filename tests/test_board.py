from board import BoardGraph, normalize_space_name, parse_amount
from config import DEFAULT_DATA_DIR, MAIN_PATH

from conftest import DICE_CSV, MINI_PATH, SPACES_CSV


def test_initialize_is_idempotent(board: BoardGraph) -> None:
    first = board.initialize()
    assert first["success"] is True
    assert board.initialize() is first
    assert board.ready.is_ready


def test_space_queries(board: BoardGraph) -> None:
    assert board.get_space_data("arch-initiation")["phase"] == "Design"
    assert board.get_space_data("NOPE") is None
    assert board.get_phase_for_space("NOPE") == "UNKNOWN"
    assert board.can_negotiate("PM-DECISION-CHECK") is True
    assert board.can_negotiate("ARCH-INITIATION") is False
    assert board.is_terminal("FINISH") is True
    assert board.get_main_path() == MINI_PATH
    assert board.is_on_main_path("CON-INITIATION")


def test_visit_rows_fall_back_to_first(board: BoardGraph) -> None:
    assert board.get_time_cost("OWNER-SCOPE-INITIATION", "First") == 2
    assert board.get_time_cost("OWNER-SCOPE-INITIATION", "Subsequent") == 1
    assert board.get_time_cost("CON-INITIATION", "Subsequent") == 4
    assert board.get_time_cost("NOPE") == 0


def test_static_successors_with_composite_cells(board: BoardGraph) -> None:
    moves = board.get_available_moves_for_space("PM-DECISION-CHECK")
    assert moves == ["ARCH-INITIATION", "OWNER-SCOPE-INITIATION"]
    assert board.is_decision_point("PM-DECISION-CHECK") is True
    assert board.get_available_moves_for_space("PM-DECISION-CHECK", visit_type="Subsequent") == ["ARCH-INITIATION"]


def test_movement_dice_hide_moves_until_rolled(board: BoardGraph) -> None:
    assert board.get_available_moves_for_space("ARCH-INITIATION") == []
    rolled = board.get_available_moves_for_space("ARCH-INITIATION", has_rolled=True, rolls=[5])
    assert rolled == ["PM-DECISION-CHECK"]


def test_destination_comes_from_the_first_roll(board: BoardGraph) -> None:
    moves = board.get_available_moves_for_space("ARCH-INITIATION", has_rolled=True, rolls=[1, 6])
    assert moves == ["CON-INITIATION"]


def test_finish_and_unknown_spaces_have_no_moves(board: BoardGraph) -> None:
    assert board.get_available_moves_for_space("FINISH") == []
    assert board.get_available_moves_for_space("NOWHERE") == []
    assert board.get_available_moves_for_space("") == []


def test_dice_queries(board: BoardGraph) -> None:
    assert board.get_rolls_required("ARCH-INITIATION") == 1
    assert board.get_rolls_required("CON-INITIATION") == 2
    assert board.get_rolls_required("PM-DECISION-CHECK") == 0
    assert board.get_dice_outcome("ARCH-INITIATION", 4) == "PM-DECISION-CHECK - Redesign"
    assert board.get_dice_outcome("ARCH-INITIATION", 7) is None
    assert board.get_dice_destination("ARCH-INITIATION", 2) == "CON-INITIATION"
    assert board.get_dice_outcomes("ARCH-INITIATION", 1) == {
        "Next Step": "CON-INITIATION - Approved",
        "Time outcomes": "Pay $500 and lose 2 days",
    }


def test_validate_move_sequence(board: BoardGraph) -> None:
    assert board.validate_move_sequence("OWNER-SCOPE-INITIATION", "PM-DECISION-CHECK")
    assert not board.validate_move_sequence("OWNER-SCOPE-INITIATION", "FINISH")
    assert not board.validate_move_sequence("OWNER-SCOPE-INITIATION", "NOWHERE")
    assert not board.validate_move_sequence("", "FINISH")


def test_main_path_fallback_when_nothing_declared() -> None:
    spaces = (
        "Space Name,Phase,Visit Type,Event,Action,Outcome,Time,Fee,Space 1,Space 2,Space 3,Space 4,Space 5,Negotiate\n"
        "A,P,First,,,,1,,N/A,N/A,N/A,N/A,N/A,NO\n"
        "B,P,First,,,,1,,N/A,N/A,N/A,N/A,N/A,NO\n"
        "FINISH,End,First,,,,0,,N/A,N/A,N/A,N/A,N/A,NO\n"
    )
    dice = "Space Name,Die Roll,Visit Type,1,2,3,4,5,6\n"
    b = BoardGraph.from_csv_text(spaces, dice, main_path=["A", "B", "FINISH"])
    assert b.initialize()["success"]
    assert b.get_available_moves_for_space("A") == ["B"]
    assert b.get_available_moves_for_space("B") == ["FINISH"]


def test_unknown_successor_is_a_warning_not_an_error() -> None:
    spaces = SPACES_CSV.replace('"OWNER-SCOPE-INITIATION - Revise"', "GHOST-SPACE")
    b = BoardGraph.from_csv_text(spaces, DICE_CSV, main_path=MINI_PATH)
    result = b.initialize()

    assert result["success"] is True
    assert any("GHOST-SPACE" in w for w in result["warnings"])
    assert b.get_available_moves_for_space("PM-DECISION-CHECK") == ["ARCH-INITIATION"]
    assert "GHOST-SPACE" not in b.get_all_valid_spaces()


def test_missing_columns_fail_initialization() -> None:
    b = BoardGraph.from_csv_text("Space Name,Phase\nA,P\n", "Space Name\nA\n", main_path=["A"])
    result = b.initialize()

    assert result["success"] is False
    assert result["errors"]
    assert b.ready.is_settled and not b.ready.is_ready
    assert b.get_available_moves_for_space("A") == []


def test_main_path_space_missing_from_table_is_fatal() -> None:
    b = BoardGraph.from_csv_text(SPACES_CSV, DICE_CSV, main_path=MINI_PATH + ["EXTRA-SPACE"])
    result = b.initialize()
    assert result["success"] is False
    assert "EXTRA-SPACE" in result["errors"][0]


def test_action_requirements() -> None:
    row = 'Pick a path,1,,"ARCH-INITIATION - Proceed","OWNER-SCOPE-INITIATION - Revise",N/A,N/A,N/A,,YES,,,,,'
    assert row in SPACES_CSV
    spaces = SPACES_CSV.replace(row, row.replace("1,,", "1,$250,", 1)[:-5] + ",2,,,,")
    b = BoardGraph.from_csv_text(spaces, DICE_CSV, main_path=MINI_PATH)
    b.initialize()

    assert b.get_action_requirements("PM-DECISION-CHECK") == {"cards": {"W": 2}, "fee": 250}
    unmet = b.check_action_requirements("PM-DECISION-CHECK", "First", money=100, card_counts={"W": 1})
    assert len(unmet) == 2
    assert b.check_action_requirements("PM-DECISION-CHECK", "First", money=300, card_counts={"W": 2}) == []


def test_helpers() -> None:
    assert normalize_space_name("  reg-fdny-plan   exam ") == "REG-FDNY-PLAN-EXAM"
    assert parse_amount("$1,500") == 1500
    assert parse_amount("3 days") == 3
    assert parse_amount("") == 0


def test_bundled_board_loads_with_full_main_path() -> None:
    b = BoardGraph(DEFAULT_DATA_DIR)
    result = b.initialize()

    assert result["success"] is True, result["errors"]
    assert result["warnings"] == []
    assert b.get_main_path() == MAIN_PATH
    assert set(MAIN_PATH) <= b.get_all_valid_spaces()
    assert "REG-DOB-PROF-CERT" in b.get_all_valid_spaces()
    assert b.get_available_moves_for_space("REG-FDNY-FEE-REVIEW") == ["REG-FDNY-PLAN-EXAM"]
    assert b.get_available_moves_for_space("REG-DOB-TYPE-SELECT") == ["REG-DOB-PLAN-EXAM", "REG-DOB-PROF-CERT"]


def _assert_every_move_validates(b: BoardGraph) -> int:
    checked = 0
    for space in sorted(b.get_all_valid_spaces()):
        for visit_type in ("First", "Subsequent"):
            situations = [{"has_rolled": False, "rolls": []}]
            if b.has_movement_dice(space, visit_type):
                situations += [{"has_rolled": True, "rolls": [r]} for r in range(1, 7)]
            for kw in situations:
                for move in b.get_available_moves_for_space(space, visit_type=visit_type, **kw):
                    assert b.validate_move_sequence(space, move, visit_type=visit_type, **kw), (space, move, kw)
                    checked += 1
    return checked


def test_available_moves_always_validate(board: BoardGraph) -> None:
    assert _assert_every_move_validates(board) > 0

    bundled = BoardGraph(DEFAULT_DATA_DIR)
    assert bundled.initialize()["success"] is True
    assert _assert_every_move_validates(bundled) > 0
