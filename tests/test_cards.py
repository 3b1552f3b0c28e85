import random

import pytest

from cards import (
    CardManager,
    add_to_collection,
    card_counts,
    collection_holder,
    loan_total,
    remove_from_collection,
    space_color,
)
from config import DEFAULT_DATA_DIR
from csv_tables import parse_csv_text
from state import build_progress_state, empty_cards

from conftest import CARD_HEADER, CARDS_CSV, MINI_PATH


def _progress(position="OWNER-SCOPE-INITIATION", money=10000):
    p = build_progress_state(
        ["Ann"], main_path=MINI_PATH, valid_spaces=MINI_PATH, start_position=position,
    )
    p["player_states"]["Ann"]["resources"]["money"] = money
    return p


def test_initialize_builds_one_deck_per_type(cards: CardManager) -> None:
    assert cards.is_ready
    assert {t: cards.deck_size(t) for t in "BIWLE"} == {"B": 2, "I": 1, "W": 3, "L": 1, "E": 2}
    assert cards.get_card("E1")["color"] == "Green"
    assert cards.get_card("nope") is None


def test_duplicate_card_ids_fail_initialization(board) -> None:
    tables = {t: parse_csv_text(text) for t, text in CARDS_CSV.items()}
    tables["L"] = parse_csv_text(CARD_HEADER + "W1,Clash,,Lose 1 day,Any Phase,,,,1,,,,\n")
    cm = CardManager(board=board, tables=tables)

    result = cm.initialize()

    assert result["success"] is False
    assert any("W1" in e for e in result["errors"])
    assert not cm.ready.is_ready


def test_draw_is_without_replacement(cards: CardManager) -> None:
    drawn = {cards.draw_card("W")["card_id"] for _ in range(3)}
    assert drawn == {"W1", "W2", "W3"}
    assert cards.draw_card("W") is None


def test_draw_respects_phase_filter(cards: CardManager) -> None:
    card = cards.draw_card("W", {"phase": "Construction"})
    assert card["card_id"] in {"W1", "W3"}
    second = cards.draw_card("W", {"phase": "Construction"})
    assert {card["card_id"], second["card_id"]} == {"W1", "W3"}
    assert cards.draw_card("W", {"phase": "Construction"}) is None


def test_draw_unknown_type(cards: CardManager) -> None:
    with pytest.raises(ValueError):
        cards.draw_card("X")


def test_return_and_discard(cards: CardManager) -> None:
    card = cards.draw_card("L")
    assert cards.deck_size("L") == 0
    assert cards.return_to_deck(card) is True
    assert cards.return_to_deck(card) is False
    assert cards.deck_size("L") == 1

    assert cards.discard_card(card) is True
    assert cards.discard_card(card) is False
    assert [c["card_id"] for c in cards.discards["L"]] == ["L1"]


def test_withdraw_held(cards: CardManager) -> None:
    assert cards.withdraw_held(["W1", "E2", "ZZ"]) == 2
    assert cards.deck_size("W") == 2


def test_phase_comes_from_board_then_prefix(cards: CardManager) -> None:
    assert cards.get_phase_for_space("ARCH-INITIATION") == "Design"
    assert cards.get_phase_for_space("REG-DOB-FINAL-REVIEW") == "Regulatory Review"
    assert space_color("REG-DOB-FINAL-REVIEW") == "Red"


def test_play_blockers(cards: CardManager) -> None:
    progress = _progress()

    assert cards.play_blocker(cards.get_card("W1"), progress, "Ann") is None
    assert "phase" in cards.play_blocker(cards.get_card("W2"), progress, "Ann")
    assert "color" in cards.play_blocker(cards.get_card("E2"), progress, "Ann")
    assert cards.can_play_card(cards.get_card("E1"), progress, "Ann")
    assert cards.can_play_card(cards.get_card("L1"), progress, "Ann")

    assert cards.play_blocker(cards.get_card("B1"), progress, "Ann") is None
    assert "capacity" in cards.play_blocker(cards.get_card("B2"), progress, "Ann")

    assert cards.can_play_card(cards.get_card("I1"), progress, "Ann")
    late = _progress(position="CON-INITIATION")
    assert "investments" in cards.play_blocker(cards.get_card("I1"), late, "Ann")


def test_funding_card_adds_money_and_debt(cards: CardManager) -> None:
    card = cards.get_card("B1")
    progress = _progress()

    after = cards.apply_card_effect(card, progress, "Ann")

    res = after["player_states"]["Ann"]["resources"]
    assert loan_total(card) == 1100
    assert (res["money"], res["debt"]) == (11000, 1100)
    assert progress["player_states"]["Ann"]["resources"]["money"] == 10000
    assert after["game_log"][-1]["action"] == "card_played"


def test_investment_pays_back_later(cards: CardManager) -> None:
    progress = cards.apply_card_effect(cards.get_card("I1"), _progress(), "Ann")
    assert progress["player_states"]["Ann"]["resources"]["money"] == 9500
    assert progress["future_returns"] == [{"player": "Ann", "card_id": "I1", "amount": 800, "turns_remaining": 1}]

    paid = cards.process_future_returns(progress, "Ann")

    assert paid["player_states"]["Ann"]["resources"]["money"] == 10300
    assert paid["future_returns"] == []
    assert paid["game_log"][-1]["action"] == "investment_return"


def test_expert_card_color_match_bonus(cards: CardManager) -> None:
    after = cards.apply_card_effect(cards.get_card("E1"), _progress(), "Ann")
    res = after["player_states"]["Ann"]["resources"]

    assert res["expertise"] == 2
    assert res["time_bonus"] == 1
    assert res["cost_reduction"] == 5
    assert after["game_log"][-1]["details"]["color_match"] is True


def test_text_cards_apply_resource_effects(cards: CardManager) -> None:
    after = cards.apply_card_effect(cards.get_card("W1"), _progress(), "Ann")
    assert after["player_states"]["Ann"]["resources"]["time_bonus"] == 2

    after = cards.apply_card_effect(cards.get_card("L1"), _progress(), "Ann")
    assert after["player_states"]["Ann"]["resources"]["time_bonus"] == -1


def test_collection_helpers_keep_ids_unique() -> None:
    held = {"Ann": empty_cards(), "Bob": empty_cards()}
    card = {"card_id": "W1", "card_type": "W", "disposition": "played"}

    assert add_to_collection(held, "Ann", card) is True
    assert add_to_collection(held, "Bob", card) is False
    assert held["Ann"]["W"] == [{"card_id": "W1", "card_type": "W"}]
    assert collection_holder(held, "W1") == "Ann"
    assert card_counts(held["Ann"])["W"] == 1

    assert remove_from_collection(held, "Bob", "W1") is None
    assert remove_from_collection(held, "Ann", "W1")["card_id"] == "W1"
    assert collection_holder(held, "W1") is None


def test_bundled_decks_load() -> None:
    cm = CardManager(DEFAULT_DATA_DIR, rng=random.Random(1))
    result = cm.initialize()
    assert result == {"success": True, "errors": []}
    assert all(cm.deck_size(t) > 0 for t in "BIWLE")
