import pytest

from errors import PersistenceError, RuleViolation
from events import CARDS_CHANGED, ROLL_CHANGED
from session import collect_events

from conftest import advance_to


ARCH = "ARCH-INITIATION"
CON = "CON-INITIATION"
PM = "PM-DECISION-CHECK"


@pytest.fixture
def at_arch(game):
    advance_to(game, ARCH)
    return game


def test_resource_outcomes_apply_at_once(at_arch) -> None:
    before = at_arch.resources("Ann")

    result = at_arch.roll("Ann", 1)

    after = at_arch.resources("Ann")
    assert result["roll"] == 1
    assert result["pending_move"] == CON
    assert after["money"] == before["money"] - 500
    assert after["time_bonus"] == before["time_bonus"] - 2
    assert "Pay $500 and lose 2 days" in result["outcomes"]


def test_dice_draw_goes_straight_to_the_collection(at_arch) -> None:
    events = collect_events(at_arch, [CARDS_CHANGED, ROLL_CHANGED])

    at_arch.roll("Ann", 2)

    held = at_arch.progress.get_player_cards("Ann", include_staged=False)["W"]
    assert len(held) == 1
    assert held[0]["card_id"] in {"W1", "W2"}
    assert at_arch.store.load("cardHistory")["Ann"]["drawn"] == [held[0]["card_id"]]
    assert {e.channel for e in events} == {CARDS_CHANGED, ROLL_CHANGED}


def test_first_legal_destination_becomes_pending(at_arch) -> None:
    at_arch.roll("Ann", 6)

    assert at_arch.turn()["pending_move"] == PM
    assert at_arch.available_moves("Ann") == [PM]
    assert at_arch.resources("Ann")["time_bonus"] == 1
    assert at_arch.end_turn("Ann")["moved_to"] == PM


def test_one_roll_per_requirement(at_arch) -> None:
    at_arch.roll("Ann", 3)
    with pytest.raises(RuleViolation, match="Already rolled"):
        at_arch.roll("Ann", 4)


def test_invalid_die_value(at_arch) -> None:
    with pytest.raises(RuleViolation):
        at_arch.roll("Ann", 7)
    assert at_arch.roll_state()["rolls_completed"] == 0


def test_roll_is_recorded_and_committed(at_arch) -> None:
    at_arch.roll("Ann", 1)

    record = at_arch.store.load("diceRoll")
    assert (record["player"], record["space"], record["roll"]) == ("Ann", ARCH, 1)
    staged = at_arch.temporary_state("Ann")["dice_rolls"]
    assert staged["rolls"] == [1]
    assert "CON-INITIATION - Approved" in staged["outcomes"]

    at_arch.end_turn("Ann")

    history = at_arch.progress.load_state()["roll_history"]
    assert history[-1]["player"] == "Ann"
    assert history[-1]["space"] == ARCH
    assert history[-1]["rolls"] == [1]


def test_multi_roll_space_waits_for_every_roll(game) -> None:
    advance_to(game, CON)

    first = game.roll("Ann", 1)
    assert first["pending_move"] is None
    assert game.available_moves("Ann") == []
    assert game.resources("Ann")["time_bonus"] == -1

    second = game.roll("Ann", 2)
    assert second["roll_state"]["has_rolled"] is True
    assert second["pending_move"] == "FINISH"


def test_empty_deck_is_logged_not_raised(game) -> None:
    state = game.progress.load_state()
    player_cards, history = {}, {}
    draws = [{"kind": "draw_card", "card_type": "L", "count": 2, "source": "draw 2 L cards"}]

    drawn = game.outcomes.drain_card_draws(state, player_cards, history, "Ann", draws)

    assert drawn == ["L1"]
    assert [c["card_id"] for c in player_cards["Ann"]["L"]] == ["L1"]
    assert state["game_log"][-1]["action"] == "card_draw_failed"


def test_failed_roll_write_returns_drawn_cards(at_arch, monkeypatch) -> None:
    deck_before = at_arch.cards.deck_size("W")
    save_many = at_arch.store.save_many

    def failing_roll_save(records):
        if "diceRoll" in records:
            return False
        return save_many(records)

    monkeypatch.setattr(at_arch.store, "save_many", failing_roll_save)
    with pytest.raises(PersistenceError):
        at_arch.roll("Ann", 2)

    assert at_arch.cards.deck_size("W") == deck_before
    assert at_arch.progress.get_player_cards("Ann", include_staged=False)["W"] == []
    assert at_arch.store.load("cardHistory")["Ann"]["drawn"] == []
    assert at_arch.roll_state()["rolls_completed"] == 0
    assert at_arch.temporary_state("Ann") is None

    monkeypatch.undo()
    at_arch.roll("Ann", 2)

    assert at_arch.cards.deck_size("W") == deck_before - 1
    assert len(at_arch.progress.get_player_cards("Ann", include_staged=False)["W"]) == 1
