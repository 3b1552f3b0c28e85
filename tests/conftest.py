import random

import pytest

from board import BoardGraph
from cards import CardManager
from config import Settings
from csv_tables import parse_csv_text
from session import GameServices
from store import MemoryBackend, Store


MINI_PATH = [
    "OWNER-SCOPE-INITIATION",
    "PM-DECISION-CHECK",
    "ARCH-INITIATION",
    "CON-INITIATION",
    "FINISH",
]

SPACES_CSV = """Space Name,Phase,Visit Type,Event,Action,Outcome,Time,Fee,Space 1,Space 2,Space 3,Space 4,Space 5,Branch Paths,Negotiate,W Card,B Card,I Card,L card,E Card
OWNER-SCOPE-INITIATION,Owner,First,Idea,,Scope,2,,PM-DECISION-CHECK,N/A,N/A,N/A,N/A,,YES,,,,,
OWNER-SCOPE-INITIATION,Owner,Subsequent,Idea again,,Scope,1,,PM-DECISION-CHECK,N/A,N/A,N/A,N/A,,YES,,,,,
PM-DECISION-CHECK,Management,First,Review,Choose,Pick a path,1,,"ARCH-INITIATION - Proceed","OWNER-SCOPE-INITIATION - Revise",N/A,N/A,N/A,,YES,,,,,
PM-DECISION-CHECK,Management,Subsequent,Review again,,Proceed,1,,ARCH-INITIATION,N/A,N/A,N/A,N/A,,YES,,,,,
ARCH-INITIATION,Design,First,Architect,ROLL,Roll decides,3,,N/A,N/A,N/A,N/A,N/A,,NO,,,,,
ARCH-INITIATION,Design,Subsequent,Architect again,ROLL,Roll decides,2,,N/A,N/A,N/A,N/A,N/A,,NO,,,,,
CON-INITIATION,Construction,First,Mobilize,ROLL,Two rolls,4,"$1,000",N/A,N/A,N/A,N/A,N/A,,NO,,,,,
FINISH,End,First,Done,,Done,0,,N/A,N/A,N/A,N/A,N/A,,NO,,,,,
"""

DICE_CSV = """Space Name,Die Roll,Visit Type,1,2,3,4,5,6
ARCH-INITIATION,Next Step,First,CON-INITIATION - Approved,CON-INITIATION - Approved,CON-INITIATION - Approved,PM-DECISION-CHECK - Redesign,PM-DECISION-CHECK - Redesign,PM-DECISION-CHECK - Redesign
ARCH-INITIATION,Time outcomes,First,Pay $500 and lose 2 days,N/A,N/A,N/A,N/A,Save 1 day
ARCH-INITIATION,W Cards,First,N/A,Draw 1 W card,N/A,N/A,N/A,N/A
ARCH-INITIATION,Next Step,Subsequent,CON-INITIATION,CON-INITIATION,CON-INITIATION,CON-INITIATION,CON-INITIATION,CON-INITIATION
CON-INITIATION,Next Step,First,FINISH - Done,FINISH - Done,FINISH - Done,FINISH - Done,FINISH - Done,FINISH - Done
CON-INITIATION,Time outcomes,First,Lose 1 day,N/A,N/A,N/A,N/A,N/A
"""

CARD_HEADER = (
    "Card ID,Card Name,Description,Effect,Phase,Color,Amount,Loan Percentage Cost,"
    "Distribution Level,Skill Type,Skill Points,Return Amount,Return Turns\n"
)

CARDS_CSV = {
    "W": CARD_HEADER + (
        "W1,Renovation,Gut renovation,Reduce 2 days,Any Phase,,,,1,,,,\n"
        "W2,Facade,Facade repair,Increase 5% quality,Design,,,,1,,,,\n"
        "W3,Roof,Roof job,Reduce 1 day,Construction,,,,2,,,,\n"
    ),
    "B": CARD_HEADER + (
        "B1,Bank Loan,Loan,Borrow,Any Phase,,1000,10,1,,,,\n"
        "B2,Big Loan,Loan,Borrow,Any Phase,,100000,10,1,,,,\n"
    ),
    "I": CARD_HEADER + (
        "I1,Angel,Investor,Invest,Owner,,500,,1,,,800,1\n"
    ),
    "L": CARD_HEADER + (
        "L1,Weather,Storms,Lose 1 day,Any Phase,,,,1,,,,\n"
    ),
    "E": CARD_HEADER + (
        "E1,Owner Rep,Speaks for the owner,Reduce 1 day,Owner,Green,,,1,management,1,,\n"
        "E2,Expediter,Knows the DOB,Reduce 2 days,Any Phase,Red,,,1,regulatory,2,,\n"
    ),
}


def make_board() -> BoardGraph:
    b = BoardGraph.from_csv_text(SPACES_CSV, DICE_CSV, main_path=MINI_PATH)
    b.initialize()
    return b


def make_cards(board: BoardGraph, seed: int = 7) -> CardManager:
    cm = CardManager(
        board=board,
        rng=random.Random(seed),
        tables={t: parse_csv_text(text) for t, text in CARDS_CSV.items()},
    )
    cm.initialize()
    return cm


def fast_settings(**overrides) -> Settings:
    values = {"debounce_ms": 0, "retry_backoff_ms": 0, "seed": 7}
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def board():
    return make_board()


@pytest.fixture
def cards(board):
    return make_cards(board)


@pytest.fixture
def store():
    return Store(MemoryBackend(), debounce_ms=0)


@pytest.fixture
def services(board, cards):
    svc = GameServices(fast_settings(), board=board, cards=cards, rng=random.Random(7))
    svc.start()
    yield svc
    svc.close()


@pytest.fixture
def game(services):
    """Two players on the start space with $10,000 each; Ann to act."""
    services.new_game(["Ann", "Bob"], starting_money=10000)
    return services


def advance_to(svc: GameServices, space: str) -> None:
    """Play both players forward along the mini board until Ann stands on `space`."""
    route = {
        "OWNER-SCOPE-INITIATION": [],
        "PM-DECISION-CHECK": ["OWNER-SCOPE-INITIATION"],
        "ARCH-INITIATION": ["OWNER-SCOPE-INITIATION", "PM-DECISION-CHECK"],
        "CON-INITIATION": ["OWNER-SCOPE-INITIATION", "PM-DECISION-CHECK", "ARCH-INITIATION"],
    }[space]
    for here in route:
        for name in ("Ann", "Bob"):
            assert svc.position(name) == here
            if here == "PM-DECISION-CHECK":
                svc.end_turn(name, "ARCH-INITIATION")
            elif here == "ARCH-INITIATION":
                svc.roll(name, 2)
                svc.end_turn(name)
            else:
                svc.end_turn(name)
