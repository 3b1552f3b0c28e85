#!/usr/bin/env python3
"""
web/engine_ui.py — Adapter between web UI and the game engine.

This module is the ONLY place that translates engine state into:
- prompt line text
- available actions (buttons)
- applying a UI action to the engine

The web templates and server must remain dumb.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, TypedDict

from errors import GameError, RuleViolation
from state import CARD_TYPES


class UiActionTD(TypedDict, total=False):
    action_id: str
    label: str
    enabled: bool
    reason: str
    arg: str


# -------------------------------------------------------------------
# Engine hooks
# -------------------------------------------------------------------
def _current_pid(sess: Any) -> Optional[int]:
    if not sess.started:
        return None
    return sess.pid_of(sess.services.current_player())


def _act_roll(sess: Any, name: str, arg: str) -> Any:
    # the die is always thrown server-side
    return sess.services.roll(name)


def _act_select_move(sess: Any, name: str, arg: str) -> Any:
    return sess.services.select_move(name, arg.strip())


def _act_end_turn(sess: Any, name: str, arg: str) -> Any:
    return sess.services.end_turn(name, arg.strip() or None)


def _act_negotiate(sess: Any, name: str, arg: str) -> Any:
    return sess.services.negotiate(name)


def _act_draw_card(sess: Any, name: str, arg: str) -> Any:
    return sess.services.draw_card(name, arg.strip().upper())


def _act_play_card(sess: Any, name: str, arg: str) -> Any:
    card = sess.services.play_card(name, arg.strip())
    if card is None:
        raise RuleViolation(f"You do not hold card {arg}")
    return card


def _act_discard_card(sess: Any, name: str, arg: str) -> Any:
    card = sess.services.discard_card(name, arg.strip())
    if card is None:
        raise RuleViolation(f"You do not hold card {arg}")
    return card


ACTION_HANDLERS: Dict[str, Callable[[Any, str, str], Any]] = {
    "roll": _act_roll,
    "select_move": _act_select_move,
    "end_turn": _act_end_turn,
    "negotiate": _act_negotiate,
    "draw_card": _act_draw_card,
    "play_card": _act_play_card,
    "discard_card": _act_discard_card,
}


# -------------------------------------------------------------------
# UI-facing logic
# -------------------------------------------------------------------
def compute_prompt(sess: Any, pid: int) -> str:
    if not sess.started:
        if pid == 0:
            return f"Waiting in the lobby ({len(sess.players)} joined). Start the game when everyone is here."
        return "Waiting for the host to start the game."

    svc = sess.services
    if svc.game_ended():
        top = svc.rankings()
        return f"Game over. Winner: {top[0]['player']} ({top[0]['score']} points)." if top else "Game over."

    current = svc.current_player()
    if pid != _current_pid(sess):
        return f"Waiting for {current}."

    turn = svc.turn() or {}
    space = turn.get("space", "?")
    rs = svc.roll_state()
    if rs["rolls_completed"] < rs["rolls_required"]:
        return f"{space} ({turn.get('visit_type', 'First')} visit): roll the dice."
    moves = svc.available_moves(current)
    if len(moves) > 1 and not (turn.get("selected_move") or turn.get("pending_move")):
        return f"{space}: choose where to go next: {', '.join(moves)}."
    return f"{space}: play cards or end your turn."


def legal_actions(sess: Any, pid: int) -> List[UiActionTD]:
    if not sess.started or sess.services.game_ended():
        return []

    svc = sess.services
    name = sess.player_name(pid)
    if name is None or pid != _current_pid(sess):
        return [{"action_id": "end_turn", "label": "End turn", "enabled": False, "reason": "Not your turn."}]

    turn = svc.turn() or {}
    rs = svc.roll_state()
    out: List[UiActionTD] = []

    need_roll = rs["rolls_completed"] < rs["rolls_required"]
    out.append({
        "action_id": "roll", "label": "Roll dice", "enabled": need_roll,
        **({} if need_roll else {"reason": "No roll needed."}),
    })

    for move in svc.available_moves(name):
        out.append({"action_id": "select_move", "label": f"Go to {move}", "enabled": True, "arg": move})

    for t in CARD_TYPES:
        out.append({"action_id": "draw_card", "label": f"Draw {t} card", "enabled": True, "arg": t})
    for bucket in svc.cards_of(name).values():
        for card in bucket:
            label = card.get("name") or card["card_id"]
            out.append({"action_id": "play_card", "label": f"Play {label}", "enabled": True, "arg": card["card_id"]})
            out.append({"action_id": "discard_card", "label": f"Discard {label}", "enabled": True,
                        "arg": card["card_id"]})

    can_neg = svc.board.can_negotiate(turn.get("space", ""))
    out.append({
        "action_id": "negotiate", "label": "Negotiate", "enabled": can_neg,
        **({} if can_neg else {"reason": "No negotiation on this space."}),
    })

    blockers = svc.end_turn_blockers(name)
    out.append({
        "action_id": "end_turn", "label": "End turn", "enabled": not blockers,
        **({"reason": "; ".join(blockers)} if blockers else {}),
    })
    return out


def apply_action(sess: Any, pid: int, action_id: str, arg: str = "") -> Any:
    """
    Single entry point for the web layer.
    Raises RuleViolation for anything the player did wrong.
    """
    if not sess.started:
        raise RuleViolation("The game has not started yet")
    handler = ACTION_HANDLERS.get(action_id)
    if handler is None:
        raise RuleViolation(f"Unknown action: {action_id}")
    name = sess.player_name(pid)
    if name is None:
        raise RuleViolation(f"Unknown player id: {pid}")

    try:
        result = handler(sess, name, arg or "")
    except RuleViolation as exc:
        sess.add_log(f"Rejected {action_id} by {name}: {exc}")
        raise
    except GameError as exc:
        sess.add_log(f"{action_id} by {name} failed: {exc}")
        raise
    sess.add_log(f"{name}: {action_id}{' ' + arg if arg else ''}")
    return result
