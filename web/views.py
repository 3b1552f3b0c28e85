#!/usr/bin/env python3
"""
web/views.py — View-model builder for the web UI.

This module converts internal session/state into a UI-friendly dict that templates
can render. The web layer should not interpret engine state; it renders this view.

build_public_view(sess, pid) -> {
  "ui": {
    "prompt": str,
    "actions": [ {action_id,label,enabled,reason?,arg?}, ... ],
    "board": {...},
    "players": [...],
    "hand": {...},
    "log": [...]
  },
  "meta": {...}
}
"""

from __future__ import annotations

from typing import Any, Dict, List, TypedDict

from . import engine_ui


class UiViewTD(TypedDict):
    prompt: str
    actions: List[engine_ui.UiActionTD]
    board: Dict[str, Any]
    players: List[Dict[str, Any]]
    hand: Dict[str, List[Dict[str, Any]]]
    log: List[str]


def _players_view(sess: Any) -> List[Dict[str, Any]]:
    svc = sess.services
    out: List[Dict[str, Any]] = []
    rankings = {r["player"]: r for r in svc.rankings()} if sess.started else {}
    for pid in sorted(sess.players):
        name = sess.players[pid].name
        row: Dict[str, Any] = {"pid": pid, "name": name}
        if sess.started:
            r = rankings.get(name, {})
            row.update({
                "position": svc.position(name),
                "resources": svc.resources(name),
                "finished": bool(r.get("finished")),
                "score": r.get("score", 0),
            })
        out.append(row)
    return out


def _board_view(sess: Any) -> Dict[str, Any]:
    if not sess.started:
        return {"started": False}
    svc = sess.services
    return {
        "started": True,
        "current_player": svc.current_player(),
        "turn": svc.turn(),
        "roll_state": svc.roll_state(),
        "game_ended": svc.game_ended(),
        "main_path": svc.board.get_main_path(),
    }


def _log_lines(sess: Any) -> List[str]:
    if not sess.started:
        return list(sess.log)[-200:]
    lines = []
    for e in sess.services.game_log():
        who = e.get("player") or "-"
        details = ", ".join(f"{k}={v}" for k, v in e.get("details", {}).items())
        lines.append(f"{e['action']} [{who}] {details}".rstrip())
    return lines


def build_public_view(sess: Any, pid: int) -> Dict[str, Any]:
    name = sess.player_name(pid)
    hand: Dict[str, List[Dict[str, Any]]] = {}
    if sess.started and name is not None:
        hand = sess.services.cards_of(name)

    ui: UiViewTD = {
        "prompt": engine_ui.compute_prompt(sess, pid),
        "actions": engine_ui.legal_actions(sess, pid),
        "board": _board_view(sess),
        "players": _players_view(sess),
        "hand": hand,
        "log": _log_lines(sess),
    }
    meta = {
        "game_id": sess.game_id,
        "join_code": sess.join_code,
        "pid": pid,
        "player": name,
        "is_host": pid == 0,
        "started": sess.started,
    }
    return {"ui": ui, "meta": meta}
