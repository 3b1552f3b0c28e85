#!/usr/bin/env python3
"""
web/server.py — FastAPI server for the browser UI.

Run:
  python -m web.server

LAN:
  uvicorn web.server:app --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import Body, FastAPI, Form, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from config import configure_logging, load_settings
from errors import GameError, RuleViolation

from . import engine_ui
from .game_manager import GameManager
from .views import build_public_view


log = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"


def _jsonable(result: Any) -> Any:
    if isinstance(result, (dict, list, str, int, float, bool)) or result is None:
        return result
    return str(result)


def create_app(gm: Optional[GameManager] = None) -> FastAPI:
    if gm is None:
        settings = load_settings()
        configure_logging(settings)
        gm = GameManager(settings)

    app = FastAPI(title="PermitPath")
    app.state.gm = gm
    templates = Jinja2Templates(directory=str(TEMPLATE_DIR))

    # -----------------------------
    # Errors
    # -----------------------------
    @app.exception_handler(RuleViolation)
    async def rule_violation(request: Request, exc: RuleViolation) -> JSONResponse:
        return JSONResponse({"kind": "rule", "detail": str(exc)}, status_code=400)

    @app.exception_handler(GameError)
    async def game_error(request: Request, exc: GameError) -> JSONResponse:
        log.error("Internal game error on %s: %s", request.url.path, exc)
        return JSONResponse({"kind": "internal", "detail": str(exc)}, status_code=500)

    def _session_or_404(game_id: str):
        sess = gm.get_game(game_id)
        if not sess:
            return None, JSONResponse({"kind": "rule", "detail": "Unknown game"}, status_code=404)
        return sess, None

    # -----------------------------
    # Pages
    # -----------------------------
    @app.get("/", response_class=HTMLResponse)
    def lobby(request: Request, err: str = "") -> HTMLResponse:
        return templates.TemplateResponse(request, "lobby.html", {"err": err})

    @app.post("/create")
    def create_game(host_name: str = Form(...)) -> RedirectResponse:
        try:
            sess = gm.create_game(host_name=host_name.strip())
        except RuleViolation as exc:
            return RedirectResponse(url=f"/?err={exc}", status_code=303)
        return RedirectResponse(url=f"/g/{sess.game_id}?pid=0", status_code=303)

    @app.post("/join")
    def join_game(join_code: str = Form(...), player_name: str = Form(...)) -> RedirectResponse:
        sess = gm.get_game_by_code(join_code.strip())
        if not sess:
            return RedirectResponse(url="/?err=unknown_code", status_code=303)
        try:
            p = sess.add_player(player_name)
        except RuleViolation as exc:
            return RedirectResponse(url=f"/?err={exc}", status_code=303)
        return RedirectResponse(url=f"/g/{sess.game_id}?pid={p.pid}", status_code=303)

    @app.get("/g/{game_id}", response_class=HTMLResponse)
    def game_page(request: Request, game_id: str, pid: int, err: str = ""):
        sess = gm.get_game(game_id)
        if not sess:
            return RedirectResponse(url="/?err=unknown_game", status_code=303)

        pub = build_public_view(sess, pid=pid)
        return templates.TemplateResponse(
            request,
            "game.html",
            {
                "game_id": sess.game_id,
                "join_code": sess.join_code,
                "pid": pid,
                "err": err,
                "ui": pub["ui"],
                "meta": pub["meta"],
            },
        )

    @app.post("/g/{game_id}/start")
    def start_game(game_id: str, pid: int = Form(...), starting_money: int = Form(0)) -> RedirectResponse:
        sess = gm.get_game(game_id)
        if not sess:
            return RedirectResponse(url="/?err=unknown_game", status_code=303)
        try:
            sess.start(pid, starting_money=starting_money)
        except RuleViolation as exc:
            return RedirectResponse(url=f"/g/{game_id}?pid={pid}&err={exc}", status_code=303)
        return RedirectResponse(url=f"/g/{game_id}?pid={pid}", status_code=303)

    @app.post("/g/{game_id}/action")
    def post_action(
        game_id: str,
        pid: int = Form(...),
        action: str = Form(...),
        arg: str = Form(""),
    ) -> RedirectResponse:
        sess = gm.get_game(game_id)
        if not sess:
            return RedirectResponse(url="/?err=unknown_game", status_code=303)
        try:
            engine_ui.apply_action(sess, pid, action, arg)
        except RuleViolation as exc:
            return RedirectResponse(url=f"/g/{game_id}?pid={pid}&err={exc}", status_code=303)
        return RedirectResponse(url=f"/g/{game_id}?pid={pid}", status_code=303)

    # -----------------------------
    # JSON API
    # -----------------------------
    @app.get("/api/g/{game_id}/view")
    def api_view(game_id: str, pid: int):
        sess, missing = _session_or_404(game_id)
        if missing:
            return missing
        return build_public_view(sess, pid=pid)

    @app.post("/api/g/{game_id}/start")
    def api_start(game_id: str, payload: Dict[str, Any] = Body(...)):
        sess, missing = _session_or_404(game_id)
        if missing:
            return missing
        sess.start(int(payload.get("pid", -1)), starting_money=int(payload.get("starting_money", 0)))
        return build_public_view(sess, pid=int(payload["pid"]))

    @app.post("/api/g/{game_id}/action")
    def api_action(game_id: str, payload: Dict[str, Any] = Body(...)):
        sess, missing = _session_or_404(game_id)
        if missing:
            return missing
        pid = int(payload.get("pid", -1))
        result = engine_ui.apply_action(sess, pid, str(payload.get("action", "")), str(payload.get("arg", "")))
        return {"result": _jsonable(result), "view": build_public_view(sess, pid=pid)}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("web.server:app", host="127.0.0.1", port=8000, reload=True)
