#!/usr/bin/env python3
"""
web/game_manager.py — In-memory game sessions for the web UI.

- Creates games (the creator joins as pid 0 and hosts)
- Lets players join by a short code until the host starts the game
- Owns one GameServices per game; all rules live behind it
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from config import Settings
from errors import RuleViolation
from players import MAX_PLAYERS
from session import GameServices


log = logging.getLogger(__name__)


def _now_ts() -> float:
    return time.time()


def _new_id(nbytes: int = 8) -> str:
    return secrets.token_hex(nbytes)


@dataclass
class Player:
    pid: int
    name: str
    joined_ts: float = field(default_factory=_now_ts)


@dataclass
class GameSession:
    game_id: str
    join_code: str
    services: GameServices
    created_ts: float = field(default_factory=_now_ts)

    players: Dict[int, Player] = field(default_factory=dict)
    started: bool = False
    log: List[str] = field(default_factory=list)

    def add_log(self, msg: str) -> None:
        self.log.append(f"{time.strftime('%H:%M:%S')} | {msg}")

    def add_player(self, name: str) -> Player:
        name = (name or "").strip()
        if self.started:
            raise RuleViolation("The game has already started")
        if not name:
            raise RuleViolation("Player name cannot be blank")
        if len(self.players) >= MAX_PLAYERS:
            raise RuleViolation(f"At most {MAX_PLAYERS} players can join")
        if any(p.name == name for p in self.players.values()):
            raise RuleViolation(f"Name {name} is already taken")

        pid = 0 if not self.players else (max(self.players.keys()) + 1)
        p = Player(pid=pid, name=name)
        self.players[pid] = p
        self.add_log(f"Player joined: pid={pid} name={name}")
        return p

    def player_name(self, pid: int) -> Optional[str]:
        p = self.players.get(pid)
        return p.name if p else None

    def pid_of(self, name: Optional[str]) -> Optional[int]:
        for p in self.players.values():
            if p.name == name:
                return p.pid
        return None

    def start(self, pid: int, *, starting_money: int = 0) -> None:
        """Only the host (pid 0) can start; the roster is fixed from then on."""
        if pid != 0:
            raise RuleViolation("Only the host can start the game")
        if self.started:
            raise RuleViolation("The game has already started")
        names = [self.players[k].name for k in sorted(self.players)]
        self.services.new_game(names, starting_money=starting_money)
        self.started = True
        self.add_log(f"Game started with {', '.join(names)}")


class GameManager:
    """Keeps every session in memory, indexed by id and by join code."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        services_factory: Optional[Callable[[], GameServices]] = None,
    ) -> None:
        self.settings = settings or Settings()
        self._factory = services_factory or (lambda: GameServices(self.settings))
        self._games: Dict[str, GameSession] = {}
        self._code_to_gid: Dict[str, str] = {}

    def create_game(self, host_name: str) -> GameSession:
        services = self._factory()
        services.start()

        gid = _new_id(8)
        code = _new_id(3)  # short join code
        session = GameSession(game_id=gid, join_code=code, services=services)
        session.add_player(host_name)  # pid=0
        session.add_log(f"Game created. join_code={code}")
        self._games[gid] = session
        self._code_to_gid[code] = gid
        log.info("Game %s created by %s", gid, host_name)
        return session

    def get_game(self, game_id: str) -> Optional[GameSession]:
        return self._games.get(game_id)

    def get_game_by_code(self, join_code: str) -> Optional[GameSession]:
        gid = self._code_to_gid.get(join_code)
        return self._games.get(gid) if gid else None

    def close_game(self, game_id: str) -> bool:
        session = self._games.pop(game_id, None)
        if session is None:
            return False
        self._code_to_gid.pop(session.join_code, None)
        session.services.close()
        return True
