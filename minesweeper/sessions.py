from __future__ import annotations

from typing import Any, Callable, Dict, Optional
import logging
import time

from .game_engine import (
    DIFFICULTIES,
    GameSession,
    initialize,
    initialize_difficulty,
    reveal as engine_reveal,
    toggle_flag as engine_flag,
    tick as engine_tick,
    count_revealed,
    result,
    to_client_view,
)

logger = logging.getLogger("uvicorn.error")

CUSTOM = "custom"


class SessionStore:
    """In-memory sessions, one per player. Nothing outlives the process."""

    def __init__(
        self,
        default_difficulty: str = "easy",
        rng_seed: Optional[int] = None,
        tick_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if default_difficulty not in DIFFICULTIES:
            raise ValueError("unknown_difficulty")
        if tick_interval <= 0:
            raise ValueError("invalid_tick_interval")
        self.tick_interval = tick_interval
        self.clock = clock
        self.default_difficulty = default_difficulty
        self.rng_seed = rng_seed
        self.games: Dict[str, GameSession] = {}
        self.configs: Dict[str, Dict[str, Any]] = {}
        # when each running game is due its next tick
        self.next_tick: Dict[str, float] = {}

    def get_game(self, player_id: str) -> Optional[GameSession]:
        return self.games.get(player_id)

    def _require(self, player_id: str) -> GameSession:
        game = self.games.get(player_id)
        if game is None:
            raise KeyError("game_not_found")
        return game

    def start_game(
        self,
        player_id: str,
        difficulty: Optional[str] = None,
        rows: Optional[int] = None,
        cols: Optional[int] = None,
        mine_count: Optional[int] = None,
        rng_seed: Optional[int] = None,
    ) -> GameSession:
        seed = rng_seed if rng_seed is not None else self.rng_seed
        custom = (rows, cols, mine_count)
        if any(v is not None for v in custom):
            if difficulty not in (None, CUSTOM) or any(v is None for v in custom):
                raise ValueError("invalid_board")
            game = initialize(rows, cols, mine_count, rng_seed=seed)
            config = {"difficulty": CUSTOM, "rows": rows, "cols": cols, "mine_count": mine_count}
        else:
            name = difficulty or self.default_difficulty
            game = initialize_difficulty(name, rng_seed=seed)
            config = {"difficulty": name}
        replaced = player_id in self.games
        self.games[player_id] = game
        self.configs[player_id] = config
        self.next_tick.pop(player_id, None)
        logger.info(
            f"[minesweeper] start player={player_id} difficulty={config['difficulty']} "
            f"size={game.rows}x{game.cols} mines={game.mine_count} replaced={int(replaced)}"
        )
        return game

    def reset(self, player_id: str) -> GameSession:
        config = self.configs.get(player_id)
        if config is None:
            raise KeyError("game_not_found")
        if config["difficulty"] == CUSTOM:
            return self.start_game(player_id, rows=config["rows"], cols=config["cols"], mine_count=config["mine_count"])
        return self.start_game(player_id, difficulty=config["difficulty"])

    def reveal(self, player_id: str, row: int, col: int) -> GameSession:
        game = self._require(player_id)
        before = game.phase
        engine_reveal(game, row, col)
        if game.is_running and player_id not in self.next_tick:
            self.next_tick[player_id] = self.clock() + self.tick_interval
        if game.phase is not before and game.is_terminal:
            logger.info(
                f"[minesweeper] finished player={player_id} result={result(game)} "
                f"elapsed_seconds={game.elapsed_seconds} revealed={count_revealed(game)}"
            )
        return game

    def flag(self, player_id: str, row: int, col: int) -> GameSession:
        game = self._require(player_id)
        return engine_flag(game, row, col)

    def abandon(self, player_id: str) -> None:
        self._require(player_id)
        del self.games[player_id]
        self.configs.pop(player_id, None)
        self.next_tick.pop(player_id, None)
        logger.info(f"[minesweeper] abandon player={player_id}")

    def tick_all(self) -> int:
        """Tick every running game whose interval has elapsed since it started
        or last ticked. Returns how many games ticked."""
        now = self.clock()
        ticked = 0
        for player_id, game in self.games.items():
            if not game.is_running:
                self.next_tick.pop(player_id, None)
                continue
            due = self.next_tick.setdefault(player_id, now + self.tick_interval)
            if due > now:
                continue
            engine_tick(game)
            self.next_tick[player_id] = due + self.tick_interval
            ticked += 1
        return ticked

    def to_client(self, game: GameSession, player_id: Optional[str] = None) -> Dict[str, Any]:
        difficulty = None
        if player_id is not None and player_id in self.configs:
            difficulty = self.configs[player_id]["difficulty"]
        return {
            "status": game.phase.value,
            "result": result(game),
            "board": to_client_view(game),
            "rows": game.rows,
            "cols": game.cols,
            "mine_count": game.mine_count,
            "flags_total": game.flag_count,
            "revealed_total": count_revealed(game),
            "elapsed_seconds": game.elapsed_seconds,
            "difficulty": difficulty,
        }
