import os
import asyncio
import contextlib
import logging
from pathlib import Path
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from dotenv import load_dotenv

from minesweeper.game_engine import DIFFICULTIES
from minesweeper.sessions import SessionStore

load_dotenv(dotenv_path=Path('.env.local'))

API_BASE = "/api/minesweeper"


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def choose_store(tick_interval: Optional[float] = None) -> SessionStore:
    seed = os.getenv("MINESWEEPER_RNG_SEED")
    if tick_interval is None:
        tick_interval = float(os.getenv("TICK_INTERVAL_SECONDS", "1"))
    return SessionStore(
        default_difficulty=os.getenv("DEFAULT_DIFFICULTY", "easy"),
        rng_seed=int(seed) if seed else None,
        tick_interval=tick_interval,
    )


class StartBody(BaseModel):
    difficulty: Optional[str] = None
    rows: Optional[int] = Field(None, ge=1, le=40)
    cols: Optional[int] = Field(None, ge=1, le=40)
    mine_count: Optional[int] = Field(None, ge=0)


class MoveBody(BaseModel):
    row: int
    col: int


async def _run_ticker(store: SessionStore) -> None:
    # polls well inside one interval; the store decides which games are due
    poll = min(store.tick_interval / 10, 0.1)
    while True:
        await asyncio.sleep(poll)
        store.tick_all()


def create_app(store=None, tick_interval: Optional[float] = None) -> FastAPI:
    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.ticker = asyncio.create_task(_run_ticker(app.state.store))
        logging.getLogger("uvicorn.error").info(
            f"[minesweeper] ticker started interval={app.state.store.tick_interval}s "
            f"default_difficulty={app.state.store.default_difficulty}"
        )
        try:
            yield
        finally:
            app.state.ticker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await app.state.ticker
            app.state.ticker = None

    app = FastAPI(title="Minesweeper Service", version="0.2.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"]
    )

    app.state.store = store if store is not None else choose_store(tick_interval)
    app.state.ticker = None

    def get_user_id(req: Request) -> str:
        trust_x_user_id = _env_flag("TRUST_X_USER_ID", "1")
        allow_anon = _env_flag("ALLOW_ANON", "1")
        default_uid = os.getenv("DEFAULT_USER_ID", "local-user")
        logger = logging.getLogger("uvicorn.error")

        # 1) Identity injected by an authenticating proxy
        iap_email = (
            req.headers.get("X-Goog-Authenticated-User-Email")
            or req.headers.get("X-Authenticated-User-Email")
            or req.headers.get("X-Forwarded-Email")
        )
        if iap_email:
            # Format often: "accounts.google.com:email@example.com"
            if ":" in iap_email:
                iap_email = iap_email.split(":", 1)[1]
            logger.debug(f"[minesweeper] get_user_id via=iap_email user_id={iap_email}")
            return iap_email
        forwarded_user = req.headers.get("X-Forwarded-User")
        if forwarded_user:
            logger.debug(f"[minesweeper] get_user_id via=forwarded_user user_id={forwarded_user}")
            return forwarded_user

        # 2) Explicit header, only when trusted
        uid = req.headers.get("X-User-Id")
        if uid and trust_x_user_id:
            logger.debug(f"[minesweeper] get_user_id via=x-user-id user_id={uid}")
            return uid

        # 3) Local single-player fallback
        if allow_anon:
            logger.debug(f"[minesweeper] get_user_id via=anon-fallback user_id={default_uid}")
            return default_uid

        logger.warning(
            f"[minesweeper] get_user_id missing user id "
            f"trust_x_user_id={int(trust_x_user_id)} allow_anon={int(allow_anon)}"
        )
        raise HTTPException(status_code=401, detail="missing user id")

    def require_game(user_id: str):
        game = app.state.store.get_game(user_id)
        if game is None:
            raise HTTPException(status_code=404, detail="no game")
        return game

    @app.get(f"{API_BASE}/difficulties")
    async def list_difficulties():
        return {
            name: {"rows": rows, "cols": cols, "mine_count": mines}
            for name, (rows, cols, mines) in DIFFICULTIES.items()
        }

    @app.post(f"{API_BASE}/start")
    async def start_game(body: Optional[StartBody] = None, user_id: str = Depends(get_user_id)):
        body = body or StartBody()
        try:
            game = app.state.store.start_game(
                user_id,
                difficulty=body.difficulty,
                rows=body.rows,
                cols=body.cols,
                mine_count=body.mine_count,
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return app.state.store.to_client(game, user_id)

    @app.post(f"{API_BASE}/reset")
    async def reset_game(user_id: str = Depends(get_user_id)):
        try:
            game = app.state.store.reset(user_id)
        except KeyError:
            raise HTTPException(status_code=404, detail="no game")
        return app.state.store.to_client(game, user_id)

    @app.get(f"{API_BASE}/state")
    async def get_state(user_id: str = Depends(get_user_id)):
        game = require_game(user_id)
        return app.state.store.to_client(game, user_id)

    @app.post(f"{API_BASE}/reveal")
    async def reveal(body: MoveBody, user_id: str = Depends(get_user_id)):
        require_game(user_id)
        try:
            game = app.state.store.reveal(user_id, body.row, body.col)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return app.state.store.to_client(game, user_id)

    @app.post(f"{API_BASE}/flag")
    async def flag(body: MoveBody, user_id: str = Depends(get_user_id)):
        require_game(user_id)
        game = app.state.store.flag(user_id, body.row, body.col)
        return app.state.store.to_client(game, user_id)

    @app.post(f"{API_BASE}/abandon")
    async def abandon(user_id: str = Depends(get_user_id)):
        require_game(user_id)
        app.state.store.abandon(user_id)
        return {"abandoned": True}

    return app


app = create_app()
