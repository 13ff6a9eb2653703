# app.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from auth.api import router as auth_router
from session.api import router as session_router
from session.paths import Actor, OwnedStore
from session.rounds import Countdown, tick_active
from util import config
from util.clock import local_now
from util.errors import (
    CasinoError,
    NotFoundError,
    OwnershipViolation,
    StoreUnavailable,
    Unauthorized,
    ValidationError,
)
from util.logs import setup_logging
from util.store import InMemoryStore, SharedStore

log = logging.getLogger("casino.app")

HOUSE_ID = "house"

STATUS = {
    ValidationError: 400,
    NotFoundError: 404,
    StoreUnavailable: 503,
    Unauthorized: 401,
    OwnershipViolation: 403,
}


def default_store() -> SharedStore:
    # 有 DATABASE_URL 就用 Postgres，否則單機記憶體
    if config.DATABASE_URL:
        from util.pgstore import PostgresStore
        store = PostgresStore(config.DATABASE_URL)
        store.ensure_schema()
        return store
    log.warning("DATABASE_URL not set, using an in-memory store")
    return InMemoryStore()


def create_app(store: SharedStore = None, run_countdown: bool = None) -> FastAPI:
    setup_logging()
    run_countdown = config.RUN_COUNTDOWN if run_countdown is None else run_countdown

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ticker = None
        if run_countdown:
            house = OwnedStore(app.state.store, Actor.dealer(HOUSE_ID))
            ticker = Countdown(lambda: tick_active(house), 1.0, name="countdown",
                               stop_when_inactive=False).start()
            log.info("countdown ticker started")
        yield
        if ticker is not None:
            ticker.stop()
        close = getattr(app.state.store, "close", None)
        if close is not None:
            close()

    app = FastAPI(title=config.APP_NAME, lifespan=lifespan)
    app.state.store = store if store is not None else default_store()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(CasinoError)
    async def casino_error(request: Request, exc: CasinoError):
        status = next((code for cls, code in STATUS.items() if isinstance(exc, cls)), 500)
        if status >= 500:
            log.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=status, content={"detail": str(exc)})

    app.include_router(auth_router, prefix="/auth", tags=["auth"])
    app.include_router(session_router, tags=["session"])

    @app.get("/health")
    def health():
        return {"ok": True, "time": local_now().isoformat()}

    return app
