"""Chat backend application.

REST routers for auth, users and messages/rooms, plus the ``/ws/chat``
WebSocket gateway. Connection state is process-local: run a single worker.
"""
import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .connections import ConnectionRegistry
from .db import SessionLocal, init_db
from .errors import ChatError
from .gateway import ChatGateway
from .presence import sweep_expired_presence
from .routers.auth import router as auth_router
from .routers.messages import router as messages_router
from .routers.users import router as users_router
from .routers.ws import router as ws_router

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
for _noisy in ("sqlalchemy.engine", "aiosqlite", "passlib"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()

    registry = ConnectionRegistry()
    app.state.registry = registry
    app.state.gateway = ChatGateway(registry, SessionLocal)

    sweeper = asyncio.create_task(
        sweep_expired_presence(SessionLocal, settings.presence_sweep_interval_seconds)
    )
    logger.info(
        "Presence sweeper started (ttl=%ss, every %ss)",
        settings.presence_ttl_seconds,
        settings.presence_sweep_interval_seconds,
    )

    yield

    sweeper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweeper
    logger.info("Application shutdown complete")


app = FastAPI(title="Chat Backend", lifespan=lifespan)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.cors_origins.split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


app.include_router(auth_router)
app.include_router(users_router)
app.include_router(messages_router)
app.include_router(ws_router)


@app.get("/health")
async def health():
    return {"status": "ok"}
