import os

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from switchboard import __version__
from switchboard.config import settings
from switchboard.database import SessionLocal, get_db
from switchboard.logging_config import get_logger, setup_logging
from switchboard.models import Client, Conversation, Message
from switchboard.routers import admin, operator, realtime, transport, webhook
from switchboard.runtime import build_runtime
from switchboard.services.dedup_service import get_redis_client

setup_logging(settings.log_level)

logger = get_logger("main")

app = FastAPI(
    title="Switchboard",
    description="WhatsApp conversation routing between the IRU NET bot and human operators",
    version=__version__,
)

cors_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(webhook.router)
app.include_router(operator.router)
app.include_router(transport.router)
app.include_router(realtime.router)
app.include_router(admin.router)


def _is_runtime_enabled() -> bool:
    return not os.environ.get("PYTEST_CURRENT_TEST")


@app.on_event("startup")
async def start_runtime() -> None:
    runtime = getattr(app.state, "runtime", None)
    if runtime is None:
        if not _is_runtime_enabled():
            return
        runtime = build_runtime(
            settings,
            SessionLocal,
            redis_client=get_redis_client(settings.redis_url, settings.redis_socket_timeout_seconds),
        )
        app.state.runtime = runtime
    await runtime.start()


@app.on_event("shutdown")
async def stop_runtime() -> None:
    runtime = getattr(app.state, "runtime", None)
    if runtime is None:
        return
    await runtime.stop()


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/db-check")
def db_check(db: Session = Depends(get_db)):
    clients_count = db.query(Client).count()
    conversations_count = db.query(Conversation).count()
    messages_count = db.query(Message).count()
    return {
        "status": "ok",
        "clients": clients_count,
        "conversations": conversations_count,
        "messages": messages_count,
    }
