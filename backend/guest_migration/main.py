import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict

from fastapi import FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from . import telemetry_pipeline  # noqa: F401  registers the audit listener
from .db.monitoring import get_pool_snapshot
from .db.session import create_schema, get_engine, session_scope
from .logging_config import configure_logging
from .migration_routes import router as migration_router
from .repositories.checkpoints import checkpoints


configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    create_schema()
    logger.info("Migration schema ready")
    yield


app = FastAPI(title="Fathom Guest Migration Service", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(migration_router)


@app.get("/healthz")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/healthz/database")
def database_health() -> Dict[str, Any]:
    try:
        engine = get_engine()
        with session_scope(commit=False) as session:
            session.execute(text("SELECT 1"))
            active = checkpoints.list(session, statuses=["active"])
    except Exception as exc:  # noqa: BLE001
        logger.warning("Database health check failed: %s", exc)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return {
        "status": "ok",
        "pool": get_pool_snapshot(engine),
        "activeCheckpoints": len(active),
    }
