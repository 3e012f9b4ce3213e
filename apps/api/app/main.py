from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app import models  # noqa: F401
from app.api.routes.achievements import router as achievements_router
from app.api.routes.performance import router as performance_router
from app.api.routes.points import router as points_router
from app.api.routes.sessions import router as sessions_router
from app.core.config import settings
from app.core.exceptions import register_exception_handlers
from app.core.logging import setup_json_logging
from app.core.request_logging import RequestLoggingMiddleware
from app.db.session import SessionLocal
from app.services.achievement_engine import ensure_default_achievements

setup_json_logging()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    if settings.seed_default_achievements:
        with SessionLocal() as db:
            ensure_default_achievements(db)
            db.commit()
    yield


app = FastAPI(title="routinely api", lifespan=lifespan)
register_exception_handlers(app)
allowed_origins = [item.strip() for item in settings.cors_allowed_origins.split(",") if item.strip()]
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-Id"],
)
app.include_router(sessions_router)
app.include_router(performance_router)
app.include_router(points_router)
app.include_router(achievements_router)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok", "env": settings.app_env}
