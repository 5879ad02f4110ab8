from __future__ import annotations
import asyncio
import uuid
from contextlib import asynccontextmanager, suppress
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from app.config import settings
from app.logging_setup import configure_logging
from app.routes.system import router as system_router
from app.routes.media import router as media_router
from app.routes.events import router as events_router
from app.routes.interactions import router as interactions_router
from app.routes.rooms import router as rooms_router
from app.routes.guests import router as guests_router
from app.services.broadcast import hub, relay_from_redis
import structlog

configure_logging()
log = structlog.get_logger()

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    log.info("startup", env=settings.environment, version=settings.app_version, git_sha=settings.git_sha)
    relay = asyncio.create_task(relay_from_redis(hub)) if settings.redis_relay_enabled else None
    yield
    # Shutdown
    if relay is not None:
        relay.cancel()
        with suppress(asyncio.CancelledError):
            await relay
    log.info("shutdown")

app = FastAPI(
    title=f"{settings.app_display_name} API",
    version=settings.app_version,
    lifespan=lifespan,
    description=f"{settings.app_display_name} API for live event photo and video galleries",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.environment == "dev" else settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(system_router)
app.include_router(media_router)
app.include_router(events_router)
app.include_router(interactions_router)
app.include_router(rooms_router)
app.include_router(guests_router)

@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = rid
    structlog.contextvars.bind_contextvars(request_id=rid)
    response: Response = await call_next(request)
    response.headers["X-Request-ID"] = rid
    structlog.contextvars.clear_contextvars()
    return response
