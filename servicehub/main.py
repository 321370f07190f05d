"""FastAPI application entry point."""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from servicehub.config import settings
from servicehub.middleware import BodySizeLimitMiddleware, RequestLogMiddleware, SecurityHeadersMiddleware
from servicehub.routers import admin, bids, categories, categorization, chats, jobs, ratings, users

logger = logging.getLogger(__name__)


async def _recover_tasks() -> None:
    """Put tasks a previous process left RUNNING back in the queue."""
    from servicehub.database import async_session_factory
    from servicehub.services.task_queue import recover_stale_tasks

    try:
        async with async_session_factory() as db:
            recovered = await recover_stale_tasks(db)
        if recovered:
            logger.info("Task recovery: %d interrupted tasks re-queued", recovered)
    except Exception:
        logger.exception("Task recovery failed")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown."""
    from servicehub.services.task_queue import run_task_consumer

    await _recover_tasks()
    consumer = asyncio.create_task(run_task_consumer())

    yield

    consumer.cancel()
    try:
        await consumer
    except asyncio.CancelledError:
        pass


app = FastAPI(
    title="ServiceHub",
    description="Service marketplace backend: job lifecycle, categorization consensus and chat routing",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Middleware (order matters: the last added is outermost)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(BodySizeLimitMiddleware, max_bytes=settings.max_request_body_bytes)
app.add_middleware(RequestLogMiddleware)

app.include_router(users.router)
app.include_router(categories.router)
app.include_router(chats.router)
app.include_router(jobs.router)
app.include_router(categorization.router)
app.include_router(bids.router)
app.include_router(ratings.router)
app.include_router(admin.router)


@app.get("/health")
async def health() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok"}
