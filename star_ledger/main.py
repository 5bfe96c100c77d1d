from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from star_ledger.api.routes.report import router as report_router
from star_ledger.api.routes.rewards import router as rewards_router
from star_ledger.api.routes.shop import router as shop_router
from star_ledger.api.routes.stars import router as stars_router
from star_ledger.api.routes.submissions import router as submissions_router
from star_ledger.core.config import settings
from star_ledger.core.exceptions import register_exception_handlers
from star_ledger.core.logging import setup_json_logging
from star_ledger.core.request_logging import RequestLoggingMiddleware
from star_ledger.ledger.coordinator import LedgerCoordinator
from star_ledger.ledger.feed import build_change_feed
from star_ledger.ledger.projections import ReadProjection
from star_ledger.ledger.store import build_store
from star_ledger.ledger.workflow import TaskSubmissionWorkflow

setup_json_logging()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    store = build_store(settings)
    feed = build_change_feed(settings)
    coordinator = LedgerCoordinator(
        store,
        feed,
        retry_attempts=settings.ledger_retry_attempts,
        retry_backoff_seconds=settings.ledger_retry_backoff_seconds,
    )
    app.state.store = store
    app.state.feed = feed
    app.state.coordinator = coordinator
    app.state.workflow = TaskSubmissionWorkflow(coordinator)
    app.state.projection = ReadProjection(store, feed, recent_limit=settings.recent_transactions_limit)
    try:
        yield
    finally:
        feed.close()
        store.close()


app = FastAPI(title="star-ledger api", lifespan=lifespan)
register_exception_handlers(app)
allowed_origins = [item.strip() for item in settings.cors_allowed_origins.split(",") if item.strip()]
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "X-Request-Id"],
)
app.include_router(stars_router)
app.include_router(shop_router)
app.include_router(rewards_router)
app.include_router(submissions_router)
app.include_router(report_router)


@app.get("/health")
def health() -> dict[str, str]:
    store = getattr(app.state, "store", None)
    return {
        "status": "ok",
        "env": settings.app_env,
        "backend": store.name if store is not None else "unknown",
    }
