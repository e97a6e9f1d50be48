"""Account Registry API — FastAPI application entry point.

Invariants:
    - Routes registered explicitly (no auto-discovery)
    - Global error handlers map RegistryError → structured JSON responses
    - CORS configured from settings (not hardcoded)
    - The store is loaded from the durable record store before the first request;
      the persistence worker is drained before the process exits

Design Decisions:
    - Lifespan over @app.on_event: FastAPI recommended pattern, cleaner cleanup
    - Runtime objects live on app.state so tests can swap them without globals
    - Refresh loop is an asyncio task owned by the lifespan
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from account_registry.api.error_handlers import register_error_handlers
from account_registry.api.routes import accounts, health
from account_registry.config import get_settings
from account_registry.core.account_store import AccountStore
from account_registry.core.passwords import set_bcrypt_rounds
from account_registry.infrastructure.account_repository import SqlAccountRepository
from account_registry.infrastructure.database import (
    DatabaseSessionManager, ensure_sqlite_directory,
)
from account_registry.infrastructure.mailer import build_mail_transport
from account_registry.infrastructure.observability import setup_logging
from account_registry.infrastructure.persistence_worker import PersistenceWorker
from account_registry.services.account_service import AccountService
from account_registry.services.refresh_loop import run_refresh_loop

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)
    set_bcrypt_rounds(settings.bcrypt_rounds)

    ensure_sqlite_directory(settings.database_url)
    db_manager = DatabaseSessionManager(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
    )
    if settings.database_auto_create:
        await db_manager.create_schema()

    repository = SqlAccountRepository(db_manager)
    worker = PersistenceWorker(repository)
    await worker.start()
    store = AccountStore(await repository.load_all())
    mailer = build_mail_transport(settings)
    service = AccountService(
        store,
        mailer,
        worker,
        allowed_domains=settings.allowed_domains,
        code_ttl=settings.verification_code_ttl,
        default_token_expiration_days=settings.default_token_expiration_days,
    )
    refresh_task = asyncio.create_task(
        run_refresh_loop(service, settings.refresh_interval_seconds),
        name="refresh-loop",
    )

    app.state.db_manager = db_manager
    app.state.account_service = service
    logger.info(f"Account Registry API started with {len(store)} accounts")
    yield
    logger.info("Account Registry API shutting down")

    refresh_task.cancel()
    try:
        await refresh_task
    except asyncio.CancelledError:
        pass
    app.state.account_service = None
    await worker.stop()
    mailer.close()
    await db_manager.dispose()


app = FastAPI(
    title="Account Registry API", version="1.0.0", lifespan=lifespan,
)

# CORS from settings
settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

app.include_router(health.router)
app.include_router(accounts.router)
