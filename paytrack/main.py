"""App factory and uvicorn launcher."""
import logging
import time
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request

from paytrack.config import Settings
from paytrack.database import Database
from paytrack.errors import register_error_handlers
from paytrack.ledger import PaymentLedger
from paytrack.routes import auth_router, payments_router, users_router
from paytrack.schemas import HealthResponse
from paytrack.sessions import SessionIssuer
from paytrack.stats import StatisticsAggregator
from paytrack.users import CredentialStore

__version__ = "1.0.0"

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def create_app(settings: Settings, database: Optional[Database] = None) -> FastAPI:
    """Wire the store client and components into a FastAPI app.

    The database is opened here (or passed in) and closed when the app's
    lifespan ends.
    """
    database = database or Database(settings.database_url, timeout=settings.db_timeout)
    store = CredentialStore(database, bcrypt_rounds=settings.bcrypt_rounds)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        database.create_all()
        admin = settings.default_admin
        if admin:
            store.ensure_default_admin(**admin)
        logger.info("paytrack v%s started", __version__)
        yield
        database.close()
        logger.info("paytrack stopped")

    app = FastAPI(title="Payment Tracking API", version=__version__, lifespan=lifespan)

    app.state.database = database
    app.state.store = store
    app.state.issuer = SessionIssuer(
        store, settings.jwt_secret, ttl=timedelta(hours=settings.token_ttl_hours)
    )
    app.state.ledger = PaymentLedger(database)
    app.state.stats = StatisticsAggregator(database)

    register_error_handlers(app)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        duration = round((time.perf_counter() - start) * 1000, 1)
        logger.info("%s %s -> %s (%sms)", request.method, request.url.path, response.status_code, duration)
        return response

    app.include_router(auth_router)
    app.include_router(users_router)
    app.include_router(payments_router)

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    def health():
        db_ok = database.ping()
        return {
            "status": "healthy" if db_ok else "degraded",
            "database": "connected" if db_ok else "disconnected",
            "version": __version__,
        }

    return app


def main() -> None:
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
