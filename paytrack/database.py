import logging
from contextlib import contextmanager

from sqlalchemy import create_engine, text
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from paytrack.errors import ConflictError, TransientStoreError

logger = logging.getLogger(__name__)

Base = declarative_base()


class Database:
    """
    Store client: one engine and session factory per process.

    Built once at startup, passed to the components that need it, and
    closed at shutdown. Every store call inherits `timeout` (seconds) from
    the engine configuration.
    """

    def __init__(self, url: str, timeout: float = 5.0, echo: bool = False):
        self.url = url
        kwargs = {"echo": echo}
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False, "timeout": timeout}
            if url in ("sqlite://", "sqlite:///:memory:"):
                # Single shared connection, otherwise each session sees its own empty DB
                kwargs["poolclass"] = StaticPool
        else:
            kwargs["pool_timeout"] = timeout
            kwargs["pool_pre_ping"] = True

        self.engine = create_engine(url, **kwargs)
        self.SessionLocal = sessionmaker(
            bind=self.engine, autocommit=False, autoflush=False, expire_on_commit=False
        )

    def create_all(self) -> None:
        from paytrack import models  # noqa: F401

        with store_errors():
            Base.metadata.create_all(bind=self.engine)

    def drop_all(self) -> None:
        Base.metadata.drop_all(bind=self.engine)

    @contextmanager
    def session(self):
        db = self.SessionLocal()
        try:
            yield db
        finally:
            db.close()

    def ping(self) -> bool:
        try:
            with self.session() as db:
                db.execute(text("SELECT 1"))
            return True
        except DBAPIError:
            logger.warning("Database ping failed", exc_info=True)
            return False

    def close(self) -> None:
        self.engine.dispose()


@contextmanager
def store_errors():
    """Translate raw SQLAlchemy failures into the service error taxonomy."""
    try:
        yield
    except IntegrityError as exc:
        logger.info("Unique constraint violated: %s", exc.orig)
        raise ConflictError("Record conflicts with an existing one") from exc
    except (OperationalError, PoolTimeoutError) as exc:
        logger.error("Store unavailable: %s", exc)
        raise TransientStoreError("Data store temporarily unavailable, please retry") from exc
    except DBAPIError as exc:
        if exc.connection_invalidated:
            logger.error("Store connection lost: %s", exc)
            raise TransientStoreError("Data store temporarily unavailable, please retry") from exc
        raise
