from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from paytrack.config import Settings
from paytrack.database import Database
from paytrack.ledger import PaymentLedger
from paytrack.main import create_app
from paytrack.sessions import SessionIssuer
from paytrack.stats import StatisticsAggregator
from paytrack.users import CredentialStore

TEST_SECRET = "test-signing-secret"


def local_noon_utc(year=2024, month=5, day=15) -> datetime:
    """Noon local time on the given day, as the naive UTC value the store keeps."""
    return datetime(year, month, day, 12).astimezone().astimezone(timezone.utc).replace(tzinfo=None)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def settings():
    return Settings(database_url="sqlite://", jwt_secret=TEST_SECRET, bcrypt_rounds=4)


@pytest.fixture
def database():
    db = Database("sqlite://")
    db.create_all()
    yield db
    db.drop_all()
    db.close()


@pytest.fixture
def clock():
    return FakeClock(local_noon_utc())


@pytest.fixture
def store(database):
    return CredentialStore(database, bcrypt_rounds=4)


@pytest.fixture
def issuer(store):
    return SessionIssuer(store, TEST_SECRET)


@pytest.fixture
def ledger(database, clock):
    return PaymentLedger(database, clock=clock)


@pytest.fixture
def aggregator(database, clock):
    return StatisticsAggregator(database, clock=clock)


@pytest.fixture
def admin(store):
    return store.create({
        "username": "alice", "email": "alice@paytrack.io", "password": "alice-pass",
        "role": "admin", "first_name": "Alice", "last_name": "Admin",
    })


@pytest.fixture
def viewer(store):
    return store.create({
        "username": "victor", "email": "victor@paytrack.io", "password": "victor-pass",
        "role": "viewer", "first_name": "Victor", "last_name": "Viewer",
    })


@pytest.fixture
def client(settings, database, ledger, aggregator):
    app = create_app(settings, database)
    app.state.ledger = ledger
    app.state.stats = aggregator
    with TestClient(app) as c:
        yield c


@pytest.fixture
def bearer(issuer):
    """Authorization headers for a user dict."""
    def headers(user: dict) -> dict:
        return {"Authorization": f"Bearer {issuer.issue(user)}"}
    return headers
