import re
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest
from sqlalchemy import event

from paytrack import ledger as ledger_module
from paytrack.database import Database
from paytrack.errors import ConflictError, NotFoundError, ValidationError
from paytrack.ledger import PaymentFilter, PaymentLedger


def card(amount=10.0, **extra):
    return {"amount": amount, "payment_method": "credit_card", **extra}


def test_create_assigns_transaction_id(ledger):
    payment = ledger.create(card(42.5, currency="eur"))

    assert re.fullmatch(r"TXN\d+[A-Z0-9]{5}", payment.transaction_id)
    assert payment.currency == "EUR"
    assert payment.status == "pending"
    assert payment.id is not None


def test_processed_at_only_set_for_success(ledger, clock):
    succeeded = ledger.create(card(status="success"))
    pending = ledger.create(card(status="pending"))

    assert succeeded.processed_at == clock.now
    assert pending.processed_at is None


def test_failure_reason_only_kept_on_failed(ledger):
    failed = ledger.create(card(status="failed", failure_reason="Insufficient funds"))
    pending = ledger.create(card(status="pending", failure_reason="should vanish"))

    assert failed.failure_reason == "Insufficient funds"
    assert pending.failure_reason is None


def test_create_validates(ledger):
    with pytest.raises(ValidationError):
        ledger.create({"payment_method": "paypal"})
    with pytest.raises(ValidationError):
        ledger.create(card(-1))
    with pytest.raises(ValidationError):
        ledger.create(card(status="refunded"))
    with pytest.raises(ValidationError):
        ledger.create({"amount": 5, "payment_method": "cheque"})


def test_id_collision_is_retried(ledger, mocker):
    first = ledger.create(card())
    mocker.patch.object(
        ledger_module, "generate_transaction_id",
        side_effect=[first.transaction_id, first.transaction_id, "TXN1FRESH"],
    )

    second = ledger.create(card())

    assert second.transaction_id == "TXN1FRESH"


def test_id_collision_gives_up_after_bounded_attempts(ledger, mocker):
    first = ledger.create(card())
    generator = mocker.patch.object(
        ledger_module, "generate_transaction_id", return_value=first.transaction_id
    )

    with pytest.raises(ConflictError):
        ledger.create(card())
    assert generator.call_count == ledger_module.MAX_ID_ATTEMPTS


def test_other_integrity_errors_are_not_retried(mocker):
    database = Database("sqlite://")

    @event.listens_for(database.engine, "connect")
    def enforce_foreign_keys(dbapi_connection, _record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    database.create_all()
    spy = mocker.spy(ledger_module, "generate_transaction_id")

    with pytest.raises(ConflictError, match="conflicts with an existing"):
        PaymentLedger(database).create(card(), owner_id=999)
    assert spy.call_count == 1
    database.close()


def test_concurrent_creates_yield_distinct_ids(tmp_path):
    database = Database(f"sqlite:///{tmp_path / 'ledger.db'}")
    database.create_all()
    ledger = PaymentLedger(database)

    with ThreadPoolExecutor(max_workers=4) as pool:
        payments = list(pool.map(lambda i: ledger.create(card(i)), range(60)))

    ids = {p.transaction_id for p in payments}
    assert len(ids) == 60
    assert ledger.list(page_size=100).total == 60
    database.close()


def test_list_paginates_newest_first(ledger, clock):
    for i in range(25):
        ledger.create(card(float(i)))
        clock.advance(minutes=1)

    page = ledger.list(page=1, page_size=10)
    assert len(page.items) == 10
    assert page.total == 25
    assert page.total_pages == 3
    assert page.items[0].amount == 24.0

    last = ledger.list(page=3, page_size=10)
    assert [p.amount for p in last.items] == [4.0, 3.0, 2.0, 1.0, 0.0]


def test_list_filters(ledger, clock):
    start = clock.now
    ledger.create(card(1, status="success"))
    clock.advance(days=1)
    ledger.create({"amount": 2, "payment_method": "paypal", "status": "failed"})
    clock.advance(days=1)
    ledger.create(card(3, status="success"))

    assert ledger.list(PaymentFilter(status="success")).total == 2
    assert ledger.list(PaymentFilter(payment_method="paypal")).total == 1

    window = PaymentFilter(start=start + timedelta(days=1), end=start + timedelta(days=1))
    assert [p.amount for p in ledger.list(window).items] == [2]

    assert ledger.list(PaymentFilter(start=start + timedelta(hours=1))).total == 2


def test_list_rejects_bad_paging(ledger):
    with pytest.raises(ValidationError):
        ledger.list(page=0)
    with pytest.raises(ValidationError):
        ledger.list(page_size=0)
    with pytest.raises(ValidationError):
        ledger.list(page_size=1000)


def test_empty_ledger_has_zero_pages(ledger):
    page = ledger.list()
    assert page.items == []
    assert page.total == 0
    assert page.total_pages == 0


def test_update_status_transitions(ledger, clock):
    payment = ledger.create(card())
    clock.advance(minutes=5)

    done = ledger.update(payment.id, {"status": "success"})
    assert done.processed_at == clock.now

    failed = ledger.update(payment.id, {"status": "failed", "failure_reason": "Chargeback"})
    assert failed.processed_at is None
    assert failed.failure_reason == "Chargeback"
    assert failed.transaction_id == payment.transaction_id


def test_update_rejects_immutable_fields(ledger):
    payment = ledger.create(card())
    with pytest.raises(ValidationError):
        ledger.update(payment.id, {"transaction_id": "TXN0"})
    with pytest.raises(ValidationError):
        ledger.update(payment.id, {"owner_id": 3})


def test_owner_scoping(ledger, admin, viewer):
    mine = ledger.create(card(), owner_id=admin["id"])

    assert ledger.find_by_id(mine.id, owner_id=admin["id"]).id == mine.id
    with pytest.raises(NotFoundError):
        ledger.find_by_id(mine.id, owner_id=viewer["id"])
    with pytest.raises(NotFoundError):
        ledger.update(mine.id, {"amount": 0}, owner_id=viewer["id"])
    with pytest.raises(NotFoundError):
        ledger.remove(mine.id, owner_id=viewer["id"])

    # Untouched by the failed cross-owner attempts
    assert ledger.find_by_id(mine.id).amount == 10.0
    assert ledger.list(PaymentFilter(owner_id=viewer["id"])).total == 0


def test_remove(ledger):
    payment = ledger.create(card())
    ledger.remove(payment.id)
    with pytest.raises(NotFoundError):
        ledger.find_by_id(payment.id)
    with pytest.raises(NotFoundError):
        ledger.remove(payment.id)


def test_update_rejects_null_for_required_fields(ledger):
    payment = ledger.create(card())

    for field in ("amount", "currency", "status", "payment_method"):
        with pytest.raises(ValidationError, match=f"{field} must not be null"):
            ledger.update(payment.id, {field: None})
    assert ledger.find_by_id(payment.id).currency == "USD"
