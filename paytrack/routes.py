from datetime import date, datetime, time, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from paytrack.auth import authorize, get_issuer, get_store, verify_token
from paytrack.errors import ForbiddenError, ValidationError
from paytrack.ledger import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, PaymentFilter, PaymentLedger
from paytrack.models import PAYMENT_METHODS, PAYMENT_STATUSES
from paytrack.policy import allowed, is_owner_scoped
from paytrack.schemas import (
    LoginRequest, PaymentCreateRequest, PaymentOut, PaymentPage, PaymentStats,
    PaymentUpdateRequest, RegisterRequest, TokenResponse, UserCreateRequest,
    UserOut, UserUpdateRequest,
)
from paytrack.sessions import Claims, SessionIssuer
from paytrack.stats import MAX_SERIES_DAYS, StatisticsAggregator
from paytrack.users import CredentialStore

auth_router = APIRouter(prefix="/auth", tags=["Auth"])
users_router = APIRouter(prefix="/users", tags=["Users"])
payments_router = APIRouter(prefix="/payments", tags=["Payments"])


def get_ledger(request: Request) -> PaymentLedger:
    return request.app.state.ledger


def get_stats(request: Request) -> StatisticsAggregator:
    return request.app.state.stats


def owner_scope(claims: Claims) -> Optional[int]:
    return claims.subject if is_owner_scoped(claims.role) else None


def parse_date_bound(value: Optional[str], name: str, end: bool = False) -> Optional[datetime]:
    """ISO date or datetime → naive UTC.

    A bare date is a local calendar day (as an end bound it covers the whole
    day); a datetime without offset is taken as UTC.
    """
    if not value:
        return None
    try:
        if len(value) == 10:
            day = date.fromisoformat(value)
            moment = datetime.combine(day, time.max if end else time.min).astimezone()
        else:
            moment = datetime.fromisoformat(value.replace("Z", "+00:00"))
            if moment.tzinfo is None:
                return moment
    except ValueError:
        raise ValidationError(f"{name} must be an ISO date or datetime")
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


STATUS_PATTERN = "^(%s)$" % "|".join(PAYMENT_STATUSES)
METHOD_PATTERN = "^(%s)$" % "|".join(PAYMENT_METHODS)


def payment_filter(
    status: Optional[str] = Query(None, pattern=STATUS_PATTERN),
    payment_method: Optional[str] = Query(None, alias="paymentMethod", pattern=METHOD_PATTERN),
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
) -> PaymentFilter:
    start = parse_date_bound(start_date, "startDate")
    end = parse_date_bound(end_date, "endDate", end=True)
    if start and end and start > end:
        raise ValidationError("startDate must not be after endDate")
    return PaymentFilter(status=status, payment_method=payment_method, start=start, end=end)


@auth_router.post("/login", response_model=TokenResponse)
def login(payload: LoginRequest, issuer: SessionIssuer = Depends(get_issuer)):
    token, user = issuer.authenticate(payload.username, payload.password)
    return {"token": token, "user": user}


@auth_router.post("/register", response_model=TokenResponse, status_code=201)
def register(
    payload: RegisterRequest,
    store: CredentialStore = Depends(get_store),
    issuer: SessionIssuer = Depends(get_issuer),
):
    user = store.create({**payload.model_dump(), "role": "viewer"})
    return {"token": issuer.issue(user), "user": user}


@auth_router.get("/profile", response_model=UserOut)
def profile(claims: Claims = Depends(verify_token), store: CredentialStore = Depends(get_store)):
    return store.find_by_id(claims.subject)


@users_router.get("", response_model=list[UserOut])
def list_users(
    _claims: Claims = Depends(authorize("user:read")),
    store: CredentialStore = Depends(get_store),
):
    return store.list()


@users_router.post("", response_model=UserOut, status_code=201)
def create_user(
    payload: UserCreateRequest,
    _claims: Claims = Depends(authorize("user:write")),
    store: CredentialStore = Depends(get_store),
):
    return store.create(payload.model_dump())


@users_router.get("/{user_id}", response_model=UserOut)
def get_user(
    user_id: int,
    _claims: Claims = Depends(authorize("user:read")),
    store: CredentialStore = Depends(get_store),
):
    return store.find_by_id(user_id)


@users_router.put("/{user_id}", response_model=UserOut)
def update_user(
    user_id: int,
    payload: UserUpdateRequest,
    claims: Claims = Depends(authorize("user:update_self")),
    store: CredentialStore = Depends(get_store),
):
    patch = payload.model_dump(exclude_unset=True)
    if not allowed(claims.role, "user:write"):
        if user_id != claims.subject:
            raise ForbiddenError("Insufficient permissions")
        if "role" in patch or "is_active" in patch:
            raise ForbiddenError("Role and active flag can only be changed by an admin")
    return store.update(user_id, patch)


@users_router.delete("/{user_id}", status_code=204)
def deactivate_user(
    user_id: int,
    _claims: Claims = Depends(authorize("user:write")),
    store: CredentialStore = Depends(get_store),
):
    store.deactivate(user_id)
    return Response(status_code=204)


@payments_router.get("", response_model=PaymentPage)
def list_payments(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    criteria: PaymentFilter = Depends(payment_filter),
    claims: Claims = Depends(authorize("payment:read")),
    ledger: PaymentLedger = Depends(get_ledger),
):
    criteria.owner_id = owner_scope(claims)
    result = ledger.list(criteria, page=page, page_size=limit)
    return {
        "payments": result.items,
        "total": result.total,
        "page": result.page,
        "limit": result.page_size,
        "total_pages": result.total_pages,
    }


@payments_router.get("/stats", response_model=PaymentStats)
def payment_stats(
    days: Optional[int] = Query(None, ge=1, le=MAX_SERIES_DAYS),
    criteria: PaymentFilter = Depends(payment_filter),
    claims: Claims = Depends(authorize("payment:read")),
    stats: StatisticsAggregator = Depends(get_stats),
):
    criteria.owner_id = owner_scope(claims)
    return stats.compute(criteria, days=days)


@payments_router.post("", response_model=PaymentOut, status_code=201)
def create_payment(
    payload: PaymentCreateRequest,
    claims: Claims = Depends(authorize("payment:write")),
    ledger: PaymentLedger = Depends(get_ledger),
):
    return ledger.create(payload.model_dump(), owner_id=claims.subject)


@payments_router.get("/{payment_id}", response_model=PaymentOut)
def get_payment(
    payment_id: int,
    claims: Claims = Depends(authorize("payment:read")),
    ledger: PaymentLedger = Depends(get_ledger),
):
    return ledger.find_by_id(payment_id, owner_id=owner_scope(claims))


@payments_router.put("/{payment_id}", response_model=PaymentOut)
def update_payment(
    payment_id: int,
    payload: PaymentUpdateRequest,
    claims: Claims = Depends(authorize("payment:write")),
    ledger: PaymentLedger = Depends(get_ledger),
):
    patch = payload.model_dump(exclude_unset=True)
    return ledger.update(payment_id, patch, owner_id=owner_scope(claims))


@payments_router.delete("/{payment_id}", status_code=204)
def delete_payment(
    payment_id: int,
    claims: Claims = Depends(authorize("payment:delete")),
    ledger: PaymentLedger = Depends(get_ledger),
):
    ledger.remove(payment_id, owner_id=owner_scope(claims))
    return Response(status_code=204)
