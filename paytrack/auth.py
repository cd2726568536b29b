import logging
from typing import Optional

from fastapi import Depends, Header, Request

from paytrack.errors import ForbiddenError, NotFoundError, UnauthorizedError
from paytrack.policy import allowed
from paytrack.sessions import Claims, SessionIssuer
from paytrack.users import CredentialStore

logger = logging.getLogger(__name__)


def get_issuer(request: Request) -> SessionIssuer:
    return request.app.state.issuer


def get_store(request: Request) -> CredentialStore:
    return request.app.state.store


def verify_token(
    authorization: Optional[str] = Header(None),
    issuer: SessionIssuer = Depends(get_issuer),
    store: CredentialStore = Depends(get_store),
) -> Claims:
    if not authorization:
        raise UnauthorizedError("Invalid or missing token")
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise UnauthorizedError("Invalid or missing token")
    claims = issuer.verify(parts[1])

    # Deactivated or removed accounts lose access before their token expires
    try:
        user = store.find_by_id(claims.subject)
    except NotFoundError:
        user = None
    if user is None or not user["is_active"]:
        logger.info("Token rejected: user id=%s missing or inactive", claims.subject)
        raise UnauthorizedError("Invalid or expired token")
    return claims


def authorize(operation: str):
    """
    Route dependency: verified claims whose role may perform `operation`.
    Example: claims: Claims = Depends(authorize("payment:read"))
    """
    def checker(claims: Claims = Depends(verify_token)) -> Claims:
        if not allowed(claims.role, operation):
            logger.info("Denied %s to user id=%s (role=%s)", operation, claims.subject, claims.role)
            raise ForbiddenError("Insufficient permissions")
        return claims

    return checker
