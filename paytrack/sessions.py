import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import ExpiredSignatureError, JWTError, jwt

from paytrack.config import MAX_TOKEN_TTL_HOURS
from paytrack.errors import UnauthorizedError
from paytrack.security import hash_password, verify_password
from paytrack.users import CredentialStore

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
MAX_TTL = timedelta(hours=MAX_TOKEN_TTL_HOURS)


@dataclass(frozen=True)
class Claims:
    subject: int
    username: str
    role: str
    expires_at: datetime


class SessionIssuer:
    def __init__(self, store: CredentialStore, secret: str, ttl: timedelta = MAX_TTL):
        if not secret:
            raise ValueError("a signing secret is required")
        self.store = store
        self.secret = secret
        self.ttl = min(ttl, MAX_TTL)
        # Compared against when the username is unknown, so both failure paths cost one bcrypt check
        self._dummy_hash = hash_password("paytrack-dummy-password", store.bcrypt_rounds)

    def authenticate(self, username: str, password: str):
        """Return `(token, user_dict)` or raise the same UnauthorizedError for any mismatch."""
        user = self.store.find_by_username(username) if username else None
        if user is None:
            verify_password(password, self._dummy_hash)
            logger.info("Login rejected: unknown user")
            raise UnauthorizedError("Invalid credentials")
        if not verify_password(password, user.password_hash):
            logger.info("Login rejected for user id=%s: bad password", user.id)
            raise UnauthorizedError("Invalid credentials")
        if not user.is_active:
            logger.info("Login rejected for user id=%s: account inactive", user.id)
            raise UnauthorizedError("Invalid credentials")

        logger.info("User id=%s logged in", user.id)
        return self.issue(user.to_dict()), user.to_dict()

    def issue(self, user: dict, now: Optional[datetime] = None, ttl: Optional[timedelta] = None) -> str:
        issued_at = now or datetime.now(timezone.utc)
        lifetime = self.ttl if ttl is None else min(ttl, MAX_TTL)
        claims = {
            "sub": str(user["id"]),
            "username": user["username"],
            "role": user["role"],
            "iat": int(issued_at.timestamp()),
            "exp": int((issued_at + lifetime).timestamp()),
        }
        return jwt.encode(claims, self.secret, algorithm=ALGORITHM)

    def verify(self, token: str) -> Claims:
        try:
            payload = jwt.decode(token, self.secret, algorithms=[ALGORITHM])
            claims = Claims(
                subject=int(payload["sub"]),
                username=payload["username"],
                role=payload["role"],
                expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            )
        except ExpiredSignatureError:
            logger.info("Token rejected: expired")
            raise UnauthorizedError("Invalid or expired token")
        except JWTError as exc:
            logger.info("Token rejected: invalid signature or claims (%s)", exc)
            raise UnauthorizedError("Invalid or expired token")
        except (KeyError, TypeError, ValueError):
            logger.info("Token rejected: malformed claim set")
            raise UnauthorizedError("Invalid or expired token")
        return claims
