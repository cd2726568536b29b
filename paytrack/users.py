import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError

from paytrack.database import Database, store_errors
from paytrack.errors import ConflictError, NotFoundError, ValidationError
from paytrack.models import ROLES, User
from paytrack.security import hash_password

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("username", "email", "password", "role", "first_name", "last_name", "is_active")
NOT_NULL_FIELDS = UPDATABLE_FIELDS


def _check_role(role: str) -> None:
    if role not in ROLES:
        raise ValidationError(f"role must be one of: {', '.join(ROLES)}")


class CredentialStore:
    def __init__(self, database: Database, bcrypt_rounds: int = 12):
        self.database = database
        self.bcrypt_rounds = bcrypt_rounds

    def create(self, data: dict) -> dict:
        for field in ("username", "email", "password"):
            if not data.get(field):
                raise ValidationError(f"{field} is required")
        role = data.get("role") or "viewer"
        _check_role(role)

        user = User(
            username=data["username"],
            email=data["email"],
            password_hash=hash_password(data["password"], self.bcrypt_rounds),
            role=role,
            first_name=data.get("first_name") or "",
            last_name=data.get("last_name") or "",
            is_active=data.get("is_active", True),
        )
        with store_errors(), self.database.session() as db:
            try:
                db.add(user)
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise ConflictError("Username or email already registered") from exc
        logger.info("Created user %s (role=%s)", user.username, user.role)
        return user.to_dict()

    def find_by_username(self, username: str) -> Optional[User]:
        with store_errors(), self.database.session() as db:
            return db.query(User).filter(User.username == username).first()

    def find_by_email(self, email: str) -> Optional[User]:
        with store_errors(), self.database.session() as db:
            return db.query(User).filter(User.email == email).first()

    def list(self) -> list:
        with store_errors(), self.database.session() as db:
            return [u.to_dict() for u in db.query(User).order_by(User.id.asc()).all()]

    def find_by_id(self, user_id: int) -> dict:
        with store_errors(), self.database.session() as db:
            user = db.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user.to_dict()

    def update(self, user_id: int, patch: dict) -> dict:
        unknown = set(patch) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"fields not updatable: {', '.join(sorted(unknown))}")
        for field in NOT_NULL_FIELDS:
            if field in patch and patch[field] is None:
                raise ValidationError(f"{field} must not be null")
        if "role" in patch:
            _check_role(patch["role"])

        with store_errors(), self.database.session() as db:
            user = db.get(User, user_id)
            if user is None:
                raise NotFoundError("User not found")

            for field, value in patch.items():
                if field == "password":
                    user.password_hash = hash_password(value, self.bcrypt_rounds)
                else:
                    setattr(user, field, value)
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise ConflictError("Username or email already registered") from exc
        return user.to_dict()

    def deactivate(self, user_id: int) -> dict:
        return self.update(user_id, {"is_active": False})

    def remove(self, user_id: int) -> None:
        with store_errors(), self.database.session() as db:
            deleted = db.query(User).filter(User.id == user_id).delete()
            db.commit()
        if not deleted:
            raise NotFoundError("User not found")

    def ensure_default_admin(self, username: str, email: str, password: str) -> dict:
        """Create the admin account unless one with this username exists.

        Relies on the unique index, so concurrent callers end up with one row.
        """
        try:
            admin = self.create({
                "username": username,
                "email": email,
                "password": password,
                "role": "admin",
                "first_name": "System",
                "last_name": "Administrator",
            })
        except ConflictError:
            existing = self.find_by_username(username)
            if existing is None:
                # Email taken by a different account
                raise
            logger.info("Default admin %s already present", username)
            return existing.to_dict()
        logger.info("Default admin %s created", username)
        return admin
