import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Force-load .env (Windows-safe, reload-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"

MAX_TOKEN_TTL_HOURS = 24


def _required(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise RuntimeError(f"{name} is not set. Check your .env file.")
    return value


@dataclass(frozen=True)
class Settings:
    database_url: str
    jwt_secret: str
    host: str = "0.0.0.0"
    port: int = 8000
    token_ttl_hours: int = MAX_TOKEN_TTL_HOURS
    db_timeout: float = 5.0
    bcrypt_rounds: int = 12
    log_level: str = "INFO"
    default_admin_username: Optional[str] = None
    default_admin_email: Optional[str] = None
    default_admin_password: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv(dotenv_path=ENV_PATH)
        return cls(
            database_url=_required("DATABASE_URL"),
            jwt_secret=_required("JWT_SECRET"),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "8000")),
            token_ttl_hours=int(os.getenv("TOKEN_TTL_HOURS", str(MAX_TOKEN_TTL_HOURS))),
            db_timeout=float(os.getenv("DB_TIMEOUT", "5")),
            bcrypt_rounds=int(os.getenv("BCRYPT_ROUNDS", "12")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            default_admin_username=os.getenv("DEFAULT_ADMIN_USERNAME") or None,
            default_admin_email=os.getenv("DEFAULT_ADMIN_EMAIL") or None,
            default_admin_password=os.getenv("DEFAULT_ADMIN_PASSWORD") or None,
        )

    @property
    def default_admin(self) -> Optional[dict]:
        """Admin credentials to provision at startup, if all three are configured."""
        if not (self.default_admin_username and self.default_admin_email and self.default_admin_password):
            return None
        return {
            "username": self.default_admin_username,
            "email": self.default_admin_email,
            "password": self.default_admin_password,
        }
