import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

# Force-load .env (Windows-safe, reload-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"


def _optional(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _split_origins(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


@dataclass
class Settings:
    """Runtime configuration.

    Every credential is optional: a missing Stripe key disables payments, a
    missing webhook secret disables webhook trust and a missing database URL
    disables persistence. None of them stops the server from booting.
    """

    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    stripe_api_version: str = "2023-10-16"
    database_url: Optional[str] = None
    jwt_secret: Optional[str] = None
    jwt_expire_minutes: int = 60
    cors_origins: List[str] = field(default_factory=list)
    env: str = "development"
    log_level: str = "INFO"
    port: int = 4001

    @property
    def is_development(self) -> bool:
        return self.env.lower() in ("development", "dev", "local")

    @property
    def payments_enabled(self) -> bool:
        return self.stripe_secret_key is not None

    @property
    def webhooks_enabled(self) -> bool:
        return self.stripe_webhook_secret is not None

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            stripe_secret_key=_optional("STRIPE_SECRET_KEY"),
            stripe_webhook_secret=_optional("STRIPE_WEBHOOK_SECRET"),
            stripe_api_version=os.getenv("STRIPE_API_VERSION", "2023-10-16"),
            database_url=_optional("DATABASE_URL"),
            jwt_secret=_optional("JWT_SECRET"),
            jwt_expire_minutes=int(os.getenv("JWT_EXPIRE_MINUTES", "60")),
            cors_origins=_split_origins(os.getenv("CORS_ORIGINS")),
            env=os.getenv("APP_ENV", "development"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            port=int(os.getenv("PORT", "4001")),
        )


def get_settings() -> Settings:
    load_dotenv(dotenv_path=ENV_PATH)
    return Settings.from_env()
