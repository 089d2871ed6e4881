"""
Runtime configuration

Everything is read from environment variables (a local .env file is loaded
first when present).
"""
import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


class Settings(BaseModel):
    database_url: Optional[str] = None
    database_name: str = "rugstore"
    default_country: str = "Pakistan"
    store_currency: str = Field("PKR", pattern=r"^[A-Z]{3}$", description="ISO 4217 code")
    jwt_secret: str = "change-me-in-production"
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_pass: Optional[str] = None
    smtp_secure: bool = False
    email_from: Optional[str] = None
    environment: str = "development"
    log_level: str = "INFO"
    session_cookie_max_age: int = 7 * 24 * 60 * 60
    stock_commit_grace_seconds: int = 300

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


@lru_cache
def get_settings() -> Settings:
    return Settings(
        database_url=os.getenv("DATABASE_URL") or None,
        database_name=os.getenv("DATABASE_NAME", "rugstore"),
        default_country=os.getenv("DEFAULT_COUNTRY", "Pakistan"),
        store_currency=os.getenv("STORE_CURRENCY", "PKR").upper(),
        jwt_secret=os.getenv("JWT_SECRET", "change-me-in-production"),
        smtp_host=os.getenv("SMTP_HOST") or None,
        smtp_port=int(os.getenv("SMTP_PORT", 587)),
        smtp_user=os.getenv("SMTP_USER") or None,
        smtp_pass=os.getenv("SMTP_PASS") or None,
        smtp_secure=os.getenv("SMTP_SECURE", "false").lower() == "true",
        email_from=os.getenv("EMAIL_FROM") or None,
        environment=os.getenv("ENVIRONMENT", "development"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        session_cookie_max_age=int(os.getenv("SESSION_COOKIE_MAX_AGE", 7 * 24 * 60 * 60)),
        stock_commit_grace_seconds=int(os.getenv("STOCK_COMMIT_GRACE_SECONDS", 300)),
    )
