"""
Runtime settings

Everything is read from environment variables once per process.
"""
import os
from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: str) -> List[str]:
    return [part.strip() for part in os.getenv(name, default).split(",") if part.strip()]


class Settings(BaseModel):
    database_url: Optional[str] = None
    database_name: Optional[str] = None

    jwt_secret: str = "dev_secret_change_me"
    jwt_alg: str = "HS256"
    token_expire_min: int = Field(60 * 24 * 7, gt=0)  # 7 days

    owner_email: Optional[str] = None

    email_from: Optional[str] = None
    email_to: Optional[str] = None
    notify_customer: bool = False
    notify_mode: Literal["background", "await"] = "background"

    aws_region: Optional[str] = None
    s3_bucket: Optional[str] = None
    s3_public_base_url: Optional[str] = None
    upload_folder: str = "orders"
    upload_dir: Optional[str] = None

    external_timeout: float = Field(5.0, gt=0)
    order_rate_limit: str = "30/minute"

    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])
    log_level: str = "INFO"
    port: int = 8000

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL"),
            database_name=os.getenv("DATABASE_NAME"),
            jwt_secret=os.getenv("JWT_SECRET", "dev_secret_change_me"),
            token_expire_min=int(os.getenv("TOKEN_EXPIRE_MIN", 60 * 24 * 7)),
            owner_email=os.getenv("OWNER_EMAIL") or None,
            email_from=os.getenv("EMAIL_FROM") or None,
            email_to=os.getenv("EMAIL_TO") or None,
            notify_customer=_env_bool("NOTIFY_CUSTOMER"),
            notify_mode=os.getenv("NOTIFY_MODE", "background").strip().lower(),
            aws_region=os.getenv("AWS_REGION") or None,
            s3_bucket=os.getenv("S3_BUCKET") or None,
            s3_public_base_url=os.getenv("S3_PUBLIC_BASE_URL") or None,
            upload_folder=os.getenv("UPLOAD_FOLDER", "orders"),
            upload_dir=os.getenv("UPLOAD_DIR") or None,
            external_timeout=float(os.getenv("EXTERNAL_TIMEOUT_SECONDS", 5)),
            order_rate_limit=os.getenv("ORDER_RATE_LIMIT", "30/minute"),
            allowed_origins=_env_list("ALLOWED_ORIGINS", "*"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            port=int(os.getenv("PORT", 8000)),
        )


@lru_cache()
def get_settings() -> Settings:
    return Settings.from_env()
