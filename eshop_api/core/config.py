import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv


class Settings:
    """Centralised application configuration sourced from environment variables."""

    def __init__(self) -> None:
        load_dotenv()
        self.database_path = Path(os.getenv("DATABASE_PATH", "data/eshop.db")).resolve()
        self.jwt_secret = os.getenv("JWT_SECRET", "change-me")
        self.jwt_algorithm = os.getenv("JWT_ALGORITHM", "HS256")
        self.jwt_expiration_hours = self._get_int("JWT_EXPIRATION_HOURS", default=24)
        self.verification_code_minutes = self._get_int("VERIFICATION_CODE_MINUTES", default=10)
        self.expiry_sweep_seconds = self._get_int("EXPIRY_SWEEP_SECONDS", default=60)
        self.default_page_limit = self._get_int("DEFAULT_PAGE_LIMIT", default=50)
        self.smtp_host = os.getenv("SMTP_HOST", "")
        self.smtp_port = self._get_int("SMTP_PORT", default=587)
        self.smtp_username = os.getenv("SMTP_USERNAME", "")
        self.smtp_password = os.getenv("SMTP_PASSWORD", "")
        self.smtp_from_email = os.getenv("SMTP_FROM_EMAIL", "")
        self.smtp_from_name = os.getenv("SMTP_FROM_NAME", "E-shop")
        self.admin_default_email = os.getenv("ADMIN_EMAIL")
        self.admin_default_password = os.getenv("ADMIN_PASSWORD")
        self.cors_allow_origins = self._get_list("CORS_ALLOW_ORIGINS", default=["*"])

    @staticmethod
    def _get_int(key: str, default: Optional[int] = None) -> int:
        value = os.getenv(key)
        if value is None or value == "":
            if default is None:
                raise RuntimeError(f"Missing required environment variable: {key}")
            return default
        try:
            return int(value)
        except ValueError as exc:
            raise RuntimeError(f"Environment variable {key} must be an integer") from exc

    @staticmethod
    def _get_list(key: str, default: List[str]) -> List[str]:
        value = os.getenv(key)
        if not value:
            return list(default)
        return [item.strip() for item in value.split(",") if item.strip()]
