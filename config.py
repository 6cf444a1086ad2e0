import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings:
    def __init__(
        self,
        database_url: str,
        secret_key: str,
        access_token_ttl_minutes: int,
        reset_token_ttl_minutes: int,
        client_url: str,
        default_page_size: int,
        max_page_size: int,
        log_level: str,
        smtp_host: Optional[str],
        smtp_port: int,
        smtp_sender: str,
        admin_username: str,
        admin_email: str,
        admin_password: str,
    ) -> None:
        self.database_url = database_url
        self.secret_key = secret_key
        self.access_token_ttl_minutes = access_token_ttl_minutes
        self.reset_token_ttl_minutes = reset_token_ttl_minutes
        self.client_url = client_url
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size
        self.log_level = log_level
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_sender = smtp_sender
        self.admin_username = admin_username
        self.admin_email = admin_email
        self.admin_password = admin_password


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("FINANCE_DATABASE_URL")
    if not database_url:
        data_dir = _ensure_data_dir()
        database_url = f"sqlite:///{data_dir / 'finance.db'}"
    secret_key = os.getenv(
        "FINANCE_SECRET_KEY",
        "5f0c3c1b7d2a4e8f9a6b1c0d3e2f4a5b6c7d8e9f0a1b2c3d4e5f6a7b8c9d0e1f",
    )
    return Settings(
        database_url=database_url,
        secret_key=secret_key,
        access_token_ttl_minutes=int(
            os.getenv("FINANCE_ACCESS_TOKEN_TTL_MINUTES", "1440")
        ),
        reset_token_ttl_minutes=int(os.getenv("FINANCE_RESET_TOKEN_TTL_MINUTES", "15")),
        client_url=os.getenv("FINANCE_CLIENT_URL", "http://localhost:3000"),
        default_page_size=int(os.getenv("FINANCE_DEFAULT_PAGE_SIZE", "10")),
        max_page_size=int(os.getenv("FINANCE_MAX_PAGE_SIZE", "100")),
        log_level=os.getenv("FINANCE_LOG_LEVEL", "INFO").upper(),
        smtp_host=os.getenv("FINANCE_SMTP_HOST") or None,
        smtp_port=int(os.getenv("FINANCE_SMTP_PORT", "25")),
        smtp_sender=os.getenv("FINANCE_SMTP_SENDER", "no-reply@finance.local"),
        admin_username=os.getenv("FINANCE_ADMIN_USERNAME", "admin"),
        admin_email=os.getenv("FINANCE_ADMIN_EMAIL", "admin@example.com"),
        admin_password=os.getenv("FINANCE_ADMIN_PASSWORD", "StrongPass123!"),
    )
