import os
from functools import lru_cache
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _split_list(raw: str) -> List[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


class Settings:
    """Process configuration read from the environment (and .env when present)."""

    def __init__(self):
        self.app_env: str = os.getenv("APP_ENV", "development")
        self.database_url: str = os.getenv("PG_DATABASE_URL", "sqlite:///./chatlog.db")
        self.port: int = int(os.getenv("PORT", "3000"))
        self.timezone: str = os.getenv("CHAT_TIMEZONE", "Asia/Seoul")
        self.graphite_host: str = os.getenv("GRAPHITE_HOST", "localhost")
        self.graphite_port: int = int(os.getenv("GRAPHITE_HOST_PORT", "8125"))
        self.metrics_prefix: str = os.getenv("METRICS_PREFIX", "production.chatlog")
        self.admin_emails: List[str] = _split_list(os.getenv("ADMIN_EMAILS", ""))
        self.cors_origins: List[str] = _split_list(os.getenv("CORS_ORIGINS", "*"))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
