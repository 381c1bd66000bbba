import logging
import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

TRUTHY = ("1", "true", "yes", "on")


class Settings(BaseModel):
    """Runtime configuration, built once at startup and handed to components."""

    database_url: str
    anon_key: Optional[str] = None
    service_role_key: Optional[str] = None
    environment: str = "development"
    log_level: str = "INFO"
    sql_echo: bool = False
    default_student_password: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()

        database_url = os.environ.get("DATABASE_URL", "").strip()
        if not database_url:
            raise RuntimeError("DATABASE_URL not found. Set it in the environment or .env")

        return cls(
            database_url=database_url,
            anon_key=os.environ.get("DATABASE_ANON_KEY") or None,
            service_role_key=os.environ.get("DATABASE_SERVICE_ROLE_KEY") or None,
            environment=os.environ.get("ENVIRONMENT", "development").strip().lower(),
            log_level=os.environ.get("LOG_LEVEL", "INFO").strip().upper(),
            sql_echo=os.environ.get("SQL_ECHO", "").strip().lower() in TRUTHY,
            default_student_password=os.environ.get("DEFAULT_STUDENT_PASSWORD") or None,
        )

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


@lru_cache()
def get_settings() -> Settings:
    return Settings.from_env()


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        handlers=[logging.StreamHandler()],
    )
