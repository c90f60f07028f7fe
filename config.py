import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        token_secret: str,
        session_ttl_hours: int,
        host: str,
        port: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.token_secret = token_secret
        self.session_ttl_hours = session_ttl_hours
        self.host = host
        self.port = port


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("EXPENSES_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _database_url() -> str:
    explicit = os.getenv("EXPENSES_DATABASE_URL")
    if explicit:
        return explicit
    host = os.getenv("EXPENSES_DB_HOST")
    if not host:
        default_db = _ensure_data_dir() / "expenses.db"
        return f"sqlite:///{default_db}"
    port = os.getenv("EXPENSES_DB_PORT", "5432")
    name = os.getenv("EXPENSES_DB_NAME", "expense_tracker")
    user = os.getenv("EXPENSES_DB_USER", "postgres")
    password = os.getenv("EXPENSES_DB_PASSWORD", "password")
    return f"postgresql+psycopg://{user}:{password}@{host}:{port}/{name}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = _database_url()
    timezone = os.getenv("EXPENSES_TIMEZONE", "Europe/Berlin")
    token_secret = os.getenv(
        "EXPENSES_TOKEN_SECRET",
        "5c0d4f3b9e2a41d7a8f61e0b7c93d2aa4e8b17f06d5c2e9a3b1f47d8c6e0a925",
    )
    session_ttl_hours = int(os.getenv("EXPENSES_SESSION_TTL_HOURS", "720"))
    host = os.getenv("EXPENSES_HOST", "0.0.0.0")
    port = int(os.getenv("EXPENSES_PORT", "3000"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        token_secret=token_secret,
        session_ttl_hours=session_ttl_hours,
        host=host,
        port=port,
    )
