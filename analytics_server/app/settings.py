"""Application settings."""
import os
from pathlib import Path

from dotenv import load_dotenv
from sqlalchemy.engine import URL

# .env lives at repo root; real environment variables take precedence
REPO_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(REPO_ROOT / ".env")


def build_database_url() -> str:
    """Resolve the database URL.

    DATABASE_URL wins when set.  Otherwise, if DB_HOST is set, the URL is
    assembled from the DB_* variables (MySQL by default).  With neither, a
    local SQLite file at the repo root is used.
    """
    explicit = os.getenv("DATABASE_URL")
    if explicit:
        return explicit

    host = os.getenv("DB_HOST")
    if not host:
        return f"sqlite:///{REPO_ROOT / 'analytics.db'}"

    url = URL.create(
        drivername=os.getenv("DB_DRIVER", "mysql+pymysql"),
        username=os.getenv("DB_USER") or None,
        password=os.getenv("DB_PASSWORD") or None,
        host=host,
        port=int(os.getenv("DB_PORT", "3306")),
        database=os.getenv("DB_NAME", "cyber_swipe_analytics"),
    )
    return url.render_as_string(hide_password=False)


def parse_origins(raw: str) -> list[str]:
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


DATABASE_URL = build_database_url()
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "5"))

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8080"))

# CORS origins for browser-hosted builds of the game
ALLOWED_ORIGINS = parse_origins(os.getenv("ALLOWED_ORIGINS", "*")) or ["*"]

# Shared secret for the stats endpoint (must be set in production)
ADMIN_SECRET_KEY = os.getenv("ADMIN_SECRET_KEY", "")

# Maximum raw records per list returned by the stats endpoint
STATS_RAW_LIMIT = int(os.getenv("STATS_RAW_LIMIT", "500"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
