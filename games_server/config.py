import logging
import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent

DATABASE_URL = os.environ.get(
    "DATABASE_URL", f"sqlite:///{(BASE_DIR.parent / 'games.db').as_posix()}"
)
SECRET_KEY = os.environ.get("TOKEN_SECRET", "dev-secret")
ADMIN_SECRET = os.environ.get("ADMIN_SECRET", "adminpass")
TOKEN_TTL_SECONDS = int(os.environ.get("TOKEN_TTL_SECONDS", "86400"))
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# Completed sessions stay queryable in memory for this long.
SESSION_RETENTION_SECONDS = int(os.environ.get("SESSION_RETENTION_SECONDS", "600"))

JACKPOT_FLOOR_SLOT = int(os.environ.get("JACKPOT_FLOOR_SLOT", "1000000"))


def configure_logging() -> None:
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=getattr(logging, LOG_LEVEL, logging.INFO),
    )
