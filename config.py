"""Configuration for the popularity bracket engine."""
from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Database
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{Path(__file__).parent / 'popbracket.db'}",
)
SQL_ECHO = os.getenv("SQL_ECHO", "false").lower() in ("true", "1", "yes")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Web auth (identity provider issues HS256 tokens with sub + is_admin claims)
JWT_SECRET = os.getenv("JWT_SECRET", "change-me-in-production-use-long-random-string")
JWT_ALGORITHM = "HS256"
JWT_EXPIRE_DAYS = int(os.getenv("JWT_EXPIRE_DAYS", "7"))

# API server
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8000"))


def _parse_names(value: str) -> list[str]:
    if not value:
        return []
    return [x.strip() for x in value.split(",") if x.strip()]


# Bracket defaults
DEFAULT_TIE_BREAK_POLICY = os.getenv("DEFAULT_TIE_BREAK_POLICY", "contestant1")
DEFAULT_QUADRANT_NAMES = _parse_names(os.getenv("DEFAULT_QUADRANT_NAMES", "")) or [
    "Region 1",
    "Region 2",
    "Region 3",
    "Region 4",
]
