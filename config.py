"""
Runtime settings.

Values come from the process environment; a ``.env`` file in the working
directory is loaded first so local development needs no exports.
"""

import os
from typing import List, Optional

import dotenv

dotenv.load_dotenv()


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


# Assistant
AI_ASSISTANT_PROVIDER: str = os.getenv("AI_ASSISTANT_PROVIDER", "claude").lower()
ASSISTANT_MODEL: Optional[str] = os.getenv("ASSISTANT_MODEL") or None
ASSISTANT_MAX_TOKENS: int = _int_env("ASSISTANT_MAX_TOKENS", 4096)
ASSISTANT_MAX_TOOL_ROUNDS: int = _int_env("ASSISTANT_MAX_TOOL_ROUNDS", 10)

# Grid
MIN_GRID_ROWS: int = _int_env("MIN_GRID_ROWS", 100)
MIN_GRID_COLS: int = _int_env("MIN_GRID_COLS", 26)

# Uploads
MAX_UPLOAD_BYTES: int = _int_env("MAX_UPLOAD_BYTES", 50 * 1024 * 1024)
SUPPORTED_EXTENSIONS = (".xlsx", ".xlsm")

# HTTP server
HOST: str = os.getenv("HOST", "127.0.0.1")
PORT: int = _int_env("PORT", 3001)
CORS_ORIGINS: List[str] = [
    o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()
]
