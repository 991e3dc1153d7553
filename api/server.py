"""
FastAPI application for the spreadsheet editor.

Usage:
    python -m api.server                    # 127.0.0.1:3001 (HOST / PORT env)
    python -m api.server --port 9000
    python -m api.server --host 0.0.0.0 --reload

Open workbooks are kept in memory, one ``WorkbookEditor`` per session, for
the lifetime of the process.
"""

from __future__ import annotations

import argparse
import logging
import threading
import uuid
from contextlib import asynccontextmanager
from typing import Dict, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import config
from assistant.bridge import AssistantBridge
from grid.editor import WorkbookEditor

logger = logging.getLogger(__name__)

APP_VERSION = "1.0.0"


class AppState:
    """Mutable container for the bridge and the open workbook sessions."""

    def __init__(self):
        self.bridge: AssistantBridge = AssistantBridge()
        self.sessions: Dict[str, WorkbookEditor] = {}
        self.lock = threading.Lock()

    def open_session(self, editor: WorkbookEditor) -> str:
        session_id = uuid.uuid4().hex
        with self.lock:
            self.sessions[session_id] = editor
        return session_id

    def get_session(self, session_id: str) -> Optional[WorkbookEditor]:
        with self.lock:
            return self.sessions.get(session_id)


state = AppState()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "  [API] Ready (provider=%s, max tool rounds=%d)",
        config.AI_ASSISTANT_PROVIDER,
        config.ASSISTANT_MAX_TOOL_ROUNDS,
    )
    yield
    with state.lock:
        count = len(state.sessions)
        state.sessions.clear()
    logger.info("  [API] Shut down, dropped %d session(s)", count)


app = FastAPI(
    title="Spreadsheet Assistant API",
    description=(
        "Upload a workbook, edit it by hand or through the AI assistant, "
        "and download the result with formulas and layout preserved."
    ),
    version=APP_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

from api.routes import router  # noqa: E402

app.include_router(router)


def main():
    """Run the server with uvicorn."""
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
    )
    parser = argparse.ArgumentParser(description="Spreadsheet assistant API server")
    parser.add_argument("--host", default=config.HOST, help="Bind address")
    parser.add_argument("--port", type=int, default=config.PORT, help="Port number")
    parser.add_argument("--reload", action="store_true", help="Auto-reload on changes")
    args = parser.parse_args()

    logger.info("Starting API on http://%s:%s (docs at /docs)", args.host, args.port)
    uvicorn.run(
        "api.server:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
    )


if __name__ == "__main__":
    main()
