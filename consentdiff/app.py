"""
Server entry point: FastAPI app setup and route configuration.
"""

from __future__ import annotations

import contextlib
import os
from collections.abc import AsyncGenerator

import dotenv
import fastapi
import uvicorn
from fastapi.middleware import cors

from consentdiff import config
from consentdiff.pipeline import probe
from consentdiff.routes import inspect
from consentdiff.utils import logger

dotenv.load_dotenv()

log = logger.create_logger("Server")

HOST = os.environ.get("UVICORN_HOST", "0.0.0.0")
PORT = int(os.environ.get("UVICORN_PORT", "3001"))


@contextlib.asynccontextmanager
async def lifespan(_app: fastapi.FastAPI) -> AsyncGenerator[None]:
    """Log the browser-host configuration on startup; flush run metadata on shutdown."""
    host_config = config.BrowserHostConfig()
    log.section("consentdiff server started")
    log.info(
        "Browser host",
        {
            "base": host_config.http_base(),
            "tokenSource": host_config.token_source or "none",
        },
    )
    if not host_config.validate_config():
        log.warn("No browser host token configured; /api/inspect will answer AUTH_FAILED")
    yield
    await probe.drain_pending_records()


app = fastapi.FastAPI(title="consentdiff", lifespan=lifespan)

# ============================================================================
# Middleware
# ============================================================================

app.add_middleware(
    cors.CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ============================================================================
# API Routes
# ============================================================================

app.include_router(inspect.router)


def main() -> None:
    """Run the API with uvicorn."""
    uvicorn.run("consentdiff.app:app", host=HOST, port=PORT)


if __name__ == "__main__":
    main()
