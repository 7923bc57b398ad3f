"""Strata backend server.

Mounts the Strata corpus router under a FastAPI application. The
corpus layout is taken from a JSON config file named by the
``--config`` option, or from the conventional project layout rooted at
the current directory.

Usage::

    # Development (auto-reload)
    uvicorn strata_server:app --reload --port 8430

    # Or run directly
    python strata_server.py --project /path/to/standard
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from strata.src.config import StrataConfig
from strata.src.server import init_strata, router as strata_router

logger = logging.getLogger("strata")

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


def create_app(config: StrataConfig | None = None) -> FastAPI:
    """Build the FastAPI application around one corpus.

    Args:
        config: Corpus configuration; the conventional layout of the
            current directory when None.

    Returns:
        Configured application with the Strata router mounted.
    """
    config = config or StrataConfig.from_project(Path.cwd())
    application = FastAPI(
        title="Strata API",
        description="Tiered documentation corpus: codes, canonical documents, index, validation.",
        version=VERSION,
    )

    # CORS -- allow local dev server origins
    application.add_middleware(
        CORSMiddleware,
        allow_origins=_ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    init_strata(config)

    @application.get("/api/health")
    async def unified_health() -> dict[str, Any]:
        """Return overall health and the corpus location."""
        corpus_ok = config.corpus_root.is_dir()
        return {
            "status": "ok" if corpus_ok else "degraded",
            "version": VERSION,
            "corpus_root": str(config.corpus_root),
            "corpus_exists": corpus_ok,
        }

    application.include_router(strata_router, prefix="/api/strata", tags=["strata"])
    logger.info("Strata router mounted at /api/strata/")
    return application


_ALLOWED_ORIGINS = [
    "http://localhost:5173",   # Vite dev server
    "http://localhost:8430",   # Self (for Swagger UI)
    "http://127.0.0.1:5173",
    "http://127.0.0.1:8430",
]

app = create_app()


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------


def run_server(
    config: StrataConfig | None = None,
    host: str = "127.0.0.1",
    port: int = 8430,
) -> None:
    """Start the Strata server via uvicorn.

    Args:
        config: Corpus configuration; the module-level app is served
            when None.
        host: Bind address. Defaults to localhost.
        port: Port number. Defaults to 8430.
    """
    import uvicorn

    uvicorn.run(create_app(config) if config is not None else app, host=host, port=port)


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    parser = argparse.ArgumentParser(description="Run the Strata API server.")
    parser.add_argument("--project", type=Path, default=None, help="Project directory (data/ and BCS/ inside).")
    parser.add_argument("--config", type=Path, default=None, help="JSON config file.")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8430)
    args = parser.parse_args()

    if args.config is not None:
        server_config = StrataConfig.from_file(args.config)
    elif args.project is not None:
        server_config = StrataConfig.from_project(args.project)
    else:
        server_config = None
    run_server(server_config, host=args.host, port=args.port)
