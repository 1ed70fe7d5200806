"""Helpers to launch the local tracking API."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import uvicorn

from .config import TrackerSettings
from .paths import get_archives_dir, get_snapshot_path
from .webapp import create_app


def run_server(
    *,
    host: str = "127.0.0.1",
    port: int = 8765,
    snapshot_path: Optional[Path] = None,
    archives_dir: Optional[Path] = None,
    settings: Optional[TrackerSettings] = None,
    log_level: str = "info",
) -> None:
    """Start the FastAPI app; the tracker lives as long as the server."""
    app = create_app(
        snapshot_path=snapshot_path or get_snapshot_path(),
        archives_dir=archives_dir or get_archives_dir(),
        settings=settings or TrackerSettings(),
    )

    logging.getLogger("uvicorn.error").setLevel(log_level.upper())
    uvicorn.run(app, host=host, port=port, log_level=log_level)
