"""FastAPI application that exposes the tracker to a local UI."""

from __future__ import annotations

import logging
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict

from .config import TrackerSettings
from .paths import get_archives_dir, get_snapshot_path
from .service import TimeTrackingService
from .store import JsonSnapshotStore, SnapshotStore

logger = logging.getLogger(__name__)


class SwitchPayload(BaseModel):
    old_project_id: Optional[str] = None
    new_project_id: str

    model_config = ConfigDict(extra="forbid")


def create_app(
    *,
    service: Optional[TimeTrackingService] = None,
    store: Optional[SnapshotStore] = None,
    snapshot_path: Optional[Path] = None,
    archives_dir: Optional[Path] = None,
    settings: Optional[TrackerSettings] = None,
) -> FastAPI:
    """Instantiate the FastAPI application."""
    resolved_settings = settings or TrackerSettings()
    resolved_snapshot_path = Path(snapshot_path or get_snapshot_path())
    tracking = service or TimeTrackingService(
        settings=resolved_settings,
        archives_dir=Path(archives_dir or get_archives_dir()),
    )
    snapshot_store = store or JsonSnapshotStore(
        resolved_snapshot_path, debounce=tracking.settings.save_debounce
    )

    app = FastAPI(title="Work Time", version="0.3.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.service = tracking
    app.state.snapshot_path = resolved_snapshot_path

    @app.on_event("startup")
    async def _startup() -> None:
        tracking.init(snapshot_store)
        logger.info("Serving time tracking API for %s", resolved_snapshot_path)

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        tracking.shutdown()

    @app.get("/api/status")
    def status(request: Request) -> Dict[str, Any]:
        svc: TimeTrackingService = request.app.state.service
        return {
            "initialized": svc.initialized,
            "active_projects": svc.get_active_project_count(),
            "snapshot_path": str(request.app.state.snapshot_path),
            "archives_dir": str(svc.archives.directory),
            "idle_minutes": svc.settings.idle_timeout.total_seconds() / 60.0,
            "checkpoint_minutes": svc.settings.checkpoint_interval.total_seconds() / 60.0,
        }

    @app.post("/api/projects/{project_id}/start")
    def start_tracking(project_id: str, request: Request) -> Dict[str, Any]:
        svc: TimeTrackingService = request.app.state.service
        svc.start_tracking(project_id)
        return _project_payload(svc, project_id)

    @app.post("/api/projects/{project_id}/stop")
    def stop_tracking(project_id: str, request: Request) -> Dict[str, Any]:
        svc: TimeTrackingService = request.app.state.service
        svc.stop_tracking(project_id)
        return _project_payload(svc, project_id)

    @app.post("/api/projects/{project_id}/activity")
    def record_activity(project_id: str, request: Request) -> Dict[str, Any]:
        svc: TimeTrackingService = request.app.state.service
        svc.record_activity(project_id)
        return _project_payload(svc, project_id)

    @app.post("/api/projects/{project_id}/output")
    def record_output(project_id: str, request: Request) -> Dict[str, Any]:
        svc: TimeTrackingService = request.app.state.service
        svc.record_output_activity(project_id)
        return _project_payload(svc, project_id)

    @app.post("/api/projects/switch")
    def switch_project(payload: SwitchPayload, request: Request) -> Dict[str, Any]:
        svc: TimeTrackingService = request.app.state.service
        new_project_id = payload.new_project_id.strip()
        if not new_project_id:
            raise HTTPException(status_code=400, detail="new_project_id is required")
        svc.switch_project(payload.old_project_id, new_project_id)
        return _project_payload(svc, new_project_id)

    @app.get("/api/projects/{project_id}/times")
    def project_times(project_id: str, request: Request) -> Dict[str, Any]:
        return _project_payload(request.app.state.service, project_id)

    @app.get("/api/global/times")
    def global_times(request: Request) -> Dict[str, Any]:
        svc: TimeTrackingService = request.app.state.service
        times = svc.get_global_times()
        return {
            "today_seconds": _seconds(times.today),
            "week_seconds": _seconds(times.week),
            "month_seconds": _seconds(times.month),
            "active_projects": svc.get_active_project_count(),
        }

    @app.get("/api/archives")
    def list_archives(request: Request) -> Dict[str, Any]:
        svc: TimeTrackingService = request.app.state.service
        return {
            "months": [
                {"year": year, "month": month, "file": svc.archives.path_for(year, month).name}
                for year, month in svc.archives.list_months()
            ]
        }

    @app.get("/api/archives/{year}/{month}")
    def get_archive(year: int, month: int, request: Request) -> Dict[str, Any]:
        if not 1 <= month <= 12:
            raise HTTPException(status_code=400, detail="month must be between 1 and 12")
        svc: TimeTrackingService = request.app.state.service
        archive = svc.archives.load_archive(year, month)
        if archive is None:
            raise HTTPException(status_code=404, detail="Archive not found")
        return archive.to_dict()

    return app


def _seconds(value: timedelta) -> float:
    return round(value.total_seconds(), 3)


def _project_payload(svc: TimeTrackingService, project_id: str) -> Dict[str, Any]:
    times = svc.get_project_times(project_id)
    return {
        "project_id": project_id,
        "tracking": svc.is_tracking(project_id),
        "today_seconds": _seconds(times.today),
        "total_seconds": _seconds(times.total),
    }
