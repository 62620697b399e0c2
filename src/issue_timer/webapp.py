"""FastAPI application that exposes the timer service over HTTP."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field

from .config import TimerSettings
from .db import IssueRepository
from .errors import TimerError
from .models import PauseCause
from .paths import get_db_path
from .reconcile import Reconciler
from .scheduler import SchedulerRunner
from .service import Clock, TimerService

logger = logging.getLogger(__name__)


class IssuePayload(BaseModel):
    id: str
    key: Optional[str] = None
    status: str = "todo"
    assignees: List[str] = Field(default_factory=list)
    estimated_hours: Optional[float] = Field(default=None, ge=0)

    model_config = ConfigDict(extra="forbid")


class StartTimerPayload(BaseModel):
    user_id: str
    is_extra_hours: bool = False

    model_config = ConfigDict(extra="forbid")


class PauseTimerPayload(BaseModel):
    cause: PauseCause = PauseCause.USER

    model_config = ConfigDict(extra="forbid")


class StopTimerPayload(BaseModel):
    description: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class ManualTimePayload(BaseModel):
    user_id: str
    duration: int
    description: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class EntryUpdate(BaseModel):
    duration: Optional[int] = None
    description: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


def create_app(
    *,
    db_path: Optional[Path] = None,
    settings: Optional[TimerSettings] = None,
    clock: Optional[Clock] = None,
    run_scheduler: bool = True,
) -> FastAPI:
    """Instantiate the FastAPI application."""
    resolved_db_path = Path(db_path or get_db_path())
    resolved_settings = settings or TimerSettings()
    service = TimerService(IssueRepository(resolved_db_path), clock=clock)
    runner = SchedulerRunner(service, resolved_settings)
    reconciler = Reconciler(service.repository)

    app = FastAPI(title="Issue Timer", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.db_path = resolved_db_path
    app.state.timer_service = service
    app.state.scheduler_runner = runner

    @app.on_event("startup")
    async def _startup() -> None:
        if run_scheduler:
            runner.start()

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        runner.stop()

    @app.get("/api/status")
    def status(request: Request) -> Dict[str, Any]:
        return {
            "scheduler_running": request.app.state.scheduler_runner.is_running(),
            "database_path": str(request.app.state.db_path),
            "inactivity_minutes": resolved_settings.inactivity_threshold.total_seconds() / 60.0,
            "end_of_day": resolved_settings.end_of_day.strftime("%H:%M"),
            "start_of_day": resolved_settings.start_of_day.strftime("%H:%M"),
            "timezone": resolved_settings.timezone,
        }

    @app.post("/api/issues", status_code=201)
    def register_issue(payload: IssuePayload) -> Dict[str, Any]:
        try:
            issue = service.register_issue(
                payload.id,
                payload.key,
                status=payload.status,
                assignees=payload.assignees,
                estimated_hours=payload.estimated_hours,
            )
        except TimerError as exc:
            raise _http_error(exc) from exc
        return {"id": issue.id, "key": issue.key, "status": issue.status}

    @app.get("/api/issues/{issue_id}/time-tracking")
    def time_tracking(issue_id: str) -> Dict[str, Any]:
        try:
            tracking = service.ledger(issue_id)
        except TimerError as exc:
            raise _http_error(exc) from exc
        return tracking.to_document()

    @app.get("/api/issues/{issue_id}/timer")
    def timer_status(issue_id: str) -> Dict[str, Any]:
        try:
            return service.status(issue_id).to_document()
        except TimerError as exc:
            raise _http_error(exc) from exc

    @app.post("/api/issues/{issue_id}/timer/start", status_code=201)
    def start_timer(issue_id: str, payload: StartTimerPayload) -> Dict[str, Any]:
        try:
            entry = service.start(
                issue_id, payload.user_id, is_extra_hours=payload.is_extra_hours
            )
        except TimerError as exc:
            raise _http_error(exc) from exc
        return entry.to_document()

    @app.post("/api/issues/{issue_id}/timer/pause")
    def pause_timer(
        issue_id: str, payload: Optional[PauseTimerPayload] = None
    ) -> Dict[str, Any]:
        cause = payload.cause if payload else PauseCause.USER
        try:
            entry = service.pause(issue_id, cause)
        except TimerError as exc:
            raise _http_error(exc) from exc
        return entry.to_document()

    @app.post("/api/issues/{issue_id}/timer/resume")
    def resume_timer(issue_id: str) -> Dict[str, Any]:
        try:
            entry = service.resume(issue_id)
        except TimerError as exc:
            raise _http_error(exc) from exc
        return entry.to_document()

    @app.post("/api/issues/{issue_id}/timer/stop")
    def stop_timer(
        issue_id: str, payload: Optional[StopTimerPayload] = None
    ) -> Dict[str, Any]:
        description = payload.description if payload else None
        try:
            entry = service.stop(issue_id, description)
        except TimerError as exc:
            raise _http_error(exc) from exc
        return entry.to_document()

    @app.post("/api/issues/{issue_id}/timer/activity")
    def record_activity(issue_id: str) -> Dict[str, Any]:
        try:
            entry = service.record_activity(issue_id)
        except TimerError as exc:
            raise _http_error(exc) from exc
        return {
            "recorded": entry is not None,
            "activeTimeEntry": entry.to_document() if entry else None,
        }

    @app.post("/api/issues/{issue_id}/time-logs", status_code=201)
    def add_manual_time(issue_id: str, payload: ManualTimePayload) -> Dict[str, Any]:
        try:
            log = service.add_manual_time(
                issue_id, payload.user_id, payload.duration, payload.description
            )
        except TimerError as exc:
            raise _http_error(exc) from exc
        return log.to_document()

    @app.patch("/api/issues/{issue_id}/entries/{entry_id}")
    def update_entry(issue_id: str, entry_id: str, payload: EntryUpdate) -> Dict[str, Any]:
        updates = payload.model_dump(exclude_unset=True)
        try:
            entry = service.edit_entry(issue_id, entry_id, **updates)
        except TimerError as exc:
            raise _http_error(exc) from exc
        return entry.to_document()

    @app.delete("/api/issues/{issue_id}/entries/{entry_id}")
    def delete_entry(issue_id: str, entry_id: str) -> Dict[str, Any]:
        try:
            entry = service.delete_entry(issue_id, entry_id)
        except TimerError as exc:
            raise _http_error(exc) from exc
        return {"deleted": entry.id}

    @app.post("/api/issues/{issue_id}/reconcile")
    def reconcile_issue(issue_id: str) -> Dict[str, Any]:
        try:
            result = reconciler.reconcile(issue_id)
        except TimerError as exc:
            raise _http_error(exc) from exc
        return {
            "issueId": result.issue_id,
            "before": result.before,
            "after": result.after,
            "loggedHoursBefore": result.logged_hours_before,
            "loggedHoursAfter": result.logged_hours_after,
            "drifted": result.drifted,
        }

    @app.post("/api/timers/auto-pause")
    def auto_pause_sweep(request: Request) -> Dict[str, Any]:
        report = request.app.state.scheduler_runner.auto_pause.sweep()
        return report.to_document()

    @app.post("/api/timers/resume-sweep")
    def resume_sweep(
        request: Request,
        force: bool = Query(
            default=False,
            description="Resume every end-of-day pause, even before start of day.",
        ),
    ) -> Dict[str, Any]:
        report = request.app.state.scheduler_runner.resume_sweep.sweep(force=force)
        return report.to_document()

    return app


def _http_error(exc: TimerError) -> HTTPException:
    return HTTPException(
        status_code=exc.status_code,
        detail={"error": exc.code, "message": str(exc)},
    )
