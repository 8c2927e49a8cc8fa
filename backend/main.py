"""
FastAPI Backend for the Study Session Inspector

Admin API over the reconciliation and override engine:
- Session details with reconciled timing and tutor dialogue
- Completeness against the versioned question catalog
- Edits with local fallback when Supabase is unreachable
- Debounced refresh driven by change notifications
"""

from fastapi import FastAPI, HTTPException, Depends
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
import os
import sys
import time
import logging
import signal

# Setup enhanced logging with pretty formatting
from lib.logger import setup_logging, get_logger

setup_logging(level=logging.INFO, use_colors=True)

logger = get_logger("backend.main")

# Add the study_session_inspector package to Python path
backend_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(backend_dir)

package_src = os.path.join(project_root, 'study_session_inspector', 'src')
if os.path.exists(package_src) and package_src not in sys.path:
    sys.path.insert(0, package_src)

from lib.supabase_client import get_supabase_client
from lib.auth import get_current_user, require_admin

from study_session_inspector.errors import (
    EditValidationError,
    RecordStoreError,
    SessionNotFoundError,
)
from study_session_inspector.override_cache import JsonFileKeyValueStore, OverrideCache
from study_session_inspector.record_store import SupabaseRecordStore
from study_session_inspector.refresh_scheduler import RefreshScheduler
from study_session_inspector.session_inspector import SessionInspector
from study_session_inspector.validation import SessionEdits

# Singletons, created on first use
_inspector_instance = None
_refresh_scheduler = None


def get_inspector() -> SessionInspector:
    """Get or create the singleton SessionInspector."""
    global _inspector_instance
    if _inspector_instance is None:
        cache_path = os.getenv("OVERRIDE_CACHE_PATH", ".session_overrides.json")
        _inspector_instance = SessionInspector(
            store=SupabaseRecordStore(get_supabase_client()),
            override_cache=OverrideCache(JsonFileKeyValueStore(cache_path)),
            max_snapshots=int(os.getenv("MAX_OPEN_SNAPSHOTS", "50")),
        )
        logger.info("Session inspector initialized", data={"override_cache": cache_path})
    return _inspector_instance


def get_refresh_scheduler() -> RefreshScheduler:
    """Get or create the refresh scheduler; it refreshes whatever the inspector has open."""
    global _refresh_scheduler
    if _refresh_scheduler is None:
        debounce_ms = int(os.getenv("REFRESH_DEBOUNCE_MS", "300"))
        poll_interval = float(os.getenv("AUTO_REFRESH_INTERVAL_SECONDS", "0"))

        async def refresh(session_ids):
            await get_inspector().refresh_sessions(session_ids)

        async def poll():
            inspector = get_inspector()
            session_ids = inspector.snapshot_ids()
            if session_ids:
                await inspector.refresh_sessions(session_ids)

        _refresh_scheduler = RefreshScheduler(
            refresh=refresh,
            debounce_seconds=debounce_ms / 1000.0,
            poll=poll,
            poll_interval_seconds=poll_interval or None,
        )
    return _refresh_scheduler


async def get_admin_user(user: dict = Depends(get_current_user)) -> dict:
    require_admin(user)
    return user


app = FastAPI(
    title="Study Session Inspector API",
    description="Admin API for reconciled study session telemetry and overrides",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://localhost:8080",
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ==================== Pydantic Models ====================

class ResponseEdit(BaseModel):
    id: str
    answer: str


class TimingEdit(BaseModel):
    id: str
    duration_seconds: float
    # Only consulted for rows the inspector cannot find
    slide_id: Optional[str] = None


class DialogueEdit(BaseModel):
    id: str
    content: str


class SessionEditsRequest(BaseModel):
    session: Dict[str, Any] = Field(default_factory=dict)
    demographic: List[ResponseEdit] = Field(default_factory=list)
    pre: List[ResponseEdit] = Field(default_factory=list)
    post: List[ResponseEdit] = Field(default_factory=list)
    timing: List[TimingEdit] = Field(default_factory=list)
    dialogue: List[DialogueEdit] = Field(default_factory=list)
    scenarios: List[Dict[str, Any]] = Field(default_factory=list)

    def to_edits(self) -> SessionEdits:
        return SessionEdits(
            session=dict(self.session),
            responses={
                category: [row.model_dump() for row in rows]
                for category, rows in (("demographic", self.demographic), ("pre", self.pre), ("post", self.post))
                if rows
            },
            timing=[row.model_dump(exclude_none=True) for row in self.timing],
            dialogue=[row.model_dump() for row in self.dialogue],
            scenarios=[dict(row) for row in self.scenarios],
        )


class TimingTotalRequest(BaseModel):
    total_seconds: int


class RefreshRequest(BaseModel):
    session_ids: List[str]


class SaveResponse(BaseModel):
    outcome: str
    notice: Optional[str] = None
    override_state: str


# ==================== Helper Functions ====================

def raise_http_error(error: Exception):
    """Translate inspector errors into HTTP errors."""
    if isinstance(error, SessionNotFoundError):
        raise HTTPException(status_code=404, detail=str(error))
    if isinstance(error, EditValidationError):
        raise HTTPException(status_code=422, detail={"problems": error.problems})
    if isinstance(error, RecordStoreError):
        raise HTTPException(status_code=503, detail="Study database unavailable")
    raise error


# ==================== API Endpoints ====================

@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "status": "ok",
        "service": "Study Session Inspector API",
        "version": "1.0.0",
        "refresh": get_refresh_scheduler().get_status(),
    }


@app.get("/api/admin/sessions/{session_id}")
async def get_session_details(
    session_id: str,
    cached: bool = False,
    user: dict = Depends(get_admin_user),
    inspector: SessionInspector = Depends(get_inspector),
):
    """Reconciled session details (latest refreshed snapshot when ``cached`` is set)."""
    start_time = time.time()
    logger.request("GET", f"/api/admin/sessions/{session_id}", user_id=user["id"])

    details = inspector.get_snapshot(session_id) if cached else None
    if details is None:
        try:
            details = await inspector.get_session_details(session_id)
        except Exception as e:
            raise_http_error(e)
        inspector.store_snapshot(details)

    payload = details.to_dict()
    payload["override_state"] = inspector.override_state_of(details.session).value
    logger.response(200, f"/api/admin/sessions/{session_id}", time.time() - start_time, data={
        "timing_entries": len(details.timing_entries),
        "dialogue_turns": len(details.dialogue_turns),
        "failed_sections": details.failed_sections,
    })
    return payload


@app.get("/api/admin/sessions/{session_id}/completeness")
async def get_completeness(
    session_id: str,
    user: dict = Depends(get_admin_user),
    inspector: SessionInspector = Depends(get_inspector),
):
    """Per-category answered/expected counts."""
    try:
        status = await inspector.get_completeness(session_id)
    except Exception as e:
        raise_http_error(e)
    return status.to_dict()


@app.patch("/api/admin/sessions/{session_id}", response_model=SaveResponse)
async def save_session_edits(
    session_id: str,
    request: SessionEditsRequest,
    user: dict = Depends(get_admin_user),
    inspector: SessionInspector = Depends(get_inspector),
):
    """Save edits; falls back to a local override when the database is unreachable."""
    logger.section("SESSION EDIT", {"session_id": session_id, "admin": user.get("email")})
    try:
        result = await inspector.save_edits(session_id, request.to_edits())
    except Exception as e:
        raise_http_error(e)

    if result.notice:
        logger.warning("Edit kept locally", data={"session_id": result.session_id})
    else:
        logger.success("Edit committed", data={"session_id": result.session_id})
    return SaveResponse(
        outcome=result.outcome.value,
        notice=result.notice,
        override_state=result.override_state.value,
    )


@app.post("/api/admin/sessions/{session_id}/timing/{slide_key:path}", response_model=SaveResponse)
async def set_timing_total(
    session_id: str,
    slide_key: str,
    request: TimingTotalRequest,
    user: dict = Depends(get_admin_user),
    inspector: SessionInspector = Depends(get_inspector),
):
    """Set a slide's total time; it is spread over the slide's recorded segments."""
    try:
        result = await inspector.edit_timing_total(session_id, slide_key, request.total_seconds)
    except Exception as e:
        raise_http_error(e)
    return SaveResponse(
        outcome=result.outcome.value,
        notice=result.notice,
        override_state=result.override_state.value,
    )


@app.delete("/api/admin/sessions/{session_id}/override")
async def clear_local_override(
    session_id: str,
    user: dict = Depends(get_admin_user),
    inspector: SessionInspector = Depends(get_inspector),
):
    """Discard the local override for a session."""
    resolved_id = await inspector.clear_local_override(session_id)
    return {"status": "cleared", "session_id": resolved_id}


@app.post("/api/admin/refresh")
async def notify_changes(request: RefreshRequest, user: dict = Depends(get_admin_user)):
    """Change notification: the named sessions are refreshed in one debounced batch."""
    scheduler = get_refresh_scheduler()
    scheduler.notify(request.session_ids)
    return {"status": "scheduled", "pending": scheduler.get_status()["pending_sessions"]}


@app.on_event("startup")
async def startup_event():
    """Startup event - start the refresh scheduler."""
    await get_refresh_scheduler().start()
    logger.success("Refresh scheduler started")


@app.on_event("shutdown")
async def shutdown_event():
    """Shutdown event - stop the refresh scheduler."""
    await get_refresh_scheduler().stop()
    logger.info("🛑 Refresh scheduler stopped")


if __name__ == "__main__":
    import uvicorn

    def handle_exit(*args):
        """Handle graceful shutdown."""
        logger.section("SERVER SHUTDOWN", {"reason": "signal received"})
        sys.exit(0)

    signal.signal(signal.SIGINT, handle_exit)
    signal.signal(signal.SIGTERM, handle_exit)

    try:
        uvicorn.run(app, host="0.0.0.0", port=8000)
    except KeyboardInterrupt:
        logger.info("🛑 Server stopped.")
        sys.exit(0)
