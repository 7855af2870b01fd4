"""HTTP trigger surface: cron endpoints that run scheduling and processing passes.

Endpoints:
- ``/api/cron/schedule-jobs``: create due recurring jobs
- ``/api/cron/process-jobs``: run one processing pass over the queue

Both accept GET and POST and require ``Authorization: Bearer <CRON_SECRET>``
unless ``APP_ENV=development``.
"""

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict, Field

from webpresence.app import WebPresenceApp

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)
router = APIRouter(prefix="/api/cron", tags=["Cron"])

_tracker: Optional[WebPresenceApp] = None


# =============================================================================
# RESPONSE MODELS
# =============================================================================

class ScheduleData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    jobs_created: int = Field(..., alias="jobsCreated")


class ScheduleResponse(BaseModel):
    success: bool = True
    data: ScheduleData


class ProcessData(BaseModel):
    completed: int
    failed: int
    total: int


class ProcessResponse(BaseModel):
    success: bool = True
    data: ProcessData


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_tracker() -> WebPresenceApp:
    """Shared application instance, initialised on first use."""
    global _tracker
    if _tracker is None:
        _tracker = WebPresenceApp()
        _tracker.initialize()
    return _tracker


def verify_cron_secret(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    tracker: WebPresenceApp = Depends(get_tracker),
) -> None:
    """Reject requests without the cron bearer secret (skipped in development)."""
    if tracker.is_development:
        return
    secret = tracker.cron_secret
    if (
        not secret
        or credentials is None
        or credentials.scheme.lower() != "bearer"
        or not hmac.compare_digest(credentials.credentials, secret)
    ):
        logger.warning("Rejected unauthorized cron request")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )


def _error(exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "error": str(exc) or exc.__class__.__name__},
    )


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.api_route(
    "/schedule-jobs",
    methods=["GET", "POST"],
    response_model=ScheduleResponse,
    dependencies=[Depends(verify_cron_secret)],
)
def schedule_jobs(tracker: WebPresenceApp = Depends(get_tracker)):
    """Create every recurring job that is due."""
    try:
        created = tracker.schedule_jobs()
    except Exception as exc:
        logger.exception("Scheduling pass failed")
        return _error(exc)
    return ScheduleResponse(data=ScheduleData(jobs_created=created))


@router.api_route(
    "/process-jobs",
    methods=["GET", "POST"],
    response_model=ProcessResponse,
    dependencies=[Depends(verify_cron_secret)],
)
async def process_jobs(tracker: WebPresenceApp = Depends(get_tracker)):
    """Run one processing pass over the pending jobs."""
    try:
        stats = await tracker.process_jobs()
    except Exception as exc:
        logger.exception("Processing pass failed")
        return _error(exc)
    return ProcessResponse(data=ProcessData(**stats))


def create_app() -> FastAPI:
    api = FastAPI(title="Web Presence Tracker", version="1.0.0")
    api.include_router(router)

    @api.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    return api


app = create_app()
