"""API dependencies."""

from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request

from yt_batch.core.config import Settings
from yt_batch.services.job_service import JobService, Owner
from yt_batch.services.job_store import JobStore
from yt_batch.services.session_store import SessionStore

# Global service instances
_settings: Optional[Settings] = None
_job_service: Optional[JobService] = None
_session_store: Optional[SessionStore] = None


def init_services(
    settings: Settings,
    job_service: JobService,
    session_store: SessionStore,
) -> None:
    """Initialize service instances."""
    global _settings, _job_service, _session_store
    _settings = settings
    _job_service = job_service
    _session_store = session_store


def get_settings() -> Settings:
    if _settings is None:
        raise RuntimeError("Services not initialized")
    return _settings


def get_job_service() -> JobService:
    """Get the job service instance."""
    if _job_service is None:
        raise RuntimeError("Services not initialized")
    return _job_service


def get_job_store() -> JobStore:
    return get_job_service().store


def get_session_store() -> SessionStore:
    """Get the session store instance."""
    if _session_store is None:
        raise RuntimeError("Services not initialized")
    return _session_store


def get_owner(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
    sessions: Annotated[SessionStore, Depends(get_session_store)],
) -> Owner:
    """The signed-in caller, from the session cookie."""
    session_id = request.cookies.get(settings.server.session_cookie)
    if not session_id:
        raise HTTPException(status_code=401, detail="Not authenticated")

    # Sign-in happens elsewhere; pick up sessions written since the last request
    sessions.reload()
    session = sessions.get(session_id)
    if session is None or not session.authenticated:
        raise HTTPException(status_code=401, detail="Not authenticated")

    return Owner(user_id=session.user_id, session_id=session_id)


# Type aliases for dependency injection
SettingsDep = Annotated[Settings, Depends(get_settings)]
JobServiceDep = Annotated[JobService, Depends(get_job_service)]
JobStoreDep = Annotated[JobStore, Depends(get_job_store)]
SessionStoreDep = Annotated[SessionStore, Depends(get_session_store)]
OwnerDep = Annotated[Owner, Depends(get_owner)]
