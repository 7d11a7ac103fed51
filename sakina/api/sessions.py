from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from sakina.config import settings
from sakina.database import get_db
from sakina.models.user import User
from sakina.schemas.session import StartSessionRequest, UpdateSessionRequest, EndSessionRequest, ListeningSessionResponse
from sakina.services.session_service import SessionService
from sakina.utils.dependencies import get_current_user
from sakina.utils.responses import success_response, paginate

router = APIRouter(prefix=f"{settings.API_PREFIX}/listening-sessions", tags=["Listening Sessions"])


def _session(session) -> dict:
    return ListeningSessionResponse.model_validate(session).model_dump()


@router.post("", status_code=status.HTTP_201_CREATED)
async def start_session(
    body: StartSessionRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    session = SessionService.start_session(db, current_user.id, **body.model_dump())
    return success_response(_session(session), "Session started", status.HTTP_201_CREATED)


@router.get("/history")
async def listening_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    items, total = SessionService.listening_history(db, current_user.id, page, limit, start_date, end_date)
    return success_response(paginate([_session(s) for s in items], total, page, limit))


@router.get("/recent")
async def recent_tracks(
    limit: int = Query(10, ge=1, le=50),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return success_response(SessionService.recent_tracks(db, current_user.id, limit))


@router.put("/{session_id}")
async def update_session(
    session_id: int,
    body: UpdateSessionRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Playback position heartbeat"""
    session = SessionService.update_session(db, current_user.id, session_id, body.current_time)
    return success_response(_session(session), "Session updated")


@router.post("/{session_id}/end")
async def end_session(
    session_id: int,
    body: EndSessionRequest = EndSessionRequest(),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    session = SessionService.end_session(db, current_user.id, session_id, body.completed)
    return success_response(_session(session), "Session ended")
