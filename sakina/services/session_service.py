import logging
from datetime import datetime, timedelta
from typing import Optional, List, Tuple
from sqlalchemy import func
from sqlalchemy.orm import Session
from sakina.config import settings
from sakina.exceptions import NotFoundError, SakinaError
from sakina.models.listening_session import ListeningSession
from sakina.models.track import Track
from sakina.models.user_program import UserProgram
from sakina.services.progress_service import ProgressService

logger = logging.getLogger(__name__)


class SessionService:

    @staticmethod
    def start_session(
        db: Session,
        user_id: int,
        track_id: int,
        program_id: Optional[int] = None,
        device_type: Optional[str] = None,
        device_os: Optional[str] = None,
        app_version: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ListeningSession:
        now = now or datetime.utcnow()

        track = db.query(Track).filter(Track.id == track_id, Track.is_active == True).first()
        if not track:
            raise NotFoundError("Track not found")

        session = ListeningSession(
            user_id=user_id,
            track_id=track_id,
            program_id=program_id,
            start_time=now,
            completed=False,
            last_position=0,
            duration_seconds=0,
            device_type=device_type,
            device_os=device_os,
            app_version=app_version,
        )
        db.add(session)
        db.commit()
        db.refresh(session)

        logger.debug(f"▶️ Session {session.id} started: user={user_id} track={track_id}")
        return session

    @staticmethod
    def _get_owned(db: Session, user_id: int, session_id: int) -> ListeningSession:
        session = db.query(ListeningSession).filter(
            ListeningSession.id == session_id,
            ListeningSession.user_id == user_id
        ).first()
        if not session:
            raise NotFoundError("Listening session not found")
        return session

    @staticmethod
    def update_session(db: Session, user_id: int, session_id: int, current_time: int) -> ListeningSession:
        """Record playback position. No status change."""
        session = SessionService._get_owned(db, user_id, session_id)
        session.last_position = max(0, int(current_time))
        db.commit()
        db.refresh(session)
        return session

    @staticmethod
    def end_session(
        db: Session,
        user_id: int,
        session_id: int,
        completed: bool = False,
        now: Optional[datetime] = None,
    ) -> ListeningSession:
        now = now or datetime.utcnow()
        session = SessionService._get_owned(db, user_id, session_id)

        if session.is_open:
            session.close(now, completed)
            db.commit()
            db.refresh(session)
            logger.debug(f"⏹️ Session {session.id} ended after {session.duration_seconds}s")

        if completed and session.program_id:
            enrolled = db.query(UserProgram.id).filter(
                UserProgram.user_id == user_id,
                UserProgram.program_id == session.program_id
            ).first()
            if enrolled:
                try:
                    ProgressService.mark_track_complete(db, user_id, session.program_id, session.track_id, now)
                except SakinaError as e:
                    db.rollback()
                    logger.warning(f"⚠️ Could not mark track {session.track_id} complete for session {session.id}: {e.message}")

        return session

    @staticmethod
    def cleanup_abandoned_sessions(db: Session, hours_threshold: Optional[int] = None, now: Optional[datetime] = None) -> int:
        """
        Force-close sessions left open longer than the threshold. Duration comes
        from the last reported position when there is one, otherwise wall clock.
        """
        now = now or datetime.utcnow()
        hours = settings.ABANDONED_SESSION_HOURS if hours_threshold is None else hours_threshold
        cutoff = now - timedelta(hours=hours)

        abandoned = db.query(ListeningSession).filter(
            ListeningSession.end_time.is_(None),
            ListeningSession.start_time < cutoff,
        ).all()

        for session in abandoned:
            session.close(now, completed=False, use_last_position=True)
        db.commit()

        logger.info(f"🧹 Closed {len(abandoned)} abandoned listening sessions")
        return len(abandoned)

    @staticmethod
    def listening_history(
        db: Session,
        user_id: int,
        page: int = 1,
        limit: int = 20,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Tuple[List[ListeningSession], int]:
        query = db.query(ListeningSession).filter(ListeningSession.user_id == user_id)
        if start:
            query = query.filter(ListeningSession.start_time >= start)
        if end:
            query = query.filter(ListeningSession.start_time <= end)

        total = query.count()
        items = query.order_by(ListeningSession.start_time.desc(), ListeningSession.id.desc()) \
            .offset((page - 1) * limit).limit(limit).all()
        return items, total

    @staticmethod
    def recent_tracks(db: Session, user_id: int, limit: int = 10) -> List[dict]:
        """Distinct tracks, most recently played first"""
        last_played = func.max(ListeningSession.start_time).label("last_played")
        rows = db.query(ListeningSession.track_id, last_played).filter(
            ListeningSession.user_id == user_id
        ).group_by(ListeningSession.track_id).order_by(
            last_played.desc(), ListeningSession.track_id.asc()
        ).limit(limit).all()

        track_ids = [row.track_id for row in rows]
        tracks = {t.id: t for t in db.query(Track).filter(Track.id.in_(track_ids)).all()} if track_ids else {}

        return [
            {
                "track_id": row.track_id,
                "title": tracks[row.track_id].title if row.track_id in tracks else None,
                "image_url": tracks[row.track_id].image_url if row.track_id in tracks else None,
                "duration_seconds": tracks[row.track_id].duration_seconds if row.track_id in tracks else None,
                "last_played": row.last_played,
            }
            for row in rows
        ]
