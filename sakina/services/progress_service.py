import logging
from datetime import datetime
from typing import Optional, List, Tuple
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sakina.exceptions import NotFoundError, ValidationError
from sakina.models.notification import NotificationType
from sakina.models.program import Program
from sakina.models.user import User
from sakina.models.user_program import UserProgram
from sakina.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


class ProgressService:

    @staticmethod
    def _get_active_program(db: Session, program_id: int) -> Program:
        program = db.query(Program).filter(
            Program.id == program_id,
            Program.is_active == True
        ).first()
        if not program:
            raise NotFoundError("Program not found")
        return program

    @staticmethod
    def _find(db: Session, user_id: int, program_id: int) -> Optional[UserProgram]:
        return db.query(UserProgram).filter(
            UserProgram.user_id == user_id,
            UserProgram.program_id == program_id
        ).first()

    @staticmethod
    def enroll(db: Session, user_id: int, program_id: int, now: Optional[datetime] = None) -> Tuple[UserProgram, bool]:
        """
        Enroll the user. Returns (enrollment, created); a second enroll returns
        the existing row with created=False.
        """
        now = now or datetime.utcnow()
        ProgressService._get_active_program(db, program_id)

        existing = ProgressService._find(db, user_id, program_id)
        if existing:
            return existing, False

        enrollment = UserProgram(
            user_id=user_id,
            program_id=program_id,
            completed_tracks=[],
            progress=0,
            is_completed=False,
            enrolled_at=now,
            last_accessed_at=now,
        )
        db.add(enrollment)
        try:
            db.commit()
        except IntegrityError:
            # Lost the race on the (user_id, program_id) unique constraint
            db.rollback()
            existing = ProgressService._find(db, user_id, program_id)
            if existing is None:
                raise
            return existing, False

        db.refresh(enrollment)
        logger.info(f"📚 User {user_id} enrolled in program {program_id}")
        return enrollment, True

    @staticmethod
    def unenroll(db: Session, user_id: int, program_id: int):
        enrollment = ProgressService._find(db, user_id, program_id)
        if not enrollment:
            raise NotFoundError("Not enrolled in this program")
        db.delete(enrollment)
        db.commit()
        logger.info(f"📚 User {user_id} left program {program_id}")

    @staticmethod
    def get_progress(db: Session, user_id: int, program_id: int) -> UserProgram:
        enrollment = ProgressService._find(db, user_id, program_id)
        if not enrollment:
            raise NotFoundError("Not enrolled in this program")
        return enrollment

    @staticmethod
    def list_enrollments(db: Session, user_id: int, completed: Optional[bool] = None) -> List[UserProgram]:
        query = db.query(UserProgram).filter(UserProgram.user_id == user_id)
        if completed is not None:
            query = query.filter(UserProgram.is_completed == completed)
        return query.order_by(UserProgram.last_accessed_at.desc(), UserProgram.id.desc()).all()

    @staticmethod
    def mark_track_complete(
        db: Session,
        user_id: int,
        program_id: int,
        track_id: int,
        now: Optional[datetime] = None,
    ) -> UserProgram:
        """
        Add ``track_id`` to the enrollment's completed set and recompute
        progress. Repeating a track is a no-op; the achievement notification is
        sent once, on the transition into completed.
        """
        now = now or datetime.utcnow()

        enrollment = ProgressService._find(db, user_id, program_id)
        if not enrollment:
            raise NotFoundError("Not enrolled in this program")

        program = db.query(Program).filter(Program.id == program_id).first()
        if not program:
            raise NotFoundError("Program not found")

        if track_id not in program.track_ids:
            raise ValidationError("Track is not part of this program")

        enrollment.add_completed_track(track_id)
        just_completed = enrollment.recalculate_progress(program.total_tracks, now)
        enrollment.last_accessed_at = now
        db.commit()
        db.refresh(enrollment)

        if just_completed:
            logger.info(f"🏆 User {user_id} completed program {program_id}")
            NotificationService.notify_safely(
                db, user_id, NotificationType.ACHIEVEMENT,
                "Program completed",
                f"Congratulations! You completed {program.title}",
                icon="🏆",
                data={"program_id": program.id},
            )

        return enrollment

    @staticmethod
    def program_leaderboard(db: Session, program_id: int, limit: int = 10) -> List[dict]:
        """Earliest completers of a program"""
        ProgressService._get_active_program(db, program_id)

        rows = db.query(UserProgram, User).join(User, User.id == UserProgram.user_id).filter(
            UserProgram.program_id == program_id,
            UserProgram.is_completed == True,
            User.deleted_at.is_(None),
        ).order_by(UserProgram.completed_at.asc(), UserProgram.id.asc()).limit(limit).all()

        return [
            {
                "rank": index,
                "user_id": user.id,
                "name": user.name,
                "avatar_url": user.avatar_url,
                "completed_at": enrollment.completed_at,
            }
            for index, (enrollment, user) in enumerate(rows, start=1)
        ]
