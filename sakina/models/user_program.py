from sqlalchemy import Column, Integer, ForeignKey, DateTime, Boolean, JSON, UniqueConstraint, Index
from sqlalchemy.orm import relationship
from datetime import datetime
from typing import Optional
from sakina.database import Base


class UserProgram(Base):
    """Enrollment of a user in a catalog program"""

    __tablename__ = "user_programs"
    __table_args__ = (
        UniqueConstraint("user_id", "program_id", name="uq_user_programs_user_program"),
        Index("ix_user_programs_user_completed", "user_id", "is_completed"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    program_id = Column(Integer, ForeignKey("programs.id"), nullable=False, index=True)

    completed_tracks = Column(JSON, default=list, nullable=False)
    progress = Column(Integer, default=0, nullable=False)
    is_completed = Column(Boolean, default=False)
    completed_at = Column(DateTime, nullable=True)

    enrolled_at = Column(DateTime, default=datetime.utcnow)
    last_accessed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    program = relationship("Program")

    def add_completed_track(self, track_id: int) -> bool:
        """Add a track to the completed set. Returns False if it was already there."""
        completed = list(self.completed_tracks or [])
        if track_id in completed:
            return False
        # Reassign so the JSON column is flagged dirty
        self.completed_tracks = completed + [track_id]
        return True

    def recalculate_progress(self, total_tracks: int, now: Optional[datetime] = None) -> bool:
        """
        Recompute progress from the completed set.

        Returns True only on the transition into the completed state, which is
        the single point where the achievement notification is emitted.
        """
        now = now or datetime.utcnow()
        completed_count = len(self.completed_tracks or [])
        was_completed = bool(self.is_completed)

        if total_tracks <= 0:
            self.progress = 0
            self.is_completed = False
            self.completed_at = None
            return False

        self.progress = min(100, round(100 * completed_count / total_tracks))

        if completed_count >= total_tracks:
            self.is_completed = True
            if not self.completed_at:
                self.completed_at = now
        else:
            self.is_completed = False
            self.completed_at = None

        return self.is_completed and not was_completed
