from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Boolean, Index
from sqlalchemy.orm import relationship
from datetime import datetime
from sakina.database import Base


class ListeningSession(Base):
    __tablename__ = "listening_sessions"
    __table_args__ = (
        Index("ix_listening_sessions_user_start", "user_id", "start_time"),
        Index("ix_listening_sessions_track_start", "track_id", "start_time"),
        Index("ix_listening_sessions_open", "end_time", "start_time"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    track_id = Column(Integer, ForeignKey("tracks.id"), nullable=False)
    program_id = Column(Integer, ForeignKey("programs.id"), nullable=True)

    start_time = Column(DateTime, default=datetime.utcnow, nullable=False)
    end_time = Column(DateTime, nullable=True)
    duration_seconds = Column(Integer, default=0, nullable=False)
    completed = Column(Boolean, default=False, nullable=False)
    last_position = Column(Integer, default=0, nullable=False)

    device_type = Column(String, nullable=True)
    device_os = Column(String, nullable=True)
    app_version = Column(String, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    track = relationship("Track")

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    def close(self, now: datetime, completed: bool, use_last_position: bool = False):
        """
        Close the session. Abandoned sessions prefer the reported playback
        position over wall-clock time, since the app may have been backgrounded.
        """
        self.end_time = now
        self.completed = completed
        if use_last_position and self.last_position:
            self.duration_seconds = int(self.last_position)
        else:
            self.duration_seconds = max(0, int((now - self.start_time).total_seconds()))
