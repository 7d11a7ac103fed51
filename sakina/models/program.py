from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum, ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
from sakina.database import Base
from sakina.models.track import ContentAccess


class ProgramTrack(Base):
    __tablename__ = "program_tracks"
    __table_args__ = (
        UniqueConstraint("program_id", "track_id", name="uq_program_tracks_program_track"),
    )

    id = Column(Integer, primary_key=True)
    program_id = Column(Integer, ForeignKey("programs.id", ondelete="CASCADE"), nullable=False, index=True)
    track_id = Column(Integer, ForeignKey("tracks.id"), nullable=False)
    order = Column(Integer, nullable=False)

    program = relationship("Program", back_populates="tracks")
    track = relationship("Track")


class Program(Base):
    __tablename__ = "programs"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False, index=True)
    description = Column(Text, nullable=True)
    level = Column(String, nullable=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=False, index=True)
    thumbnail_url = Column(String, nullable=False)

    content_access = Column(
        Enum(ContentAccess, values_callable=lambda x: [e.value for e in x]),
        default=ContentAccess.FREE,
        nullable=False,
    )
    is_featured = Column(Boolean, default=False)
    is_active = Column(Boolean, default=True, index=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    category = relationship("Category", back_populates="programs")
    tracks = relationship(
        "ProgramTrack",
        back_populates="program",
        order_by="ProgramTrack.order",
        cascade="all, delete-orphan",
    )

    @property
    def track_ids(self) -> list[int]:
        return [pt.track_id for pt in self.tracks]

    @property
    def total_tracks(self) -> int:
        return len(self.tracks)
