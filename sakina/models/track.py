from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum, ForeignKey, Text, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
from sakina.database import Base
import enum


class ContentAccess(str, enum.Enum):
    FREE = "free"
    BASIC = "basic"
    PREMIUM = "premium"


class Track(Base):
    __tablename__ = "tracks"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False, index=True)
    description = Column(Text, nullable=True)
    duration_seconds = Column(Integer, nullable=False)
    level = Column(String, nullable=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=False, index=True)

    image_url = Column(String, nullable=False)
    # Storage key, resolved to a (signed) URL only after the entitlement check
    audio_key = Column(String, nullable=False)

    content_access = Column(
        Enum(ContentAccess, values_callable=lambda x: [e.value for e in x]),
        default=ContentAccess.FREE,
        nullable=False,
    )
    play_count = Column(Integer, default=0)
    tags = Column(JSON, default=list)
    is_active = Column(Boolean, default=True, index=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    category = relationship("Category", back_populates="tracks")

    @property
    def is_premium(self) -> bool:
        return self.content_access != ContentAccess.FREE
