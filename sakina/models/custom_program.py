from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Text, JSON
from datetime import datetime
from sakina.database import Base


class CustomProgram(Base):
    """User-curated ordered track list, visible only to its owner"""

    __tablename__ = "custom_programs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    thumbnail_url = Column(String, nullable=True)

    # [{"track_id": 3, "order": 1}, ...]
    tracks = Column(JSON, default=list, nullable=False)
    is_public = Column(Boolean, default=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def track_ids(self) -> list[int]:
        ordered = sorted(self.tracks or [], key=lambda t: t.get("order", 0))
        return [t["track_id"] for t in ordered]
