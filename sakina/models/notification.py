from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Boolean, Enum, JSON, Index
from sqlalchemy.orm import relationship
from datetime import datetime
from sakina.database import Base
import enum


class NotificationType(str, enum.Enum):
    NEW_CONTENT = "new_content"
    ACHIEVEMENT = "achievement"
    REMINDER = "reminder"
    SUBSCRIPTION = "subscription"
    SYSTEM = "system"


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_user_read", "user_id", "is_read"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(
        Enum(NotificationType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    title = Column(String, nullable=False)
    message = Column(String, nullable=False)
    icon = Column(String, nullable=True)
    image_url = Column(String, nullable=True)
    data = Column(JSON, default=dict)

    is_read = Column(Boolean, default=False)
    read_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="notifications")

    def mark_as_read(self):
        if not self.is_read:
            self.is_read = True
            self.read_at = datetime.utcnow()
