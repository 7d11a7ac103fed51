from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime


class NotificationResponse(BaseModel):
    id: int
    type: str
    title: str
    message: str
    icon: Optional[str] = None
    image_url: Optional[str] = None
    data: dict = {}
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class BroadcastRequest(BaseModel):
    """Admin announcement. Empty user_ids sends to every active user."""
    type: str = Field(default="system", pattern="^(new_content|achievement|reminder|subscription|system)$")
    title: str = Field(min_length=1, max_length=200)
    message: str = Field(min_length=1, max_length=1000)
    data: dict = {}
    user_ids: List[int] = []
    send_push: bool = True
