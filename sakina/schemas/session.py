from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class StartSessionRequest(BaseModel):
    track_id: int
    program_id: Optional[int] = None
    device_type: Optional[str] = Field(default=None, max_length=50)
    device_os: Optional[str] = Field(default=None, max_length=50)
    app_version: Optional[str] = Field(default=None, max_length=20)


class UpdateSessionRequest(BaseModel):
    current_time: int = Field(ge=0)


class EndSessionRequest(BaseModel):
    completed: bool = False


class ListeningSessionResponse(BaseModel):
    id: int
    track_id: int
    program_id: Optional[int] = None
    start_time: datetime
    end_time: Optional[datetime] = None
    duration_seconds: int = 0
    completed: bool
    last_position: int = 0
    device_type: Optional[str] = None

    class Config:
        from_attributes = True
