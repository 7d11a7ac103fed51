from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from datetime import datetime

CONTENT_ACCESS_PATTERN = "^(free|basic|premium)$"


# ============================================
# CATEGORIES
# ============================================

class CategoryResponse(BaseModel):
    id: int
    name: str
    name_en: Optional[str] = None
    icon: str
    color: str
    image_url: str
    description: Optional[str] = None
    display_order: int = 0
    is_active: bool

    class Config:
        from_attributes = True


class CategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    name_en: Optional[str] = None
    icon: str
    color: str = Field(pattern="^#[0-9A-Fa-f]{6}$")
    image_url: str
    description: Optional[str] = None
    display_order: int = 0


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    name_en: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = Field(default=None, pattern="^#[0-9A-Fa-f]{6}$")
    image_url: Optional[str] = None
    description: Optional[str] = None
    display_order: Optional[int] = None
    is_active: Optional[bool] = None


# ============================================
# TRACKS
# ============================================

class TrackResponse(BaseModel):
    """Track metadata. The audio key is never exposed; use the stream endpoint."""
    id: int
    title: str
    description: Optional[str] = None
    duration_seconds: int
    level: Optional[str] = None
    category_id: int
    image_url: str
    content_access: str
    is_premium: bool
    play_count: int = 0
    tags: List[str] = []
    is_active: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TrackCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    duration_seconds: int = Field(gt=0)
    level: Optional[str] = None
    category_id: int
    image_url: str
    audio_key: str = Field(min_length=1)
    content_access: str = Field(default="free", pattern=CONTENT_ACCESS_PATTERN)
    tags: List[str] = []


class TrackUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    duration_seconds: Optional[int] = Field(default=None, gt=0)
    level: Optional[str] = None
    category_id: Optional[int] = None
    image_url: Optional[str] = None
    audio_key: Optional[str] = Field(default=None, min_length=1)
    content_access: Optional[str] = Field(default=None, pattern=CONTENT_ACCESS_PATTERN)
    tags: Optional[List[str]] = None
    is_active: Optional[bool] = None


class StreamUrlResponse(BaseModel):
    track_id: int
    url: str
    expires_in: int


# ============================================
# PROGRAMS
# ============================================

def _no_duplicates(track_ids: Optional[List[int]]) -> Optional[List[int]]:
    if track_ids is not None and len(set(track_ids)) != len(track_ids):
        raise ValueError("Duplicate tracks are not allowed")
    return track_ids


class ProgramCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    level: Optional[str] = None
    category_id: int
    thumbnail_url: str
    content_access: str = Field(default="free", pattern=CONTENT_ACCESS_PATTERN)
    is_featured: bool = False
    track_ids: List[int] = Field(min_length=1)

    @field_validator("track_ids")
    @classmethod
    def check_tracks(cls, v):
        return _no_duplicates(v)


class ProgramUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    level: Optional[str] = None
    category_id: Optional[int] = None
    thumbnail_url: Optional[str] = None
    content_access: Optional[str] = Field(default=None, pattern=CONTENT_ACCESS_PATTERN)
    is_featured: Optional[bool] = None
    is_active: Optional[bool] = None
    track_ids: Optional[List[int]] = Field(default=None, min_length=1)

    @field_validator("track_ids")
    @classmethod
    def check_tracks(cls, v):
        return _no_duplicates(v)


# ============================================
# CUSTOM PROGRAMS
# ============================================

class CustomProgramCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = None
    thumbnail_url: Optional[str] = None
    track_ids: List[int] = Field(min_length=1)
    is_public: bool = False


class CustomProgramUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None
    thumbnail_url: Optional[str] = None
    track_ids: Optional[List[int]] = Field(default=None, min_length=1)
    is_public: Optional[bool] = None


# ============================================
# USER PROGRAMS
# ============================================

class UserProgramResponse(BaseModel):
    id: int
    program_id: int
    completed_tracks: List[int] = []
    progress: int = 0
    is_completed: bool
    completed_at: Optional[datetime] = None
    enrolled_at: Optional[datetime] = None
    last_accessed_at: Optional[datetime] = None

    class Config:
        from_attributes = True
