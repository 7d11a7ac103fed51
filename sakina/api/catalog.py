from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from sakina.config import settings
from sakina.database import get_db
from sakina.models.user import User
from sakina.schemas.catalog import CategoryResponse, TrackResponse
from sakina.services.catalog_service import CatalogService
from sakina.services.progress_service import ProgressService
from sakina.utils.dependencies import get_current_user, get_optional_user
from sakina.utils.responses import success_response, paginate

categories_router = APIRouter(prefix=f"{settings.API_PREFIX}/categories", tags=["Categories"])
tracks_router = APIRouter(prefix=f"{settings.API_PREFIX}/tracks", tags=["Tracks"])
programs_router = APIRouter(prefix=f"{settings.API_PREFIX}/programs", tags=["Programs"])


# ============================================
# CATEGORIES
# ============================================

@categories_router.get("")
async def list_categories(db: Session = Depends(get_db)):
    categories = CatalogService.list_categories(db)
    return success_response([CategoryResponse.model_validate(c).model_dump() for c in categories])


@categories_router.get("/{category_id}")
async def get_category(category_id: int, db: Session = Depends(get_db)):
    category = CatalogService.get_category(db, category_id)
    return success_response(CategoryResponse.model_validate(category).model_dump())


# ============================================
# TRACKS
# ============================================

@tracks_router.get("")
async def list_tracks(
    category_id: Optional[int] = None,
    content_access: Optional[str] = Query(None, pattern="^(free|basic|premium)$"),
    search: Optional[str] = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    items, total = CatalogService.list_tracks(db, category_id, content_access, search, page, limit)
    return success_response(paginate(
        [TrackResponse.model_validate(t).model_dump() for t in items], total, page, limit
    ))


@tracks_router.get("/{track_id}")
async def get_track(track_id: int, db: Session = Depends(get_db)):
    """Track metadata only; audio is served through /stream"""
    track = CatalogService.get_track(db, track_id)
    return success_response(TrackResponse.model_validate(track).model_dump())


@tracks_router.get("/{track_id}/stream")
async def stream_track(
    track_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Short-lived audio URL; 403 with requiresSubscription when not entitled"""
    return success_response(CatalogService.get_stream_url(db, current_user, track_id))


# ============================================
# PROGRAMS
# ============================================

@programs_router.get("")
async def list_programs(
    category_id: Optional[int] = None,
    level: Optional[str] = None,
    featured: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    items, total = CatalogService.list_programs(db, category_id, level, featured, page, limit)
    return success_response(paginate(
        [CatalogService.program_summary(p) for p in items], total, page, limit
    ))


@programs_router.get("/{program_id}")
async def get_program(
    program_id: int,
    current_user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    """Full track list when entitled, otherwise a locked preview"""
    return success_response(CatalogService.get_program_detail(db, current_user, program_id))


@programs_router.get("/{program_id}/leaderboard")
async def program_leaderboard(
    program_id: int,
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
):
    return success_response(ProgressService.program_leaderboard(db, program_id, limit))
