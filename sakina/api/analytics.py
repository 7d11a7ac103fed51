from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from sakina.config import settings
from sakina.database import get_db
from sakina.models.user import User
from sakina.services.analytics_service import AnalyticsService
from sakina.utils.dependencies import get_current_user
from sakina.utils.responses import success_response

router = APIRouter(prefix=f"{settings.API_PREFIX}/analytics", tags=["Analytics"])


@router.get("/stats")
async def stats_by_period(
    period: str = Query("week"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Listening minutes per day (week, month) or per week (year)"""
    return success_response(AnalyticsService.stats_by_period(db, current_user.id, period))


@router.get("/total")
async def total_listening_time(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    minutes = AnalyticsService.total_listening_time(db, current_user.id, start_date, end_date)
    return success_response({"total_minutes": minutes})


@router.get("/patterns")
async def listening_patterns(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return success_response(AnalyticsService.user_listening_patterns(db, current_user.id))


@router.get("/summary")
async def user_summary(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return success_response(AnalyticsService.user_summary(db, current_user.id))


@router.get("/popular-tracks")
async def popular_tracks(
    days: int = Query(7, ge=1, le=365),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
):
    return success_response(AnalyticsService.popular_tracks(db, days, limit))
