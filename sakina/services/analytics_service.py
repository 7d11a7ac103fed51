"""
Listening analytics.

Period bucketing is done in Python over the session rows of the window so it
behaves the same on PostgreSQL and SQLite; popular tracks is a plain SQL
GROUP BY. All ties are broken by key ascending so results are deterministic.
"""

import logging
from collections import Counter
from datetime import datetime, timedelta, date
from typing import Optional, List
from sqlalchemy import func, distinct
from sqlalchemy.orm import Session
from sakina.exceptions import ValidationError, NotFoundError
from sakina.models.listening_session import ListeningSession
from sakina.models.subscription import Subscription, SubscriptionStatus
from sakina.models.track import Track
from sakina.models.user import User
from sakina.models.user_program import UserProgram

logger = logging.getLogger(__name__)

PERIODS = {
    # period: (trailing window, bucket key format)
    "week": (timedelta(days=7), "%Y-%m-%d"),
    "month": (timedelta(days=30), "%Y-%m-%d"),
    "year": (timedelta(days=365), "%Y-%U"),
}

PATTERN_WINDOW_DAYS = 30
TOP_CATEGORIES = 5
PEAK_HOURS = 3


class AnalyticsService:

    @staticmethod
    def total_listening_time(
        db: Session,
        user_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> int:
        """Total listening time in whole minutes"""
        query = db.query(func.coalesce(func.sum(ListeningSession.duration_seconds), 0)).filter(
            ListeningSession.user_id == user_id
        )
        if start:
            query = query.filter(ListeningSession.start_time >= start)
        if end:
            query = query.filter(ListeningSession.start_time <= end)

        seconds = query.scalar() or 0
        return round(seconds / 60)

    @staticmethod
    def stats_by_period(db: Session, user_id: int, period: str, now: Optional[datetime] = None) -> dict:
        if period not in PERIODS:
            raise ValidationError("Invalid period. Must be one of: week, month, year")

        now = now or datetime.utcnow()
        window, key_format = PERIODS[period]
        start = now - window

        sessions = db.query(ListeningSession.start_time, ListeningSession.duration_seconds).filter(
            ListeningSession.user_id == user_id,
            ListeningSession.start_time >= start,
            ListeningSession.start_time <= now,
        ).all()

        seconds_by_key = Counter()
        count_by_key = Counter()
        for start_time, duration in sessions:
            key = start_time.strftime(key_format)
            seconds_by_key[key] += duration or 0
            count_by_key[key] += 1

        buckets = [
            {
                "date": key,
                "minutes": round(seconds_by_key[key] / 60, 1),
                "session_count": count_by_key[key],
            }
            for key in sorted(count_by_key)
        ]

        total_seconds = sum(seconds_by_key.values())
        total_minutes = round(total_seconds / 60, 1)
        return {
            "period": period,
            "start_date": start,
            "end_date": now,
            "buckets": buckets,
            "summary": {
                "total_minutes": total_minutes,
                "total_sessions": len(sessions),
                "average_minutes": round(total_minutes / len(buckets), 1) if buckets else 0,
            },
        }

    @staticmethod
    def popular_tracks(db: Session, days: int = 7, limit: int = 10, now: Optional[datetime] = None) -> List[dict]:
        """Most played tracks in the trailing window, play count desc then track id asc"""
        now = now or datetime.utcnow()
        start = now - timedelta(days=days)

        play_count = func.count(ListeningSession.id).label("play_count")
        listeners = func.count(distinct(ListeningSession.user_id)).label("unique_listener_count")

        rows = db.query(ListeningSession.track_id, play_count, listeners).filter(
            ListeningSession.start_time >= start,
            ListeningSession.start_time <= now,
        ).group_by(ListeningSession.track_id).order_by(
            play_count.desc(), ListeningSession.track_id.asc()
        ).limit(limit).all()

        track_ids = [row.track_id for row in rows]
        titles = dict(db.query(Track.id, Track.title).filter(Track.id.in_(track_ids)).all()) if track_ids else {}

        return [
            {
                "track_id": row.track_id,
                "title": titles.get(row.track_id),
                "play_count": row.play_count,
                "unique_listener_count": row.unique_listener_count,
            }
            for row in rows
        ]

    @staticmethod
    def user_listening_patterns(db: Session, user_id: int, now: Optional[datetime] = None) -> dict:
        now = now or datetime.utcnow()
        start = now - timedelta(days=PATTERN_WINDOW_DAYS)

        rows = db.query(
            ListeningSession.start_time,
            ListeningSession.duration_seconds,
            ListeningSession.completed,
            Track.category_id,
        ).join(Track, Track.id == ListeningSession.track_id).filter(
            ListeningSession.user_id == user_id,
            ListeningSession.start_time >= start,
            ListeningSession.start_time <= now,
        ).all()

        if not rows:
            return {
                "top_categories": [],
                "peak_hours": [],
                "average_session_minutes": 0,
                "completion_rate": 0,
                "total_sessions": 0,
            }

        categories = Counter(row.category_id for row in rows)
        hours = Counter(row.start_time.hour for row in rows)
        completed = sum(1 for row in rows if row.completed)
        total_seconds = sum(row.duration_seconds or 0 for row in rows)

        def top(counter: Counter, n: int) -> list:
            return sorted(counter.items(), key=lambda item: (-item[1], item[0]))[:n]

        return {
            "top_categories": [
                {"category_id": category_id, "session_count": count}
                for category_id, count in top(categories, TOP_CATEGORIES)
            ],
            "peak_hours": [
                {"hour": hour, "session_count": count}
                for hour, count in top(hours, PEAK_HOURS)
            ],
            "average_session_minutes": round(total_seconds / len(rows) / 60, 1),
            "completion_rate": round(completed / len(rows) * 100),
            "total_sessions": len(rows),
        }

    @staticmethod
    def update_user_listening_patterns(db: Session, user_id: int, now: Optional[datetime] = None) -> dict:
        now = now or datetime.utcnow()
        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            raise NotFoundError("User not found")

        patterns = AnalyticsService.user_listening_patterns(db, user_id, now)
        patterns["last_updated"] = now.isoformat()
        user.listening_patterns = patterns
        db.commit()
        return patterns

    @staticmethod
    def update_active_users_patterns(db: Session, days: int = 30, now: Optional[datetime] = None) -> int:
        """Refresh stored patterns for every user with a session in the last ``days``"""
        now = now or datetime.utcnow()
        user_ids = [
            row[0] for row in db.query(distinct(ListeningSession.user_id)).filter(
                ListeningSession.start_time >= now - timedelta(days=days)
            ).all()
        ]

        updated = 0
        for user_id in user_ids:
            try:
                AnalyticsService.update_user_listening_patterns(db, user_id, now)
                updated += 1
            except Exception as e:
                db.rollback()
                logger.error(f"❌ Failed to update listening patterns for user {user_id}: {e}", exc_info=True)

        logger.info(f"📊 Updated listening patterns for {updated} users")
        return updated

    @staticmethod
    def _streaks(days: List[date], today: date) -> tuple:
        """(current, longest) runs of consecutive days. Current counts if it ends today or yesterday."""
        if not days:
            return 0, 0

        ordered = sorted(set(days))
        longest = run = 1
        for previous, current in zip(ordered, ordered[1:]):
            run = run + 1 if (current - previous).days == 1 else 1
            longest = max(longest, run)

        current_streak = 0
        if ordered[-1] >= today - timedelta(days=1):
            current_streak = 1
            for previous, current in zip(reversed(ordered[:-1]), reversed(ordered[1:])):
                if (current - previous).days != 1:
                    break
                current_streak += 1

        return current_streak, longest

    @staticmethod
    def user_summary(db: Session, user_id: int, now: Optional[datetime] = None) -> dict:
        now = now or datetime.utcnow()

        sessions = db.query(ListeningSession.start_time, ListeningSession.duration_seconds).filter(
            ListeningSession.user_id == user_id
        ).all()

        completed_programs = db.query(func.count(UserProgram.id)).filter(
            UserProgram.user_id == user_id,
            UserProgram.is_completed == True
        ).scalar() or 0

        current_streak, longest_streak = AnalyticsService._streaks(
            [row.start_time.date() for row in sessions], now.date()
        )

        return {
            "total_minutes": round(sum(row.duration_seconds or 0 for row in sessions) / 60),
            "total_sessions": len(sessions),
            "completed_programs": completed_programs,
            "current_streak": current_streak,
            "longest_streak": longest_streak,
        }

    @staticmethod
    def platform_overview(db: Session, now: Optional[datetime] = None) -> dict:
        now = now or datetime.utcnow()
        month_ago = now - timedelta(days=30)

        total_users = db.query(func.count(User.id)).filter(User.deleted_at.is_(None)).scalar() or 0
        new_users = db.query(func.count(User.id)).filter(User.created_at >= month_ago).scalar() or 0
        active_subscriptions = db.query(func.count(Subscription.id)).filter(
            Subscription.status == SubscriptionStatus.ACTIVE,
            Subscription.end_date > now,
        ).scalar() or 0
        recent_sessions = db.query(func.count(ListeningSession.id)).filter(
            ListeningSession.start_time >= month_ago
        ).scalar() or 0
        active_listeners = db.query(func.count(distinct(ListeningSession.user_id))).filter(
            ListeningSession.start_time >= month_ago
        ).scalar() or 0
        total_seconds = db.query(func.coalesce(func.sum(ListeningSession.duration_seconds), 0)).scalar() or 0

        return {
            "total_users": total_users,
            "new_users_last_30_days": new_users,
            "active_subscriptions": active_subscriptions,
            "sessions_last_30_days": recent_sessions,
            "active_listeners_last_30_days": active_listeners,
            "total_listening_minutes": round(total_seconds / 60),
            "popular_tracks": AnalyticsService.popular_tracks(db, days=30, limit=10, now=now),
        }
