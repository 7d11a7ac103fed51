from datetime import date, datetime, timedelta

import pytest

from sakina.exceptions import ValidationError
from sakina.models.listening_session import ListeningSession
from sakina.models.user import User
from sakina.services.analytics_service import AnalyticsService

API = "/api/v1"


@pytest.fixture
def listen(db):
    def record(user, track, start, seconds, completed=False):
        session = ListeningSession(
            user_id=user.id,
            track_id=track.id,
            start_time=start,
            end_time=start + timedelta(seconds=seconds),
            duration_seconds=seconds,
            completed=completed,
            last_position=seconds,
        )
        db.add(session)
        db.commit()
        return session

    return record


def test_stats_by_week(db, user, make_track, listen, now):
    track = make_track()
    listen(user, track, now - timedelta(days=1), 600)
    listen(user, track, now - timedelta(days=1, hours=2), 300)
    listen(user, track, now - timedelta(days=3), 120)
    listen(user, track, now - timedelta(days=10), 600)

    stats = AnalyticsService.stats_by_period(db, user.id, "week", now)

    assert stats["buckets"] == [
        {"date": "2025-03-12", "minutes": 2.0, "session_count": 1},
        {"date": "2025-03-14", "minutes": 15.0, "session_count": 2},
    ]
    assert stats["summary"] == {"total_minutes": 17.0, "total_sessions": 3, "average_minutes": 8.5}


def test_stats_rejects_unknown_period(db, user):
    with pytest.raises(ValidationError):
        AnalyticsService.stats_by_period(db, user.id, "decade")


def test_stats_without_sessions(db, user, now):
    stats = AnalyticsService.stats_by_period(db, user.id, "month", now)

    assert stats["buckets"] == []
    assert stats["summary"]["average_minutes"] == 0


def test_total_listening_time_in_minutes(db, user, make_track, listen, now):
    track = make_track()
    listen(user, track, now - timedelta(days=2), 100)
    listen(user, track, now - timedelta(hours=1), 50)

    assert AnalyticsService.total_listening_time(db, user.id) == 2
    assert AnalyticsService.total_listening_time(db, user.id, start=now - timedelta(days=1)) == 1


def test_popular_tracks_tie_break(db, make_user, make_track, listen, now):
    first_user, second_user = make_user(), make_user()
    a, b, c = make_track(), make_track(), make_track()
    listen(first_user, b, now - timedelta(hours=1), 60)
    listen(first_user, b, now - timedelta(hours=2), 60)
    listen(first_user, a, now - timedelta(hours=3), 60)
    listen(second_user, a, now - timedelta(hours=4), 60)
    listen(second_user, c, now - timedelta(hours=5), 60)
    listen(second_user, c, now - timedelta(days=9), 60)

    popular = AnalyticsService.popular_tracks(db, days=7, limit=10, now=now)

    assert [row["track_id"] for row in popular] == [a.id, b.id, c.id]
    assert [row["play_count"] for row in popular] == [2, 2, 1]
    assert [row["unique_listener_count"] for row in popular] == [2, 1, 1]
    assert popular[0]["title"] == a.title


def test_listening_patterns(db, user, make_track, listen, now):
    track = make_track()
    day = now - timedelta(days=2)
    listen(user, track, day.replace(hour=7), 600, completed=True)
    listen(user, track, day.replace(hour=7, minute=30), 300)
    listen(user, track, day.replace(hour=22), 900, completed=True)
    listen(user, track, day.replace(hour=21), 600, completed=True)

    patterns = AnalyticsService.user_listening_patterns(db, user.id, now)

    assert patterns["total_sessions"] == 4
    assert patterns["completion_rate"] == 75
    assert patterns["average_session_minutes"] == 10.0
    assert patterns["peak_hours"] == [
        {"hour": 7, "session_count": 2},
        {"hour": 21, "session_count": 1},
        {"hour": 22, "session_count": 1},
    ]
    assert patterns["top_categories"] == [{"category_id": track.category_id, "session_count": 4}]


def test_listening_patterns_empty(db, user, now):
    patterns = AnalyticsService.user_listening_patterns(db, user.id, now)
    assert patterns["total_sessions"] == 0
    assert patterns["top_categories"] == []


def test_update_active_users_patterns(db, make_user, make_track, listen, now):
    active, idle = make_user(), make_user()
    listen(active, make_track(), now - timedelta(days=1), 60)

    assert AnalyticsService.update_active_users_patterns(db, now=now) == 1

    db.expire_all()
    assert db.get(User, active.id).listening_patterns["last_updated"] == now.isoformat()
    assert db.get(User, idle.id).listening_patterns is None


@pytest.mark.parametrize("days, expected", [
    ([], (0, 0)),
    ([date(2025, 3, 15)], (1, 1)),
    ([date(2025, 3, 14), date(2025, 3, 13)], (2, 2)),
    ([date(2025, 3, 13), date(2025, 3, 12)], (0, 2)),
    ([date(2025, 3, 15), date(2025, 3, 15), date(2025, 3, 14)], (2, 2)),
])
def test_streaks(days, expected):
    assert AnalyticsService._streaks(days, date(2025, 3, 15)) == expected


def test_user_summary(db, user, make_track, listen, now):
    track = make_track()
    for offset in (0, 1, 2, 5, 6, 7, 8):
        listen(user, track, now - timedelta(days=offset, hours=1), 120)

    summary = AnalyticsService.user_summary(db, user.id, now)

    assert summary["total_sessions"] == 7
    assert summary["total_minutes"] == 14
    assert summary["current_streak"] == 3
    assert summary["longest_streak"] == 4


def test_stats_endpoint_rejects_bad_period(client, user_headers):
    response = client.get(f"{API}/analytics/stats", params={"period": "decade"}, headers=user_headers)

    assert response.status_code == 400
    assert response.json()["message"] == "Invalid period. Must be one of: week, month, year"
