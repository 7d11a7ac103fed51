from datetime import datetime, timedelta

import pytest

from sakina.exceptions import NotFoundError, ValidationError
from sakina.models.listening_session import ListeningSession
from sakina.models.notification import Notification, NotificationType
from sakina.services.progress_service import ProgressService
from sakina.services.session_service import SessionService

API = "/api/v1"


def test_enroll_is_idempotent(db, user, make_track, make_program):
    program = make_program([make_track()])

    enrollment, created = ProgressService.enroll(db, user.id, program.id)
    again, created_again = ProgressService.enroll(db, user.id, program.id)

    assert created and not created_again
    assert again.id == enrollment.id
    assert enrollment.progress == 0


def test_enroll_in_inactive_program(db, user, make_track, make_program):
    program = make_program([make_track()], is_active=False)

    with pytest.raises(NotFoundError):
        ProgressService.enroll(db, user.id, program.id)


def test_progress_and_single_completion_notification(db, user, make_track, make_program, now):
    tracks = [make_track(), make_track(), make_track()]
    program = make_program(tracks)
    ProgressService.enroll(db, user.id, program.id, now)

    enrollment = ProgressService.mark_track_complete(db, user.id, program.id, tracks[0].id, now)
    assert enrollment.progress == 33

    ProgressService.mark_track_complete(db, user.id, program.id, tracks[0].id, now)
    assert enrollment.completed_tracks == [tracks[0].id]

    ProgressService.mark_track_complete(db, user.id, program.id, tracks[1].id, now)
    enrollment = ProgressService.mark_track_complete(db, user.id, program.id, tracks[2].id, now)

    assert enrollment.progress == 100
    assert enrollment.is_completed
    assert enrollment.completed_at == now

    ProgressService.mark_track_complete(db, user.id, program.id, tracks[2].id, now + timedelta(days=1))
    achievements = db.query(Notification).filter(Notification.type == NotificationType.ACHIEVEMENT).all()
    assert len(achievements) == 1
    assert enrollment.completed_at == now


def test_completing_foreign_track_is_rejected(db, user, make_track, make_program):
    program = make_program([make_track()])
    outsider = make_track()
    ProgressService.enroll(db, user.id, program.id)

    with pytest.raises(ValidationError):
        ProgressService.mark_track_complete(db, user.id, program.id, outsider.id)


def test_completing_without_enrollment(db, user, make_track, make_program):
    track = make_track()
    program = make_program([track])

    with pytest.raises(NotFoundError):
        ProgressService.mark_track_complete(db, user.id, program.id, track.id)


def test_leaderboard_orders_by_completion_time(db, make_user, make_track, make_program, now):
    track = make_track()
    program = make_program([track])
    early, late = make_user(), make_user()

    for member, when in ((late, now + timedelta(hours=2)), (early, now)):
        ProgressService.enroll(db, member.id, program.id, when)
        ProgressService.mark_track_complete(db, member.id, program.id, track.id, when)

    board = ProgressService.program_leaderboard(db, program.id)

    assert [row["user_id"] for row in board] == [early.id, late.id]
    assert [row["rank"] for row in board] == [1, 2]


# ============================================
# LISTENING SESSIONS
# ============================================

def test_session_lifecycle(db, user, make_track, now):
    track = make_track()

    session = SessionService.start_session(db, user.id, track.id, device_type="ios", now=now)
    SessionService.update_session(db, user.id, session.id, 120)
    ended = SessionService.end_session(db, user.id, session.id, completed=True, now=now + timedelta(minutes=5))

    assert ended.end_time == now + timedelta(minutes=5)
    assert ended.duration_seconds == 300
    assert ended.completed is True
    assert ended.last_position == 120


def test_ending_twice_keeps_first_close(db, user, make_track, now):
    session = SessionService.start_session(db, user.id, make_track().id, now=now)
    SessionService.end_session(db, user.id, session.id, now=now + timedelta(minutes=1))

    again = SessionService.end_session(db, user.id, session.id, now=now + timedelta(minutes=9))

    assert again.duration_seconds == 60


def test_other_users_session_is_not_found(db, make_user, make_track, now):
    owner, stranger = make_user(), make_user()
    session = SessionService.start_session(db, owner.id, make_track().id, now=now)

    with pytest.raises(NotFoundError):
        SessionService.update_session(db, stranger.id, session.id, 10)


def test_completed_session_marks_program_track(db, user, make_track, make_program, now):
    first, second = make_track(), make_track()
    program = make_program([first, second])
    ProgressService.enroll(db, user.id, program.id, now)

    session = SessionService.start_session(db, user.id, first.id, program_id=program.id, now=now)
    SessionService.end_session(db, user.id, session.id, completed=True, now=now + timedelta(minutes=10))

    assert ProgressService.get_progress(db, user.id, program.id).progress == 50


def test_cleanup_abandoned_sessions_uses_last_position(db, user, make_track, now):
    track = make_track()
    stale = SessionService.start_session(db, user.id, track.id, now=now - timedelta(hours=30))
    SessionService.update_session(db, user.id, stale.id, 420)
    silent = SessionService.start_session(db, user.id, track.id, now=now - timedelta(hours=25))
    fresh = SessionService.start_session(db, user.id, track.id, now=now - timedelta(hours=1))

    closed = SessionService.cleanup_abandoned_sessions(db, hours_threshold=24, now=now)

    assert closed == 2
    db.refresh(stale)
    db.refresh(silent)
    db.refresh(fresh)
    assert stale.duration_seconds == 420 and stale.completed is False
    assert silent.duration_seconds == 25 * 3600
    assert fresh.end_time is None


def test_recent_tracks_are_distinct(db, user, make_track, now):
    older, newer = make_track(), make_track()
    SessionService.start_session(db, user.id, older.id, now=now - timedelta(hours=3))
    SessionService.start_session(db, user.id, newer.id, now=now - timedelta(hours=2))
    SessionService.start_session(db, user.id, older.id, now=now - timedelta(hours=1))

    recent = SessionService.recent_tracks(db, user.id)

    assert [r["track_id"] for r in recent] == [older.id, newer.id]


# ============================================
# HTTP
# ============================================

def test_enroll_endpoint_status_codes(client, user_headers, make_track, make_program):
    program = make_program([make_track()])

    first = client.post(f"{API}/users/programs/{program.id}/enroll", headers=user_headers)
    second = client.post(f"{API}/users/programs/{program.id}/enroll", headers=user_headers)

    assert first.status_code == 201
    assert second.status_code == 200
    assert second.json()["message"] == "Already enrolled in this program"
    assert second.json()["data"]["program"]["id"] == program.id


def test_complete_track_endpoint(client, user_headers, make_track, make_program):
    track = make_track()
    program = make_program([track])
    client.post(f"{API}/users/programs/{program.id}/enroll", headers=user_headers)

    response = client.post(f"{API}/users/programs/{program.id}/tracks/{track.id}/complete", headers=user_headers)

    assert response.status_code == 200
    assert response.json()["message"] == "Program completed"
    assert response.json()["data"]["progress"] == 100


def test_session_endpoints(client, db, user, user_headers, make_track):
    track = make_track()

    started = client.post(f"{API}/listening-sessions", json={"track_id": track.id}, headers=user_headers)
    assert started.status_code == 201
    session_id = started.json()["data"]["id"]

    assert client.put(
        f"{API}/listening-sessions/{session_id}", json={"current_time": 30}, headers=user_headers
    ).json()["data"]["last_position"] == 30
    assert client.put(
        f"{API}/listening-sessions/{session_id}", json={"current_time": -1}, headers=user_headers
    ).status_code == 400

    ended = client.post(f"{API}/listening-sessions/{session_id}/end", json={"completed": True}, headers=user_headers)
    assert ended.json()["data"]["completed"] is True
    assert ended.json()["data"]["end_time"] is not None

    history = client.get(f"{API}/listening-sessions/history", headers=user_headers).json()["data"]
    assert history["pagination"]["total"] == 1
    assert db.query(ListeningSession).count() == 1
