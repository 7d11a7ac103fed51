from datetime import datetime, timedelta
from types import SimpleNamespace

from sakina.models.listening_session import ListeningSession
from sakina.models.notification import Notification, NotificationType
from sakina.services import notification_service
from sakina.services.notification_service import NotificationService
from sakina.services import push_service
from sakina.services.push_service import PushResult, PushService

API = "/api/v1"


def test_create_notification_respects_preferences(db, make_user):
    opted_out = make_user(notify_reminders=False)

    assert NotificationService.create_notification(
        db, opted_out.id, NotificationType.REMINDER, "Time to meditate", "Breathe"
    ) is None
    system = NotificationService.create_notification(
        db, opted_out.id, NotificationType.SYSTEM, "Maintenance", "Back soon"
    )

    assert system is not None
    assert db.query(Notification).count() == 1


def test_deleted_user_gets_nothing(db, make_user):
    gone = make_user(deleted_at=datetime.utcnow())

    assert NotificationService.create_notification(db, gone.id, NotificationType.SYSTEM, "Hi", "There") is None


def test_dead_push_tokens_are_pruned(db, make_user, monkeypatch):
    member = make_user(fcm_tokens=["token-alive-123", "token-dead-456"])
    fake_push = SimpleNamespace(
        send_to_tokens=lambda tokens, title, body, data: PushResult(
            success_count=1, failure_count=1, invalid_tokens=["token-dead-456"]
        )
    )
    monkeypatch.setattr(notification_service, "get_push_service", lambda: fake_push)

    NotificationService.create_notification(db, member.id, NotificationType.SYSTEM, "Hello", "World")

    db.refresh(member)
    assert member.fcm_tokens == ["token-alive-123"]


def test_push_failure_does_not_break_notification(db, make_user, monkeypatch):
    member = make_user(fcm_tokens=["token-alive-123"])

    def explode(*args, **kwargs):
        raise RuntimeError("fcm down")

    monkeypatch.setattr(notification_service, "get_push_service", lambda: SimpleNamespace(send_to_tokens=explode))

    notification = NotificationService.create_notification(db, member.id, NotificationType.SYSTEM, "Hello", "World")

    assert notification is not None
    assert db.query(Notification).count() == 1


def test_bulk_notifications_skip_opted_out(db, make_user):
    keen = make_user()
    quiet = make_user(notify_new_content=False)

    sent = NotificationService.create_bulk_notifications(
        db, [keen.id, quiet.id], NotificationType.NEW_CONTENT, "New track", "Fresh sounds"
    )

    assert sent == 1
    assert db.query(Notification).one().user_id == keen.id


def test_mark_all_as_read_and_unread_count(db, user):
    for title in ("One", "Two", "Three"):
        NotificationService.create_notification(db, user.id, NotificationType.SYSTEM, title, "Body")

    assert NotificationService.unread_count(db, user.id) == 3
    assert NotificationService.mark_all_as_read(db, user.id) == 3
    assert NotificationService.unread_count(db, user.id) == 0


def test_cleanup_old_notifications_only_removes_read(db, user, now):
    old_read = Notification(user_id=user.id, type=NotificationType.SYSTEM, title="a", message="a",
                            is_read=True, created_at=now - timedelta(days=100))
    old_unread = Notification(user_id=user.id, type=NotificationType.SYSTEM, title="b", message="b",
                              is_read=False, created_at=now - timedelta(days=100))
    recent_read = Notification(user_id=user.id, type=NotificationType.SYSTEM, title="c", message="c",
                               is_read=True, created_at=now - timedelta(days=5))
    db.add_all([old_read, old_unread, recent_read])
    db.commit()

    assert NotificationService.cleanup_old_notifications(db, days=90, now=now) == 1
    assert sorted(n.title for n in db.query(Notification).all()) == ["b", "c"]


def test_daily_reminders_skip_users_who_listened(db, make_user, make_track, now):
    due = make_user(reminder_hour=now.hour)
    listened = make_user(reminder_hour=now.hour)
    make_user(reminder_hour=(now.hour + 1) % 24)
    db.add(ListeningSession(user_id=listened.id, track_id=make_track().id, start_time=now.replace(hour=6)))
    db.commit()

    assert NotificationService.send_daily_reminders(db, now) == 1
    assert db.query(Notification).one().user_id == due.id


def test_inbox_endpoints(client, user, user_headers, db):
    first = NotificationService.create_notification(db, user.id, NotificationType.SYSTEM, "First", "Body")
    NotificationService.create_notification(db, user.id, NotificationType.SYSTEM, "Second", "Body")

    listing = client.get(f"{API}/notifications", headers=user_headers).json()["data"]
    assert listing["unread_count"] == 2
    assert [n["title"] for n in listing["items"]] == ["Second", "First"]

    read = client.put(f"{API}/notifications/{first.id}/read", headers=user_headers)
    assert read.json()["data"]["is_read"] is True
    assert client.get(f"{API}/notifications/unread-count", headers=user_headers).json()["data"]["unread_count"] == 1

    assert client.delete(f"{API}/notifications/{first.id}", headers=user_headers).status_code == 200
    assert client.delete(f"{API}/notifications/{first.id}", headers=user_headers).status_code == 404


def test_other_users_notification_is_hidden(client, make_user, headers_for, db):
    owner, stranger = make_user(), make_user()
    notification = NotificationService.create_notification(db, owner.id, NotificationType.SYSTEM, "Mine", "Body")

    response = client.put(f"{API}/notifications/{notification.id}/read", headers=headers_for(stranger))

    assert response.status_code == 404


# ============================================
# PUSH
# ============================================

def test_push_is_noop_without_firebase():
    service = PushService()

    assert service.enabled is False
    assert service.send_to_tokens(["token-alive-123"], "Hi", "There") == PushResult()


def test_push_reports_unregistered_tokens(monkeypatch):
    sent = []

    def fake_multicast(message, app=None):
        sent.append(message)
        return SimpleNamespace(success_count=1, failure_count=1, responses=[
            SimpleNamespace(success=True, exception=None),
            SimpleNamespace(success=False, exception=push_service.messaging.UnregisteredError("gone")),
        ])

    monkeypatch.setattr(push_service.messaging, "send_each_for_multicast", fake_multicast)
    service = PushService()
    service.app = object()

    result = service.send_to_tokens(["token-alive-123", "token-dead-456"], "Hi", "There", {"track_id": 7})

    assert result == PushResult(success_count=1, failure_count=1, invalid_tokens=["token-dead-456"])
    assert sent[0].data == {"track_id": "7"}
