from datetime import datetime, timedelta

from sakina.models.notification import Notification
from sakina.models.subscription import Subscription, SubscriptionStatus
from sakina.models.user import Role, User
from sakina.services.subscription_service import SubscriptionService
from sakina.utils.dependencies import Capability, role_has_capability

API = "/api/v1"


def test_capabilities_follow_role():
    assert role_has_capability(Role.ADMIN, Capability.RUN_JOBS)
    assert not role_has_capability(Role.USER, Capability.UPLOAD_FILES)
    assert role_has_capability("admin", Capability.MANAGE_USERS)


def test_admin_routes_reject_regular_users(client, user_headers):
    response = client.get(f"{API}/admin/packages", headers=user_headers)

    assert response.status_code == 403
    assert response.json()["message"] == "Admin access required"


def test_create_package_and_conflict(client, admin_headers):
    body = {
        "name": "Premium", "type": "premium", "price": 299, "period_type": "year",
        "duration_in_days": 365, "discount_percentage": 10,
    }

    created = client.post(f"{API}/admin/packages", json=body, headers=admin_headers)
    duplicate = client.post(f"{API}/admin/packages", json=body, headers=admin_headers)

    assert created.status_code == 201
    assert created.json()["data"]["effective_price"] == 269.1
    assert duplicate.status_code == 409


def test_deactivated_package_leaves_public_list(client, admin_headers, packages):
    client.delete(f"{API}/admin/packages/{packages['basic'].id}", headers=admin_headers)

    public = client.get(f"{API}/subscriptions/packages").json()["data"]
    everything = client.get(f"{API}/admin/packages", headers=admin_headers).json()["data"]

    assert [p["type"] for p in public] == ["standard", "premium"]
    assert len(everything) == 3


def test_create_coupon_normalizes_code(client, admin_headers):
    valid_until = (datetime.utcnow() + timedelta(days=10)).isoformat()

    created = client.post(
        f"{API}/admin/coupons",
        json={"code": " ramadan ", "discount_type": "percentage", "discount_value": 15, "valid_until": valid_until},
        headers=admin_headers,
    )
    too_much = client.post(
        f"{API}/admin/coupons",
        json={"code": "GREEDY", "discount_type": "percentage", "discount_value": 150, "valid_until": valid_until},
        headers=admin_headers,
    )

    assert created.status_code == 201
    assert created.json()["data"]["code"] == "RAMADAN"
    assert too_much.status_code == 400


def test_create_track_and_program(client, admin_headers, category):
    track = client.post(
        f"{API}/admin/tracks",
        json={
            "title": "Body scan", "duration_seconds": 900, "category_id": category.id,
            "image_url": "https://cdn.example.com/scan.png", "audio_key": "audio/body-scan.mp3",
            "content_access": "premium",
        },
        headers=admin_headers,
    )
    assert track.status_code == 201
    track_id = track.json()["data"]["id"]

    program = client.post(
        f"{API}/admin/programs",
        json={
            "title": "Rest", "category_id": category.id, "track_ids": [track_id],
            "thumbnail_url": "https://cdn.example.com/rest.png",
        },
        headers=admin_headers,
    )
    assert program.status_code == 201
    assert program.json()["data"]["total_tracks"] == 1


def test_ban_and_unban(client, admin, admin_headers, make_user, headers_for):
    member = make_user()

    banned = client.post(f"{API}/admin/users/{member.id}/ban", json={"reason": "abuse"}, headers=admin_headers)
    assert banned.json()["data"]["is_banned"] is True
    assert client.get(f"{API}/users/me", headers=headers_for(member)).status_code == 403

    client.post(f"{API}/admin/users/{member.id}/unban", headers=admin_headers)
    assert client.get(f"{API}/users/me", headers=headers_for(member)).status_code == 200


def test_admin_cannot_ban_or_demote_self(client, admin, admin_headers):
    ban = client.post(f"{API}/admin/users/{admin.id}/ban", json={}, headers=admin_headers)
    demote = client.put(f"{API}/admin/users/{admin.id}/role", json={"role": "user"}, headers=admin_headers)

    assert ban.status_code == 400
    assert demote.status_code == 400
    assert demote.json()["message"] == "You cannot remove your own admin role"


def test_user_search(client, admin_headers, make_user):
    make_user(name="Layla")
    make_user(name="Omar")

    data = client.get(f"{API}/admin/users", params={"search": "lay"}, headers=admin_headers).json()["data"]

    assert [u["name"] for u in data["items"]] == ["Layla"]


def test_broadcast_reaches_every_active_user(client, db, admin_headers, make_user):
    make_user()
    make_user(notify_new_content=False)
    make_user(deleted_at=datetime.utcnow())

    response = client.post(
        f"{API}/admin/notifications/broadcast",
        json={"type": "new_content", "title": "New series", "message": "Listen now"},
        headers=admin_headers,
    )

    # The admin account is active too
    assert response.json()["data"] == {"sent": 2}
    assert db.query(Notification).count() == 2


def test_refund_endpoint(client, db, user, admin_headers, packages):
    payment = SubscriptionService.subscribe(db, user, packages["basic"].id).payment

    response = client.post(
        f"{API}/admin/payments/{payment.id}/refund", json={"reason": "duplicate charge"}, headers=admin_headers
    )

    assert response.status_code == 200
    assert response.json()["data"]["status"] == "refunded"


def test_repair_subscription_endpoint(client, db, user, admin_headers, packages):
    SubscriptionService.subscribe(db, user, packages["basic"].id)
    user.subscription_status = "expired"
    db.commit()

    response = client.post(f"{API}/admin/users/{user.id}/repair-subscription", headers=admin_headers)

    assert response.json()["data"]["subscription_snapshot"]["status"] == "active"


def test_run_job_endpoint(client, db, user, admin_headers, packages):
    subscription = SubscriptionService.subscribe(db, user, packages["basic"].id).subscription
    subscription.end_date = datetime.utcnow() - timedelta(hours=1)
    subscription.auto_renew = False
    db.commit()

    response = client.post(f"{API}/admin/jobs/expire-subscriptions", headers=admin_headers)

    assert response.json()["data"] == {"expired": 1}
    db.expire_all()
    assert db.get(Subscription, subscription.id).status == SubscriptionStatus.EXPIRED
    assert db.get(User, user.id).subscription_status == "expired"


def test_unknown_job(client, admin_headers):
    response = client.post(f"{API}/admin/jobs/defragment", headers=admin_headers)

    assert response.status_code == 404
    assert response.json()["message"] == "Unknown job: defragment"


def test_stats_and_overview(client, db, user, admin_headers, packages):
    SubscriptionService.subscribe(db, user, packages["standard"].id)

    stats = client.get(f"{API}/admin/subscriptions/stats", headers=admin_headers).json()["data"]
    overview = client.get(f"{API}/admin/analytics/overview", headers=admin_headers).json()["data"]

    assert stats["total_active"] == 1
    assert overview["active_subscriptions"] == 1
    assert overview["total_users"] == 2
