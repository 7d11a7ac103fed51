from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from sakina.config import settings
from sakina.exceptions import ValidationError, NotFoundError
from sakina.models.notification import Notification, NotificationType
from sakina.models.payment import Payment, PaymentStatus, PaymentPurpose
from sakina.models.subscription import Subscription, SubscriptionStatus
from sakina.services.payment_service import ChargeResult, PaymentGateway
from sakina.services.subscription_service import SubscriptionService, calculate_proration


def test_subscribe_creates_subscription_and_snapshot(db, user, packages, now):
    result = SubscriptionService.subscribe(db, user, packages["basic"].id, now=now)

    assert result.created
    subscription = result.subscription
    assert subscription.status == SubscriptionStatus.ACTIVE
    assert subscription.start_date == now
    assert subscription.end_date == datetime(2025, 4, 15, 12, 0, 0)
    assert subscription.is_active_at(now)

    db.refresh(user)
    assert user.subscription_package_id == packages["basic"].id
    assert user.subscription_status == "active"
    assert user.subscription_end_date == subscription.end_date

    payment = db.query(Payment).filter(Payment.subscription_id == subscription.id).one()
    assert payment.status == PaymentStatus.COMPLETED
    assert payment.purpose == PaymentPurpose.SUBSCRIBE
    assert payment.amount == 30


def test_subscribe_twice_returns_existing(db, user, packages, now):
    first = SubscriptionService.subscribe(db, user, packages["basic"].id, now=now)
    second = SubscriptionService.subscribe(db, user, packages["premium"].id, now=now + timedelta(days=1))

    assert not second.created
    assert second.subscription.id == first.subscription.id
    assert db.query(Subscription).count() == 1


def test_subscribe_after_expiry_creates_new_row(db, user, packages, now):
    first = SubscriptionService.subscribe(db, user, packages["basic"].id, now=now)
    later = first.subscription.end_date + timedelta(days=2)

    second = SubscriptionService.subscribe(db, user, packages["standard"].id, now=later)

    assert second.created
    db.refresh(first.subscription)
    assert first.subscription.status == SubscriptionStatus.EXPIRED
    assert second.subscription.end_date == datetime(2025, 7, 17, 12, 0, 0)


def test_subscribe_with_coupon(db, user, packages, make_coupon, now):
    coupon = make_coupon(code="SAVE20", valid_from=now - timedelta(days=1), valid_until=now + timedelta(days=1))

    result = SubscriptionService.subscribe(db, user, packages["basic"].id, coupon_code="save20", now=now)

    assert result.price == 24
    assert result.discount == 6
    db.refresh(coupon)
    assert coupon.used_count == 1


def test_subscribe_with_invalid_coupon_creates_nothing(db, user, packages, make_coupon, now):
    make_coupon(code="OLD", valid_from=now - timedelta(days=10), valid_until=now - timedelta(days=1))

    with pytest.raises(ValidationError):
        SubscriptionService.subscribe(db, user, packages["basic"].id, coupon_code="OLD", now=now)

    assert db.query(Subscription).count() == 0


def test_subscribe_to_unknown_package(db, user, now):
    with pytest.raises(NotFoundError):
        SubscriptionService.subscribe(db, user, 999, now=now)


def test_paid_subscribe_requires_payment_outside_test_mode(db, user, packages, make_coupon, now, monkeypatch):
    monkeypatch.setattr(settings, "PAYMENT_TEST_MODE", False)

    with pytest.raises(ValidationError):
        SubscriptionService.subscribe(db, user, packages["basic"].id, now=now)

    make_coupon(code="FREE100", discount_value=100, valid_from=now - timedelta(days=1), valid_until=now + timedelta(days=1))
    result = SubscriptionService.subscribe(db, user, packages["basic"].id, coupon_code="FREE100", now=now)
    assert result.created
    assert result.price == 0


def test_cancel_keeps_access_until_end_date(db, user, packages, now):
    subscription = SubscriptionService.subscribe(db, user, packages["basic"].id, now=now).subscription

    cancelled = SubscriptionService.cancel(db, user, now=now + timedelta(days=3))

    assert cancelled.id == subscription.id
    assert cancelled.auto_renew is False
    assert cancelled.cancellation_date == now + timedelta(days=3)
    assert cancelled.status == SubscriptionStatus.ACTIVE
    assert cancelled.is_active_at(now + timedelta(days=10))
    assert not cancelled.is_active_at(cancelled.end_date)


def test_cancel_without_subscription(db, user, now):
    with pytest.raises(NotFoundError):
        SubscriptionService.cancel(db, user, now=now)


def test_renew_extends_from_end_date(db, user, packages, now):
    subscription = SubscriptionService.subscribe(db, user, packages["basic"].id, now=now).subscription
    SubscriptionService.cancel(db, user, now=now)

    renewed = SubscriptionService.renew(db, user, now=now + timedelta(days=5))

    assert renewed.end_date == datetime(2025, 5, 15, 12, 0, 0)
    assert renewed.auto_renew is True
    assert renewed.cancellation_date is None
    assert db.query(Payment).filter(Payment.purpose == PaymentPurpose.RENEW).count() == 1
    assert renewed.id == subscription.id


def test_renew_after_expiry_starts_from_now(db, user, packages, now):
    SubscriptionService.subscribe(db, user, packages["basic"].id, now=now)
    later = datetime(2025, 6, 1, 8, 0, 0)
    SubscriptionService.expire_subscriptions(db, now=later)

    renewed = SubscriptionService.renew(db, user, now=later)

    assert renewed.status == SubscriptionStatus.ACTIVE
    assert renewed.end_date == datetime(2025, 7, 1, 8, 0, 0)


def test_renew_to_explicit_end_date(db, user, packages, now):
    subscription = SubscriptionService.subscribe(db, user, packages["basic"].id, now=now).subscription

    with pytest.raises(ValidationError):
        SubscriptionService.renew(db, user, new_end_date=subscription.end_date, now=now)

    target = subscription.end_date + timedelta(days=10)
    renewed = SubscriptionService.renew(db, user, new_end_date=target, now=now)
    assert renewed.end_date == target


def test_calculate_proration():
    now = datetime(2025, 3, 15, 12, 0, 0)
    old = SimpleNamespace(price=30, period_days=30)
    new = SimpleNamespace(price=120, period_days=30, effective_price=108.0)

    proration = calculate_proration(old, new, now + timedelta(days=10, hours=1), now)

    assert proration.days_remaining == 11
    assert proration.remaining_credit == 11
    assert proration.credit_days == 2
    assert proration.proration_amount == 108.0


def test_calculate_proration_with_free_target():
    now = datetime(2025, 3, 15, 12, 0, 0)
    old = SimpleNamespace(price=30, period_days=30)
    new = SimpleNamespace(price=0, period_days=30, effective_price=0.0)

    assert calculate_proration(old, new, now + timedelta(days=5), now).credit_days == 0


def test_upgrade_adds_credit_days(db, user, packages, now):
    SubscriptionService.subscribe(db, user, packages["basic"].id, now=now)
    upgrade_at = now + timedelta(days=1)

    subscription, proration = SubscriptionService.change_package(db, user, packages["premium"].id, now=upgrade_at)

    assert proration.days_remaining == 30
    assert proration.credit_days == 30
    assert proration.proration_amount == 365
    assert subscription.package_id == packages["premium"].id
    assert subscription.start_date == upgrade_at
    assert subscription.end_date == datetime(2026, 4, 15, 12, 0, 0)

    db.refresh(user)
    assert user.subscription_package_id == packages["premium"].id


def test_monthly_to_yearly_upgrade_with_fifteen_days_left(db, user, packages, now):
    packages["basic"].price = 9.99
    packages["premium"].price = 99.99
    db.commit()
    old_end = SubscriptionService.subscribe(db, user, packages["basic"].id, now=now).subscription.end_date
    upgrade_at = old_end - timedelta(days=15)

    subscription, proration = SubscriptionService.change_package(db, user, packages["premium"].id, now=upgrade_at)

    assert proration.days_remaining == 15
    assert proration.remaining_credit == pytest.approx(4.995, abs=0.01)
    assert proration.credit_days == 18
    assert proration.proration_amount == 99.99
    assert subscription.end_date == datetime(2026, 4, 18, 12, 0, 0)
    assert subscription.end_date > old_end


def test_upgrade_to_same_package_is_rejected(db, user, packages, now):
    SubscriptionService.subscribe(db, user, packages["basic"].id, now=now)

    with pytest.raises(ValidationError):
        SubscriptionService.change_package(db, user, packages["basic"].id, now=now)


def test_expire_subscriptions_sweep(db, user, packages, now):
    subscription = SubscriptionService.subscribe(db, user, packages["basic"].id, now=now).subscription

    assert SubscriptionService.expire_subscriptions(db, now=now + timedelta(days=1)) == 0
    assert SubscriptionService.expire_subscriptions(db, now=subscription.end_date) == 1

    db.refresh(subscription)
    db.refresh(user)
    assert subscription.status == SubscriptionStatus.EXPIRED
    assert user.subscription_status == "expired"
    assert db.query(Notification).filter(Notification.title == "Subscription expired").count() == 1


def test_auto_renewal_extends_subscription(db, user, packages, now):
    subscription = SubscriptionService.subscribe(db, user, packages["basic"].id, now=now).subscription
    run_at = subscription.end_date - timedelta(hours=12)

    result = SubscriptionService.process_auto_renewals(db, PaymentGateway(test_mode=True), now=run_at)

    assert result == {"renewed": 1, "failed": 0}
    db.refresh(subscription)
    assert subscription.end_date == datetime(2025, 5, 15, 12, 0, 0)


def test_failed_auto_renewal_leaves_subscription(db, user, packages, now):
    subscription = SubscriptionService.subscribe(db, user, packages["basic"].id, now=now).subscription
    original_end = subscription.end_date
    gateway = SimpleNamespace(
        charge_renewal=lambda user, amount, currency: ChargeResult(success=False, order_id="order_declined", reason="Card declined")
    )

    result = SubscriptionService.process_auto_renewals(db, gateway, now=original_end - timedelta(hours=1))

    assert result == {"renewed": 0, "failed": 1}
    db.refresh(subscription)
    assert subscription.end_date == original_end
    failed = db.query(Payment).filter(Payment.status == PaymentStatus.FAILED).one()
    assert failed.failure_reason == "Card declined"


def test_cancelled_subscription_is_not_auto_renewed(db, user, packages, now):
    subscription = SubscriptionService.subscribe(db, user, packages["basic"].id, now=now).subscription
    SubscriptionService.cancel(db, user, now=now)

    result = SubscriptionService.process_auto_renewals(
        db, PaymentGateway(test_mode=True), now=subscription.end_date - timedelta(hours=1)
    )

    assert result == {"renewed": 0, "failed": 0}


def test_expiration_reminders(db, user, packages, now):
    SubscriptionService.subscribe(db, user, packages["basic"].id, auto_renew=False, now=now)

    assert SubscriptionService.send_expiration_reminders(db, days=7, now=datetime(2025, 4, 1, 9, 0, 0)) == 0
    assert SubscriptionService.send_expiration_reminders(db, days=7, now=datetime(2025, 4, 8, 9, 0, 0)) == 1

    reminder = db.query(Notification).filter(Notification.title == "Subscription ending soon").one()
    assert reminder.type == NotificationType.SUBSCRIPTION


def test_repair_user_snapshot(db, user, packages, now):
    subscription = SubscriptionService.subscribe(db, user, packages["standard"].id, now=now).subscription
    user.subscription_package_id = None
    user.subscription_status = "expired"
    db.commit()

    repaired = SubscriptionService.repair_user_snapshot(db, user.id, now=now)

    assert repaired.subscription_package_id == packages["standard"].id
    assert repaired.subscription_end_date == subscription.end_date


def test_subscription_stats(db, make_user, packages, now):
    SubscriptionService.subscribe(db, make_user(), packages["basic"].id, now=now)
    SubscriptionService.subscribe(db, make_user(), packages["premium"].id, now=now)

    stats = SubscriptionService.subscription_stats(db, now=now)

    assert stats["total_active"] == 2
    assert stats["by_package"] == {"basic": 1, "premium": 1}
    assert stats["mrr"] == round(30 + 365 / 12, 2)
    assert stats["new_this_month"] == 2
    assert stats["churn_rate"] == 0
