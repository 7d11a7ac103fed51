"""
Subscription lifecycle: subscribe, cancel, renew, package changes with
proration, and the periodic sweeps (auto-renewal, expiry, reminders).

Status is derived from the clock on every read (``Subscription.is_active_at``);
the expiry sweep only promotes the stored status so that status-only queries
converge. The user's denormalized snapshot is written in the same transaction
as the subscription row and can be rebuilt with ``repair_user_snapshot``.
"""

import logging
import math
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, List
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sakina.config import settings
from sakina.exceptions import SakinaError, NotFoundError, ValidationError
from sakina.models.coupon import Coupon
from sakina.models.package import Package, PeriodType
from sakina.models.payment import Payment, PaymentStatus, PaymentPurpose
from sakina.models.subscription import Subscription, SubscriptionStatus
from sakina.models.notification import NotificationType
from sakina.models.user import User
from sakina.services.coupon_service import CouponService
from sakina.services.notification_service import NotificationService
from sakina.services.package_service import PackageService, calculate_end_date

logger = logging.getLogger(__name__)


@dataclass
class SubscribeResult:
    subscription: Subscription
    created: bool
    price: float = 0.0
    discount: float = 0.0
    payment: Optional[Payment] = None


@dataclass
class Proration:
    days_remaining: int
    old_price_per_day: float
    new_price_per_day: float
    remaining_credit: float
    credit_days: int
    # Amount charged for the change: the new package's full effective price
    proration_amount: float


def calculate_proration(old_package: Package, new_package: Package, end_date: datetime, now: datetime) -> Proration:
    """Convert the unused value of the current period into days of the new package"""
    seconds_left = (end_date - now).total_seconds()
    days_remaining = max(0, math.ceil(seconds_left / 86400))

    old_price_per_day = max(0.0, float(old_package.price or 0)) / old_package.period_days
    new_price_per_day = max(0.0, float(new_package.price or 0)) / new_package.period_days

    remaining_credit = days_remaining * old_price_per_day
    if new_price_per_day > 0:
        credit_days = max(0, math.floor(remaining_credit / new_price_per_day))
    else:
        credit_days = 0

    return Proration(
        days_remaining=days_remaining,
        old_price_per_day=round(old_price_per_day, 4),
        new_price_per_day=round(new_price_per_day, 4),
        remaining_credit=round(remaining_credit, 2),
        credit_days=credit_days,
        proration_amount=new_package.effective_price,
    )


def subscription_to_dict(subscription: Subscription, now: Optional[datetime] = None) -> dict:
    now = now or datetime.utcnow()
    package = subscription.package
    return {
        "id": subscription.id,
        "user_id": subscription.user_id,
        "package_id": subscription.package_id,
        "status": subscription.effective_status(now).value,
        "start_date": subscription.start_date,
        "end_date": subscription.end_date,
        "auto_renew": bool(subscription.auto_renew),
        "payment_method": subscription.payment_method,
        "cancellation_date": subscription.cancellation_date,
        "is_active": subscription.is_active_at(now),
        "days_remaining": subscription.days_remaining_at(now),
        "package": {
            "id": package.id,
            "name": package.name,
            "type": package.type.value,
            "price": package.price,
            "effective_price": package.effective_price,
            "currency": package.currency,
            "period_type": package.period_type.value,
            "period_count": package.period_count,
        } if package else None,
        "created_at": subscription.created_at,
    }


class SubscriptionService:

    # ============================================
    # READS
    # ============================================

    @staticmethod
    def get_current_subscription(db: Session, user_id: int) -> Optional[Subscription]:
        """Latest subscription with stored status active; callers check expiry with is_active_at"""
        return db.query(Subscription).filter(
            Subscription.user_id == user_id,
            Subscription.status == SubscriptionStatus.ACTIVE
        ).order_by(Subscription.created_at.desc(), Subscription.id.desc()).first()

    @staticmethod
    def get_latest_subscription(db: Session, user_id: int) -> Optional[Subscription]:
        return db.query(Subscription).filter(
            Subscription.user_id == user_id
        ).order_by(Subscription.created_at.desc(), Subscription.id.desc()).first()

    @staticmethod
    def get_active_subscription(db: Session, user_id: int, now: Optional[datetime] = None) -> Subscription:
        now = now or datetime.utcnow()
        subscription = SubscriptionService.get_current_subscription(db, user_id)
        if not subscription or not subscription.is_active_at(now):
            raise NotFoundError("No active subscription found")
        return subscription

    @staticmethod
    def subscription_history(db: Session, user_id: int) -> List[Subscription]:
        return db.query(Subscription).filter(
            Subscription.user_id == user_id
        ).order_by(Subscription.created_at.desc(), Subscription.id.desc()).all()

    # ============================================
    # SNAPSHOT
    # ============================================

    @staticmethod
    def sync_user_snapshot(db: Session, user: User, subscription: Optional[Subscription], now: Optional[datetime] = None):
        """Mirror ``subscription`` onto the user row. Does not commit."""
        now = now or datetime.utcnow()
        if subscription is None:
            user.subscription_package_id = None
            user.subscription_status = SubscriptionStatus.EXPIRED.value
            user.subscription_start_date = None
            user.subscription_end_date = None
            user.subscription_auto_renew = False
            return

        user.subscription_package_id = subscription.package_id
        user.subscription_status = subscription.effective_status(now).value
        user.subscription_start_date = subscription.start_date
        user.subscription_end_date = subscription.end_date
        user.subscription_auto_renew = bool(subscription.auto_renew)

    @staticmethod
    def repair_user_snapshot(db: Session, user_id: int, now: Optional[datetime] = None) -> User:
        """Rebuild the snapshot from the authoritative subscription rows"""
        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            raise NotFoundError("User not found")

        subscription = SubscriptionService.get_current_subscription(db, user_id) \
            or SubscriptionService.get_latest_subscription(db, user_id)
        SubscriptionService.sync_user_snapshot(db, user, subscription, now)
        db.commit()
        db.refresh(user)

        logger.info(f"🔧 Subscription snapshot repaired for user {user_id}")
        return user

    # ============================================
    # PAYMENT RECORDS
    # ============================================

    @staticmethod
    def _ensure_payable(amount: float, payment: Optional[Payment]):
        """Outside test mode a non-zero charge must come through the payments flow"""
        if payment is not None:
            if payment.status != PaymentStatus.COMPLETED:
                raise ValidationError("Payment has not been completed")
            return
        if amount > 0 and not settings.PAYMENT_TEST_MODE:
            raise ValidationError("Payment required. Create an order through the payments API first")

    @staticmethod
    def _record_payment(
        db: Session,
        user: User,
        package: Package,
        subscription: Subscription,
        purpose: PaymentPurpose,
        amount: float,
        discount: float = 0.0,
        coupon_id: Optional[int] = None,
        payment: Optional[Payment] = None,
    ) -> Payment:
        if payment is not None:
            payment.subscription_id = subscription.id
            return payment

        prefix = "free" if amount <= 0 else "pay_TEST"
        record = Payment(
            user_id=user.id,
            package_id=package.id,
            subscription_id=subscription.id,
            coupon_id=coupon_id,
            amount=amount,
            discount_amount=discount,
            currency=package.currency or settings.DEFAULT_CURRENCY,
            purpose=purpose,
            status=PaymentStatus.PENDING,
            order_id=f"order_TEST_{secrets.token_hex(8)}",
        )
        record.mark_as_completed(f"{prefix}_{secrets.token_hex(8)}")
        db.add(record)
        return record

    # ============================================
    # LIFECYCLE
    # ============================================

    @staticmethod
    def subscribe(
        db: Session,
        user: User,
        package_id: int,
        coupon_code: Optional[str] = None,
        payment_method: Optional[str] = None,
        auto_renew: bool = True,
        payment: Optional[Payment] = None,
        now: Optional[datetime] = None,
    ) -> SubscribeResult:
        """
        Start a subscription. An already active subscription is returned with
        ``created=False`` instead of raising.
        """
        now = now or datetime.utcnow()

        current = SubscriptionService.get_current_subscription(db, user.id)
        if current and current.is_active_at(now):
            logger.info(f"ℹ️ User {user.id} already subscribed (subscription {current.id})")
            return SubscribeResult(subscription=current, created=False)

        package = PackageService.get_active_package(db, package_id)

        coupon = None
        discount = 0.0
        if payment is not None:
            discount = float(payment.discount_amount or 0)
        elif coupon_code:
            validation = CouponService.validate_coupon(db, coupon_code, package.id, now)
            if not validation.valid:
                raise ValidationError(validation.message)
            coupon = validation.coupon
            discount = coupon.calculate_discount(package.effective_price, now)

        price = round(max(0.0, package.effective_price - discount), 2)
        SubscriptionService._ensure_payable(price, payment)

        try:
            if current:
                # Stored as active but past its end date
                current.status = SubscriptionStatus.EXPIRED
                db.flush()

            if coupon is not None:
                CouponService.redeem_coupon(db, coupon, now)
            elif payment is not None and payment.coupon_id:
                SubscriptionService._redeem_paid_coupon(db, payment, now)

            subscription = Subscription(
                user_id=user.id,
                package_id=package.id,
                status=SubscriptionStatus.ACTIVE,
                start_date=now,
                end_date=calculate_end_date(package, now),
                auto_renew=auto_renew,
                payment_method=payment_method,
            )
            db.add(subscription)
            db.flush()

            record = SubscriptionService._record_payment(
                db, user, package, subscription, PaymentPurpose.SUBSCRIBE,
                amount=price, discount=discount,
                coupon_id=coupon.id if coupon else None,
                payment=payment,
            )
            SubscriptionService.sync_user_snapshot(db, user, subscription, now)
            db.commit()
        except IntegrityError:
            # A concurrent subscribe won the partial unique index
            db.rollback()
            existing = SubscriptionService.get_current_subscription(db, user.id)
            if existing and existing.is_active_at(now):
                return SubscribeResult(subscription=existing, created=False)
            raise
        except SakinaError:
            db.rollback()
            raise

        db.refresh(subscription)
        logger.info(f"✅ Subscription {subscription.id} created for user {user.id} ({package.type.value}, paid {price})")

        NotificationService.notify_safely(
            db, user.id, NotificationType.SUBSCRIPTION,
            "Subscription activated",
            f"Your {package.name} subscription is now active",
            icon="🎉",
            data={"subscription_id": subscription.id, "package_id": package.id},
        )

        return SubscribeResult(
            subscription=subscription,
            created=True,
            price=price,
            discount=discount,
            payment=record,
        )

    @staticmethod
    def _redeem_paid_coupon(db: Session, payment: Payment, now: datetime):
        """The customer already paid the discounted price; a lapsed coupon is logged, not enforced"""
        coupon = db.query(Coupon).filter(Coupon.id == payment.coupon_id).first()
        if not coupon:
            return
        try:
            CouponService.redeem_coupon(db, coupon, now)
        except ValidationError:
            logger.warning(f"⚠️ Coupon {coupon.code} lapsed before payment {payment.id} was verified")

    @staticmethod
    def cancel(db: Session, user: User, now: Optional[datetime] = None) -> Subscription:
        """Stop renewal. Status and end date are untouched; access runs to end_date."""
        now = now or datetime.utcnow()
        subscription = SubscriptionService.get_active_subscription(db, user.id, now)

        subscription.auto_renew = False
        subscription.cancellation_date = now
        SubscriptionService.sync_user_snapshot(db, user, subscription, now)
        db.commit()
        db.refresh(subscription)

        logger.info(f"🛑 Subscription {subscription.id} cancelled by user {user.id}, access until {subscription.end_date}")

        NotificationService.notify_safely(
            db, user.id, NotificationType.SUBSCRIPTION,
            "Subscription cancelled",
            f"Your subscription will not renew. You keep access until {subscription.end_date:%Y-%m-%d}",
            icon="ℹ️",
            data={"subscription_id": subscription.id},
        )
        return subscription

    @staticmethod
    def renew(
        db: Session,
        user: User,
        package_id: Optional[int] = None,
        new_end_date: Optional[datetime] = None,
        payment: Optional[Payment] = None,
        now: Optional[datetime] = None,
    ) -> Subscription:
        """
        Extend the latest subscription by one period of the (possibly new)
        package, starting from whichever is later of end_date and now, or to an
        explicit ``new_end_date`` strictly after the current end date.
        """
        now = now or datetime.utcnow()

        subscription = SubscriptionService.get_latest_subscription(db, user.id)
        if not subscription:
            raise NotFoundError("No subscription found")

        package = PackageService.get_active_package(db, package_id or subscription.package_id)

        if new_end_date is not None:
            if new_end_date <= subscription.end_date:
                raise ValidationError("New end date must be after the current end date")
            target_end = new_end_date
            amount = 0.0
        else:
            base = max(subscription.end_date, now)
            target_end = calculate_end_date(package, base)
            amount = package.effective_price
            SubscriptionService._ensure_payable(amount, payment)

        try:
            subscription.package_id = package.id
            subscription.status = SubscriptionStatus.ACTIVE
            subscription.end_date = target_end
            subscription.auto_renew = True
            subscription.cancellation_date = None
            db.flush()

            if new_end_date is None:
                SubscriptionService._record_payment(
                    db, user, package, subscription, PaymentPurpose.RENEW,
                    amount=amount, payment=payment,
                )
            SubscriptionService.sync_user_snapshot(db, user, subscription, now)
            db.commit()
        except IntegrityError:
            db.rollback()
            raise ValidationError("Another active subscription exists for this user")

        db.refresh(subscription)
        logger.info(f"🔄 Subscription {subscription.id} renewed until {subscription.end_date}")

        NotificationService.notify_safely(
            db, user.id, NotificationType.SUBSCRIPTION,
            "Subscription renewed",
            f"Your {package.name} subscription was renewed until {subscription.end_date:%Y-%m-%d}",
            icon="✅",
            data={"subscription_id": subscription.id, "package_id": package.id},
        )
        return subscription

    @staticmethod
    def preview_change(db: Session, user: User, new_package_id: int, now: Optional[datetime] = None) -> Proration:
        now = now or datetime.utcnow()
        subscription = SubscriptionService.get_active_subscription(db, user.id, now)
        new_package = PackageService.get_active_package(db, new_package_id)
        return calculate_proration(subscription.package, new_package, subscription.end_date, now)

    @staticmethod
    def change_package(
        db: Session,
        user: User,
        new_package_id: int,
        payment: Optional[Payment] = None,
        now: Optional[datetime] = None,
    ) -> tuple:
        """
        Upgrade or downgrade. The new package's fresh period is charged at its
        effective price and the unused value of the old period is added on top
        as credit days: new_end = now + one new period + credit_days.

        Returns (subscription, proration).
        """
        now = now or datetime.utcnow()
        subscription = SubscriptionService.get_active_subscription(db, user.id, now)

        if subscription.package_id == new_package_id:
            raise ValidationError("Already subscribed to this package")

        new_package = PackageService.get_active_package(db, new_package_id)
        old_package = subscription.package
        proration = calculate_proration(old_package, new_package, subscription.end_date, now)
        SubscriptionService._ensure_payable(proration.proration_amount, payment)

        new_end = calculate_end_date(new_package, now) + timedelta(days=proration.credit_days)

        subscription.package_id = new_package.id
        subscription.start_date = now
        subscription.end_date = new_end
        subscription.cancellation_date = None
        db.flush()

        SubscriptionService._record_payment(
            db, user, new_package, subscription, PaymentPurpose.UPGRADE,
            amount=proration.proration_amount, payment=payment,
        )
        SubscriptionService.sync_user_snapshot(db, user, subscription, now)
        db.commit()
        db.refresh(subscription)

        direction = "upgraded" if new_package.tier_rank > old_package.tier_rank else "changed"
        logger.info(
            f"⬆️ Subscription {subscription.id} {direction} {old_package.type.value} -> "
            f"{new_package.type.value}, credit {proration.credit_days} days, ends {new_end}"
        )

        NotificationService.notify_safely(
            db, user.id, NotificationType.SUBSCRIPTION,
            "Subscription updated",
            f"Your subscription was {direction} to {new_package.name}",
            icon="⬆️",
            data={
                "subscription_id": subscription.id,
                "package_id": new_package.id,
                "credit_days": proration.credit_days,
            },
        )
        return subscription, proration

    # ============================================
    # SWEEPS
    # ============================================

    @staticmethod
    def process_auto_renewals(db: Session, gateway, now: Optional[datetime] = None) -> dict:
        """
        Charge subscriptions ending within the lookahead window. A failed charge
        leaves the subscription alone; it stays usable until its end date.
        """
        now = now or datetime.utcnow()
        window_end = now + timedelta(days=settings.AUTO_RENEW_LOOKAHEAD_DAYS)

        candidates = db.query(Subscription).filter(
            Subscription.status == SubscriptionStatus.ACTIVE,
            Subscription.auto_renew == True,
            Subscription.end_date >= now,
            Subscription.end_date <= window_end,
        ).all()

        renewed = 0
        failed = 0

        for subscription in candidates:
            user = subscription.user
            package = subscription.package
            try:
                amount = package.effective_price
                charge = gateway.charge_renewal(user, amount, package.currency)

                record = Payment(
                    user_id=user.id,
                    package_id=package.id,
                    subscription_id=subscription.id,
                    amount=amount,
                    currency=package.currency,
                    purpose=PaymentPurpose.RENEW,
                    status=PaymentStatus.PENDING,
                    order_id=charge.order_id,
                )
                db.add(record)

                if charge.success:
                    record.mark_as_completed(charge.payment_id)
                    subscription.end_date = calculate_end_date(package, subscription.end_date)
                    subscription.cancellation_date = None
                    SubscriptionService.sync_user_snapshot(db, user, subscription, now)
                    db.commit()
                    renewed += 1
                    logger.info(f"🔄 Auto-renewed subscription {subscription.id} until {subscription.end_date}")

                    NotificationService.notify_safely(
                        db, user.id, NotificationType.SUBSCRIPTION,
                        "Subscription renewed",
                        f"Your {package.name} subscription was renewed until {subscription.end_date:%Y-%m-%d}",
                        icon="✅",
                        data={"subscription_id": subscription.id},
                    )
                else:
                    record.mark_as_failed(charge.reason or "Renewal charge failed")
                    db.commit()
                    failed += 1
                    logger.warning(f"⚠️ Auto-renewal charge failed for subscription {subscription.id}: {charge.reason}")

                    NotificationService.notify_safely(
                        db, user.id, NotificationType.SUBSCRIPTION,
                        "Renewal failed",
                        "We could not renew your subscription. Please update your payment method.",
                        icon="⚠️",
                        data={"subscription_id": subscription.id},
                    )
            except Exception as e:
                db.rollback()
                failed += 1
                logger.error(f"❌ Auto-renewal error for subscription {subscription.id}: {e}", exc_info=True)

        logger.info(f"Auto-renewal sweep done: {renewed} renewed, {failed} failed")
        return {"renewed": renewed, "failed": failed}

    @staticmethod
    def expire_subscriptions(db: Session, now: Optional[datetime] = None) -> int:
        """Promote stored status to expired for subscriptions past their end date"""
        now = now or datetime.utcnow()

        stale = db.query(Subscription).filter(
            Subscription.status == SubscriptionStatus.ACTIVE,
            Subscription.end_date <= now,
        ).all()

        for subscription in stale:
            subscription.status = SubscriptionStatus.EXPIRED
            SubscriptionService.sync_user_snapshot(db, subscription.user, subscription, now)
        db.commit()

        for subscription in stale:
            NotificationService.notify_safely(
                db, subscription.user_id, NotificationType.SUBSCRIPTION,
                "Subscription expired",
                "Your subscription has expired. Renew to keep listening to premium content.",
                icon="⏰",
                data={"subscription_id": subscription.id},
            )

        logger.info(f"⏰ Expired {len(stale)} subscriptions")
        return len(stale)

    @staticmethod
    def send_expiration_reminders(db: Session, days: Optional[int] = None, now: Optional[datetime] = None) -> int:
        """Remind non-renewing subscribers whose end date falls on the day ``days`` from now"""
        now = now or datetime.utcnow()
        days = settings.EXPIRY_REMINDER_DAYS if days is None else days

        target = now + timedelta(days=days)
        day_start = target.replace(hour=0, minute=0, second=0, microsecond=0)
        day_end = day_start + timedelta(days=1)

        expiring = db.query(Subscription).filter(
            Subscription.status == SubscriptionStatus.ACTIVE,
            Subscription.auto_renew == False,
            Subscription.end_date >= day_start,
            Subscription.end_date < day_end,
        ).all()

        sent = 0
        for subscription in expiring:
            days_remaining = subscription.days_remaining_at(now)
            notification = NotificationService.notify_safely(
                db, subscription.user_id, NotificationType.SUBSCRIPTION,
                "Subscription ending soon",
                f"Your subscription ends in {days_remaining} days",
                icon="⏳",
                data={
                    "subscription_id": subscription.id,
                    "end_date": subscription.end_date.isoformat(),
                    "days_remaining": days_remaining,
                },
            )
            if notification:
                sent += 1

        logger.info(f"Sent {sent} expiration reminders")
        return sent

    # ============================================
    # ADMIN STATS
    # ============================================

    @staticmethod
    def subscription_stats(db: Session, now: Optional[datetime] = None) -> dict:
        now = now or datetime.utcnow()

        active = db.query(Subscription).filter(
            Subscription.status == SubscriptionStatus.ACTIVE,
            Subscription.end_date > now,
        ).all()

        by_package = {}
        mrr = 0.0
        for subscription in active:
            package = subscription.package
            key = package.type.value
            by_package[key] = by_package.get(key, 0) + 1

            price = package.effective_price
            count = package.period_count or 1
            if package.period_type == PeriodType.YEAR:
                mrr += price / (count * 12)
            else:
                mrr += price / count

        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

        new_this_month = db.query(func.count(Subscription.id)).filter(
            Subscription.start_date >= month_start,
            Subscription.start_date <= now,
        ).scalar() or 0

        cancelled_this_month = db.query(func.count(Subscription.id)).filter(
            Subscription.cancellation_date >= month_start,
            Subscription.cancellation_date <= now,
        ).scalar() or 0

        total_active = len(active)
        churn_rate = (cancelled_this_month / total_active * 100) if total_active else 0.0

        return {
            "total_active": total_active,
            "by_package": by_package,
            "mrr": round(mrr, 2),
            "arr": round(mrr * 12, 2),
            "new_this_month": new_this_month,
            "cancelled_this_month": cancelled_this_month,
            "churn_rate": round(churn_rate, 2),
        }
