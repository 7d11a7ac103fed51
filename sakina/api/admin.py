import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import or_
from sqlalchemy.orm import Session
from sakina.config import settings
from sakina.database import get_db
from sakina.exceptions import NotFoundError, ValidationError
from sakina.models.notification import NotificationType
from sakina.models.user import User, Role
from sakina.schemas.catalog import (
    CategoryCreate, CategoryUpdate, CategoryResponse,
    TrackCreate, TrackUpdate, TrackResponse,
    ProgramCreate, ProgramUpdate,
)
from sakina.schemas.notification import BroadcastRequest
from sakina.schemas.payment import PaymentResponse, RefundRequest
from sakina.schemas.subscription import (
    PackageCreate, PackageUpdate, PackageResponse,
    CouponCreate, CouponUpdate, CouponResponse,
    ExtendSubscriptionRequest,
)
from sakina.schemas.user import AdminUserResponse, BanRequest, RoleUpdate
from sakina.services.analytics_service import AnalyticsService
from sakina.services.catalog_service import CatalogService
from sakina.services.coupon_service import CouponService
from sakina.services.notification_service import NotificationService
from sakina.services.package_service import PackageService
from sakina.services.payment_service import PaymentService, get_payment_gateway
from sakina.services.session_service import SessionService
from sakina.services.subscription_service import SubscriptionService, subscription_to_dict
from sakina.utils.dependencies import require_capability, Capability
from sakina.utils.responses import success_response, paginate

router = APIRouter(prefix=f"{settings.API_PREFIX}/admin", tags=["Admin"])
logger = logging.getLogger(__name__)


# ============= PACKAGES =============

@router.get("/packages")
async def list_packages(
    admin: User = Depends(require_capability(Capability.MANAGE_PACKAGES)),
    db: Session = Depends(get_db),
):
    """All packages including inactive ones"""
    packages = PackageService.list_all_packages(db)
    return success_response([PackageResponse.model_validate(p).model_dump() for p in packages])


@router.post("/packages", status_code=status.HTTP_201_CREATED)
async def create_package(
    body: PackageCreate,
    admin: User = Depends(require_capability(Capability.MANAGE_PACKAGES)),
    db: Session = Depends(get_db),
):
    package = PackageService.create_package(db, body)
    return success_response(PackageResponse.model_validate(package).model_dump(), "Package created", status.HTTP_201_CREATED)


@router.put("/packages/{package_id}")
async def update_package(
    package_id: int,
    body: PackageUpdate,
    admin: User = Depends(require_capability(Capability.MANAGE_PACKAGES)),
    db: Session = Depends(get_db),
):
    package = PackageService.update_package(db, package_id, body)
    return success_response(PackageResponse.model_validate(package).model_dump(), "Package updated")


@router.delete("/packages/{package_id}")
async def deactivate_package(
    package_id: int,
    admin: User = Depends(require_capability(Capability.MANAGE_PACKAGES)),
    db: Session = Depends(get_db),
):
    PackageService.deactivate_package(db, package_id)
    return success_response(None, "Package deactivated")


# ============= COUPONS =============

@router.get("/coupons")
async def list_coupons(
    active_only: bool = False,
    admin: User = Depends(require_capability(Capability.MANAGE_COUPONS)),
    db: Session = Depends(get_db),
):
    coupons = CouponService.list_coupons(db, active_only)
    return success_response({
        "coupons": [CouponResponse.model_validate(c).model_dump() for c in coupons],
        "stats": CouponService.usage_stats(db),
    })


@router.post("/coupons", status_code=status.HTTP_201_CREATED)
async def create_coupon(
    body: CouponCreate,
    admin: User = Depends(require_capability(Capability.MANAGE_COUPONS)),
    db: Session = Depends(get_db),
):
    coupon = CouponService.create_coupon(db, body)
    return success_response(CouponResponse.model_validate(coupon).model_dump(), "Coupon created", status.HTTP_201_CREATED)


@router.put("/coupons/{coupon_id}")
async def update_coupon(
    coupon_id: int,
    body: CouponUpdate,
    admin: User = Depends(require_capability(Capability.MANAGE_COUPONS)),
    db: Session = Depends(get_db),
):
    coupon = CouponService.update_coupon(db, coupon_id, body)
    return success_response(CouponResponse.model_validate(coupon).model_dump(), "Coupon updated")


@router.delete("/coupons/{coupon_id}")
async def deactivate_coupon(
    coupon_id: int,
    admin: User = Depends(require_capability(Capability.MANAGE_COUPONS)),
    db: Session = Depends(get_db),
):
    CouponService.deactivate_coupon(db, coupon_id)
    return success_response(None, "Coupon deactivated")


# ============= CONTENT =============

@router.post("/categories", status_code=status.HTTP_201_CREATED)
async def create_category(
    body: CategoryCreate,
    admin: User = Depends(require_capability(Capability.MANAGE_CONTENT)),
    db: Session = Depends(get_db),
):
    category = CatalogService.create_category(db, body)
    return success_response(CategoryResponse.model_validate(category).model_dump(), "Category created", status.HTTP_201_CREATED)


@router.put("/categories/{category_id}")
async def update_category(
    category_id: int,
    body: CategoryUpdate,
    admin: User = Depends(require_capability(Capability.MANAGE_CONTENT)),
    db: Session = Depends(get_db),
):
    category = CatalogService.update_category(db, category_id, body)
    return success_response(CategoryResponse.model_validate(category).model_dump(), "Category updated")


@router.delete("/categories/{category_id}")
async def deactivate_category(
    category_id: int,
    admin: User = Depends(require_capability(Capability.MANAGE_CONTENT)),
    db: Session = Depends(get_db),
):
    CatalogService.deactivate_category(db, category_id)
    return success_response(None, "Category deactivated")


@router.post("/tracks", status_code=status.HTTP_201_CREATED)
async def create_track(
    body: TrackCreate,
    admin: User = Depends(require_capability(Capability.MANAGE_CONTENT)),
    db: Session = Depends(get_db),
):
    track = CatalogService.create_track(db, body)
    return success_response(TrackResponse.model_validate(track).model_dump(), "Track created", status.HTTP_201_CREATED)


@router.put("/tracks/{track_id}")
async def update_track(
    track_id: int,
    body: TrackUpdate,
    admin: User = Depends(require_capability(Capability.MANAGE_CONTENT)),
    db: Session = Depends(get_db),
):
    track = CatalogService.update_track(db, track_id, body)
    return success_response(TrackResponse.model_validate(track).model_dump(), "Track updated")


@router.delete("/tracks/{track_id}")
async def deactivate_track(
    track_id: int,
    admin: User = Depends(require_capability(Capability.MANAGE_CONTENT)),
    db: Session = Depends(get_db),
):
    CatalogService.deactivate_track(db, track_id)
    return success_response(None, "Track deactivated")


@router.post("/programs", status_code=status.HTTP_201_CREATED)
async def create_program(
    body: ProgramCreate,
    admin: User = Depends(require_capability(Capability.MANAGE_CONTENT)),
    db: Session = Depends(get_db),
):
    program = CatalogService.create_program(db, body)
    return success_response(CatalogService.program_summary(program), "Program created", status.HTTP_201_CREATED)


@router.put("/programs/{program_id}")
async def update_program(
    program_id: int,
    body: ProgramUpdate,
    admin: User = Depends(require_capability(Capability.MANAGE_CONTENT)),
    db: Session = Depends(get_db),
):
    program = CatalogService.update_program(db, program_id, body)
    return success_response(CatalogService.program_summary(program), "Program updated")


@router.delete("/programs/{program_id}")
async def deactivate_program(
    program_id: int,
    admin: User = Depends(require_capability(Capability.MANAGE_CONTENT)),
    db: Session = Depends(get_db),
):
    CatalogService.deactivate_program(db, program_id)
    return success_response(None, "Program deactivated")


@router.post("/notifications/broadcast")
async def broadcast_notification(
    body: BroadcastRequest,
    admin: User = Depends(require_capability(Capability.MANAGE_CONTENT)),
    db: Session = Depends(get_db),
):
    """Announcement to the listed users, or to every active user when none are listed"""
    user_ids = body.user_ids or [
        row[0] for row in db.query(User.id).filter(User.deleted_at.is_(None)).all()
    ]
    sent = NotificationService.create_bulk_notifications(
        db, user_ids, NotificationType(body.type), body.title, body.message,
        data=body.data, send_push=body.send_push,
    )
    return success_response({"sent": sent}, f"Notification sent to {sent} users")


# ============= USERS =============

def _get_user(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError("User not found")
    return user


@router.get("/users")
async def list_users(
    search: Optional[str] = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    admin: User = Depends(require_capability(Capability.MANAGE_USERS)),
    db: Session = Depends(get_db),
):
    query = db.query(User)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(User.email.ilike(pattern), User.phone.ilike(pattern), User.name.ilike(pattern)))

    total = query.count()
    users = query.order_by(User.created_at.desc(), User.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return success_response(paginate(
        [AdminUserResponse.model_validate(u).model_dump() for u in users], total, page, limit
    ))


@router.post("/users/{user_id}/ban")
async def ban_user(
    user_id: int,
    body: BanRequest,
    admin: User = Depends(require_capability(Capability.MANAGE_USERS)),
    db: Session = Depends(get_db),
):
    """Ban a user, permanently or until ``banned_until``"""
    if user_id == admin.id:
        raise ValidationError("You cannot ban yourself")

    user = _get_user(db, user_id)
    user.is_banned = True
    user.banned_until = body.banned_until
    user.ban_reason = body.reason
    db.commit()
    db.refresh(user)

    logger.warning(f"🚫 User {user.id} banned by admin {admin.id} until {body.banned_until or 'forever'}")
    return success_response(AdminUserResponse.model_validate(user).model_dump(), "User banned")


@router.post("/users/{user_id}/unban")
async def unban_user(
    user_id: int,
    admin: User = Depends(require_capability(Capability.MANAGE_USERS)),
    db: Session = Depends(get_db),
):
    user = _get_user(db, user_id)
    user.is_banned = False
    user.banned_until = None
    user.ban_reason = None
    db.commit()
    db.refresh(user)

    logger.info(f"🔓 User {user.id} unbanned by admin {admin.id}")
    return success_response(AdminUserResponse.model_validate(user).model_dump(), "User unbanned")


@router.put("/users/{user_id}/role")
async def set_role(
    user_id: int,
    body: RoleUpdate,
    admin: User = Depends(require_capability(Capability.MANAGE_USERS)),
    db: Session = Depends(get_db),
):
    if user_id == admin.id and body.role != Role.ADMIN.value:
        raise ValidationError("You cannot remove your own admin role")

    user = _get_user(db, user_id)
    user.role = Role(body.role)
    db.commit()
    db.refresh(user)

    logger.info(f"👤 User {user.id} role set to {body.role} by admin {admin.id}")
    return success_response(AdminUserResponse.model_validate(user).model_dump(), "Role updated")


@router.post("/users/{user_id}/repair-subscription")
async def repair_subscription_snapshot(
    user_id: int,
    admin: User = Depends(require_capability(Capability.MANAGE_USERS)),
    db: Session = Depends(get_db),
):
    """Rebuild the user's cached subscription fields from the subscription rows"""
    user = SubscriptionService.repair_user_snapshot(db, user_id)
    return success_response(AdminUserResponse.model_validate(user).model_dump(), "Subscription snapshot repaired")


@router.put("/users/{user_id}/subscription/end-date")
async def extend_subscription(
    user_id: int,
    body: ExtendSubscriptionRequest,
    admin: User = Depends(require_capability(Capability.MANAGE_USERS)),
    db: Session = Depends(get_db),
):
    """Move the user's latest subscription to a later end date without a charge"""
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError("User not found")

    subscription = SubscriptionService.renew(db, user, new_end_date=body.new_end_date)

    logger.info(f"📅 Subscription {subscription.id} extended to {subscription.end_date} by admin {admin.id}")
    return success_response(subscription_to_dict(subscription), "Subscription extended")


# ============= SUBSCRIPTIONS & PAYMENTS =============

@router.get("/subscriptions/stats")
async def subscription_stats(
    admin: User = Depends(require_capability(Capability.VIEW_ANALYTICS)),
    db: Session = Depends(get_db),
):
    return success_response(SubscriptionService.subscription_stats(db))


@router.get("/payments")
async def list_payments(
    payment_status: Optional[str] = Query(None, alias="status", pattern="^(pending|completed|failed|refunded)$"),
    user_id: Optional[int] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    admin: User = Depends(require_capability(Capability.MANAGE_PAYMENTS)),
    db: Session = Depends(get_db),
):
    items, total = PaymentService.list_payments(db, payment_status, user_id, page, limit)
    return success_response(paginate(
        [PaymentResponse.model_validate(p).model_dump() for p in items], total, page, limit
    ))


@router.post("/payments/{payment_id}/refund")
async def refund_payment(
    payment_id: int,
    body: RefundRequest,
    admin: User = Depends(require_capability(Capability.MANAGE_PAYMENTS)),
    db: Session = Depends(get_db),
):
    payment = PaymentService.refund_payment(db, payment_id, body.reason)
    logger.info(f"💰 Payment {payment.id} refunded by admin {admin.id}")
    return success_response(PaymentResponse.model_validate(payment).model_dump(), "Payment refunded")


# ============= ANALYTICS =============

@router.get("/analytics/overview")
async def analytics_overview(
    admin: User = Depends(require_capability(Capability.VIEW_ANALYTICS)),
    db: Session = Depends(get_db),
):
    return success_response(AnalyticsService.platform_overview(db))


# ============= JOBS =============
# Same entry points the beat schedule runs, for manual recovery.

@router.post("/jobs/{job_name}")
async def run_job(
    job_name: str,
    admin: User = Depends(require_capability(Capability.RUN_JOBS)),
    db: Session = Depends(get_db),
):
    jobs = {
        "cleanup-sessions": lambda: {"closed": SessionService.cleanup_abandoned_sessions(db)},
        "auto-renew": lambda: SubscriptionService.process_auto_renewals(db, get_payment_gateway()),
        "expire-subscriptions": lambda: {"expired": SubscriptionService.expire_subscriptions(db)},
        "expiration-reminders": lambda: {"sent": SubscriptionService.send_expiration_reminders(db)},
        "listening-patterns": lambda: {"updated": AnalyticsService.update_active_users_patterns(db)},
        "daily-reminders": lambda: {"sent": NotificationService.send_daily_reminders(db)},
        "cleanup-notifications": lambda: {
            "deleted": NotificationService.cleanup_old_notifications(db, settings.NOTIFICATION_RETENTION_DAYS)
        },
    }
    if job_name not in jobs:
        raise NotFoundError(f"Unknown job: {job_name}")

    logger.info(f"⚙️ Admin {admin.id} triggered job {job_name}")
    return success_response(jobs[job_name](), f"Job {job_name} completed")
