from datetime import datetime
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from sakina.config import settings
from sakina.database import get_db
from sakina.models.user import User
from sakina.schemas.subscription import (
    ValidateCouponRequest, SubscribeRequest, RenewRequest, UpgradeRequest,
)
from sakina.services.coupon_service import CouponService
from sakina.services.package_service import PackageService
from sakina.services.subscription_service import SubscriptionService, subscription_to_dict
from sakina.utils.dependencies import get_current_user
from sakina.utils.responses import success_response

router = APIRouter(prefix=f"{settings.API_PREFIX}/subscriptions", tags=["Subscriptions"])


@router.get("/packages")
async def list_packages(db: Session = Depends(get_db)):
    """Active packages, cached"""
    return success_response(PackageService.list_active_packages(db))


@router.get("/me")
async def my_subscription(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Current subscription with status derived from the clock"""
    subscription = SubscriptionService.get_current_subscription(db, current_user.id) \
        or SubscriptionService.get_latest_subscription(db, current_user.id)
    if not subscription:
        return success_response(None, "No subscription found")
    return success_response(subscription_to_dict(subscription))


@router.get("/history")
async def subscription_history(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    now = datetime.utcnow()
    history = SubscriptionService.subscription_history(db, current_user.id)
    return success_response([subscription_to_dict(s, now) for s in history])


@router.post("/validate-coupon")
async def validate_coupon(
    body: ValidateCouponRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Check a coupon and preview the discount without redeeming it"""
    validation = CouponService.validate_coupon(db, body.code, body.package_id)
    if not validation.valid:
        return success_response({"valid": False}, validation.message)

    data = {
        "valid": True,
        "code": validation.coupon.code,
        "discount_type": validation.coupon.discount_type.value,
        "discount_value": validation.coupon.discount_value,
    }
    if body.package_id:
        package = PackageService.get_active_package(db, body.package_id)
        discount = validation.coupon.calculate_discount(package.effective_price)
        data.update({
            "original_price": package.effective_price,
            "discount": discount,
            "final_price": round(max(0.0, package.effective_price - discount), 2),
        })
    return success_response(data, validation.message)


@router.post("/subscribe")
async def subscribe(
    body: SubscribeRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """201 when a subscription is created, 200 when one is already active"""
    result = SubscriptionService.subscribe(
        db, current_user, body.package_id,
        coupon_code=body.coupon_code,
        payment_method=body.payment_method,
        auto_renew=body.auto_renew,
    )

    data = subscription_to_dict(result.subscription)
    if not result.created:
        return success_response(data, "Already subscribed", status.HTTP_200_OK)

    data.update({"price_paid": result.price, "discount": result.discount})
    return success_response(data, "Subscription created", status.HTTP_201_CREATED)


@router.post("/cancel")
async def cancel_subscription(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    subscription = SubscriptionService.cancel(db, current_user)
    return success_response(
        subscription_to_dict(subscription),
        f"Subscription cancelled. Access remains until {subscription.end_date:%Y-%m-%d}",
    )


@router.post("/renew")
async def renew_subscription(
    body: RenewRequest = RenewRequest(),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    subscription = SubscriptionService.renew(
        db, current_user,
        package_id=body.package_id,
    )
    return success_response(subscription_to_dict(subscription), "Subscription renewed")


@router.get("/upgrade/preview")
async def preview_upgrade(
    package_id: int = Query(...),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Proration for switching to ``package_id``; nothing is changed"""
    proration = SubscriptionService.preview_change(db, current_user, package_id)
    return success_response(proration.__dict__)


@router.put("/upgrade")
async def upgrade_subscription(
    body: UpgradeRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    subscription, proration = SubscriptionService.change_package(db, current_user, body.package_id)
    data = subscription_to_dict(subscription)
    data["proration"] = proration.__dict__
    return success_response(data, "Subscription updated")
