import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, List
from sqlalchemy import or_, update
from sqlalchemy.orm import Session
from sakina.exceptions import NotFoundError, ValidationError, ConflictError
from sakina.models.coupon import Coupon, DiscountType, normalize_code
from sakina.schemas.subscription import CouponCreate, CouponUpdate

logger = logging.getLogger(__name__)

COUPON_NOT_FOUND = "Coupon not found"
COUPON_INVALID = "Coupon is not valid or has expired"
COUPON_NOT_APPLICABLE = "Coupon is not applicable to this package"


@dataclass
class CouponValidation:
    valid: bool
    coupon: Optional[Coupon] = None
    message: Optional[str] = None


class CouponService:

    @staticmethod
    def get_by_code(db: Session, code: str) -> Optional[Coupon]:
        return db.query(Coupon).filter(Coupon.code == normalize_code(code)).first()

    @staticmethod
    def validate_coupon(
        db: Session,
        code: str,
        package_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> CouponValidation:
        coupon = CouponService.get_by_code(db, code)
        if not coupon:
            return CouponValidation(valid=False, message=COUPON_NOT_FOUND)

        if not coupon.is_valid(now):
            return CouponValidation(valid=False, coupon=coupon, message=COUPON_INVALID)

        if not coupon.is_applicable_to(package_id):
            return CouponValidation(valid=False, coupon=coupon, message=COUPON_NOT_APPLICABLE)

        return CouponValidation(valid=True, coupon=coupon, message="Coupon is valid")

    @staticmethod
    def redeem_coupon(db: Session, coupon: Coupon, now: Optional[datetime] = None):
        """
        Increment used_count only if the coupon is still valid at this instant.

        A single conditional UPDATE, so two concurrent redemptions near the
        usage cap cannot both succeed. Does not commit; the caller commits it
        together with the purchase.
        """
        now = now or datetime.utcnow()

        result = db.execute(
            update(Coupon)
            .where(
                Coupon.id == coupon.id,
                Coupon.is_active == True,
                Coupon.valid_from <= now,
                Coupon.valid_until > now,
                or_(Coupon.max_uses.is_(None), Coupon.used_count < Coupon.max_uses),
            )
            .values(used_count=Coupon.used_count + 1)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            logger.warning(f"🎟️ Coupon redemption rejected: {coupon.code}")
            raise ValidationError("Coupon is not valid")

        db.refresh(coupon)
        logger.info(f"🎟️ Coupon redeemed: {coupon.code} ({coupon.used_count}/{coupon.max_uses or '∞'})")

    # ============================================
    # ADMIN
    # ============================================

    @staticmethod
    def create_coupon(db: Session, data: CouponCreate) -> Coupon:
        if CouponService.get_by_code(db, data.code):
            raise ConflictError("Coupon code already exists")

        valid_from = data.valid_from or datetime.utcnow()
        if data.valid_until <= valid_from:
            raise ValidationError("valid_until must be after valid_from")

        coupon = Coupon(
            code=data.code,
            discount_type=DiscountType(data.discount_type),
            discount_value=data.discount_value,
            max_uses=data.max_uses,
            used_count=0,
            valid_from=valid_from,
            valid_until=data.valid_until,
            is_active=True,
            applicable_packages=list(data.applicable_packages),
        )
        db.add(coupon)
        db.commit()
        db.refresh(coupon)

        logger.info(f"🎟️ Coupon created: {coupon.code}")
        return coupon

    @staticmethod
    def get_coupon(db: Session, coupon_id: int) -> Coupon:
        coupon = db.query(Coupon).filter(Coupon.id == coupon_id).first()
        if not coupon:
            raise NotFoundError(COUPON_NOT_FOUND)
        return coupon

    @staticmethod
    def update_coupon(db: Session, coupon_id: int, data: CouponUpdate) -> Coupon:
        coupon = CouponService.get_coupon(db, coupon_id)
        changes = data.model_dump(exclude_unset=True)

        valid_from = changes.get("valid_from") or coupon.valid_from
        valid_until = changes.get("valid_until") or coupon.valid_until
        if valid_until <= valid_from:
            raise ValidationError("valid_until must be after valid_from")

        value = changes.get("discount_value")
        if value is not None and coupon.discount_type == DiscountType.PERCENTAGE and value > 100:
            raise ValidationError("Percentage discount cannot exceed 100")

        for field, new_value in changes.items():
            if new_value is None and field not in ("max_uses",):
                continue
            setattr(coupon, field, new_value)

        db.commit()
        db.refresh(coupon)
        logger.info(f"🎟️ Coupon updated: {coupon.code}")
        return coupon

    @staticmethod
    def deactivate_coupon(db: Session, coupon_id: int) -> Coupon:
        coupon = CouponService.get_coupon(db, coupon_id)
        coupon.is_active = False
        db.commit()
        logger.info(f"🎟️ Coupon deactivated: {coupon.code}")
        return coupon

    @staticmethod
    def list_coupons(db: Session, active_only: bool = False) -> List[Coupon]:
        query = db.query(Coupon)
        if active_only:
            query = query.filter(Coupon.is_active == True)
        return query.order_by(Coupon.created_at.desc()).all()

    @staticmethod
    def usage_stats(db: Session, now: Optional[datetime] = None) -> dict:
        now = now or datetime.utcnow()
        coupons = db.query(Coupon).all()
        return {
            "total": len(coupons),
            "currently_valid": sum(1 for c in coupons if c.is_valid(now)),
            "total_redemptions": sum(c.used_count or 0 for c in coupons),
            "exhausted": sum(
                1 for c in coupons
                if c.max_uses is not None and (c.used_count or 0) >= c.max_uses
            ),
        }
