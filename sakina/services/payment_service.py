"""
Payment Service - subscription purchases, renewals and upgrades over Razorpay

Configuration via environment variables:
- PAYMENT_TEST_MODE: Set to "true" for test mode, "false" for production
- RAZORPAY_KEY_ID: Razorpay API key ID
- RAZORPAY_KEY_SECRET: Razorpay API secret
- RAZORPAY_WEBHOOK_SECRET: secret used to sign webhook bodies
"""

import json
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Dict, Any, List, Tuple
import razorpay
from sqlalchemy.orm import Session
from sakina.config import settings
from sakina.exceptions import SakinaError, NotFoundError, ValidationError, PaymentGatewayError
from sakina.models.payment import Payment, PaymentStatus, PaymentPurpose
from sakina.models.user import User
from sakina.services.coupon_service import CouponService
from sakina.services.package_service import PackageService
from sakina.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)


@dataclass
class ChargeResult:
    success: bool
    order_id: Optional[str] = None
    payment_id: Optional[str] = None
    reason: Optional[str] = None


class PaymentGateway:
    """Thin wrapper over the Razorpay client with a test-mode short-circuit"""

    def __init__(self, test_mode: Optional[bool] = None):
        self.test_mode = settings.PAYMENT_TEST_MODE if test_mode is None else test_mode
        self._client = None

    @property
    def client(self) -> razorpay.Client:
        if self._client is None:
            if not settings.RAZORPAY_KEY_ID or not settings.RAZORPAY_KEY_SECRET:
                logger.error("Razorpay credentials not configured")
                raise PaymentGatewayError("Payment gateway not configured")
            self._client = razorpay.Client(auth=(settings.RAZORPAY_KEY_ID, settings.RAZORPAY_KEY_SECRET))
        return self._client

    @property
    def public_key(self) -> str:
        return "rzp_test_TESTMODE" if self.test_mode else settings.RAZORPAY_KEY_ID

    def create_order(self, amount: float, currency: str, receipt: str, notes: Optional[dict] = None) -> dict:
        if self.test_mode:
            order_id = f"order_TEST_{secrets.token_hex(8)}"
            logger.info(f"TEST MODE: Created test order {order_id}")
            return {"id": order_id, "amount": int(round(amount * 100)), "currency": currency}

        order_data = {
            "amount": int(round(amount * 100)),  # smallest currency unit
            "currency": currency,
            "receipt": receipt,
            "notes": notes or {},
        }
        try:
            order = self.client.order.create(data=order_data)
        except razorpay.errors.BadRequestError as e:
            logger.error(f"❌ Razorpay order creation failed: {e}")
            raise PaymentGatewayError("Failed to create payment order")
        logger.info(f"Razorpay order created: {order['id']}")
        return order

    def verify_signature(self, order_id: str, payment_id: str, signature: Optional[str]) -> bool:
        if self.test_mode:
            logger.info(f"TEST MODE: Skipping signature check for {payment_id}")
            return True

        if not signature:
            logger.error("Razorpay signature missing for production verification")
            return False

        try:
            self.client.utility.verify_payment_signature({
                'razorpay_order_id': order_id,
                'razorpay_payment_id': payment_id,
                'razorpay_signature': signature,
            })
            return True
        except razorpay.errors.SignatureVerificationError:
            logger.error(f"❌ Razorpay signature verification failed for order {order_id}")
            return False

    def verify_webhook(self, body: str, signature: Optional[str]) -> bool:
        if self.test_mode:
            return True
        if not signature or not settings.RAZORPAY_WEBHOOK_SECRET:
            return False
        try:
            self.client.utility.verify_webhook_signature(body, signature, settings.RAZORPAY_WEBHOOK_SECRET)
            return True
        except razorpay.errors.SignatureVerificationError:
            logger.error("❌ Webhook signature verification failed")
            return False

    def refund(self, payment_id: str, amount: float, reason: str) -> str:
        if self.test_mode:
            refund_id = f"rfnd_TEST_{secrets.token_hex(8)}"
            logger.info(f"TEST MODE: Auto-refunding payment {payment_id}")
            return refund_id

        try:
            refund = self.client.payment.refund(payment_id, {
                "amount": int(round(amount * 100)),
                "notes": {"reason": reason},
            })
        except (razorpay.errors.BadRequestError, razorpay.errors.ServerError) as e:
            logger.error(f"❌ Refund failed for {payment_id}: {e}")
            raise PaymentGatewayError("Refund failed")
        logger.info(f"Refund processed successfully: {refund['id']}")
        return refund['id']

    def charge_renewal(self, user: User, amount: float, currency: str) -> ChargeResult:
        """
        Renewal charge for the auto-renewal sweep. Razorpay orders need the
        customer to confirm, so outside test mode an order is opened and the
        charge reported as not completed; the subscription stays in grace.
        """
        if self.test_mode or amount <= 0:
            return ChargeResult(
                success=True,
                order_id=f"order_TEST_{secrets.token_hex(8)}",
                payment_id=f"pay_TEST_{secrets.token_hex(8)}",
            )

        try:
            order = self.create_order(
                amount, currency,
                receipt=f"renew_{user.id}_{int(datetime.utcnow().timestamp())}",
                notes={"user_id": str(user.id), "purpose": PaymentPurpose.RENEW.value},
            )
        except PaymentGatewayError as e:
            return ChargeResult(success=False, reason=e.message)

        return ChargeResult(
            success=False,
            order_id=order["id"],
            reason="Customer confirmation required",
        )


_gateway: Optional[PaymentGateway] = None


def get_payment_gateway() -> PaymentGateway:
    global _gateway
    if _gateway is None:
        _gateway = PaymentGateway()
    return _gateway


class PaymentService:

    @staticmethod
    def create_subscription_order(
        db: Session,
        user: User,
        package_id: int,
        purpose: PaymentPurpose = PaymentPurpose.SUBSCRIBE,
        coupon_code: Optional[str] = None,
        gateway: Optional[PaymentGateway] = None,
    ) -> Dict[str, Any]:
        """
        Open a gateway order for a subscription purchase, renewal or upgrade
        and record it as a pending payment.
        """
        gateway = gateway or get_payment_gateway()
        package = PackageService.get_active_package(db, package_id)

        coupon = None
        discount = 0.0
        if coupon_code and purpose == PaymentPurpose.SUBSCRIBE:
            validation = CouponService.validate_coupon(db, coupon_code, package.id)
            if not validation.valid:
                raise ValidationError(validation.message)
            coupon = validation.coupon
            discount = coupon.calculate_discount(package.effective_price)

        amount = round(max(0.0, package.effective_price - discount), 2)
        if amount <= 0:
            raise ValidationError("Nothing to pay. Subscribe directly")

        payment = Payment(
            user_id=user.id,
            package_id=package.id,
            coupon_id=coupon.id if coupon else None,
            amount=amount,
            discount_amount=discount,
            currency=package.currency or settings.DEFAULT_CURRENCY,
            purpose=purpose,
            status=PaymentStatus.PENDING,
        )
        db.add(payment)
        db.commit()
        db.refresh(payment)

        try:
            order = gateway.create_order(
                amount, payment.currency,
                receipt=f"payment_{payment.id}",
                notes={
                    "user_id": str(user.id),
                    "package_id": str(package.id),
                    "payment_id": str(payment.id),
                    "purpose": purpose.value,
                },
            )
        except PaymentGatewayError as e:
            payment.mark_as_failed(e.message)
            db.commit()
            raise

        payment.order_id = order["id"]
        db.commit()

        logger.info(f"💳 Order {payment.order_id} opened for user {user.id}, {purpose.value} {package.type.value}")
        return {
            "payment_id": payment.id,
            "order_id": payment.order_id,
            "amount": amount,
            "discount": discount,
            "currency": payment.currency,
            "purpose": purpose.value,
            "razorpay_key": gateway.public_key,
            "test_mode": gateway.test_mode,
        }

    @staticmethod
    def verify_subscription_payment(
        db: Session,
        user: User,
        order_id: str,
        gateway_payment_id: str,
        signature: Optional[str] = None,
        gateway: Optional[PaymentGateway] = None,
    ) -> Dict[str, Any]:
        """Confirm a client-side payment and apply it to the subscription"""
        gateway = gateway or get_payment_gateway()

        payment = db.query(Payment).filter(
            Payment.order_id == order_id,
            Payment.user_id == user.id
        ).first()
        if not payment:
            raise NotFoundError("Payment not found")

        if payment.status == PaymentStatus.COMPLETED:
            logger.info(f"ℹ️ Payment {payment.id} already verified")
            return {"payment": payment, "subscription_id": payment.subscription_id}

        if payment.status != PaymentStatus.PENDING:
            raise ValidationError("Payment cannot be verified")

        if not gateway.verify_signature(order_id, gateway_payment_id, signature):
            payment.mark_as_failed("Signature verification failed")
            db.commit()
            raise ValidationError("Payment verification failed")

        subscription = PaymentService._complete_and_apply(db, user, payment, gateway_payment_id, gateway)
        if subscription is None:
            raise ValidationError(f"Payment could not be applied and will be refunded: {payment.failure_reason}")
        return {"payment": payment, "subscription_id": subscription.id}

    @staticmethod
    def _complete_and_apply(db: Session, user: User, payment: Payment, gateway_payment_id: str, gateway: PaymentGateway):
        """
        Mark the payment completed and apply it in one commit. A payment that
        cannot be applied is committed as completed and refunded instead.
        """
        payment.mark_as_completed(gateway_payment_id)
        try:
            subscription = PaymentService._apply_payment(db, user, payment)
        except SakinaError as e:
            db.rollback()
            logger.error(f"❌ Payment {payment.id} could not be applied: {e.message}")
            PaymentService._refund_unapplied(db, payment, gateway_payment_id, e.message, gateway)
            return None

        logger.info(f"✅ Payment {payment.id} verified ({gateway_payment_id})")
        return subscription

    @staticmethod
    def _refund_unapplied(db: Session, payment: Payment, gateway_payment_id: str, reason: str, gateway: PaymentGateway):
        payment.mark_as_completed(gateway_payment_id)
        payment.failure_reason = reason
        try:
            refund_id = gateway.refund(gateway_payment_id, float(payment.amount), reason)
            payment.mark_as_refunded(refund_id, reason)
            logger.info(f"💰 Unapplied payment {payment.id} refunded ({refund_id})")
        except PaymentGatewayError:
            # Left completed with failure_reason set for a manual refund
            logger.error(f"❌ Automatic refund failed for payment {payment.id}")
        db.commit()

    @staticmethod
    def _apply_payment(db: Session, user: User, payment: Payment):
        if payment.purpose == PaymentPurpose.RENEW:
            return SubscriptionService.renew(db, user, package_id=payment.package_id, payment=payment)

        now = datetime.utcnow()
        current = SubscriptionService.get_current_subscription(db, user.id)
        active = current is not None and current.is_active_at(now)

        if payment.purpose == PaymentPurpose.UPGRADE:
            if active:
                subscription, _ = SubscriptionService.change_package(db, user, payment.package_id, payment=payment)
                return subscription
            logger.info(f"ℹ️ Subscription lapsed before upgrade payment {payment.id}, starting a new one")

        result = SubscriptionService.subscribe(db, user, payment.package_id, payment=payment, now=now)
        if not result.created:
            raise ValidationError("Already subscribed")
        return result.subscription

    @staticmethod
    def handle_webhook(db: Session, body: str, signature: Optional[str], gateway: Optional[PaymentGateway] = None) -> str:
        """Process payment.captured / payment.failed events. Returns the handled event name."""
        gateway = gateway or get_payment_gateway()

        if not gateway.verify_webhook(body, signature):
            raise ValidationError("Invalid webhook signature")

        try:
            event = json.loads(body)
        except ValueError:
            raise ValidationError("Invalid webhook payload")

        event_type = event.get("event", "")
        entity = event.get("payload", {}).get("payment", {}).get("entity", {})
        order_id = entity.get("order_id")

        payment = db.query(Payment).filter(Payment.order_id == order_id).first() if order_id else None
        if not payment:
            logger.warning(f"Webhook {event_type} for unknown order {order_id}")
            return event_type

        if event_type == "payment.captured" and payment.status == PaymentStatus.PENDING:
            logger.info(f"✅ Webhook captured payment {payment.id}")
            PaymentService._complete_and_apply(db, payment.user, payment, entity.get("id"), gateway)
        elif event_type == "payment.failed" and payment.status == PaymentStatus.PENDING:
            payment.mark_as_failed(entity.get("error_description") or "Payment failed")
            db.commit()
            logger.warning(f"❌ Webhook failed payment {payment.id}")

        return event_type

    @staticmethod
    def refund_payment(db: Session, payment_id: int, reason: str, gateway: Optional[PaymentGateway] = None) -> Payment:
        gateway = gateway or get_payment_gateway()

        payment = db.query(Payment).filter(Payment.id == payment_id).first()
        if not payment:
            raise NotFoundError("Payment not found")

        if payment.status != PaymentStatus.COMPLETED:
            raise ValidationError("Cannot refund non-completed payment")

        refund_id = gateway.refund(payment.gateway_payment_id, float(payment.amount), reason)
        payment.mark_as_refunded(refund_id, reason)
        db.commit()
        db.refresh(payment)

        logger.info(f"💰 Payment {payment.id} refunded ({refund_id})")
        return payment

    @staticmethod
    def payment_history(db: Session, user_id: int, page: int = 1, limit: int = 20) -> Tuple[List[Payment], int]:
        query = db.query(Payment).filter(Payment.user_id == user_id)
        total = query.count()
        items = query.order_by(Payment.created_at.desc(), Payment.id.desc()) \
            .offset((page - 1) * limit).limit(limit).all()
        return items, total

    @staticmethod
    def list_payments(
        db: Session,
        status: Optional[str] = None,
        user_id: Optional[int] = None,
        page: int = 1,
        limit: int = 50,
    ) -> Tuple[List[Payment], int]:
        query = db.query(Payment)
        if status:
            query = query.filter(Payment.status == PaymentStatus(status))
        if user_id:
            query = query.filter(Payment.user_id == user_id)
        total = query.count()
        items = query.order_by(Payment.created_at.desc(), Payment.id.desc()) \
            .offset((page - 1) * limit).limit(limit).all()
        return items, total
