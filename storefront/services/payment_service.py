# storefront/services/payment_service.py
from dataclasses import dataclass
from typing import Mapping
from urllib.parse import urlencode

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.data.models.order import OrderModel, PaymentStatus
from storefront.domain.errors import InvalidStateError, NotFoundError, ProcessingError, UnauthorizedError
from storefront.domain.owner import Caller
from storefront.services.order_service import OrderService
from storefront.services.payment_gateway import (
    PRODUCT_TYPE_REAL,
    Address,
    Buyer,
    CallbackVerification,
    PaymentForm,
    PaymentRequest,
    ShopierGateway,
)
from storefront.utils.settings import (
    FRONTEND_URL,
    SHOPIER_CURRENCY,
    SHOPIER_DEFAULT_COUNTRY,
    SHOPIER_FALLBACK_EMAIL,
)
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class CallbackOutcome:
    success: bool
    redirect_url: str
    reason: str | None = None
    order_number: str | None = None
    payment_id: str | None = None


class PaymentService:
    def __init__(self, db: Session, gateway: ShopierGateway | None = None):
        self.db = db
        self.order_service = OrderService(db)
        self.gateway = gateway or ShopierGateway()

    def create_payment_form(self, order_id: int, caller: Caller) -> PaymentForm:
        order = self.order_service.repo.get_order(order_id)
        if not order:
            raise NotFoundError("Order not found")

        # guest orders have no owner to check against
        if order.user_id is not None and order.user_id != caller.user_id and not caller.is_admin:
            raise UnauthorizedError("No access to this order")

        if order.payment_status == PaymentStatus.PAID.value:
            raise InvalidStateError("Order is already paid")

        if not self.gateway.is_configured:
            raise InvalidStateError("Card payments are not available")

        return self.gateway.build_payment_form(self._payment_request(order))

    def handle_callback(self, payload: Mapping) -> CallbackOutcome:
        """Same logic for the POST and the GET callback."""
        logger.info(f"Shopier callback received for order {payload.get('platform_order_id')}")

        verification = self.gateway.verify_callback(payload)

        if not verification.is_valid:
            logger.error("Invalid Shopier callback signature")
            return self._failure("invalid_signature")

        if verification.status != PaymentStatus.PAID.value:
            logger.info(f"Shopier reported failed payment for order {verification.order_number}")
            return self._failure("payment_failed", verification.order_number)

        try:
            self._reconcile(verification)
        except ProcessingError as e:
            logger.error(f"Error processing Shopier callback for order {verification.order_number}: {e}")
            return self._failure("processing_error", verification.order_number)

        return CallbackOutcome(
            success=True,
            redirect_url=self._url(
                "/payment/success",
                order=verification.order_number,
                payment=verification.payment_id,
            ),
            order_number=verification.order_number,
            payment_id=verification.payment_id,
        )

    def payment_methods(self) -> list[dict]:
        return [
            {
                "id": "shopier",
                "name": "Credit/debit card (Shopier)",
                "description": "Pay securely with your credit or debit card",
                "icon": "credit-card",
                "enabled": self.gateway.is_configured,
            },
            {
                "id": "bank_transfer",
                "name": "Bank transfer",
                "description": "Pay by wire transfer",
                "icon": "bank",
                "enabled": True,
            },
            {
                "id": "cash_on_delivery",
                "name": "Cash on delivery",
                "description": "Pay in cash or by card on delivery",
                "icon": "truck",
                "enabled": True,
            },
        ]

    def _reconcile(self, verification: CallbackVerification) -> OrderModel:
        try:
            return self.order_service.mark_paid(
                verification.order_number,
                verification.payment_id,
                verification.installment,
            )
        except NotFoundError as e:
            raise ProcessingError(f"order {verification.order_number} does not exist") from e
        except InvalidStateError as e:
            raise ProcessingError(str(e)) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            raise ProcessingError(f"database error ({e.__class__.__name__})") from e

    def _payment_request(self, order: OrderModel) -> PaymentRequest:
        shipping = Address(
            address=order.shipping_address,
            city=order.shipping_city,
            country=SHOPIER_DEFAULT_COUNTRY,
            postal_code=order.shipping_postal_code or "00000",
        )
        billing = shipping
        if order.billing_address:
            billing = Address(
                address=order.billing_address,
                city=order.billing_city or order.shipping_city,
                country=SHOPIER_DEFAULT_COUNTRY,
                postal_code=order.billing_postal_code or shipping.postal_code,
            )

        return PaymentRequest(
            buyer=Buyer(
                id=str(order.user_id or order.id),
                first_name=order.shipping_first_name,
                last_name=order.shipping_last_name,
                email=order.shipping_email or SHOPIER_FALLBACK_EMAIL,
                phone=order.shipping_phone,
            ),
            billing_address=billing,
            shipping_address=shipping,
            order_number=order.order_number,
            amount=order.total_amount,
            currency=SHOPIER_CURRENCY,
            product_name=f"Order #{order.order_number}",
            product_type=PRODUCT_TYPE_REAL,
        )

    def _failure(self, reason: str, order_number: str | None = None) -> CallbackOutcome:
        params = {"reason": reason}
        if order_number:
            params = {"order": order_number, "reason": reason}
        return CallbackOutcome(
            success=False,
            redirect_url=self._url("/payment/failure", **params),
            reason=reason,
            order_number=order_number,
        )

    @staticmethod
    def _url(path: str, **params) -> str:
        return f"{FRONTEND_URL}{path}?{urlencode(params)}"
