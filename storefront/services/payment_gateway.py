# storefront/services/payment_gateway.py
import base64
import hashlib
import hmac
import secrets
from dataclasses import dataclass, field
from typing import Mapping

from storefront.domain.money import to_money
from storefront.utils.settings import (
    SHOPIER_API_KEY,
    SHOPIER_API_SECRET,
    SHOPIER_CALLBACK_URL,
    SHOPIER_PAYMENT_URL,
    SHOPIER_WEBSITE_INDEX,
)
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

CURRENCY_CODES = {"TRY": 0, "TL": 0, "USD": 1, "EUR": 2}

PRODUCT_TYPE_REAL = 0
PRODUCT_TYPE_DOWNLOADABLE = 1
PRODUCT_TYPE_DEFAULT = 2


@dataclass
class Buyer:
    id: str
    first_name: str
    last_name: str
    email: str
    phone: str


@dataclass
class Address:
    address: str
    city: str
    country: str
    postal_code: str


@dataclass
class PaymentRequest:
    buyer: Buyer
    billing_address: Address
    shipping_address: Address
    order_number: str
    amount: object
    product_name: str
    currency: str = "TRY"
    product_type: int = PRODUCT_TYPE_DEFAULT
    language: str = "tr"


@dataclass
class PaymentForm:
    payment_url: str
    form_data: dict = field(default_factory=dict)


@dataclass
class CallbackVerification:
    is_valid: bool
    order_number: str | None = None
    status: str | None = None
    installment: int = 1
    payment_id: str | None = None


class ShopierGateway:
    """
    Shopier hosted payment page.

    Outbound: signed form fields the browser posts straight to Shopier,
    nothing is sent from here. Inbound: callback signature check, HMAC-SHA256
    with the shared API secret, base64 encoded.
    """

    def __init__(
        self,
        api_key: str | None = None,
        api_secret: str | None = None,
        callback_url: str | None = None,
        payment_url: str | None = None,
        website_index: int | None = None,
    ):
        self.api_key = SHOPIER_API_KEY if api_key is None else api_key
        self.api_secret = SHOPIER_API_SECRET if api_secret is None else api_secret
        self.callback_url = callback_url or SHOPIER_CALLBACK_URL
        self.payment_url = payment_url or SHOPIER_PAYMENT_URL
        self.website_index = SHOPIER_WEBSITE_INDEX if website_index is None else website_index

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.api_secret)

    def build_payment_form(self, request: PaymentRequest) -> PaymentForm:
        currency = str(self.currency_code(request.currency))
        amount = f"{to_money(request.amount):.2f}"
        nonce = self.generate_nonce()

        form_data = {
            "API_key": self.api_key,
            "website_index": str(self.website_index),
            "platform_order_id": request.order_number,
            "product_name": request.product_name,
            "product_type": str(request.product_type),
            "buyer_name": request.buyer.first_name,
            "buyer_surname": request.buyer.last_name,
            "buyer_email": request.buyer.email,
            "buyer_phone": request.buyer.phone,
            "buyer_id_nr": request.buyer.id,
            "billing_address": request.billing_address.address,
            "billing_city": request.billing_address.city,
            "billing_country": request.billing_address.country,
            "billing_postcode": request.billing_address.postal_code,
            "shipping_address": request.shipping_address.address,
            "shipping_city": request.shipping_address.city,
            "shipping_country": request.shipping_address.country,
            "shipping_postcode": request.shipping_address.postal_code,
            "total_order_value": amount,
            "currency": currency,
            "platform": "0",
            "is_in_frame": "0",
            "current_language": request.language,
            "modul_version": "1.0.0",
            "random_nr": nonce,
        }

        # order matters: nonce, order number, amount, currency
        form_data["signature"] = self.sign(nonce + request.order_number + amount + currency)
        form_data["callback"] = base64.b64encode(self.callback_url.encode("utf-8")).decode("ascii")

        logger.info(f"Built Shopier payment form for order {request.order_number}, amount {amount}")
        return PaymentForm(payment_url=self.payment_url, form_data=form_data)

    def verify_callback(self, payload: Mapping) -> CallbackVerification:
        """
        Never raises. Anything missing or broken means invalid, so a bad
        callback can not move an order.
        """
        try:
            order_number = payload["platform_order_id"]
            status = payload["status"]
            payment_id = payload["payment_id"]
            nonce = payload["random_nr"]
            signature = payload["signature"]

            if not self.api_secret:
                logger.error("Shopier callback received but API secret is not configured")
                return CallbackVerification(is_valid=False)

            expected = self.sign(f"{nonce}{order_number}{status}{payment_id}")
            is_valid = hmac.compare_digest(str(signature).encode("utf-8"), expected.encode("utf-8"))

            return CallbackVerification(
                is_valid=is_valid,
                order_number=str(order_number),
                status="paid" if str(status).lower() == "success" else "failed",
                installment=self._parse_installment(payload.get("installment")),
                payment_id=str(payment_id),
            )
        except Exception as e:
            logger.error(f"Shopier callback verification error: {e.__class__.__name__}")
            return CallbackVerification(is_valid=False)

    def sign(self, data: str) -> str:
        digest = hmac.new(
            self.api_secret.encode("utf-8"),
            data.encode("utf-8"),
            hashlib.sha256,
        ).digest()
        return base64.b64encode(digest).decode("ascii")

    @staticmethod
    def generate_nonce() -> str:
        return str(secrets.randbelow(1_000_000_000))

    @staticmethod
    def currency_code(currency: str) -> int:
        return CURRENCY_CODES.get((currency or "").upper(), 0)

    @staticmethod
    def _parse_installment(value) -> int:
        try:
            installment = int(value)
        except (TypeError, ValueError):
            return 1
        return installment if installment > 0 else 1
