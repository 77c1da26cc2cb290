# storefront/domain/schemas.py
from pydantic import BaseModel, Field, ConfigDict
from typing import List
from decimal import Decimal
from datetime import datetime


# cart
class AddToCartIn(BaseModel):
    """Add a product (optionally a variant) to the cart."""

    product_id: int = Field(..., gt=0)
    variant_id: int | None = Field(None, gt=0)
    quantity: int = Field(1, gt=0)


class UpdateQuantityIn(BaseModel):
    """0 or less removes the line."""

    quantity: int


class CartItemOut(BaseModel):
    id: int
    product_id: int
    variant_id: int | None = None
    quantity: int
    price: Decimal
    total_price: Decimal

    model_config = ConfigDict(from_attributes=True)


class CartOut(BaseModel):
    id: int
    user_id: int | None = None
    session_id: str | None = None
    items: List[CartItemOut]
    total_amount: Decimal
    item_count: int

    model_config = ConfigDict(from_attributes=True)


# orders
class CreateOrderIn(BaseModel):
    """Shipping/billing snapshot and payment method for a new order."""

    shipping_first_name: str = Field(..., min_length=1)
    shipping_last_name: str = Field(..., min_length=1)
    shipping_address: str = Field(..., min_length=1)
    shipping_city: str = Field(..., min_length=1)
    shipping_district: str = Field(..., min_length=1)
    shipping_postal_code: str | None = None
    shipping_phone: str = Field(..., min_length=1)
    shipping_email: str | None = None

    billing_first_name: str | None = None
    billing_last_name: str | None = None
    billing_address: str | None = None
    billing_city: str | None = None
    billing_district: str | None = None
    billing_postal_code: str | None = None
    billing_phone: str | None = None

    notes: str | None = None
    payment_method: str = Field(..., min_length=1)


class GuestOrderItemIn(BaseModel):
    product_id: int = Field(..., gt=0)
    variant_id: int | None = Field(None, gt=0)
    quantity: int = Field(..., gt=0)
    price: Decimal | None = Field(None, ge=0)


class CreateGuestOrderIn(CreateOrderIn):
    items: List[GuestOrderItemIn] = Field(default_factory=list)


class OrderItemOut(BaseModel):
    id: int
    product_id: int
    variant_id: int | None = None
    product_name: str
    variant_name: str | None = None
    product_image: str | None = None
    price: Decimal
    quantity: int
    total_price: Decimal

    model_config = ConfigDict(from_attributes=True)


class OrderOut(BaseModel):
    id: int
    order_number: str
    user_id: int | None = None
    status: str
    payment_status: str
    payment_method: str | None = None
    payment_id: str | None = None
    installment: int | None = None

    subtotal: Decimal
    shipping_cost: Decimal
    cod_fee: Decimal
    total_amount: Decimal

    shipping_first_name: str
    shipping_last_name: str
    shipping_address: str
    shipping_city: str
    shipping_district: str
    shipping_postal_code: str | None = None
    shipping_phone: str
    shipping_email: str | None = None

    billing_first_name: str | None = None
    billing_last_name: str | None = None
    billing_address: str | None = None
    billing_city: str | None = None
    billing_district: str | None = None
    billing_postal_code: str | None = None
    billing_phone: str | None = None

    notes: str | None = None
    tracking_number: str | None = None
    shipping_company: str | None = None
    needs_reconciliation: bool = False

    items: List[OrderItemOut]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class OrderListOut(BaseModel):
    orders: List[OrderOut]
    total: int
    page: int
    limit: int


class UpdateStatusIn(BaseModel):
    status: str


class UpdatePaymentStatusIn(BaseModel):
    payment_status: str
    payment_id: str | None = None


class TrackingIn(BaseModel):
    tracking_number: str = Field(..., min_length=1)
    shipping_company: str = Field(..., min_length=1)


# payments
class PaymentCreateIn(BaseModel):
    order_id: int = Field(..., gt=0)


class PaymentFormOut(BaseModel):
    success: bool = True
    payment_url: str
    form_data: dict[str, str]


class PaymentMethodOut(BaseModel):
    id: str
    name: str
    description: str
    icon: str
    enabled: bool


class PaymentMethodsOut(BaseModel):
    methods: List[PaymentMethodOut]
