# storefront/services/checkout_service.py
import uuid

from sqlalchemy.orm import Session

from storefront.data.models.cart_item import CartItemModel
from storefront.data.models.order import OrderModel
from storefront.domain.errors import ConflictError, InvalidStateError, NotFoundError
from storefront.domain.money import ZERO, effective_price, line_total, shipping_cost, sum_money, to_money
from storefront.domain.owner import OwnerKey
from storefront.repos.cart_repo import CartRepo
from storefront.repos.catalog_repo import CatalogRepo
from storefront.services.cart_service import CartService
from storefront.services.lock_service import LockService
from storefront.services.notification_service import NotificationService
from storefront.services.order_service import OrderService
from storefront.utils.settings import (
    CHECKOUT_LOCK_TTL_SECONDS,
    COD_FEE,
    FREE_SHIPPING_THRESHOLD,
    SHIPPING_FEE,
    TRUST_CLIENT_PRICES,
)
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

COD_METHODS = {"cash_on_delivery", "cod"}


class CheckoutService:
    """
    Turns a cart (or a guest item list) into an order.

    Steps, each atomic on its own:
    1. order row + item snapshots (one commit, retried on number collision)
    2. stock decrement per line (marker per line, failures flag the order)
    3. cart cleared (authenticated path only)
    """

    def __init__(
        self,
        db: Session,
        lock_service: LockService,
        notification_service: NotificationService | None = None,
    ):
        self.carts = CartRepo(db)
        self.cart_service = CartService(db)
        self.catalog = CatalogRepo(db)
        self.order_service = OrderService(db)
        self.lock_service = lock_service
        self.notification_service = notification_service or NotificationService()

    def checkout(self, user_id: int, details: dict) -> OrderModel:
        owner = OwnerKey.for_user(user_id)
        lock_key = f"checkout:user:{user_id}"
        token = uuid.uuid4().hex

        if not self.lock_service.acquire(lock_key, token, CHECKOUT_LOCK_TTL_SECONDS):
            raise ConflictError("A checkout for this cart is already in progress")

        try:
            cart = self.carts.get_by_owner(owner)
            items = self.carts.get_cart_items(cart.id) if cart else []
            if not items:
                raise InvalidStateError("Cart is empty")

            subtotal = to_money(cart.total_amount)
            shipping = shipping_cost(subtotal, FREE_SHIPPING_THRESHOLD, SHIPPING_FEE)
            lines = [self._snapshot_cart_line(i) for i in items]

            logger.info(f"Checkout for user {user_id}: {len(lines)} line(s), subtotal {subtotal}")

            order = self.order_service.create_order(
                user_id=user_id,
                details=details,
                lines=lines,
                subtotal=subtotal,
                shipping_cost=shipping,
                cod_fee=ZERO,
            )
            self.order_service.apply_stock_decrements(order)
            try:
                self.cart_service.clear(owner)
            except ConflictError:
                # order is already placed, a leftover cart is only cosmetic
                logger.error(f"Could not clear cart of user {user_id} after order {order.order_number}")
        finally:
            self.lock_service.release(lock_key, token)

        self._notify(order)
        return self.order_service.get_by_order_number(order.order_number)

    def checkout_guest(self, details: dict, items: list[dict]) -> OrderModel:
        if not items:
            raise InvalidStateError("At least one item is required to place an order")

        lines = [self._snapshot_guest_line(item) for item in items]

        subtotal = sum_money(line["total_price"] for line in lines)
        shipping = shipping_cost(subtotal, FREE_SHIPPING_THRESHOLD, SHIPPING_FEE)
        cod_fee = COD_FEE if details.get("payment_method") in COD_METHODS else ZERO

        logger.info(f"Guest checkout: {len(lines)} line(s), subtotal {subtotal}, cod fee {cod_fee}")

        order = self.order_service.create_order(
            user_id=None,
            details=details,
            lines=lines,
            subtotal=subtotal,
            shipping_cost=shipping,
            cod_fee=cod_fee,
        )
        self.order_service.apply_stock_decrements(order)

        self._notify(order)
        return self.order_service.get_by_order_number(order.order_number)

    def _snapshot_cart_line(self, item: CartItemModel) -> dict:
        # the cart may outlive the product, checkout re-reads the catalog
        product = self.catalog.find_by_id(item.product_id)
        if product is None:
            raise NotFoundError(f"Product not found: {item.product_id}")

        variant = None
        if item.variant_id is not None:
            variant = self.catalog.find_variant(item.product_id, item.variant_id)
            if variant is None:
                raise NotFoundError(f"Variant {item.variant_id} not found for product {item.product_id}")

        return {
            "product_id": item.product_id,
            "variant_id": item.variant_id,
            "product_name": product.name,
            "variant_name": variant.name if variant else None,
            "product_image": product.main_image,
            "price": to_money(item.price),
            "quantity": item.quantity,
            "total_price": to_money(item.total_price),
        }

    def _snapshot_guest_line(self, item: dict) -> dict:
        product_id = item["product_id"]
        variant_id = item.get("variant_id")
        quantity = item["quantity"]

        if quantity <= 0:
            raise InvalidStateError(f"Quantity for product {product_id} must be greater than 0")

        product = self.catalog.find_by_id(product_id)
        if product is None:
            raise NotFoundError(f"Product not found: {product_id}")

        variant = None
        if variant_id is not None:
            variant = self.catalog.find_variant(product_id, variant_id)
            if variant is None:
                raise NotFoundError(f"Variant {variant_id} not found for product {product_id}")

        price = self._guest_price(product_id, effective_price(product.price, product.sale_price), item.get("price"))

        return {
            "product_id": product_id,
            "variant_id": variant_id,
            "product_name": product.name,
            "variant_name": variant.name if variant else None,
            "product_image": product.main_image,
            "price": price,
            "quantity": quantity,
            "total_price": line_total(price, quantity),
        }

    def _guest_price(self, product_id: int, catalog_price, supplied_price):
        if supplied_price is None:
            return catalog_price

        supplied_price = to_money(supplied_price)
        if TRUST_CLIENT_PRICES:
            return supplied_price

        if supplied_price != catalog_price:
            logger.warning(
                f"Guest price mismatch for product {product_id}: "
                f"sent {supplied_price}, catalog {catalog_price}"
            )
            raise InvalidStateError(f"Price for product {product_id} has changed, please refresh your cart")
        return catalog_price

    def _notify(self, order: OrderModel):
        try:
            self.notification_service.send_order_notification(order.id, order.order_number, order.user_id)
        except Exception as e:
            logger.warning(f"Failed to queue notification for order {order.order_number}: {e}")
