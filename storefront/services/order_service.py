# storefront/services/order_service.py
import secrets
import string
import time

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.data.models.order import OrderModel, OrderStatus, PaymentStatus
from storefront.data.models.order_item import OrderItemModel
from storefront.domain.errors import ConflictError, InvalidStateError, NotFoundError, UnauthorizedError
from storefront.domain.money import to_money
from storefront.domain.owner import Caller
from storefront.repos.catalog_repo import CatalogRepo
from storefront.repos.order_repo import OrderRepo
from storefront.utils.retry import conflict_retry
from storefront.utils.settings import ORDER_NUMBER_PREFIX
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

_BASE36 = string.digits + string.ascii_uppercase


def _base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_order_number(prefix: str = ORDER_NUMBER_PREFIX) -> str:
    """PRW-<ms timestamp base36>-<4 random base36 chars>, e.g. PRW-LZ3K9Q1A-7XQ2."""
    timestamp = _base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(_BASE36) for _ in range(4))
    return f"{prefix}-{timestamp}-{suffix}"


class OrderService:
    """
    Order aggregate use cases.

    Business facts (number, snapshots, totals) are written once at creation.
    After that only status, payment and shipping fields move. Status changes
    by admins are free-form, payment confirmation pulls a pending
    order to confirmed, tracking info always means shipped.
    """

    def __init__(self, db: Session):
        self.db = db
        self.repo = OrderRepo(db)
        self.catalog = CatalogRepo(db)

    # commands
    @conflict_retry()
    def create_order(
        self,
        user_id: int | None,
        details: dict,
        lines: list[dict],
        subtotal,
        shipping_cost,
        cod_fee,
    ) -> OrderModel:
        """
        Writes the order row and every item snapshot in one commit. A taken
        order number raises ConflictError and the whole step runs again with
        a fresh number.
        """
        subtotal = to_money(subtotal)
        shipping_cost = to_money(shipping_cost)
        cod_fee = to_money(cod_fee)

        order = OrderModel(
            order_number=generate_order_number(),
            user_id=user_id,
            subtotal=subtotal,
            shipping_cost=shipping_cost,
            cod_fee=cod_fee,
            total_amount=subtotal + shipping_cost + cod_fee,
            status=OrderStatus.PENDING.value,
            payment_status=PaymentStatus.PENDING.value,
            **details,
        )
        order.items = [OrderItemModel(stock_decremented=False, **line) for line in lines]

        try:
            created = self.repo.create_order(order)
        except IntegrityError as e:
            self.repo.rollback()
            if "order_number" in str(e.orig):
                logger.warning(f"Order number collision on {order.order_number}, retrying")
                raise ConflictError(f"Order number {order.order_number} already exists") from e
            raise

        owner = f"user {user_id}" if user_id is not None else "guest"
        logger.info(
            f"Order {created.order_number} (#{created.id}) created for {owner}, "
            f"total {created.total_amount}"
        )
        return created

    def apply_stock_decrements(self, order: OrderModel) -> list[str]:
        """
        Saga step: decrement stock for every line not yet marked. Each line is
        its own transaction (decrement + marker commit together), so re-running
        never takes stock twice. Failures flag the order instead of undoing it.
        """
        order_id = order.id
        order_number = order.order_number
        failures = []

        for item in list(order.items):
            if item.stock_decremented:
                continue
            product_id, quantity = item.product_id, item.quantity
            try:
                if not self.catalog.decrement_stock(product_id, quantity):
                    self.repo.rollback()
                    failures.append(f"product {product_id}: insufficient stock for quantity {quantity}")
                    continue
                item.stock_decremented = True
                self.repo.commit()
            except SQLAlchemyError as e:
                self.repo.rollback()
                failures.append(f"product {product_id}: stock update failed ({e.__class__.__name__})")

        order = self.repo.get_order(order_id)
        if failures:
            order.needs_reconciliation = True
            order.reconciliation_note = "; ".join(failures)
            self.repo.save(order)
            logger.error(f"Order {order_number} needs stock reconciliation: {order.reconciliation_note}")
        elif order.needs_reconciliation:
            order.needs_reconciliation = False
            order.reconciliation_note = None
            self.repo.save(order)
            logger.info(f"Order {order_number} stock reconciled")

        return failures

    def retry_stock_reconciliation(self, order_id: int) -> OrderModel:
        order = self._get(order_id)
        if not order.needs_reconciliation:
            return order
        self.apply_stock_decrements(order)
        return self._get(order_id)

    def update_status(self, order_id: int, status: str) -> OrderModel:
        try:
            new_status = OrderStatus(status)
        except ValueError:
            raise InvalidStateError(f"Unknown order status: {status}")

        order = self._get(order_id)
        logger.info(f"Order {order.order_number} status {order.status} -> {new_status.value}")
        order.status = new_status.value
        return self.repo.save(order)

    def update_payment_status(self, order_id: int, payment_status: str, payment_id: str | None = None) -> OrderModel:
        try:
            new_status = PaymentStatus(payment_status)
        except ValueError:
            raise InvalidStateError(f"Unknown payment status: {payment_status}")

        order = self._get(order_id)
        self._apply_payment(order, new_status, payment_id)
        return self.repo.save(order)

    def mark_paid(self, order_number: str, payment_id: str | None, installment: int = 1) -> OrderModel:
        """Provider confirmation. Only pending or failed payments move to paid."""
        order = self.get_by_order_number(order_number)

        if order.payment_status == PaymentStatus.PAID.value:
            logger.info(f"Order {order_number} already paid, ignoring repeated confirmation")
            return order
        if order.payment_status not in (PaymentStatus.PENDING.value, PaymentStatus.FAILED.value):
            logger.warning(f"Refusing payment confirmation for order {order_number} in payment state {order.payment_status}")
            raise InvalidStateError(f"Order {order_number} can not be marked paid from {order.payment_status}")

        self._apply_payment(order, PaymentStatus.PAID, payment_id)
        order.installment = installment
        return self.repo.save(order)

    def add_tracking(self, order_id: int, tracking_number: str, shipping_company: str) -> OrderModel:
        order = self._get(order_id)
        order.tracking_number = tracking_number
        order.shipping_company = shipping_company
        # no guard on the previous status, operators use this to fix missed transitions
        order.status = OrderStatus.SHIPPED.value
        logger.info(f"Order {order.order_number} shipped with {shipping_company} {tracking_number}")
        return self.repo.save(order)

    # queries
    def get_order(self, order_id: int, caller: Caller) -> OrderModel:
        order = self._get(order_id)
        if caller.is_admin:
            return order
        if order.user_id is None or order.user_id != caller.user_id:
            raise UnauthorizedError("No access to this order")
        return order

    def get_by_order_number(self, order_number: str) -> OrderModel:
        order = self.repo.get_by_order_number(order_number)
        if not order:
            raise NotFoundError("Order not found")
        return order

    def list_for_user(self, user_id: int) -> list[OrderModel]:
        return self.repo.list_for_user(user_id)

    def list_admin(self, status: str | None = None, page: int = 1, limit: int = 20):
        if page < 1 or limit < 1:
            raise InvalidStateError("page and limit must be positive")
        return self.repo.list_admin(status, page, limit)

    def _get(self, order_id: int) -> OrderModel:
        order = self.repo.get_order(order_id)
        if not order:
            raise NotFoundError("Order not found")
        return order

    def _apply_payment(self, order: OrderModel, payment_status: PaymentStatus, payment_id: str | None):
        order.payment_status = payment_status.value
        if payment_id:
            order.payment_id = payment_id
        # paid pulls a pending order forward, never regresses a later status
        if payment_status == PaymentStatus.PAID and order.status == OrderStatus.PENDING.value:
            order.status = OrderStatus.CONFIRMED.value
        logger.info(f"Order {order.order_number} payment {payment_status.value}, status {order.status}")
