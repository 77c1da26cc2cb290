"""Cart and guest checkout: totals, snapshots, stock saga, cart clearing."""

from decimal import Decimal

import pytest

from storefront.data.models import OrderItemModel, OrderModel, ProductModel
from storefront.domain.errors import ConflictError, InvalidStateError, NotFoundError
from storefront.domain.owner import OwnerKey
from storefront.repos.cart_repo import CartRepo
from storefront.services import checkout_service as checkout_module
from storefront.services import order_service as order_module
from storefront.services.cart_service import CartService
from storefront.services.checkout_service import CheckoutService
from storefront.services.order_service import OrderService

USER_ID = 1
USER = OwnerKey.for_user(USER_ID)


@pytest.fixture()
def checkout(db, lock_service, notifications):
    return CheckoutService(db, lock_service=lock_service, notification_service=notifications)


def fresh_product(db, product_id):
    db.expire_all()
    return db.get(ProductModel, product_id)


class TestAuthenticatedCheckout:
    def test_example_order_totals(self, db, checkout, make_product, shipping_details):
        a = make_product("A", price="100.00")
        b = make_product("B", price="50.00")
        carts = CartService(db)
        carts.add_item(USER, a.id, 2)
        carts.add_item(USER, b.id, 1)

        order = checkout.checkout(USER_ID, shipping_details)

        assert order.subtotal == Decimal("250.00")
        assert order.shipping_cost == Decimal("29.99")
        assert order.cod_fee == Decimal("0.00")
        assert order.total_amount == Decimal("279.99")
        assert order.status == "pending"
        assert order.payment_status == "pending"
        assert order.user_id == USER_ID
        assert order.order_number.startswith("PRW-")

    def test_free_shipping_at_threshold(self, db, checkout, make_product, shipping_details):
        product = make_product(price="250.00")
        CartService(db).add_item(USER, product.id, 2)

        order = checkout.checkout(USER_ID, shipping_details)

        assert order.shipping_cost == Decimal("0.00")
        assert order.total_amount == Decimal("500.00")

    def test_empty_cart(self, db, checkout, shipping_details):
        with pytest.raises(InvalidStateError):
            checkout.checkout(USER_ID, shipping_details)

        CartService(db).get_or_create(USER)
        with pytest.raises(InvalidStateError):
            checkout.checkout(USER_ID, shipping_details)

        assert db.query(OrderModel).count() == 0

    def test_snapshots_lines_and_clears_cart(self, db, checkout, make_product, shipping_details):
        product = make_product("Monitor", price="899.00", variants=["27 inch"])
        CartService(db).add_item(USER, product.id, 1, variant_id=product.variants[0].id)

        order = checkout.checkout(USER_ID, shipping_details)

        assert len(order.items) == 1
        item = order.items[0]
        assert item.product_name == "Monitor"
        assert item.variant_name == "27 inch"
        assert item.product_image == "/img/monitor.jpg"
        assert item.price == Decimal("899.00")
        assert item.total_price == Decimal("899.00")
        assert item.stock_decremented is True

        cart = CartRepo(db).get_by_owner(USER)
        db.refresh(cart)
        assert cart.items == []
        assert cart.total_amount == Decimal("0.00")
        assert cart.item_count == 0

    def test_decrements_stock_and_flips_in_stock(self, db, checkout, make_product, shipping_details):
        product = make_product(price="10.00", stock=2)
        CartService(db).add_item(USER, product.id, 2)

        checkout.checkout(USER_ID, shipping_details)

        product = fresh_product(db, product.id)
        assert product.stock == 0
        assert product.in_stock is False

    def test_snapshot_survives_product_deletion(self, db, checkout, make_product, shipping_details):
        product = make_product("Lamp", price="40.00")
        CartService(db).add_item(USER, product.id, 1)
        order = checkout.checkout(USER_ID, shipping_details)

        db.delete(fresh_product(db, product.id))
        db.commit()
        db.expire_all()

        item = db.query(OrderItemModel).filter_by(order_id=order.id).one()
        assert item.product_name == "Lamp"
        assert item.price == Decimal("40.00")

    def test_product_withdrawn_after_adding_to_cart(self, db, checkout, lock_service, make_product, shipping_details):
        kept = make_product("Kept", price="10.00")
        withdrawn = make_product("Withdrawn", price="20.00")
        carts = CartService(db)
        carts.add_item(USER, kept.id, 1)
        carts.add_item(USER, withdrawn.id, 1)
        withdrawn.is_active = False
        db.commit()

        with pytest.raises(NotFoundError):
            checkout.checkout(USER_ID, shipping_details)

        assert db.query(OrderModel).count() == 0
        assert fresh_product(db, kept.id).stock == 10
        assert lock_service.locks == {}
        assert CartRepo(db).get_by_owner(USER).item_count == 2

    def test_product_deleted_after_adding_to_cart(self, db, checkout, make_product, shipping_details):
        product = make_product("Gone", price="20.00")
        CartService(db).add_item(USER, product.id, 1)
        db.delete(fresh_product(db, product.id))
        db.commit()

        with pytest.raises(NotFoundError):
            checkout.checkout(USER_ID, shipping_details)
        assert db.query(OrderModel).count() == 0

    def test_busy_checkout_lock(self, db, checkout, lock_service, make_product, shipping_details):
        product = make_product()
        CartService(db).add_item(USER, product.id, 1)
        lock_service.locks[f"checkout:user:{USER_ID}"] = "someone-else"

        with pytest.raises(ConflictError):
            checkout.checkout(USER_ID, shipping_details)
        assert db.query(OrderModel).count() == 0

    def test_lock_released_after_failure(self, db, checkout, lock_service, shipping_details):
        with pytest.raises(InvalidStateError):
            checkout.checkout(USER_ID, shipping_details)
        assert lock_service.locks == {}

    def test_queues_notification(self, db, checkout, notifications, make_product, shipping_details):
        product = make_product()
        CartService(db).add_item(USER, product.id, 1)

        order = checkout.checkout(USER_ID, shipping_details)

        assert notifications.sent == [(order.id, order.order_number, USER_ID)]


class TestStockSaga:
    def test_second_checkout_of_last_unit_is_flagged(self, db, checkout, make_product, shipping_details):
        product = make_product(price="10.00", stock=1)
        carts = CartService(db)
        carts.add_item(OwnerKey.for_user(1), product.id, 1)
        carts.add_item(OwnerKey.for_user(2), product.id, 1)

        first = checkout.checkout(1, shipping_details)
        second = checkout.checkout(2, shipping_details)

        product = fresh_product(db, product.id)
        assert product.stock == 0
        assert product.in_stock is False

        assert first.needs_reconciliation is False
        assert second.needs_reconciliation is True
        assert f"product {product.id}" in second.reconciliation_note
        assert second.items[0].stock_decremented is False

    def test_retry_never_decrements_twice(self, db, checkout, make_product, shipping_details):
        plenty = make_product("Plenty", price="10.00", stock=10)
        scarce = make_product("Scarce", price="10.00", stock=0)
        carts = CartService(db)
        carts.add_item(USER, plenty.id, 2)
        carts.add_item(USER, scarce.id, 1)

        order = checkout.checkout(USER_ID, shipping_details)
        assert order.needs_reconciliation is True
        assert fresh_product(db, plenty.id).stock == 8

        orders = OrderService(db)
        orders.retry_stock_reconciliation(order.id)
        assert fresh_product(db, plenty.id).stock == 8

        scarce = fresh_product(db, scarce.id)
        scarce.stock = 5
        db.commit()

        order = orders.retry_stock_reconciliation(order.id)
        assert order.needs_reconciliation is False
        assert order.reconciliation_note is None
        assert fresh_product(db, plenty.id).stock == 8
        assert fresh_product(db, scarce.id).stock == 4

        orders.retry_stock_reconciliation(order.id)
        assert fresh_product(db, scarce.id).stock == 4


class TestOrderNumber:
    def test_collision_is_retried_with_fresh_number(self, db, checkout, make_product, shipping_details, monkeypatch):
        product = make_product(stock=10)
        carts = CartService(db)
        carts.add_item(OwnerKey.for_user(1), product.id, 1)
        carts.add_item(OwnerKey.for_user(2), product.id, 1)

        numbers = iter(["PRW-DUP-0001", "PRW-DUP-0001", "PRW-NEW-0002"])
        monkeypatch.setattr(order_module, "generate_order_number", lambda: next(numbers))

        first = checkout.checkout(1, shipping_details)
        second = checkout.checkout(2, shipping_details)

        assert first.order_number == "PRW-DUP-0001"
        assert second.order_number == "PRW-NEW-0002"

    def test_persistent_collision_surfaces_conflict(self, db, make_product, shipping_details, monkeypatch):
        monkeypatch.setattr(order_module, "generate_order_number", lambda: "PRW-SAME-0000")
        orders = OrderService(db)
        line = {
            "product_id": 1,
            "variant_id": None,
            "product_name": "X",
            "variant_name": None,
            "product_image": None,
            "price": Decimal("1.00"),
            "quantity": 1,
            "total_price": Decimal("1.00"),
        }
        orders.create_order(None, shipping_details, [line], "1.00", "29.99", "0")

        with pytest.raises(ConflictError):
            orders.create_order(None, shipping_details, [line], "1.00", "29.99", "0")
        assert db.query(OrderModel).count() == 1


class TestGuestCheckout:
    def test_guest_order_with_cod_fee(self, db, checkout, make_product, shipping_details):
        product = make_product(price="100.00")
        details = dict(shipping_details, payment_method="cash_on_delivery")

        order = checkout.checkout_guest(details, [{"product_id": product.id, "quantity": 2, "price": Decimal("100.00")}])

        assert order.user_id is None
        assert order.subtotal == Decimal("200.00")
        assert order.shipping_cost == Decimal("29.99")
        assert order.cod_fee == Decimal("9.90")
        assert order.total_amount == Decimal("239.89")
        assert fresh_product(db, product.id).stock == 8

    def test_no_cod_fee_for_card(self, db, checkout, make_product, shipping_details):
        product = make_product(price="600.00")

        order = checkout.checkout_guest(shipping_details, [{"product_id": product.id, "quantity": 1}])

        assert order.cod_fee == Decimal("0.00")
        assert order.shipping_cost == Decimal("0.00")
        assert order.total_amount == Decimal("600.00")

    def test_empty_item_list(self, checkout, shipping_details):
        with pytest.raises(InvalidStateError):
            checkout.checkout_guest(shipping_details, [])

    def test_missing_product(self, db, checkout, shipping_details):
        with pytest.raises(NotFoundError):
            checkout.checkout_guest(shipping_details, [{"product_id": 404, "quantity": 1, "price": Decimal("1.00")}])
        assert db.query(OrderModel).count() == 0

    def test_price_mismatch_is_rejected(self, db, checkout, make_product, shipping_details):
        product = make_product(price="100.00")

        with pytest.raises(InvalidStateError):
            checkout.checkout_guest(shipping_details, [{"product_id": product.id, "quantity": 1, "price": Decimal("1.00")}])
        assert db.query(OrderModel).count() == 0

    def test_client_price_used_when_trusted(self, db, checkout, make_product, shipping_details, monkeypatch):
        monkeypatch.setattr(checkout_module, "TRUST_CLIENT_PRICES", True)
        product = make_product(price="100.00")

        order = checkout.checkout_guest(shipping_details, [{"product_id": product.id, "quantity": 1, "price": Decimal("80.00")}])

        assert order.items[0].price == Decimal("80.00")
        assert order.subtotal == Decimal("80.00")

    def test_does_not_touch_any_cart(self, db, checkout, make_product, shipping_details):
        product = make_product()
        CartService(db).add_item(USER, product.id, 1)

        checkout.checkout_guest(shipping_details, [{"product_id": product.id, "quantity": 1}])

        cart = CartRepo(db).get_by_owner(USER)
        db.refresh(cart)
        assert cart.item_count == 1
