# storefront/services/cart_service.py
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.data.models.cart import CartModel
from storefront.data.models.cart_item import CartItemModel
from storefront.domain.errors import ConflictError, InvalidStateError, NotFoundError
from storefront.domain.money import ZERO, effective_price, line_total, sum_money
from storefront.domain.owner import OwnerKey
from storefront.repos.cart_repo import CartRepo
from storefront.repos.catalog_repo import CatalogRepo
from storefront.utils.retry import conflict_retry
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class CartService:
    """
    Cart use cases for a user or a guest session.

    Every command ends with a full re-sum of the persisted lines and a
    version-guarded UPDATE of the cart row, so two writers on the same cart
    cannot both commit totals computed from a stale read. The loser rolls
    back and the command is retried from scratch.
    """

    def __init__(self, db: Session):
        self.repo = CartRepo(db)
        self.catalog = CatalogRepo(db)

    # query
    def get_or_create(self, owner: OwnerKey) -> CartModel:
        existing = self.repo.get_by_owner(owner)
        if existing:
            return existing

        try:
            created = self.repo.create_cart(
                CartModel(
                    user_id=owner.user_id,
                    session_id=owner.session_id,
                    total_amount=ZERO,
                    item_count=0,
                    version=1,
                )
            )
        except IntegrityError:
            # someone else created it first, unique key on the owner column
            self.repo.rollback()
            existing = self.repo.get_by_owner(owner)
            if existing is None:
                raise
            return existing

        logger.info(f"Created cart {created.id} for {owner}")
        return created

    get_cart = get_or_create

    # commands
    @conflict_retry()
    def add_item(
        self,
        owner: OwnerKey,
        product_id: int,
        quantity: int,
        variant_id: int | None = None,
    ) -> CartModel:
        if quantity <= 0:
            raise InvalidStateError("Quantity must be greater than 0")

        product = self.catalog.find_by_id(product_id)
        if product is None:
            raise NotFoundError(f"Product not found: {product_id}")
        if variant_id is not None and self.catalog.find_variant(product_id, variant_id) is None:
            raise NotFoundError(f"Variant {variant_id} not found for product {product_id}")

        cart = self.get_or_create(owner)

        try:
            self._upsert_line(cart, product, variant_id, quantity)
        except IntegrityError as e:
            # concurrent insert of the same (product, variant) line
            self.repo.rollback()
            raise ConflictError("Cart was modified concurrently") from e

        return self._recalculate(cart)

    @conflict_retry()
    def update_item_quantity(self, owner: OwnerKey, item_id: int, quantity: int) -> CartModel:
        cart = self.get_or_create(owner)
        item = self.repo.get_cart_item(cart.id, item_id)

        if not item:
            raise NotFoundError("Cart item not found")

        if quantity <= 0:
            logger.info(f"Quantity {quantity} for item {item_id}, removing it from cart {cart.id}")
            self.repo.delete_cart_item(item)
        else:
            item.quantity = quantity
            item.total_price = line_total(item.price, quantity)
            self.repo.add_cart_item(item)

        return self._recalculate(cart)

    @conflict_retry()
    def remove_item(self, owner: OwnerKey, item_id: int) -> CartModel:
        cart = self.get_or_create(owner)
        item = self.repo.get_cart_item(cart.id, item_id)

        # missing item is fine, clients retry deletes
        if item:
            self.repo.delete_cart_item(item)

        return self._recalculate(cart)

    @conflict_retry()
    def clear(self, owner: OwnerKey) -> CartModel:
        cart = self.get_or_create(owner)
        removed = self.repo.delete_cart_items(cart.id)
        if removed:
            logger.info(f"Cleared {removed} line(s) from cart {cart.id}")
        return self._recalculate(cart)

    @conflict_retry()
    def merge_guest(self, session_id: str, user_id: int) -> CartModel:
        """
        Folds the guest cart into the user's cart. Line upserts, the guest cart
        delete and the user cart version bump share one commit, so a failed
        merge leaves both carts as they were and can simply be retried.
        """
        user_owner = OwnerKey.for_user(user_id)
        guest_cart = self.repo.get_by_owner(OwnerKey.for_session(session_id))
        user_cart = self.get_or_create(user_owner)

        if guest_cart is None:
            return user_cart

        guest_lines = [
            (i.product_id, i.variant_id, i.quantity)
            for i in self.repo.get_cart_items(guest_cart.id)
        ]

        try:
            for product_id, variant_id, quantity in guest_lines:
                product = self.catalog.find_by_id(product_id)
                if product is None or (
                    variant_id is not None and self.catalog.find_variant(product_id, variant_id) is None
                ):
                    logger.warning(f"Skipping product {product_id} while merging cart {guest_cart.id}, not in catalog anymore")
                    continue
                self._upsert_line(user_cart, product, variant_id, quantity)

            self.repo.delete_cart(guest_cart)
            self.repo.flush()
        except IntegrityError as e:
            self.repo.rollback()
            raise ConflictError("Cart was modified concurrently") from e

        if guest_lines:
            logger.info(f"Merging guest cart {guest_cart.id} ({len(guest_lines)} lines) into user {user_id}")

        return self._recalculate(user_cart)

    def _upsert_line(self, cart: CartModel, product, variant_id: int | None, quantity: int) -> CartItemModel:
        """Merge into the existing (product, variant) line or add a new one. Flushes, does not commit."""
        existing_item = self.repo.find_line(cart.id, product.id, variant_id)

        if existing_item:
            logger.info(
                f"Product {product.id} already in cart {cart.id}, quantity "
                f"{existing_item.quantity} -> {existing_item.quantity + quantity}"
            )
            existing_item.quantity += quantity
            existing_item.total_price = line_total(existing_item.price, existing_item.quantity)
            return self.repo.add_cart_item(existing_item)

        price = effective_price(product.price, product.sale_price)
        return self.repo.add_cart_item(
            CartItemModel(
                cart_id=cart.id,
                product_id=product.id,
                variant_id=variant_id,
                quantity=quantity,
                price=price,
                total_price=line_total(price, quantity),
            )
        )

    def _recalculate(self, cart: CartModel) -> CartModel:
        """Re-sum from the persisted lines, never patch totals incrementally."""
        self.repo.flush()
        items = self.repo.get_cart_items(cart.id)

        rowcount = self.repo.update_cart_version(
            cart_id=cart.id,
            old_version=cart.version,
            new_data={
                "total_amount": sum_money(i.total_price for i in items),
                "item_count": sum(i.quantity for i in items),
                "version": cart.version + 1,
                "updated_at": datetime.now(timezone.utc),
            },
        )

        #0 rows -> someone bumped the version in the meantime
        if rowcount == 0:
            self.repo.rollback()
            raise ConflictError("Cart was modified concurrently")

        self.repo.commit()
        return self.repo.refresh(cart)
