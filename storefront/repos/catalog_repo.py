# storefront/repos/catalog_repo.py
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from storefront.data.models.product import ProductModel, ProductVariantModel


class CatalogRepo:
    """Product lookup and stock counter, the only catalog surface checkout needs."""

    def __init__(self, db: Session):
        self.db = db

    def find_by_id(self, product_id: int) -> ProductModel | None:
        product = self.db.get(ProductModel, product_id)
        if product is None or not product.is_active:
            return None
        return product

    def find_variant(self, product_id: int, variant_id: int) -> ProductVariantModel | None:
        return self.db.execute(
            select(ProductVariantModel).where(
                ProductVariantModel.id == variant_id,
                ProductVariantModel.product_id == product_id,
            )
        ).scalar_one_or_none()

    def decrement_stock(self, product_id: int, quantity: int) -> bool:
        """
        Single conditional UPDATE, no read-then-write. Returns False when the
        product is gone or has less than `quantity` left. Does not commit.
        """
        result = self.db.execute(
            update(ProductModel)
            .where(ProductModel.id == product_id, ProductModel.stock >= quantity)
            .values(stock=ProductModel.stock - quantity)
        )
        if result.rowcount == 0:
            return False

        # one-way flip, restocking is handled outside checkout
        self.db.execute(
            update(ProductModel)
            .where(ProductModel.id == product_id, ProductModel.stock <= 0)
            .values(in_stock=False)
        )
        return True
