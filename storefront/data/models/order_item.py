from sqlalchemy import Column, Integer, String, Numeric, Boolean, ForeignKey
from sqlalchemy.orm import relationship

from storefront.data.database import Base


class OrderItemModel(Base):
    """
    Snapshot of a purchased line. product_id is a plain column, no FK:
    deleting or editing the product never touches order history.
    """

    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)

    product_id = Column(Integer, nullable=False)
    variant_id = Column(Integer, nullable=True)
    product_name = Column(String, nullable=False)
    variant_name = Column(String, nullable=True)
    product_image = Column(String, nullable=True)

    price = Column(Numeric(10, 2), nullable=False)
    quantity = Column(Integer, nullable=False)
    total_price = Column(Numeric(10, 2), nullable=False)

    stock_decremented = Column(Boolean, nullable=False, default=False)

    order = relationship("OrderModel", back_populates="items")
