import uuid
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from campus_store.database import Base
from campus_store.time_utils import utcnow


class MovementType(str, PyEnum):
    STOCK_IN = "stock_in"
    STOCK_OUT = "stock_out"
    STOCK_ADJUSTMENT = "stock_adjustment"


class StockMovement(Base):
    """Append-only audit trail of every stock mutation."""

    __tablename__ = "stock_movements"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    product_id: Mapped[str] = mapped_column(String, ForeignKey("products.id"), nullable=False, index=True)
    variant_id: Mapped[str | None] = mapped_column(String, ForeignKey("product_variants.id"), nullable=True)
    movement_type: Mapped[str] = mapped_column(
        Enum(MovementType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        index=True,
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)  # always positive, direction from movement_type
    previous_stock: Mapped[int] = mapped_column(Integer, nullable=False)
    new_stock: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String, nullable=False)  # order, order_cancelled, restock, audit, ...
    supplier: Mapped[str] = mapped_column(String, default="")
    notes: Mapped[str] = mapped_column(Text, default="")
    reference_id: Mapped[str] = mapped_column(String, default="")  # order id when order-driven
    user_id: Mapped[str | None] = mapped_column(String, nullable=True)  # None = system
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
