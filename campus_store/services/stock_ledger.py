"""Atomic, non-negative stock mutation with an append-only audit trail.

Every write to ``products.stock`` or ``product_variants.stock`` goes through
:class:`StockLedger`. Decrements are a single conditional UPDATE
(``stock = stock - qty WHERE stock >= qty``), which is the only
serialization point between concurrent checkouts: of two transactions racing
for the last unit, exactly one UPDATE matches a row.

The ledger never commits. Callers own the transaction, so a checkout that
fails on its third line rolls back the first two decrements together with
their movement rows.
"""
import logging

from sqlalchemy import update
from sqlalchemy.orm import Session

from campus_store.errors import ConflictError, InsufficientStock, NotFoundError, ValidationError
from campus_store.models.inventory import MovementType, StockMovement
from campus_store.models.product import Product, ProductVariant

logger = logging.getLogger(__name__)

ADJUST_ATTEMPTS = 3


def _check_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError(f"Quantity must be a positive integer, got {quantity!r}")
    return quantity


class StockLedger:
    def __init__(self, db: Session, user_id: str | None = None):
        self.db = db
        self.user_id = user_id
        self.movements: list[StockMovement] = []

    # --- public operations ---

    def decrement(
        self,
        product_id: str,
        variant_id: str | None,
        quantity: int,
        reason: str = "order",
        reference_id: str = "",
        notes: str = "",
    ) -> int:
        """Remove stock; raises InsufficientStock when fewer than ``quantity`` units are on hand."""
        quantity = _check_quantity(quantity)
        model, row_id = self._target(product_id, variant_id)
        stmt = (
            update(model)
            .where(model.id == row_id, model.stock >= quantity)
            .values(stock=model.stock - quantity)
            .execution_options(synchronize_session=False)
        )
        if self.db.execute(stmt).rowcount == 0:
            raise self._shortfall(model, row_id, quantity)

        row = self._reload(model, row_id)
        self._record(row, MovementType.STOCK_OUT, quantity, row.stock + quantity, row.stock,
                     reason=reason, reference_id=reference_id, notes=notes)
        return row.stock

    def increment(
        self,
        product_id: str,
        variant_id: str | None,
        quantity: int,
        reason: str,
        reference_id: str = "",
        supplier: str = "",
        notes: str = "",
    ) -> int:
        quantity = _check_quantity(quantity)
        model, row_id = self._target(product_id, variant_id)
        stmt = (
            update(model)
            .where(model.id == row_id)
            .values(stock=model.stock + quantity)
            .execution_options(synchronize_session=False)
        )
        if self.db.execute(stmt).rowcount == 0:
            raise NotFoundError(f"{model.__name__} {row_id} not found")

        row = self._reload(model, row_id)
        self._record(row, MovementType.STOCK_IN, quantity, row.stock - quantity, row.stock,
                     reason=reason, reference_id=reference_id, supplier=supplier, notes=notes)
        return row.stock

    def adjust(
        self,
        product_id: str,
        variant_id: str | None,
        target: int,
        reason: str,
        notes: str = "",
    ) -> int:
        """Set stock to an absolute counted value (stock audits).

        The write is guarded on the value read just before it, so a checkout
        committing in between makes the guard miss and the adjustment retries
        against the new value instead of overwriting it.
        """
        if isinstance(target, bool) or not isinstance(target, int):
            raise ValidationError(f"Target stock must be an integer, got {target!r}")
        if target < 0:
            raise ValidationError("Stock cannot be adjusted below zero")

        model, row_id = self._target(product_id, variant_id)
        for _ in range(ADJUST_ATTEMPTS):
            current = self.db.query(model.stock).filter(model.id == row_id).scalar()
            if current is None:
                raise NotFoundError(f"{model.__name__} {row_id} not found")
            stmt = (
                update(model)
                .where(model.id == row_id, model.stock == current)
                .values(stock=target)
                .execution_options(synchronize_session=False)
            )
            if self.db.execute(stmt).rowcount == 1:
                row = self._reload(model, row_id)
                self._record(row, MovementType.STOCK_ADJUSTMENT, abs(target - current), current, target,
                             reason=reason, notes=notes)
                return target
            logger.warning("Stock of %s %s changed during adjustment, retrying", model.__name__, row_id)
        raise ConflictError(f"Stock of {model.__name__} {row_id} kept changing; adjustment not applied")

    def current_stock(self, product_id: str, variant_id: str | None = None) -> int:
        model, row_id = self._target(product_id, variant_id)
        stock = self.db.query(model.stock).filter(model.id == row_id).scalar()
        if stock is None:
            raise NotFoundError(f"{model.__name__} {row_id} not found")
        return stock

    # --- helpers ---

    @staticmethod
    def _target(product_id: str, variant_id: str | None):
        if variant_id:
            return ProductVariant, variant_id
        return Product, product_id

    def _reload(self, model, row_id):
        # Sync any instance already in the session with the row we just wrote
        row = self.db.get(model, row_id)
        self.db.refresh(row, ["stock"])
        return row

    def _shortfall(self, model, row_id: str, requested: int) -> Exception:
        row = self.db.get(model, row_id)
        if row is None:
            return NotFoundError(f"{model.__name__} {row_id} not found")
        self.db.refresh(row, ["stock"])
        return InsufficientStock(self._label(row), available=row.stock, requested=requested)

    @staticmethod
    def _label(row) -> str:
        if isinstance(row, ProductVariant):
            return f"{row.product.name} ({row.size})"
        return row.name

    def _record(
        self,
        row,
        movement_type: MovementType,
        quantity: int,
        previous_stock: int,
        new_stock: int,
        reason: str,
        reference_id: str = "",
        supplier: str = "",
        notes: str = "",
    ) -> StockMovement:
        is_variant = isinstance(row, ProductVariant)
        movement = StockMovement(
            product_id=row.product_id if is_variant else row.id,
            variant_id=row.id if is_variant else None,
            movement_type=movement_type,
            quantity=quantity,
            previous_stock=previous_stock,
            new_stock=new_stock,
            reason=reason,
            supplier=supplier or "",
            notes=notes or "",
            reference_id=reference_id or "",
            user_id=self.user_id,
        )
        self.db.add(movement)
        self.movements.append(movement)
        logger.info(
            "%s %s x%d on %s: %d -> %d (%s)",
            movement_type.value, "variant" if is_variant else "product", quantity, row.id,
            previous_stock, new_stock, reason,
        )
        return movement
