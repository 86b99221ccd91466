import logging
from datetime import timedelta

from sqlalchemy import func
from sqlalchemy.orm import Session

from campus_store.config import settings
from campus_store.errors import NotFoundError, ValidationError
from campus_store.models.inventory import MovementType, StockMovement
from campus_store.models.product import Product, ProductVariant
from campus_store.schemas.product import ProductCreate, ProductUpdate, VariantCreate, VariantUpdate
from campus_store.schemas.stock import StockMovementCreate
from campus_store.services.events import INVENTORY_UPDATED, EventPublisher
from campus_store.services.stock_ledger import StockLedger
from campus_store.time_utils import utcnow

logger = logging.getLogger(__name__)


def create_product(db: Session, data: ProductCreate, user_id: str | None = None) -> Product:
    product = Product(
        name=data.name,
        description=data.description,
        category=data.category,
        price=data.price,
        cost_price=data.cost_price,
        stock=0,
    )
    try:
        db.add(product)
        db.flush()

        ledger = StockLedger(db, user_id=user_id)
        if data.variants:
            for v_data in data.variants:
                _add_variant(db, ledger, product, v_data)
        elif data.stock > 0:
            ledger.increment(product.id, None, data.stock, reason="initial_stock",
                             notes="Initial stock on product creation")
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(product)
    logger.info("Product %s created with %d variant(s)", product.name, len(data.variants))
    return product


def _add_variant(db: Session, ledger: StockLedger, product: Product, data: VariantCreate) -> ProductVariant:
    size = data.size.strip()
    if any(v.size.lower() == size.lower() for v in product.variants):
        raise ValidationError(f"{product.name} already has a size '{size}'")
    variant = ProductVariant(product_id=product.id, size=size, stock=0, price_override=data.price_override)
    db.add(variant)
    db.flush()
    product.variants.append(variant)
    if data.stock > 0:
        ledger.increment(product.id, variant.id, data.stock, reason="initial_stock",
                         notes=f"Initial stock for size {size}")
    return variant


def get_product(db: Session, product_id: str, include_deleted: bool = False) -> Product:
    q = db.query(Product).filter(Product.id == product_id)
    if not include_deleted:
        q = q.filter(Product.deleted_at.is_(None))
    product = q.first()
    if not product:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def list_products(
    db: Session,
    skip: int = 0,
    limit: int = 100,
    category: str | None = None,
    active_only: bool = True,
) -> list[Product]:
    q = db.query(Product).filter(Product.deleted_at.is_(None))
    if active_only:
        q = q.filter(Product.is_active == True)  # noqa: E712
    if category:
        q = q.filter(Product.category == category)
    return q.order_by(Product.name).offset(skip).limit(limit).all()


def update_product(db: Session, product_id: str, data: ProductUpdate) -> Product:
    """Edit catalogue fields. Stock is only changed through stock movements."""
    product = get_product(db, product_id)
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(product, field, value)
    db.commit()
    db.refresh(product)
    return product


def delete_product(db: Session, product_id: str) -> Product:
    """Soft delete: the row stays so existing order lines keep their product reference."""
    product = get_product(db, product_id)
    product.is_active = False
    product.deleted_at = utcnow()
    db.commit()
    db.refresh(product)
    logger.info("Product %s soft-deleted", product.name)
    return product


def low_stock(db: Session, threshold: int | None = None) -> list[dict]:
    """Active products and sizes whose stock is at or below ``threshold``."""
    threshold = settings.LOW_STOCK_THRESHOLD if threshold is None else threshold
    rows = []
    for product in list_products(db, limit=None):
        if product.has_variants:
            rows.extend(
                {"product_id": product.id, "variant_id": v.id, "product_name": product.name,
                 "size": v.size, "stock": v.stock}
                for v in product.variants
                if v.is_active and v.stock <= threshold
            )
        elif product.stock <= threshold:
            rows.append({"product_id": product.id, "variant_id": None, "product_name": product.name,
                         "size": "", "stock": product.stock})
    return sorted(rows, key=lambda r: (r["stock"], r["product_name"], r["size"]))


def create_variant(db: Session, product_id: str, data: VariantCreate, user_id: str | None = None) -> ProductVariant:
    product = get_product(db, product_id)
    try:
        variant = _add_variant(db, StockLedger(db, user_id=user_id), product, data)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(variant)
    return variant


def update_variant(db: Session, variant_id: str, data: VariantUpdate) -> ProductVariant:
    variant = db.query(ProductVariant).filter(ProductVariant.id == variant_id).first()
    if not variant:
        raise NotFoundError(f"Variant {variant_id} not found")
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(variant, field, value)
    db.commit()
    db.refresh(variant)
    return variant


# --- Stock movements ---

def record_stock_movement(
    db: Session,
    data: StockMovementCreate,
    publisher: EventPublisher | None = None,
    user_id: str | None = None,
) -> StockMovement:
    """Manual stock in / out / audit adjustment through the ledger."""
    product = get_product(db, data.product_id)
    if data.variant_id:
        variant = db.get(ProductVariant, data.variant_id)
        if not variant or variant.product_id != product.id:
            raise NotFoundError(f"Variant {data.variant_id} not found for {product.name}")
    elif product.has_variants:
        raise ValidationError(f"{product.name} is stocked per size; choose a size")

    ledger = StockLedger(db, user_id=user_id)
    try:
        if data.movement_type == MovementType.STOCK_ADJUSTMENT:
            new_stock = ledger.adjust(product.id, data.variant_id, data.quantity, reason=data.reason,
                                      notes=data.notes)
        elif data.movement_type == MovementType.STOCK_IN:
            new_stock = ledger.increment(product.id, data.variant_id, data.quantity, reason=data.reason,
                                         supplier=data.supplier, notes=data.notes)
        else:
            new_stock = ledger.decrement(product.id, data.variant_id, data.quantity, reason=data.reason,
                                         notes=data.notes)
        movement = ledger.movements[-1]
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(movement)
    if publisher is not None:
        try:
            publisher.publish(INVENTORY_UPDATED, {
                "reason": data.reason,
                "items": [{"productId": product.id, "variantId": data.variant_id, "newStock": new_stock}],
            })
        except Exception as e:
            logger.error("Could not announce stock change for %s: %s", product.name, e)
    return movement


def list_stock_movements(
    db: Session,
    product_id: str | None = None,
    movement_type: MovementType | None = None,
    reference_id: str | None = None,
    skip: int = 0,
    limit: int = 100,
) -> list[StockMovement]:
    q = db.query(StockMovement)
    if product_id:
        q = q.filter(StockMovement.product_id == product_id)
    if movement_type:
        q = q.filter(StockMovement.movement_type == movement_type)
    if reference_id:
        q = q.filter(StockMovement.reference_id == reference_id)
    return q.order_by(StockMovement.created_at.desc()).offset(skip).limit(limit).all()


def get_stock_movement(db: Session, movement_id: str) -> StockMovement:
    movement = db.query(StockMovement).filter(StockMovement.id == movement_id).first()
    if not movement:
        raise NotFoundError(f"Stock movement {movement_id} not found")
    return movement


def stock_movement_summary(db: Session, product_id: str | None = None, days: int = 30) -> list[dict]:
    """Movement counts and units per type over the last ``days`` days."""
    q = db.query(
        StockMovement.movement_type,
        func.count(StockMovement.id),
        func.coalesce(func.sum(StockMovement.quantity), 0),
    ).filter(StockMovement.created_at >= utcnow() - timedelta(days=days))
    if product_id:
        q = q.filter(StockMovement.product_id == product_id)
    rows = q.group_by(StockMovement.movement_type).all()
    return [{"movement_type": t, "movements": n, "units": units} for t, n, units in rows]
