import logging

from sqlalchemy.orm import Session

from campus_store.errors import InsufficientStock, NotFoundError, ValidationError
from campus_store.models.cart import CartItem
from campus_store.models.product import Product, ProductVariant
from campus_store.schemas.cart import CartItemAdd, CartItemUpdate

logger = logging.getLogger(__name__)


def _resolve_target(db: Session, product_id: str | None, variant_id: str | None) -> tuple[Product, ProductVariant | None]:
    variant = None
    if variant_id:
        variant = db.get(ProductVariant, variant_id)
        if not variant or not variant.is_active:
            raise NotFoundError(f"Size {variant_id} not found")
        product = variant.product
        if product_id and product_id != product.id:
            logger.info("Cart add for variant %s named product %s; using %s", variant_id, product_id, product.id)
    else:
        product = db.get(Product, product_id) if product_id else None
    if not product or not product.is_available:
        raise NotFoundError(f"Product {product_id or variant_id} not found")
    if variant is None and product.has_variants:
        raise ValidationError(f"Please choose a size for {product.name}")
    return product, variant


def _label(product: Product, variant: ProductVariant | None) -> str:
    return f"{product.name} ({variant.size})" if variant else product.name


def list_cart(db: Session, user_id: str) -> list[CartItem]:
    return (
        db.query(CartItem)
        .filter(CartItem.user_id == user_id)
        .order_by(CartItem.created_at)
        .all()
    )


def cart_summary(items: list[CartItem]) -> dict:
    rows = []
    for item in items:
        variant = item.variant
        price = variant.effective_price if variant else item.product.price
        rows.append({
            "id": item.id,
            "product_id": item.product_id,
            "variant_id": item.variant_id,
            "product_name": item.product.name,
            "size": variant.size if variant else "",
            "unit_price": price,
            "quantity": item.quantity,
            "line_total": round(price * item.quantity, 2),
            "available": variant.stock if variant else item.product.stock,
            "created_at": item.created_at,
        })
    return {
        "items": rows,
        "item_count": sum(r["quantity"] for r in rows),
        "subtotal": round(sum(r["line_total"] for r in rows), 2),
    }


def add_item(db: Session, user_id: str, data: CartItemAdd) -> CartItem:
    """Add to the cart, topping up an existing line for the same product and size."""
    product, variant = _resolve_target(db, data.product_id, data.variant_id)
    available = variant.stock if variant else product.stock
    variant_id = variant.id if variant else None

    item = (
        db.query(CartItem)
        .filter(CartItem.user_id == user_id, CartItem.product_id == product.id, CartItem.variant_id == variant_id)
        .first()
    )
    current = item.quantity if item else 0
    if current + data.quantity > available:
        raise InsufficientStock(_label(product, variant), available=max(available - current, 0),
                                requested=data.quantity)

    if item:
        item.quantity = current + data.quantity
    else:
        item = CartItem(user_id=user_id, product_id=product.id, variant_id=variant_id, quantity=data.quantity)
        db.add(item)
    db.commit()
    db.refresh(item)
    return item


def update_item(db: Session, user_id: str, item_id: str, data: CartItemUpdate) -> CartItem:
    item = get_item(db, user_id, item_id)
    product, variant = _resolve_target(db, item.product_id, data.variant_id or item.variant_id)
    available = variant.stock if variant else product.stock
    if data.quantity > available:
        raise InsufficientStock(_label(product, variant), available=available, requested=data.quantity)
    item.quantity = data.quantity
    item.product_id = product.id
    item.variant_id = variant.id if variant else None
    db.commit()
    db.refresh(item)
    return item


def remove_item(db: Session, user_id: str, item_id: str) -> None:
    item = get_item(db, user_id, item_id)
    db.delete(item)
    db.commit()


def get_item(db: Session, user_id: str, item_id: str) -> CartItem:
    item = db.query(CartItem).filter(CartItem.id == item_id, CartItem.user_id == user_id).first()
    if not item:
        raise NotFoundError(f"Cart item {item_id} not found")
    return item
