"""Turn a checkout selection into priced, stock-checked order lines.

Three selection modes are accepted, in order of precedence:

1. ``cart_item_ids`` - a subset of the buyer's cart;
2. ``products`` - an explicit "buy now" list that bypasses the cart;
3. neither - the buyer's whole cart (legacy clients).

The availability check here is advisory: it produces a friendly error before
any write happens. The authoritative guard is the ledger's conditional
decrement inside the checkout transaction.
"""
import logging
import math
from dataclasses import dataclass, field
from enum import Enum

from sqlalchemy.orm import Session

from campus_store.errors import InsufficientStock, InvalidPrice, NotFoundError, ValidationError
from campus_store.models.cart import CartItem
from campus_store.models.product import Product, ProductVariant

logger = logging.getLogger(__name__)


class SelectionMode(str, Enum):
    CART_ITEMS = "cart_items"
    BUY_NOW = "buy_now"
    WHOLE_CART = "whole_cart"


@dataclass
class ResolvedLine:
    product_id: str
    variant_id: str | None
    product_name: str
    size: str
    unit_price: float
    unit_cost: float
    available: int
    quantity: int
    cart_item_ids: list[str] = field(default_factory=list)

    @property
    def label(self) -> str:
        return f"{self.product_name} ({self.size})" if self.size else self.product_name

    @property
    def line_total(self) -> float:
        return round(self.unit_price * self.quantity, 2)


@dataclass
class Resolution:
    mode: SelectionMode
    lines: list[ResolvedLine]

    @property
    def consumed_cart_item_ids(self) -> list[str]:
        return [cid for line in self.lines for cid in line.cart_item_ids]


def resolve_selection(
    db: Session,
    user_id: str,
    cart_item_ids: list[str] | None = None,
    products: list | None = None,
) -> Resolution:
    if cart_item_ids:
        return Resolution(SelectionMode.CART_ITEMS, resolve_cart_items(db, user_id, cart_item_ids))
    if products:
        return Resolution(SelectionMode.BUY_NOW, resolve_buy_now(db, products))
    return Resolution(SelectionMode.WHOLE_CART, resolve_whole_cart(db, user_id))


def resolve_cart_items(db: Session, user_id: str, cart_item_ids: list[str]) -> list[ResolvedLine]:
    wanted = list(dict.fromkeys(cart_item_ids))
    rows = db.query(CartItem).filter(CartItem.id.in_(wanted), CartItem.user_id == user_id).all()
    found = {row.id for row in rows}
    missing = [cid for cid in wanted if cid not in found]
    if missing:
        raise NotFoundError(f"Cart items not found: {', '.join(missing)}", cart_item_ids=missing)
    by_id = {row.id: row for row in rows}
    return _resolve_cart_rows(db, [by_id[cid] for cid in wanted])


def resolve_whole_cart(db: Session, user_id: str) -> list[ResolvedLine]:
    rows = db.query(CartItem).filter(CartItem.user_id == user_id).order_by(CartItem.created_at).all()
    return _resolve_cart_rows(db, rows)


def resolve_buy_now(db: Session, products: list) -> list[ResolvedLine]:
    """Resolve ``[{product_id?, size_id?, quantity}]`` entries (dicts or schema objects)."""
    lines: list[ResolvedLine] = []
    for entry in products:
        product_id = _field(entry, "product_id")
        variant_id = _field(entry, "size_id") or _field(entry, "variant_id")
        if not product_id and not variant_id:
            raise ValidationError("Each item needs a product_id or size_id")
        quantity = _field(entry, "quantity")
        lines.append(_resolve_line(db, product_id, variant_id, quantity))
    return _merge(lines)


def _resolve_cart_rows(db: Session, rows: list[CartItem]) -> list[ResolvedLine]:
    lines = []
    for row in rows:
        line = _resolve_line(db, row.product_id, row.variant_id, row.quantity)
        line.cart_item_ids.append(row.id)
        lines.append(line)
    return _merge(lines)


def _resolve_line(db: Session, product_id: str | None, variant_id: str | None, quantity) -> ResolvedLine:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError(f"Quantity must be a positive integer, got {quantity!r}")

    product = db.get(Product, product_id) if product_id else None
    variant = None
    if variant_id:
        variant = db.get(ProductVariant, variant_id)
        if variant is not None and (product is None or variant.product_id != product.id):
            # Buy-now payloads may carry only the size id, or a stale product id
            logger.info("Re-deriving product for variant %s (given product %s)", variant_id, product_id)
            product = variant.product
        if variant is None:
            raise NotFoundError(f"Size {variant_id} not found")

    if product is None or not product.is_available:
        raise NotFoundError(f"Product {product_id or variant_id} not found")

    if variant is None and product.has_variants:
        raise ValidationError(f"Please choose a size for {product.name}")
    if variant is not None and not variant.is_active:
        raise NotFoundError(f"Size {variant.size} of {product.name} is no longer available")

    unit_price = variant.effective_price if variant else product.price
    if not _is_positive_number(unit_price):
        raise InvalidPrice(f"Invalid price for {product.name}: {unit_price!r}", product=product.name)

    available = variant.stock if variant else product.stock
    line = ResolvedLine(
        product_id=product.id,
        variant_id=variant.id if variant else None,
        product_name=product.name,
        size=variant.size if variant else "",
        unit_price=float(unit_price),
        unit_cost=float(product.cost_price or 0.0),
        available=available,
        quantity=quantity,
    )
    _check_available(line)
    return line


def _merge(lines: list[ResolvedLine]) -> list[ResolvedLine]:
    merged: dict[tuple[str, str | None], ResolvedLine] = {}
    for line in lines:
        key = (line.product_id, line.variant_id)
        if key in merged:
            merged[key].quantity += line.quantity
            merged[key].cart_item_ids.extend(line.cart_item_ids)
            _check_available(merged[key])
        else:
            merged[key] = line
    return list(merged.values())


def _check_available(line: ResolvedLine) -> None:
    if line.quantity > line.available:
        raise InsufficientStock(line.label, available=line.available, requested=line.quantity)


def _is_positive_number(value) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and value > 0


def _field(entry, name: str):
    if isinstance(entry, dict):
        return entry.get(name)
    return getattr(entry, name, None)
