from datetime import datetime

from pydantic import BaseModel, Field


class CartItemAdd(BaseModel):
    product_id: str | None = None
    variant_id: str | None = None
    quantity: int = Field(default=1, ge=1)


class CartItemUpdate(BaseModel):
    quantity: int = Field(ge=1)
    variant_id: str | None = None


class CartItemOut(BaseModel):
    id: str
    product_id: str
    variant_id: str | None = None
    product_name: str
    size: str = ""
    unit_price: float
    quantity: int
    line_total: float
    available: int
    created_at: datetime


class CartOut(BaseModel):
    items: list[CartItemOut] = []
    item_count: int = 0
    subtotal: float = 0.0
