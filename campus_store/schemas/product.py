from datetime import datetime

from pydantic import BaseModel, Field


# --- Variant schemas ---

class VariantCreate(BaseModel):
    size: str = Field(min_length=1)
    stock: int = Field(default=0, ge=0)
    price_override: float | None = Field(default=None, ge=0)


class VariantUpdate(BaseModel):
    size: str | None = None
    price_override: float | None = Field(default=None, ge=0)
    is_active: bool | None = None


class VariantOut(BaseModel):
    id: str
    product_id: str
    size: str
    stock: int
    price_override: float | None = None
    effective_price: float
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


# --- Product schemas ---

class ProductCreate(BaseModel):
    name: str = Field(min_length=1)
    description: str = ""
    category: str = ""
    price: float = Field(gt=0)
    cost_price: float = Field(default=0.0, ge=0)
    stock: int = Field(default=0, ge=0)  # ignored when variants are given
    variants: list[VariantCreate] = []


class ProductUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    category: str | None = None
    price: float | None = Field(default=None, gt=0)
    cost_price: float | None = Field(default=None, ge=0)
    is_active: bool | None = None


class ProductOut(BaseModel):
    id: str
    name: str
    description: str
    category: str
    price: float
    cost_price: float
    stock: int
    is_active: bool
    variants: list[VariantOut] = []
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class LowStockRow(BaseModel):
    product_id: str
    variant_id: str | None = None
    product_name: str
    size: str = ""
    stock: int
