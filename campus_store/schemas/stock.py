from datetime import datetime

from pydantic import BaseModel, Field

from campus_store.models.inventory import MovementType


class StockMovementCreate(BaseModel):
    product_id: str
    variant_id: str | None = None
    movement_type: MovementType
    # Units moved for stock_in/stock_out; the counted total for stock_adjustment
    quantity: int = Field(ge=0)
    reason: str = Field(min_length=1)
    supplier: str = ""
    notes: str = ""


class StockMovementOut(BaseModel):
    id: str
    product_id: str
    variant_id: str | None = None
    movement_type: MovementType
    quantity: int
    previous_stock: int
    new_stock: int
    reason: str
    supplier: str
    notes: str
    reference_id: str
    user_id: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class StockSummaryRow(BaseModel):
    movement_type: MovementType
    movements: int
    units: int
