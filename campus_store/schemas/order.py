from datetime import datetime

from pydantic import BaseModel

from campus_store.models.order import OrderStatus, PaymentStatus
from campus_store.schemas.checkout import EffectOut


class OrderStatusUpdate(BaseModel):
    status: str  # validated by the order service so unknown values get the list of valid ones
    notes: str = ""


class OrderCancelRequest(BaseModel):
    reason: str = ""


class OrderItemOut(BaseModel):
    id: str
    product_id: str
    variant_id: str | None = None
    product_name: str
    size: str = ""
    quantity: int
    unit_price: float
    line_total: float

    model_config = {"from_attributes": True}


class OrderStatusLogOut(BaseModel):
    old_status: str
    new_status: str
    notes: str
    created_at: datetime

    model_config = {"from_attributes": True}


class OrderOut(BaseModel):
    id: str
    order_number: str
    user_id: str
    total_amount: float
    payment_method: str
    payment_status: PaymentStatus
    pay_at_counter: bool
    status: OrderStatus
    notes: str
    items: list[OrderItemOut] = []
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class OrderDetailOut(OrderOut):
    status_logs: list[OrderStatusLogOut] = []
    allowed_statuses: list[str] = []


class StatusChangeOut(BaseModel):
    message: str
    orderId: str
    orderNumber: str
    previousStatus: str
    newStatus: str
    paymentStatus: str
    inventoryUpdated: bool
    salesLogged: bool
    paymentStatusUpdated: bool
    restoreFailures: list[dict] = []
    effects: list[EffectOut] = []


class OrderStatsOut(BaseModel):
    days: int
    totalOrders: int
    byStatus: dict[str, int]
    grossSales: float
    reversals: float
    netRevenue: float
