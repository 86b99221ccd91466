from pydantic import BaseModel


class BuyNowItem(BaseModel):
    product_id: str | None = None
    size_id: str | None = None
    quantity: int = 1


class CheckoutRequest(BaseModel):
    payment_method: str = ""
    pay_at_counter: bool = False
    cart_item_ids: list[str] | None = None
    products: list[BuyNowItem] | None = None
    notes: str = ""


class EffectOut(BaseModel):
    name: str
    ok: bool
    error: str | None = None


class CheckoutResponse(BaseModel):
    success: bool = True
    orderId: str
    orderNumber: str
    total_amount: float
    payment_method: str
    payment_status: str
    effects: list[EffectOut] = []
