"""Receipt email hand-off to the mail service."""
import logging
from typing import Protocol

import httpx

from campus_store.config import settings
from campus_store.models.order import Order
from campus_store.time_utils import to_utc_z

logger = logging.getLogger(__name__)


def build_receipt(order: Order) -> dict:
    return {
        "orderId": order.id,
        "orderNumber": order.order_number,
        "items": [
            {
                "product_name": item.product_name,
                "size": item.size,
                "quantity": item.quantity,
                "unit_price": item.unit_price,
                "total_price": item.line_total,
            }
            for item in order.items
        ],
        "totalAmount": order.total_amount,
        "paymentMethod": order.payment_method,
        "createdAt": to_utc_z(order.created_at),
        "status": getattr(order.status, "value", order.status),
    }


class ReceiptMailer(Protocol):
    def send_receipt(self, email: str, name: str, receipt: dict) -> bool: ...


class NullReceiptMailer:
    """Used when no mail endpoint is configured; records what would have been sent."""

    def __init__(self):
        self.sent: list[dict] = []

    def send_receipt(self, email: str, name: str, receipt: dict) -> bool:
        logger.info("Receipt for order %s not emailed (mail disabled)", receipt.get("orderNumber"))
        self.sent.append({"email": email, "name": name, "receipt": receipt})
        return False


class WebhookReceiptMailer:
    def __init__(self, url: str, timeout: float = 10.0):
        self.url = url
        self.timeout = timeout

    def send_receipt(self, email: str, name: str, receipt: dict) -> bool:
        if not email:
            logger.warning("No email address for receipt of order %s", receipt.get("orderNumber"))
            return False
        with httpx.Client(timeout=self.timeout) as client:
            resp = client.post(self.url, json={"to": email, "name": name, "template": "order_receipt", "data": receipt})
        resp.raise_for_status()
        logger.info("Receipt for order %s sent to %s", receipt.get("orderNumber"), email)
        return True


def build_mailer() -> ReceiptMailer:
    if not settings.RECEIPT_WEBHOOK_URL:
        return NullReceiptMailer()
    return WebhookReceiptMailer(settings.RECEIPT_WEBHOOK_URL, timeout=settings.WEBHOOK_TIMEOUT_SECONDS)
