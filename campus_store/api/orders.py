from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from campus_store.api.deps import get_current_user, get_mailer, get_publisher, require_admin
from campus_store.database import get_db
from campus_store.models.user import User
from campus_store.schemas.order import (
    OrderCancelRequest,
    OrderDetailOut,
    OrderOut,
    OrderStatsOut,
    OrderStatusUpdate,
    StatusChangeOut,
)
from campus_store.services import order_status_service
from campus_store.services.events import EventPublisher
from campus_store.services.mailer import ReceiptMailer

router = APIRouter(prefix="/orders", tags=["Orders"])


def _change_response(outcome) -> dict:
    return {**outcome.result.to_dict(), "effects": [e.to_dict() for e in outcome.effects]}


@router.get("/mine", response_model=list[OrderOut])
def my_orders(
    skip: int = 0,
    limit: int = 50,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return order_status_service.list_user_orders(db, user.id, skip=skip, limit=limit)


@router.get("", response_model=list[OrderOut])
def list_orders(
    skip: int = 0,
    limit: int = 50,
    status: str | None = None,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return order_status_service.list_orders(db, status=status, skip=skip, limit=limit)


@router.get("/stats", response_model=OrderStatsOut)
def order_stats(days: int = 30, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    return order_status_service.order_stats(db, days=days)


@router.get("/{order_id}", response_model=OrderDetailOut)
def get_order(order_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    order = order_status_service.get_user_order(db, user, order_id)
    detail = OrderDetailOut.model_validate(order)
    detail.allowed_statuses = order_status_service.allowed_transitions(order.status)
    return detail


@router.patch("/{order_id}/status", response_model=StatusChangeOut)
def update_status(
    order_id: str,
    data: OrderStatusUpdate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
    mailer: ReceiptMailer = Depends(get_mailer),
):
    outcome = order_status_service.set_status(db, order_id, data.status, publisher, mailer, notes=data.notes)
    return _change_response(outcome)


@router.post("/{order_id}/cancel", response_model=StatusChangeOut)
def cancel_order(
    order_id: str,
    data: OrderCancelRequest | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    reason = data.reason if data else ""
    outcome = order_status_service.cancel_own_order(db, user, order_id, publisher, reason=reason)
    return _change_response(outcome)


@router.post("/{order_id}/user-confirm", response_model=StatusChangeOut)
def user_confirm(
    order_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
    mailer: ReceiptMailer = Depends(get_mailer),
):
    outcome = order_status_service.confirm_receipt(db, user, order_id, publisher, mailer)
    return _change_response(outcome)


@router.post("/{order_id}/admin-confirm", response_model=StatusChangeOut)
def admin_confirm(
    order_id: str,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
    mailer: ReceiptMailer = Depends(get_mailer),
):
    outcome = order_status_service.admin_confirm(db, order_id, publisher, mailer)
    return _change_response(outcome)
