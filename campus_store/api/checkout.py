from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from campus_store.api.deps import get_current_user, get_publisher
from campus_store.database import get_db
from campus_store.models.user import User
from campus_store.schemas.checkout import CheckoutRequest, CheckoutResponse
from campus_store.services import checkout_service
from campus_store.services.events import EventPublisher

router = APIRouter(prefix="/checkout", tags=["Checkout"])


@router.post("", response_model=CheckoutResponse, status_code=201)
def checkout(
    data: CheckoutRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    outcome = checkout_service.place_order(db, user, data, publisher)
    return {**outcome.result.to_dict(), "effects": [e.to_dict() for e in outcome.effects]}
