from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from campus_store.api.deps import get_publisher, require_admin
from campus_store.database import get_db
from campus_store.models.inventory import MovementType
from campus_store.models.user import User
from campus_store.schemas.stock import StockMovementCreate, StockMovementOut, StockSummaryRow
from campus_store.services import product_service
from campus_store.services.events import EventPublisher

router = APIRouter(prefix="/stock-movements", tags=["Stock"])


@router.post("", response_model=StockMovementOut, status_code=201)
def record_movement(
    data: StockMovementCreate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    return product_service.record_stock_movement(db, data, publisher=publisher, user_id=admin.id)


@router.get("", response_model=list[StockMovementOut])
def list_movements(
    product_id: str | None = None,
    movement_type: MovementType | None = None,
    reference_id: str | None = None,
    skip: int = 0,
    limit: int = 100,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return product_service.list_stock_movements(
        db, product_id=product_id, movement_type=movement_type, reference_id=reference_id, skip=skip, limit=limit
    )


@router.get("/summary", response_model=list[StockSummaryRow])
def movement_summary(
    product_id: str | None = None,
    days: int = 30,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return product_service.stock_movement_summary(db, product_id=product_id, days=days)


@router.get("/{movement_id}", response_model=StockMovementOut)
def get_movement(movement_id: str, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    return product_service.get_stock_movement(db, movement_id)
