from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from campus_store.api.deps import get_current_user
from campus_store.database import get_db
from campus_store.errors import NotFoundError
from campus_store.models.user import User
from campus_store.schemas.notification import MarkAllReadOut, NotificationOut, UnreadCountOut
from campus_store.services import notification_service

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("", response_model=list[NotificationOut])
def list_notifications(
    unread_only: bool = False,
    limit: int = 50,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return notification_service.list_for_user(db, user.id, unread_only=unread_only, limit=limit)


@router.get("/unread-count", response_model=UnreadCountOut)
def unread_count(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"count": notification_service.unread_count(db, user.id)}


@router.post("/read-all", response_model=MarkAllReadOut)
def mark_all_read(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"updated": notification_service.mark_all_read(db, user.id)}


@router.post("/{notification_id}/read", response_model=NotificationOut)
def mark_read(notification_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    n = notification_service.mark_read(db, user.id, notification_id)
    if not n:
        raise NotFoundError(f"Notification {notification_id} not found")
    return n
