from fastapi import Cookie, Depends, Header, Request
from sqlalchemy.orm import Session

from campus_store.database import get_db
from campus_store.errors import AuthError, PermissionDenied
from campus_store.models.user import User
from campus_store.services import auth_service
from campus_store.services.events import EventPublisher
from campus_store.services.mailer import ReceiptMailer
from campus_store.services.scheduler import PeriodicTask


def get_current_user(
    authorization: str | None = Header(default=None),
    token: str | None = Cookie(default=None, alias="token"),
    db: Session = Depends(get_db),
) -> User:
    """Dependency: user from a Bearer header, falling back to the ``token`` cookie."""
    raw = token
    if authorization and authorization.lower().startswith("bearer "):
        raw = authorization[7:].strip()
    if not raw:
        raise AuthError("Not authenticated")
    payload = auth_service.decode_token(raw)
    if not payload:
        raise AuthError("Invalid or expired token")
    user_id = auth_service.user_id_from(payload)
    user = auth_service.get_user_by_id(db, user_id) if user_id else None
    if not user or not user.active:
        raise AuthError("User not found or disabled")
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise PermissionDenied("Admin access only")
    return user


def get_publisher(request: Request) -> EventPublisher:
    return request.app.state.publisher


def get_mailer(request: Request) -> ReceiptMailer:
    return request.app.state.mailer


def get_auto_confirm_task(request: Request) -> PeriodicTask:
    return request.app.state.auto_confirm_task
