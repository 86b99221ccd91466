"""Bearer-token verification.

Tokens are issued by the external auth service with the shared
``SECRET_KEY``. Both its ``id`` claim and the standard ``sub`` claim are
accepted as the user id.
"""
from datetime import datetime, timedelta, timezone

import jwt
from sqlalchemy.orm import Session

from campus_store.config import settings
from campus_store.models.user import User


def create_access_token(user: User, hours: int = 24) -> str:
    payload = {
        "sub": user.id,
        "id": user.id,
        "role": user.role,
        "student_id": user.student_id,
        "email": user.email,
        "exp": datetime.now(timezone.utc) + timedelta(hours=hours),
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm="HS256")


def decode_token(token: str) -> dict | None:
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=["HS256"])
    except (jwt.ExpiredSignatureError, jwt.InvalidTokenError):
        return None


def user_id_from(payload: dict) -> str | None:
    uid = payload.get("sub") or payload.get("id")
    return str(uid) if uid is not None else None


def get_user_by_id(db: Session, user_id: str) -> User | None:
    return db.query(User).filter(User.id == user_id).first()
