from datetime import date, datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from campus_store.config import settings
from campus_store.models.order import OrderSequence


def format_order_number(day: date, sequence: int, prefix: str | None = None) -> str:
    return f"{prefix or settings.ORDER_NUMBER_PREFIX}{day.strftime('%Y%m%d')}{sequence:04d}"


def next_order_number(db: Session, today: date | None = None) -> str:
    """Reserve the next ``ORD<YYYYMMDD><seq>`` number inside the caller's transaction.

    The per-day counter row is bumped with a single UPDATE, so two checkouts on
    the same day never read the same value. The first checkout of the day
    inserts the row; losing that insert race falls back to the UPDATE.
    """
    today = today or datetime.now().date()
    day_key = today.strftime("%Y%m%d")

    if not _bump(db, day_key):
        try:
            with db.begin_nested():
                db.add(OrderSequence(day=day_key, last_value=1))
        except IntegrityError:
            if not _bump(db, day_key):
                raise
    value = db.query(OrderSequence.last_value).filter(OrderSequence.day == day_key).scalar()
    return format_order_number(today, value)


def _bump(db: Session, day_key: str) -> bool:
    stmt = (
        update(OrderSequence)
        .where(OrderSequence.day == day_key)
        .values(last_value=OrderSequence.last_value + 1)
        .execution_options(synchronize_session=False)
    )
    return db.execute(stmt).rowcount == 1
