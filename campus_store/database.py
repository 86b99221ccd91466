from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from campus_store.config import settings

connect_args = {}
if settings.DATABASE_URL.startswith("sqlite"):
    connect_args["check_same_thread"] = False

engine = create_engine(settings.DATABASE_URL, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    pass


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def import_models() -> None:
    """Import all models so Base.metadata knows about them."""
    import campus_store.models.cart  # noqa: F401
    import campus_store.models.inventory  # noqa: F401
    import campus_store.models.notification  # noqa: F401
    import campus_store.models.order  # noqa: F401
    import campus_store.models.product  # noqa: F401
    import campus_store.models.sales  # noqa: F401
    import campus_store.models.user  # noqa: F401


def init_db(bind=None):
    import_models()
    Base.metadata.create_all(bind=bind or engine)
