"""
Pytest fixtures for the campus store engine.

Unit tests run against in-memory SQLite. Tests that need several independent
sessions (auto-confirm, HTTP, concurrency) override ``engine`` with the
file-backed ``file_engine``.
"""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from campus_store.database import init_db
from campus_store.models.cart import CartItem
from campus_store.models.product import Product, ProductVariant
from campus_store.models.user import User
from campus_store.schemas.checkout import CheckoutRequest
from campus_store.services import checkout_service
from campus_store.services.events import InMemoryEventPublisher
from campus_store.services.mailer import NullReceiptMailer


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def file_engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'store.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def publisher():
    return InMemoryEventPublisher()


@pytest.fixture
def mailer():
    return NullReceiptMailer()


# --- people ---

@pytest.fixture
def student(db):
    user = User(name="Ana Santos", email="ana@campus.edu", student_id="2023-0001", role="student")
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def other_student(db):
    user = User(name="Ben Cruz", email="ben@campus.edu", student_id="2023-0002", role="student")
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def admin(db):
    user = User(name="Accounting Office", email="accounting@campus.edu", role="admin")
    db.add(user)
    db.commit()
    return user


# --- catalogue ---

@pytest.fixture
def shirt(db):
    """Sized product: stock lives on the variants."""
    product = Product(name="Uniform Shirt", category="Uniform", price=250.0, cost_price=150.0, stock=0)
    db.add(product)
    db.flush()
    db.add_all([
        ProductVariant(product_id=product.id, size="S", stock=5),
        ProductVariant(product_id=product.id, size="M", stock=5),
        ProductVariant(product_id=product.id, size="XL", stock=2, price_override=280.0),
    ])
    db.commit()
    db.refresh(product)
    return product


@pytest.fixture
def mug(db):
    product = Product(name="Campus Mug", category="Souvenir", price=120.0, cost_price=60.0, stock=10)
    db.add(product)
    db.commit()
    return product


def variant_of(product, size):
    return next(v for v in product.variants if v.size == size)


@pytest.fixture
def size():
    return variant_of


@pytest.fixture
def cart_line(db):
    def add(user, product, variant=None, quantity=1):
        item = CartItem(
            user_id=user.id,
            product_id=product.id,
            variant_id=variant.id if variant else None,
            quantity=quantity,
        )
        db.add(item)
        db.commit()
        return item

    return add


@pytest.fixture
def place(db, publisher):
    """Check out through the real order builder; returns the Outcome."""

    def run(user, payment_method="cash", **kwargs):
        return checkout_service.place_order(
            db, user, CheckoutRequest(payment_method=payment_method, **kwargs), publisher
        )

    return run
