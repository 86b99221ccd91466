from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from campus_store.api.deps import require_admin
from campus_store.database import get_db
from campus_store.models.user import User
from campus_store.schemas.product import (
    LowStockRow,
    ProductCreate,
    ProductOut,
    ProductUpdate,
    VariantCreate,
    VariantOut,
    VariantUpdate,
)
from campus_store.services import product_service

router = APIRouter(prefix="/products", tags=["Products"])


@router.post("", response_model=ProductOut, status_code=201)
def create_product(data: ProductCreate, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    return product_service.create_product(db, data, user_id=admin.id)


@router.get("", response_model=list[ProductOut])
def list_products(skip: int = 0, limit: int = 100, category: str | None = None, db: Session = Depends(get_db)):
    return product_service.list_products(db, skip=skip, limit=limit, category=category)


@router.get("/low-stock", response_model=list[LowStockRow])
def low_stock(threshold: int | None = None, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    return product_service.low_stock(db, threshold=threshold)


@router.get("/{product_id}", response_model=ProductOut)
def get_product(product_id: str, db: Session = Depends(get_db)):
    return product_service.get_product(db, product_id)


@router.patch("/{product_id}", response_model=ProductOut)
def update_product(
    product_id: str,
    data: ProductUpdate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return product_service.update_product(db, product_id, data)


@router.delete("/{product_id}", response_model=ProductOut)
def delete_product(product_id: str, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    return product_service.delete_product(db, product_id)


@router.post("/{product_id}/variants", response_model=VariantOut, status_code=201)
def create_variant(
    product_id: str,
    data: VariantCreate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return product_service.create_variant(db, product_id, data, user_id=admin.id)


@router.patch("/variants/{variant_id}", response_model=VariantOut)
def update_variant(
    variant_id: str,
    data: VariantUpdate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return product_service.update_variant(db, variant_id, data)
