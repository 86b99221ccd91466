from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from campus_store.api.deps import get_current_user
from campus_store.database import get_db
from campus_store.models.user import User
from campus_store.schemas.cart import CartItemAdd, CartItemUpdate, CartOut
from campus_store.services import cart_service

router = APIRouter(prefix="/cart", tags=["Cart"])


@router.get("", response_model=CartOut)
def get_cart(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return cart_service.cart_summary(cart_service.list_cart(db, user.id))


@router.post("", response_model=CartOut, status_code=201)
def add_to_cart(data: CartItemAdd, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    cart_service.add_item(db, user.id, data)
    return cart_service.cart_summary(cart_service.list_cart(db, user.id))


@router.patch("/{item_id}", response_model=CartOut)
def update_cart_item(
    item_id: str,
    data: CartItemUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    cart_service.update_item(db, user.id, item_id, data)
    return cart_service.cart_summary(cart_service.list_cart(db, user.id))


@router.delete("/{item_id}", status_code=204)
def remove_cart_item(item_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    cart_service.remove_item(db, user.id, item_id)
