# storefront/api/routers/cart.py
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from storefront.api.deps import get_caller, require_user
from storefront.data.database import get_db
from storefront.domain.errors import ConflictError, InvalidStateError, NotFoundError
from storefront.domain.owner import Caller, OwnerKey
from storefront.domain.schemas import AddToCartIn, CartOut, UpdateQuantityIn
from storefront.services.cart_service import CartService

router = APIRouter(prefix="/cart", tags=["cart"])


def get_service(db: Session):
    return CartService(db)


def _owner(caller: Caller) -> OwnerKey:
    try:
        return caller.cart_owner()
    except InvalidStateError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("", response_model=CartOut)
def get_cart(caller: Caller = Depends(get_caller), db: Session = Depends(get_db)):
    svc = get_service(db)
    return svc.get_or_create(_owner(caller))


@router.post("/items", response_model=CartOut)
def add_item(
    payload: AddToCartIn,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    try:
        return svc.add_item(
            _owner(caller),
            product_id=payload.product_id,
            quantity=payload.quantity,
            variant_id=payload.variant_id,
        )
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except InvalidStateError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.put("/items/{item_id}", response_model=CartOut)
def update_item_quantity(
    item_id: int,
    payload: UpdateQuantityIn,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    try:
        return svc.update_item_quantity(_owner(caller), item_id, payload.quantity)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.delete("/items/{item_id}", response_model=CartOut)
def remove_item(
    item_id: int,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    try:
        return svc.remove_item(_owner(caller), item_id)
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.delete("", response_model=CartOut)
def clear_cart(caller: Caller = Depends(get_caller), db: Session = Depends(get_db)):
    svc = get_service(db)
    try:
        return svc.clear(_owner(caller))
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/merge", response_model=CartOut)
def merge_cart(caller: Caller = Depends(require_user), db: Session = Depends(get_db)):
    """Fold the guest cart from X-Session-Id into the signed-in user's cart."""
    if not caller.session_id:
        raise HTTPException(status_code=400, detail="X-Session-Id header is required")
    svc = get_service(db)
    try:
        return svc.merge_guest(caller.session_id, caller.user_id)
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
