# storefront/api/routers/orders.py
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from storefront.api.deps import get_caller, get_lock_service, require_admin, require_user
from storefront.data.database import get_db
from storefront.domain.errors import ConflictError, InvalidStateError, NotFoundError, UnauthorizedError
from storefront.domain.owner import Caller
from storefront.domain.schemas import (
    CreateGuestOrderIn,
    CreateOrderIn,
    OrderListOut,
    OrderOut,
    TrackingIn,
    UpdatePaymentStatusIn,
    UpdateStatusIn,
)
from storefront.services.checkout_service import CheckoutService
from storefront.services.lock_service import LockService
from storefront.services.order_service import OrderService

router = APIRouter(prefix="/orders", tags=["orders"])


def get_service(db: Session):
    return OrderService(db)


def get_checkout(db: Session, lock_service: LockService):
    return CheckoutService(db, lock_service=lock_service)


@router.post("", response_model=OrderOut, status_code=201)
def create_order(
    payload: CreateOrderIn,
    caller: Caller = Depends(require_user),
    db: Session = Depends(get_db),
    lock_service: LockService = Depends(get_lock_service),
):
    """
    Checkout of the signed-in user's cart.
    Stock is decremented and the cart cleared on success.
    """
    svc = get_checkout(db, lock_service)
    try:
        return svc.checkout(caller.user_id, payload.model_dump())
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidStateError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/guest", response_model=OrderOut, status_code=201)
def create_guest_order(
    payload: CreateGuestOrderIn,
    db: Session = Depends(get_db),
    lock_service: LockService = Depends(get_lock_service),
):
    """Checkout from an explicit item list, no cart involved."""
    svc = get_checkout(db, lock_service)
    details = payload.model_dump(exclude={"items"})
    items = [item.model_dump() for item in payload.items]
    try:
        return svc.checkout_guest(details, items)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidStateError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.get("", response_model=list[OrderOut])
def list_my_orders(caller: Caller = Depends(require_user), db: Session = Depends(get_db)):
    svc = get_service(db)
    return svc.list_for_user(caller.user_id)


@router.get("/admin", response_model=OrderListOut)
def list_orders_admin(
    status: str | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    _: Caller = Depends(require_admin),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    orders, total = svc.list_admin(status=status, page=page, limit=limit)
    return {"orders": orders, "total": total, "page": page, "limit": limit}


@router.get("/number/{order_number}", response_model=OrderOut)
def get_order_by_number(order_number: str, db: Session = Depends(get_db)):
    """No auth, guest orders can only be found by their number."""
    svc = get_service(db)
    try:
        return svc.get_by_order_number(order_number)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/{order_id}", response_model=OrderOut)
def get_order(
    order_id: int,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    try:
        return svc.get_order(order_id, caller)
    except UnauthorizedError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.put("/{order_id}/status", response_model=OrderOut)
def update_status(
    order_id: int,
    payload: UpdateStatusIn,
    _: Caller = Depends(require_admin),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    try:
        return svc.update_status(order_id, payload.status)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidStateError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.put("/{order_id}/payment-status", response_model=OrderOut)
def update_payment_status(
    order_id: int,
    payload: UpdatePaymentStatusIn,
    _: Caller = Depends(require_admin),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    try:
        return svc.update_payment_status(order_id, payload.payment_status, payload.payment_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidStateError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.put("/{order_id}/tracking", response_model=OrderOut)
def add_tracking(
    order_id: int,
    payload: TrackingIn,
    _: Caller = Depends(require_admin),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    try:
        return svc.add_tracking(order_id, payload.tracking_number, payload.shipping_company)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/{order_id}/reconcile", response_model=OrderOut)
def reconcile_stock(
    order_id: int,
    _: Caller = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Retry the stock steps that failed at checkout."""
    svc = get_service(db)
    try:
        return svc.retry_stock_reconciliation(order_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
