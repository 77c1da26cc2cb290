# storefront/api/routers/payments.py
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from storefront.api.deps import get_caller
from storefront.data.database import get_db
from storefront.domain.errors import InvalidStateError, NotFoundError, UnauthorizedError
from storefront.domain.owner import Caller
from storefront.domain.schemas import PaymentCreateIn, PaymentFormOut, PaymentMethodsOut
from storefront.services.payment_gateway import ShopierGateway
from storefront.services.payment_service import PaymentService
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


def get_gateway() -> ShopierGateway:
    return ShopierGateway()


def get_service(db: Session, gateway: ShopierGateway):
    return PaymentService(db, gateway=gateway)


@router.post("/shopier/create", response_model=PaymentFormOut)
def create_shopier_payment(
    payload: PaymentCreateIn,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
    gateway: ShopierGateway = Depends(get_gateway),
):
    """Signed form fields; the client posts them to payment_url itself."""
    svc = get_service(db, gateway)
    try:
        form = svc.create_payment_form(payload.order_id, caller)
    except UnauthorizedError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidStateError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "payment_url": form.payment_url, "form_data": form.form_data}


def _redirect(svc: PaymentService, payload: dict) -> RedirectResponse:
    outcome = svc.handle_callback(payload)
    return RedirectResponse(outcome.redirect_url, status_code=303)


@router.post("/shopier/callback")
async def shopier_callback(
    request: Request,
    db: Session = Depends(get_db),
    gateway: ShopierGateway = Depends(get_gateway),
):
    if request.headers.get("content-type", "").startswith("application/json"):
        try:
            payload = await request.json()
        except ValueError:
            payload = {}
    else:
        payload = dict(await request.form())

    if not isinstance(payload, dict):
        payload = {}

    svc = get_service(db, gateway)
    return await run_in_threadpool(_redirect, svc, payload)


@router.get("/shopier/callback")
def shopier_callback_get(
    request: Request,
    db: Session = Depends(get_db),
    gateway: ShopierGateway = Depends(get_gateway),
):
    # some gateway setups call back with a GET, same handling
    svc = get_service(db, gateway)
    return _redirect(svc, dict(request.query_params))


@router.get("/methods", response_model=PaymentMethodsOut)
def get_payment_methods(
    db: Session = Depends(get_db),
    gateway: ShopierGateway = Depends(get_gateway),
):
    svc = get_service(db, gateway)
    return {"methods": svc.payment_methods()}
