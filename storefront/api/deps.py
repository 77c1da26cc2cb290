# storefront/api/deps.py
from fastapi import Depends, Header, HTTPException

from storefront.domain.owner import Caller
from storefront.services.lock_service import LockService


def get_caller(
    x_user_id: int | None = Header(None),
    x_user_role: str | None = Header(None),
    x_session_id: str | None = Header(None),
) -> Caller:
    """Identity headers are set by the auth gateway in front of this service."""
    return Caller(
        user_id=x_user_id,
        session_id=x_session_id or None,
        is_admin=(x_user_role or "").lower() == "admin",
    )


def require_user(caller: Caller = Depends(get_caller)) -> Caller:
    if not caller.is_authenticated:
        raise HTTPException(status_code=401, detail="Authentication required")
    return caller


def require_admin(caller: Caller = Depends(require_user)) -> Caller:
    if not caller.is_admin:
        raise HTTPException(status_code=403, detail="Admin role required")
    return caller


def get_lock_service() -> LockService:
    return LockService()
