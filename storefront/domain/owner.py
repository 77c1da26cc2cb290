# storefront/domain/owner.py
from dataclasses import dataclass

from storefront.domain.errors import InvalidStateError


@dataclass(frozen=True)
class OwnerKey:
    """Identity a cart is scoped to: a registered user or an anonymous session, never both."""

    user_id: int | None = None
    session_id: str | None = None

    def __post_init__(self):
        if (self.user_id is None) == (self.session_id is None):
            raise InvalidStateError("Cart owner must be exactly one of user or session")

    @classmethod
    def for_user(cls, user_id: int) -> "OwnerKey":
        return cls(user_id=user_id)

    @classmethod
    def for_session(cls, session_id: str) -> "OwnerKey":
        return cls(session_id=session_id)

    @property
    def is_guest(self) -> bool:
        return self.user_id is None

    def __str__(self) -> str:
        if self.is_guest:
            return f"session:{self.session_id}"
        return f"user:{self.user_id}"


@dataclass(frozen=True)
class Caller:
    """Request identity as handed over by the upstream auth gateway."""

    user_id: int | None = None
    session_id: str | None = None
    is_admin: bool = False

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    def cart_owner(self) -> OwnerKey:
        if self.user_id is not None:
            return OwnerKey.for_user(self.user_id)
        if self.session_id:
            return OwnerKey.for_session(self.session_id)
        raise InvalidStateError("Either a signed-in user or an X-Session-Id header is required")
