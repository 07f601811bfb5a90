"""
API dependencies - authentication, roles and service wiring.
"""
from functools import lru_cache
from typing import Callable, Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from application.dtos.auth import Principal, Role
from application.ports.payment_gateway import PaymentGateway
from application.services.order_service import OrderApplicationService
from application.services.payment_service import PaymentApplicationService
from application.services.voucher_service import VoucherApplicationService
from core.config import settings
from core.exceptions import PermissionDeniedException, TokenExpiredException, UnauthorizedException
from core.logging_config import get_logger
from infrastructure.external.payments import get_payment_gateway
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


logger = get_logger(__name__)

# HTTP Bearer for direct API calls; tokens are issued by the identity service
http_bearer = HTTPBearer(
    scheme_name="Bearer",
    description="JWT Bearer token authentication",
    auto_error=False,
)


async def get_token(
    bearer_token: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
) -> str:
    """Extract the bearer token."""
    if bearer_token and bearer_token.credentials:
        return bearer_token.credentials
    raise UnauthorizedException("Missing credentials")


def decode_principal(token: str) -> Principal:
    """Decode a signed access token into the caller's identity and role."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise TokenExpiredException() from None
    except jwt.InvalidTokenError as exc:
        logger.info("auth_token_rejected", error=str(exc))
        raise UnauthorizedException("Invalid token") from None

    subject = payload.get("sub")
    if not subject:
        raise UnauthorizedException("Token has no subject")
    try:
        role = Role(str(payload.get("role", Role.CUSTOMER.value)).upper())
    except ValueError:
        raise UnauthorizedException("Unknown role") from None
    return Principal(user_id=str(subject), role=role)


async def get_current_principal(token: str = Depends(get_token)) -> Principal:
    return decode_principal(token)


def require_roles(*roles: Role) -> Callable:
    """Dependency that lets only the given roles through."""
    allowed = frozenset(roles)

    async def _checker(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed:
            raise PermissionDeniedException(required_role="/".join(sorted(r.value for r in allowed)))
        return principal

    return _checker


require_staff = require_roles(Role.ADMIN, Role.STAFF)
require_admin = require_roles(Role.ADMIN)


@lru_cache(maxsize=1)
def get_gateway() -> PaymentGateway:
    """One gateway per process so its HTTP client is reused."""
    return get_payment_gateway()


async def get_order_service() -> OrderApplicationService:
    return OrderApplicationService(uow_factory=SQLAlchemyUnitOfWork)


async def get_payment_service(
    gateway: PaymentGateway = Depends(get_gateway),
) -> PaymentApplicationService:
    return PaymentApplicationService(uow_factory=SQLAlchemyUnitOfWork, gateway=gateway)


async def get_voucher_service() -> VoucherApplicationService:
    return VoucherApplicationService(uow_factory=SQLAlchemyUnitOfWork)
