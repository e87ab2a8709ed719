"""
FastAPI dependencies for authentication and service construction.

Bearer tokens are decoded into a ``Requester`` carrying the caller's role
and marketplace affiliations; services receive it explicitly. Service
factories share the request's database session.
"""

from typing import Annotated, Optional
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.config import get_settings
from marketplace.core.identity import Requester, Role
from marketplace.core.logging import get_logger, set_user_id
from marketplace.database.connection import get_db
from marketplace.services.inventory.ledger import InventoryLedger
from marketplace.services.orders.service import OrderService
from marketplace.services.payments.service import SettlementLedger
from marketplace.services.webhooks.adapter import WebhookIngestionAdapter

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)


def _optional_uuid(value: Optional[str]) -> Optional[UUID]:
    return UUID(value) if value else None


def decode_requester(token: str) -> Requester:
    """
    Decode a bearer token into a Requester.

    Raises:
        JWTError: If the token is invalid or expired
        ValueError: If a claim is malformed
    """
    settings = get_settings()
    payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])

    subject = payload.get("sub")
    if not subject:
        raise ValueError("Token missing 'sub' claim")

    role = Role(payload.get("role", ""))
    if role == Role.SYSTEM:
        raise ValueError("System identity cannot be asserted by a token")

    return Requester(
        user_id=UUID(subject),
        role=role,
        supplier_id=_optional_uuid(payload.get("supplier_id")),
        dropshipper_id=_optional_uuid(payload.get("dropshipper_id")),
        sourcing_agent_id=_optional_uuid(payload.get("sourcing_agent_id")),
    )


async def get_requester(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> Requester:
    """
    Authenticate the bearer token of the request.

    Raises:
        HTTPException: 401 if the token is missing or invalid
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None:
        logger.warning("Authentication failed: No credentials provided")
        raise credentials_exception

    try:
        requester = decode_requester(credentials.credentials)
    except (JWTError, ValueError) as e:
        logger.warning(
            "Authentication failed: Invalid token",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise credentials_exception

    set_user_id(str(requester.user_id))
    return requester


async def require_admin(
    requester: Annotated[Requester, Depends(get_requester)],
) -> Requester:
    if not requester.is_admin:
        logger.warning("Access denied: Admin role required", **requester.describe())
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions",
        )
    return requester


async def get_order_service(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> OrderService:
    return OrderService(db)


async def get_inventory_ledger(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> InventoryLedger:
    return InventoryLedger(db)


async def get_settlement_ledger(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> SettlementLedger:
    return SettlementLedger(db)


async def get_webhook_adapter(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> WebhookIngestionAdapter:
    return WebhookIngestionAdapter(db)


CurrentRequester = Annotated[Requester, Depends(get_requester)]
AdminRequester = Annotated[Requester, Depends(require_admin)]
OrderServiceDep = Annotated[OrderService, Depends(get_order_service)]
InventoryLedgerDep = Annotated[InventoryLedger, Depends(get_inventory_ledger)]
SettlementLedgerDep = Annotated[SettlementLedger, Depends(get_settlement_ledger)]
WebhookAdapterDep = Annotated[WebhookIngestionAdapter, Depends(get_webhook_adapter)]
