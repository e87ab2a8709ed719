"""
Storefront webhook endpoints.

The raw body is read before parsing so the HMAC signature can be checked
against the exact bytes the storefront signed. When no webhook secret is
configured, signatures are not checked.
"""

import json
from typing import Any

from fastapi import APIRouter, HTTPException, Request, Response, status
from pydantic import ValidationError

from marketplace.api.deps import WebhookAdapterDep
from marketplace.core.config import get_settings
from marketplace.core.errors import InvalidPayloadError
from marketplace.core.logging import get_logger
from marketplace.core.rate_limit import limiter, webhook_rate_limit
from marketplace.schemas.webhooks import (
    InventorySyncPayload,
    StorefrontOrderPayload,
    WebhookInventoryResponse,
    WebhookOrderResponse,
)
from marketplace.services.webhooks.verification import (
    SHOP_DOMAIN_HEADER,
    SIGNATURE_HEADER,
    verify_signature,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


async def _verified_json(request: Request) -> dict[str, Any]:
    """
    Read, authenticate and decode the webhook body.

    Raises:
        HTTPException: 401 if a secret is configured and the signature is invalid
        InvalidPayloadError: If the body is not a JSON object
    """
    body = await request.body()
    secret = get_settings().webhook_secret

    if secret and not verify_signature(body, request.headers.get(SIGNATURE_HEADER), secret):
        logger.warning(
            "Webhook signature verification failed",
            path=request.url.path,
            shop_domain=request.headers.get(SHOP_DOMAIN_HEADER),
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook signature",
        )

    try:
        data = json.loads(body or b"null")
    except ValueError as e:
        raise InvalidPayloadError("Webhook body is not valid JSON") from e
    if not isinstance(data, dict):
        raise InvalidPayloadError("Webhook body must be a JSON object")
    return data


@router.post(
    "/storefront/orders",
    response_model=WebhookOrderResponse,
    summary="Storefront order webhook",
    description="Create an order from a storefront; replays return the existing order",
)
@limiter.limit(webhook_rate_limit)
async def storefront_order_webhook(
    request: Request,
    response: Response,
    adapter: WebhookAdapterDep,
) -> WebhookOrderResponse:
    data = await _verified_json(request)
    data.setdefault("shop_domain", request.headers.get(SHOP_DOMAIN_HEADER))

    try:
        payload = StorefrontOrderPayload.model_validate(data)
    except ValidationError as e:
        raise InvalidPayloadError(
            "Webhook order payload is invalid",
            errors=e.error_count(),
        ) from e

    result = await adapter.ingest(payload)

    response.status_code = status.HTTP_201_CREATED if result.created else status.HTTP_200_OK
    return WebhookOrderResponse(
        order_id=result.order.id,
        order_number=result.order.order_number,
        created=result.created,
        warnings=result.warnings,
    )


@router.post(
    "/storefront/inventory",
    response_model=WebhookInventoryResponse,
    summary="Storefront inventory webhook",
)
@limiter.limit(webhook_rate_limit)
async def storefront_inventory_webhook(
    request: Request,
    adapter: WebhookAdapterDep,
) -> WebhookInventoryResponse:
    data = await _verified_json(request)

    try:
        payload = InventorySyncPayload.model_validate(data)
    except ValidationError as e:
        raise InvalidPayloadError(
            "Webhook inventory payload is invalid",
            errors=e.error_count(),
        ) from e

    entry = await adapter.sync_inventory(payload)

    return WebhookInventoryResponse(
        product_id=entry.product_id,
        variant_id=entry.variant_id,
        previous_quantity=entry.previous_quantity,
        new_quantity=entry.new_quantity,
    )
