"""Storefront webhook signature verification.

The storefront signs the raw request body with HMAC-SHA256 and sends the
base64 digest in a header. Comparison is constant time and an empty
secret or header never verifies.
"""

import base64
import hashlib
import hmac
from typing import Optional

from marketplace.core.logging import get_logger

logger = get_logger(__name__)

SIGNATURE_HEADER = "X-Shopify-Hmac-Sha256"
SHOP_DOMAIN_HEADER = "X-Shopify-Shop-Domain"


def compute_signature(body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(body: bytes, header: Optional[str], secret: Optional[str]) -> bool:
    """
    Check a webhook signature header against the raw body.

    Args:
        body: Raw request body bytes
        header: Base64 HMAC-SHA256 digest sent by the storefront
        secret: Shared webhook secret

    Returns:
        True if the signature is valid
    """
    if not secret:
        logger.warning("Webhook secret not configured, rejecting signature")
        return False
    if not header:
        return False
    return hmac.compare_digest(compute_signature(body, secret), header.strip())
