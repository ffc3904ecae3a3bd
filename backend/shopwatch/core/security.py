import base64
import hashlib
import hmac
from typing import Optional


# Shopify signs the raw request body: base64(HMAC-SHA256(secret, body))
def compute_webhook_hmac(secret: str, raw_body: bytes) -> str:
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def verify_webhook_hmac(secret: str, provided_b64: Optional[str], raw_body: bytes) -> bool:
    if not secret or not provided_b64:
        return False
    return hmac.compare_digest(provided_b64.strip(), compute_webhook_hmac(secret, raw_body))


def verify_bearer_token(expected: str, authorization: Optional[str]) -> bool:
    """'Bearer <token>' against the configured token, constant time."""
    if not authorization:
        return False
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return False
    return hmac.compare_digest(token.strip(), expected)
