"""
   Shopify Admin API error types.
   Keeps HTTP/throttle/payload failures apart from the change-detection layer so the
   engine can degrade (author lookup, inventory totals) without parsing messages.
"""
from shopwatch.core.errors import UpstreamError


class ShopifyError(UpstreamError):
    """Base for all Shopify errors."""

class ShopifyAuthError(ShopifyError):
    """401/403: token missing, revoked or lacking scope."""

class ShopifyClientError(ShopifyError):
    """Network/client-side errors after retries."""

class ShopifyServerError(ShopifyError):
    """Server-side (5xx) errors after retries."""

class ShopifyRateLimitError(ShopifyError):
    """429 Too Many Requests not resolved after retries."""

class ShopifyPayloadError(ShopifyError):
    """Unexpected response shape, non-JSON body or top-level GraphQL errors."""
