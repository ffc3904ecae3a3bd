from __future__ import annotations

import html
import re
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional

_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")


def normalize_tags(value: Any) -> List[str]:
    """
    Shopify sends tags as a comma-separated string on REST webhooks and as list[str]
    from GraphQL; both become a list of trimmed, non-empty strings.
    """
    if value is None:
        return []
    if isinstance(value, list):
        return [str(v).strip() for v in value if isinstance(v, str) and str(v).strip()]
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return []


def normalize_shopify_price(value: Any) -> Decimal | None:
    """
    Variant price -> Decimal(0.01); unparseable -> None.
    """
    if value is None:
        return None
    try:
        return Decimal(str(value)).quantize(Decimal("0.01"))
    except (InvalidOperation, ValueError, TypeError):
        return None


def strip_html(value: Optional[str]) -> str:
    """body_html -> plain text on one line."""
    if not value:
        return ""
    text = html.unescape(_TAG_RE.sub(" ", value))
    return _WS_RE.sub(" ", text).strip()


def gid_to_id(value: Any) -> Optional[str]:
    """"gid://shopify/ProductVariant/123" -> "123"; plain ids pass through."""
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    return text.rsplit("/", 1)[-1]
