"""
Centralized configuration for shop scoping and remote store conventions.
"""
from __future__ import annotations

import os
from typing import Any, Optional

from dotenv import load_dotenv

load_dotenv()

SHOPIFY_API_VERSION: str = os.getenv("SHOPIFY_API_VERSION", "2024-10")
SHOPIFY_HTTP_TIMEOUT_SECONDS: float = float(os.getenv("SHOPIFY_HTTP_TIMEOUT_SECONDS", "30"))

# Metaobject types backing the two record collections.
BUNDLE_METAOBJECT_TYPE: str = os.getenv("BUNDLE_METAOBJECT_TYPE", "mergely_bundle")
COMBINATION_METAOBJECT_TYPE: str = os.getenv("COMBINATION_METAOBJECT_TYPE", "bundle_combination")

# Derived-view document read by the checkout-time cart function.
CART_TRANSFORM_NAMESPACE: str = os.getenv("CART_TRANSFORM_NAMESPACE", "mergely")
CART_TRANSFORM_KEY: str = os.getenv("CART_TRANSFORM_KEY", "merge-configurations")
CART_TRANSFORM_FUNCTION_ID: Optional[str] = os.getenv("CART_TRANSFORM_FUNCTION_ID") or None

# Remote list pages are capped at 250 nodes per request.
LIST_PAGE_SIZE: int = int(os.getenv("LIST_PAGE_SIZE", "250"))
DEFAULT_LIST_LIMIT: int = 20
MAX_LIST_LIMIT: int = int(os.getenv("MAX_LIST_LIMIT", "100"))

MAX_BULK_IDS: int = int(os.getenv("MAX_BULK_IDS", "100"))
BULK_MAX_CONCURRENCY: int = int(os.getenv("BULK_MAX_CONCURRENCY", "1"))

MEDIA_POLL_MAX_ATTEMPTS: int = int(os.getenv("MEDIA_POLL_MAX_ATTEMPTS", "10"))
MEDIA_POLL_INTERVAL_SECONDS: float = float(os.getenv("MEDIA_POLL_INTERVAL_SECONDS", "1.0"))

MIN_COMBINATION_PRODUCTS = 2
MAX_COMBINATION_PRODUCTS = 4


def sanitize_shop_id(value: Optional[Any]) -> Optional[str]:
    """Normalize raw shop domains (strip whitespace and scheme, lower-case)."""
    if value is None:
        return None
    text = str(value).strip().lower()
    for prefix in ("https://", "http://"):
        if text.startswith(prefix):
            text = text[len(prefix):]
    text = text.rstrip("/")
    if not text:
        return None
    return text
