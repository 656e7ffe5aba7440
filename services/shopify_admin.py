"""
Shopify Admin API client

Thin async wrapper over the Admin GraphQL endpoint plus the direct multipart
upload used for staged media targets. Every store in this package talks to
Shopify exclusively through ``graphql`` and ``upload_staged_file`` so tests
can swap in an in-memory admin with the same two coroutines.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from settings import SHOPIFY_API_VERSION, SHOPIFY_HTTP_TIMEOUT_SECONDS, sanitize_shop_id
from utils import TRANSIENT_STATUS_CODES, retry_async

logger = logging.getLogger(__name__)


class ShopifyAdminError(Exception):
    """Transport, HTTP or top-level GraphQL failure talking to Shopify."""

    transient = False

    def __init__(self, message: str, status_code: Optional[int] = None, errors: Optional[List[Any]] = None):
        super().__init__(message)
        self.status_code = status_code
        self.errors = errors or []


class ShopifyThrottledError(ShopifyAdminError):
    transient = True


class ShopifyServerError(ShopifyAdminError):
    """Gateway-level 5xx; the request may or may not have reached Shopify."""

    transient = True


# Failures where Shopify never executed the mutation.
MUTATION_RETRY_ON = (httpx.ConnectError, httpx.ConnectTimeout, ShopifyThrottledError)


def is_mutation(query: str) -> bool:
    return query.lstrip().startswith("mutation")


def user_error_messages(payload: Optional[Dict[str, Any]]) -> List[str]:
    """Extract ``userErrors[].message`` from a mutation payload."""
    if not payload:
        return []
    return [str(err.get("message", "")) for err in payload.get("userErrors") or []]


class ShopifyAdminClient:
    """Async Admin GraphQL client bound to one shop and access token."""

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        api_version: str = SHOPIFY_API_VERSION,
        timeout: float = SHOPIFY_HTTP_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.shop = sanitize_shop_id(shop_domain) or shop_domain
        self.api_version = api_version
        self.endpoint = f"https://{self.shop}/admin/api/{api_version}/graphql.json"
        self._timeout = timeout
        self._transport = transport
        self._client = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            headers={
                "X-Shopify-Access-Token": access_token,
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
        )

    async def __aenter__(self) -> "ShopifyAdminClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def graphql(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Run a query/mutation and return its ``data`` object.

        Queries are retried on any transient failure. Mutations are retried
        only when Shopify cannot have applied them: connect failures and
        throttling.
        """
        if is_mutation(query):
            return await self._mutate(query, variables)
        return await self._query(query, variables)

    @retry_async(max_retries=3, base_delay=0.5)
    async def _query(self, query: str, variables: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        return await self._post_graphql(query, variables)

    @retry_async(max_retries=3, base_delay=0.5, retry_on=MUTATION_RETRY_ON)
    async def _mutate(self, query: str, variables: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        return await self._post_graphql(query, variables)

    async def _post_graphql(self, query: str, variables: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        body: Dict[str, Any] = {"query": query}
        if variables:
            body["variables"] = variables

        response = await self._client.post(self.endpoint, json=body)

        if response.status_code == 429:
            raise ShopifyThrottledError("Shopify Admin API throttled the request", status_code=429)
        if response.status_code >= 400:
            logger.error(
                "[shopify_admin] HTTP %s from %s: %s",
                response.status_code,
                self.shop,
                response.text[:500],
            )
            error_cls = ShopifyServerError if response.status_code in TRANSIENT_STATUS_CODES else ShopifyAdminError
            raise error_cls(
                f"Shopify Admin API returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise ShopifyAdminError("Malformed JSON from Shopify Admin API") from exc

        errors = payload.get("errors")
        if errors:
            if isinstance(errors, list) and any(
                (err.get("extensions") or {}).get("code") == "THROTTLED" for err in errors if isinstance(err, dict)
            ):
                raise ShopifyThrottledError("Shopify Admin API query cost throttled", errors=errors)
            messages = (
                [err.get("message", str(err)) if isinstance(err, dict) else str(err) for err in errors]
                if isinstance(errors, list)
                else [str(errors)]
            )
            logger.error("[shopify_admin] GraphQL errors from %s: %s", self.shop, messages)
            raise ShopifyAdminError("; ".join(messages), errors=errors)

        return payload.get("data") or {}

    async def upload_staged_file(
        self,
        url: str,
        parameters: List[Dict[str, str]],
        content: bytes,
        filename: str,
        mime_type: str,
    ) -> None:
        """POST raw bytes to a staged upload target with its signed form parameters."""
        form = {param["name"]: param["value"] for param in parameters}
        files = {"file": (filename, content, mime_type)}
        # Staged targets are pre-signed storage URLs; the shop token must not leak there.
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(url, data=form, files=files)
        if response.status_code >= 300:
            raise ShopifyAdminError(
                f"Failed to upload file: HTTP {response.status_code}",
                status_code=response.status_code,
            )
