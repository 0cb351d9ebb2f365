"""HTTP client for the remote moderation backend.

The backend receives one content item per request and answers with per-category
confidence scores::

    POST {api_url}/v1/check
    {"content": "...", "contentType": "text", "policyId": "...", "metadata": {...}}

    200 {"provider": "openai", "categories": [{"category": "spam", "score": 0.12}, ...],
         "latency": 84, "cost": 0.0001}

Cancelling the task that awaits `ModerationClient.score` aborts the underlying
HTTP request.
"""

from __future__ import annotations

import time
from typing import Any, Dict, Mapping

import httpx

from modgate.datatypes.content_datatypes import ContentItem
from modgate.datatypes.decision_datatypes import ProviderResult
from modgate.moderation.moderation_errors import ProviderError, ProviderTimeoutError
from modgate.util.logger import get_logger

logger = get_logger("moderation_client")

DEFAULT_API_URL = "http://localhost:3000"


class ModerationClient:
    """
    Thin async wrapper around the backend's check endpoint.

    Args:
        api_key: Bearer token for the backend.
        api_url: Base URL of the backend.
        timeout_seconds: Transport timeout for a single request.
        http_client: Pre-built httpx client (tests pass one with a MockTransport).
    """

    def __init__(
        self,
        api_key: str,
        api_url: str = DEFAULT_API_URL,
        timeout_seconds: float = 5.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self._api_url = api_url.rstrip("/")
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)
        self._headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
        }
        logger.info("[MODERATION CLIENT] Initialized with api_url=%s", self._api_url)

    def build_payload(
        self,
        item: ContentItem,
        policy_id: str,
        metadata: Mapping[str, Any] | None = None,
        provider: str | None = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "content": item.to_request_content(),
            "contentType": item.kind.request_type,
            "policyId": policy_id,
            "metadata": {"ordinal": item.ordinal, **(metadata or {})},
        }
        if provider:
            payload["provider"] = provider
        return payload

    async def score(
        self,
        item: ContentItem,
        policy_id: str,
        metadata: Mapping[str, Any] | None = None,
        provider: str | None = None,
    ) -> ProviderResult:
        """Request category scores for one item.

        Args:
            item: Content to score.
            policy_id: Policy the request is made under.
            metadata: Extra request metadata forwarded to the backend.
            provider: Force a specific provider (used for policy fallbacks).

        Raises:
            ProviderTimeoutError: The request timed out.
            ProviderError: Network failure, non-success status or bad response body.
        """
        started = time.monotonic()
        try:
            response = await self._client.post(
                f"{self._api_url}/v1/check",
                json=self.build_payload(item, policy_id, metadata, provider),
                headers=self._headers,
            )
        except httpx.TimeoutException as exc:
            logger.warning("[MODERATION CLIENT] Timeout scoring %s: %s", item.describe(), exc)
            raise ProviderTimeoutError(provider=provider) from exc
        except httpx.HTTPError as exc:
            logger.error("[MODERATION CLIENT] Request failed for %s: %s", item.describe(), exc)
            raise ProviderError(f"Moderation request failed: {exc}", provider=provider) from exc

        if response.is_error:
            logger.error(
                "[MODERATION CLIENT] Backend returned %d for %s: %s",
                response.status_code,
                item.describe(),
                response.text[:200],
            )
            raise ProviderError(
                f"Moderation API error: {response.status_code}",
                status_code=response.status_code,
                provider=provider,
            )

        result = self.parse_response(response, fallback_latency_ms=(time.monotonic() - started) * 1000.0)
        logger.debug(
            "[MODERATION CLIENT] Scored %s via %s in %.0fms",
            item.describe(),
            result.provider,
            result.latency_ms,
        )
        return result

    @staticmethod
    def parse_response(response: httpx.Response, fallback_latency_ms: float = 0.0) -> ProviderResult:
        """Convert a check response body into a `ProviderResult`."""
        try:
            body = response.json()
        except ValueError as exc:
            raise ProviderError("Moderation API returned a non-JSON body", status_code=response.status_code) from exc

        if not isinstance(body, dict):
            raise ProviderError("Moderation API returned an unexpected body", status_code=response.status_code)

        scores: Dict[str, float] = {}
        for entry in body.get("categories") or []:
            if not isinstance(entry, dict) or "category" not in entry:
                continue
            try:
                scores[str(entry["category"])] = float(entry.get("score", 0.0))
            except (TypeError, ValueError):
                logger.warning("[MODERATION CLIENT] Ignoring malformed score entry %r", entry)

        latency = body.get("latency")
        cost = body.get("cost")
        if isinstance(cost, bool) or not isinstance(cost, (int, float)):
            if cost is not None:
                logger.warning("[MODERATION CLIENT] Ignoring malformed cost %r", cost)
            cost = 0.0
        return ProviderResult(
            provider=str(body.get("provider") or "unknown"),
            scores=scores,
            latency_ms=float(latency) if isinstance(latency, (int, float)) else fallback_latency_ms,
            cost=float(cost),
        )

    async def aclose(self) -> None:
        await self._client.aclose()
        logger.info("[MODERATION CLIENT] Closed")
