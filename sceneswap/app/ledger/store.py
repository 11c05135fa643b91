"""
Quota store adapters.

The ledger talks to an external key-value counter store through the
small QuotaStore protocol. The production adapter speaks the Upstash
Redis REST protocol over the shared httpx.AsyncClient:

    POST <url>            body: ["INCR", "free_count:..."]
    200 {"result": 6}     or   4xx/5xx {"error": "..."}

Every failure (transport, HTTP status, error reply, malformed body)
surfaces as StoreError. The ledger decides what a failure means.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Protocol, Union

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from sceneswap.app.core.config import Settings
from sceneswap.app.core.errors import StoreError

logger = logging.getLogger("sceneswap.ledger.store")


class QuotaStore(Protocol):
    """Network key-value operations required by the ledger."""

    async def get(self, key: str) -> Optional[str]:
        ...

    async def set(self, key: str, value: Union[str, int], ttl: int) -> None:
        ...

    async def incr(self, key: str) -> int:
        ...

    async def expire(self, key: str, ttl: int) -> None:
        ...

    async def ttl(self, key: str) -> int:
        """Seconds left, -1 when the key has no expiry, -2 when absent."""
        ...


class UpstashRestStore:
    """
    Async client for the Upstash Redis REST API.

    The client is stateless; all state lives in the remote store.
    """

    def __init__(
        self,
        *,
        url: str,
        token: str,
        http_client: httpx.AsyncClient,
        timeout_seconds: float = 5.0,
    ) -> None:
        if not url:
            raise ValueError("Upstash REST URL must not be empty")
        if not token:
            raise ValueError("Upstash REST token must not be empty")

        self.base_url = str(url).rstrip("/")
        self.client = http_client
        self.timeout_seconds = timeout_seconds
        self._headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Optional[str]:
        result = await self._command(["GET", key])
        return None if result is None else str(result)

    async def set(self, key: str, value: Union[str, int], ttl: int) -> None:
        await self._command(["SET", key, str(value), "EX", str(int(ttl))])

    async def incr(self, key: str) -> int:
        result = await self._command(["INCR", key])
        try:
            return int(result)
        except (TypeError, ValueError) as exc:
            raise StoreError(
                f"INCR returned a non-integer result: {result!r}"
            ) from exc

    async def expire(self, key: str, ttl: int) -> None:
        await self._command(["EXPIRE", key, str(int(ttl))])

    async def ttl(self, key: str) -> int:
        result = await self._command(["TTL", key])
        try:
            return int(result)
        except (TypeError, ValueError) as exc:
            raise StoreError(
                f"TTL returned a non-integer result: {result!r}"
            ) from exc

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _command(self, command: List[str]) -> Any:
        try:
            response = await self._send(command)
        except httpx.HTTPError as exc:
            logger.warning(
                "quota_store_transport_failed",
                extra={
                    "command": command[0],
                    "error_type": type(exc).__name__,
                },
            )
            raise StoreError(
                f"Quota store unreachable during {command[0]}"
            ) from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise StoreError(
                f"Quota store returned a non-JSON body "
                f"(status={response.status_code})"
            ) from exc

        if not isinstance(body, dict):
            raise StoreError("Quota store returned an unexpected body shape")

        if response.status_code != 200 or "error" in body:
            raise StoreError(
                f"Quota store rejected {command[0]} "
                f"(status={response.status_code}): {body.get('error')}"
            )

        return body.get("result")

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(min=0.1, max=0.5),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _send(self, command: List[str]) -> httpx.Response:
        return await self.client.post(
            self.base_url,
            headers=self._headers,
            json=command,
            timeout=self.timeout_seconds,
        )


def build_quota_store(
    settings: Settings,
    http_client: httpx.AsyncClient,
) -> Optional[QuotaStore]:
    """
    Construct the configured quota store, or None for unlimited mode.
    """
    if not settings.quota_store_configured:
        logger.warning("quota_store_not_configured_unlimited_mode")
        return None

    return UpstashRestStore(
        url=str(settings.upstash_redis_rest_url),
        token=settings.upstash_redis_rest_token.get_secret_value(),
        http_client=http_client,
        timeout_seconds=settings.quota_store_timeout_seconds,
    )
