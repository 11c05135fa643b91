"""
Quota ledger.

Policy: an integer usage counter per identity with a fixed ceiling
(the free allowance) and a time-to-live re-set on every commit. The
counter only ever grows inside its TTL window; it is reset by expiry,
never by the service.

Consistency model (accepted, not a bug):
    The orchestrator calls peek() before a batch and consume() once
    after it. No lock is held in between, so two concurrent batches
    for the same identity can both pass peek() before either commits.
    Losing that race costs at most one extra free batch per
    concurrent request.

Availability model:
    peek() never fails. An unconfigured or unreachable store reads as
    "unlimited". consume() never fails either; a lost accounting update
    is preferable to a failed request.

Expiry repair:
    INCR and EXPIRE are separate calls. A counter whose EXPIRE was lost
    has no TTL and would never reset. The next consume() re-sets it, and
    peek() re-sets it on exhausted counters, which are never consumed
    again.
"""

from __future__ import annotations

import logging
from typing import Optional

import anyio

from sceneswap.app.core.errors import StoreError
from sceneswap.app.ledger.store import QuotaStore
from sceneswap.app.schemas.batch import QuotaStatus
from sceneswap.app.utils.hashing import quota_key

logger = logging.getLogger("sceneswap.ledger")


class QuotaLedger:
    def __init__(
        self,
        store: Optional[QuotaStore],
        *,
        allowance: int = 10,
        ttl_seconds: int = 60 * 60 * 24 * 365,
        timeout_seconds: float = 5.0,
        key_prefix: str = "free_count:",
    ) -> None:
        if allowance < 1:
            raise ValueError("allowance must be at least 1")

        self._store = store
        self.allowance = allowance
        self.ttl_seconds = ttl_seconds
        self.timeout_seconds = timeout_seconds
        self.key_prefix = key_prefix

    @property
    def configured(self) -> bool:
        return self._store is not None

    def key_for(self, identity: str) -> str:
        return quota_key(identity, prefix=self.key_prefix)

    # ------------------------------------------------------------------
    # Read path (never changes the count)
    # ------------------------------------------------------------------

    async def peek(self, key: str) -> QuotaStatus:
        if self._store is None:
            return self._unlimited()

        try:
            with anyio.fail_after(self.timeout_seconds):
                raw = await self._store.get(key)
        except (StoreError, TimeoutError) as exc:
            logger.warning(
                "quota_store_unreachable_unlimited_read",
                extra={
                    "key_prefix": key[:24],
                    "error_type": type(exc).__name__,
                },
            )
            return self._unlimited()

        used = self._parse_count(raw, key)
        if used >= self.allowance:
            await self._repair_expiry(key)

        return QuotaStatus(
            used=used,
            remaining=max(0, self.allowance - used),
            allowance=self.allowance,
            unlimited=False,
        )

    # ------------------------------------------------------------------
    # Write path (best effort)
    # ------------------------------------------------------------------

    async def consume(self, key: str) -> None:
        if self._store is None:
            return

        try:
            with anyio.fail_after(self.timeout_seconds):
                used = await self._store.incr(key)
        except (StoreError, TimeoutError) as exc:
            logger.warning(
                "quota_commit_lost",
                extra={
                    "key_prefix": key[:24],
                    "error_type": type(exc).__name__,
                },
            )
            return

        await self._set_expiry(key)

        logger.info(
            "quota_committed",
            extra={"key_prefix": key[:24], "used": used},
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _set_expiry(self, key: str) -> bool:
        try:
            with anyio.fail_after(self.timeout_seconds):
                await self._store.expire(key, self.ttl_seconds)
        except (StoreError, TimeoutError) as exc:
            logger.warning(
                "quota_expiry_lost",
                extra={
                    "key_prefix": key[:24],
                    "error_type": type(exc).__name__,
                },
            )
            return False
        return True

    async def _repair_expiry(self, key: str) -> None:
        """Re-arm the TTL of a counter left without one."""
        try:
            with anyio.fail_after(self.timeout_seconds):
                remaining_ttl = await self._store.ttl(key)
        except (StoreError, TimeoutError) as exc:
            logger.warning(
                "quota_ttl_unreadable",
                extra={
                    "key_prefix": key[:24],
                    "error_type": type(exc).__name__,
                },
            )
            return

        if remaining_ttl == -1 and await self._set_expiry(key):
            logger.info(
                "quota_expiry_repaired",
                extra={"key_prefix": key[:24]},
            )

    def _unlimited(self) -> QuotaStatus:
        return QuotaStatus(
            used=0,
            remaining=self.allowance,
            allowance=self.allowance,
            unlimited=True,
        )

    def _parse_count(self, raw: Optional[str], key: str) -> int:
        if raw is None or raw == "":
            return 0
        try:
            return max(0, int(raw))
        except (TypeError, ValueError):
            logger.warning(
                "quota_record_malformed",
                extra={"key_prefix": key[:24]},
            )
            return 0
