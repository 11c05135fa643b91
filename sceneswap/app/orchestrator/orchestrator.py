"""
Batch orchestrator.

The orchestrator is the only component that sequences the ledger, the
scene catalog, the strategy chain and the document assembler.

State machine (per request):

    UNVERIFIED -> AUTHORIZED -> QUOTA_CHECKED -> UPLOADED
        -> SYNTHESIZING -> LEDGERING -> ASSEMBLING -> DONE

Any hard precondition failure (missing or invalid credential, bad
photos, exhausted allowance) exits to REJECTED and raises the matching
user-visible error. Nothing after QUOTA_CHECKED can reject a batch:
synthesis always yields one artifact per scene and ledger failures are
absorbed by the ledger itself.

Resource discipline:
    The upload is released at the end of SYNTHESIZING and again
    (idempotently) on every exit path, including early rejection.

Ledger discipline:
    peek() once before any work, consume() once after synthesis.
    Never per scene.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import BinaryIO, List, Optional, Protocol, Tuple
from uuid import uuid4

import anyio
import anyio.to_thread

from sceneswap.app.auth.tokens import TokenVerifier
from sceneswap.app.catalog.catalog import SceneCatalog
from sceneswap.app.core.errors import AuthError, QuotaExhausted, SceneSwapError
from sceneswap.app.document.assembler import AssemblyReport, DocumentAssembler
from sceneswap.app.events import (
    BatchEvent,
    BatchEventEmitter,
    BatchEventType,
    NullEventEmitter,
)
from sceneswap.app.ledger.ledger import QuotaLedger
from sceneswap.app.schemas.batch import (
    Artifact,
    BatchResult,
    QuotaStatus,
    SceneDescriptor,
    SourcePhotos,
)
from sceneswap.app.synthesis.chain import StrategyChain

logger = logging.getLogger("sceneswap.orchestrator")


class BatchState(str, Enum):
    UNVERIFIED = "unverified"
    AUTHORIZED = "authorized"
    QUOTA_CHECKED = "quota_checked"
    UPLOADED = "uploaded"
    SYNTHESIZING = "synthesizing"
    LEDGERING = "ledgering"
    ASSEMBLING = "assembling"
    DONE = "done"
    REJECTED = "rejected"


class PhotoSource(Protocol):
    """A request-scoped pair of uploaded photos."""

    async def read(self) -> SourcePhotos:
        ...

    async def release(self) -> None:
        ...


class BatchOrchestrator:
    def __init__(
        self,
        *,
        verifier: TokenVerifier,
        ledger: QuotaLedger,
        catalog: SceneCatalog,
        chain: StrategyChain,
        assembler: Optional[DocumentAssembler] = None,
        max_concurrent_scenes: int = 1,
    ) -> None:
        self._verifier = verifier
        self._ledger = ledger
        self._catalog = catalog
        self._chain = chain
        self._assembler = assembler or DocumentAssembler()
        self._max_concurrent_scenes = max(1, max_concurrent_scenes)

    # ------------------------------------------------------------------
    # Read-only allowance check
    # ------------------------------------------------------------------

    async def check_allowance(self, credential: Optional[str]) -> Tuple[str, QuotaStatus]:
        """Verify the credential and report usage without mutating it."""
        identity = self._authorize(credential)
        status = await self._ledger.peek(self._ledger.key_for(identity))
        return identity, status

    # ------------------------------------------------------------------
    # Batch execution
    # ------------------------------------------------------------------

    async def run_batch(
        self,
        *,
        credential: Optional[str],
        upload: PhotoSource,
        batch_id: Optional[str] = None,
        emitter: Optional[BatchEventEmitter] = None,
    ) -> BatchResult:
        """
        Drive one batch from UNVERIFIED to the hand-off to ASSEMBLING.
        """
        emitter = emitter or NullEventEmitter()
        batch_id = batch_id or str(uuid4())
        state = BatchState.UNVERIFIED

        await self._emit(emitter, batch_id, BatchEventType.BATCH_STARTED)

        try:
            # ----------------------------------------------------------
            # 1. Identity
            # ----------------------------------------------------------
            identity = self._authorize(credential)
            state = BatchState.AUTHORIZED
            await self._emit(emitter, batch_id, BatchEventType.AUTHORIZED)

            # ----------------------------------------------------------
            # 2. Allowance (non-mutating)
            # ----------------------------------------------------------
            key = self._ledger.key_for(identity)
            quota = await self._ledger.peek(key)
            if quota.exhausted:
                raise QuotaExhausted(
                    used=quota.used,
                    remaining=quota.remaining,
                )
            state = BatchState.QUOTA_CHECKED
            await self._emit(
                emitter,
                batch_id,
                BatchEventType.QUOTA_CHECKED,
                {
                    "used": quota.used,
                    "remaining": quota.remaining,
                    "unlimited": quota.unlimited,
                },
            )

            # ----------------------------------------------------------
            # 3. Photos
            # ----------------------------------------------------------
            photos = await upload.read()
            state = BatchState.UPLOADED
            await self._emit(emitter, batch_id, BatchEventType.UPLOADED)

            # ----------------------------------------------------------
            # 4. Synthesis (never aborts on a single scene)
            # ----------------------------------------------------------
            state = BatchState.SYNTHESIZING
            try:
                artifacts = await self._synthesize(photos, batch_id, emitter)
            finally:
                await upload.release()
                await self._emit(
                    emitter, batch_id, BatchEventType.UPLOAD_RELEASED
                )

            # ----------------------------------------------------------
            # 5. Ledger commit (exactly once per batch)
            # ----------------------------------------------------------
            state = BatchState.LEDGERING
            await self._ledger.consume(key)
            await self._emit(emitter, batch_id, BatchEventType.LEDGER_COMMITTED)

        except SceneSwapError as exc:
            logger.info(
                "batch_rejected",
                extra={
                    "batch_id": batch_id,
                    "state": state.value,
                    "code": exc.code,
                },
            )
            await self._emit(
                emitter,
                batch_id,
                BatchEventType.BATCH_REJECTED,
                {"state": state.value, "code": exc.code},
            )
            raise

        finally:
            await upload.release()

        logger.info(
            "batch_synthesized",
            extra={
                "batch_id": batch_id,
                "levels": [a.degradation_level.value for a in artifacts],
            },
        )
        return BatchResult(
            batch_id=batch_id,
            artifacts=artifacts,
            quota_before=quota,
        )

    async def assemble(
        self,
        result: BatchResult,
        sink: BinaryIO,
        *,
        emitter: Optional[BatchEventEmitter] = None,
    ) -> AssemblyReport:
        """ASSEMBLING -> DONE. Renders the document into ``sink``."""
        emitter = emitter or NullEventEmitter()

        report = await anyio.to_thread.run_sync(
            self._assembler.write,
            result.artifacts,
            sink,
        )

        await self._emit(
            emitter,
            result.batch_id,
            BatchEventType.DOCUMENT_ASSEMBLED,
            {
                "page_count": report.page_count,
                "placeholders": report.placeholder_scenes,
            },
        )
        await self._emit(emitter, result.batch_id, BatchEventType.BATCH_COMPLETED)
        return report

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _authorize(self, credential: Optional[str]) -> str:
        if not credential:
            raise AuthError("No token")
        return self._verifier.verify(credential)

    async def _synthesize(
        self,
        photos: SourcePhotos,
        batch_id: str,
        emitter: BatchEventEmitter,
    ) -> List[Artifact]:
        scenes = self._catalog.scenes
        results: List[Optional[Artifact]] = [None] * len(scenes)

        async def produce(index: int, scene: SceneDescriptor) -> None:
            artifact = await self._chain.produce(scene, photos)
            results[index] = artifact
            await self._emit(
                emitter,
                batch_id,
                BatchEventType.SCENE_COMPLETED,
                {
                    "index": index,
                    "scene": scene.name,
                    "degradation_level": artifact.degradation_level.value,
                    "strategy": artifact.strategy,
                },
            )

        if self._max_concurrent_scenes == 1:
            for index, scene in enumerate(scenes):
                await produce(index, scene)
        else:
            limiter = anyio.CapacityLimiter(self._max_concurrent_scenes)

            async def bounded(index: int, scene: SceneDescriptor) -> None:
                async with limiter:
                    await produce(index, scene)

            async with anyio.create_task_group() as tg:
                for index, scene in enumerate(scenes):
                    tg.start_soon(bounded, index, scene)

        artifacts = [a for a in results if a is not None]
        if len(artifacts) != len(scenes):
            raise RuntimeError("Synthesis produced fewer artifacts than scenes")
        return artifacts

    @staticmethod
    async def _emit(
        emitter: BatchEventEmitter,
        batch_id: str,
        event_type: BatchEventType,
        details: Optional[dict] = None,
    ) -> None:
        try:
            await emitter.emit(
                BatchEvent(
                    batch_id=batch_id,
                    event_type=event_type,
                    details=details,
                )
            )
        except Exception:
            logger.warning(
                "event_emission_failed",
                extra={"batch_id": batch_id, "event_type": event_type.value},
            )
