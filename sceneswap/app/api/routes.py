import json
import logging
import tempfile
from typing import Annotated, Any, Dict, List, Optional

from fastapi import APIRouter, File, Header, Query, Request, UploadFile
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask

from sceneswap.app.api.uploads import PhotoUpload
from sceneswap.app.auth.tokens import MagicLinkIssuer, extract_credential
from sceneswap.app.core.config import Settings
from sceneswap.app.core.errors import InputError, SceneSwapError
from sceneswap.app.document.assembler import iter_chunks
from sceneswap.app.events import BatchEventEmitter, NullEventEmitter
from sceneswap.app.orchestrator.orchestrator import BatchOrchestrator

logger = logging.getLogger("sceneswap.api")

router = APIRouter(prefix="/api", tags=["Preview"])

# Documents larger than this spill from memory to a temporary file
SPOOL_MAX_MEMORY_BYTES = 8 * 1024 * 1024

PDF_FILENAME = "faceswap-preview.pdf"


# =============================================================================
# Dependency providers
# =============================================================================

def _orchestrator(request: Request) -> BatchOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise RuntimeError("orchestrator not initialized")
    return orchestrator


def _emitter(request: Request) -> BatchEventEmitter:
    return getattr(request.app.state, "event_emitter", None) or NullEventEmitter()


def _settings(request: Request) -> Settings:
    settings = getattr(request.app.state, "settings", None)
    if settings is None:
        raise RuntimeError("settings not initialized")
    return settings


# =============================================================================
# POST /api/faceswap-batch
# =============================================================================

@router.post(
    "/faceswap-batch",
    summary="Render every catalog scene with the caller's photos",
    response_class=StreamingResponse,
    responses={
        200: {
            "content": {"application/pdf": {}},
            "description": "Watermarked preview document, one page per scene",
        },
        400: {"description": "Missing, oversized or unsupported photos"},
        401: {"description": "Missing, invalid or expired token"},
        403: {"description": "Free allowance exhausted"},
    },
)
async def faceswap_batch(
    request: Request,
    source: Annotated[
        Optional[List[UploadFile]],
        File(description="Identity reference photo"),
    ] = None,
    target: Annotated[
        Optional[List[UploadFile]],
        File(description="Second identity reference photo"),
    ] = None,
    token: Annotated[Optional[str], Query()] = None,
    authorization: Annotated[Optional[str], Header()] = None,
) -> StreamingResponse:
    """
    Run one metered batch and stream the preview PDF.

    The allowance is consumed exactly once per successful batch,
    regardless of how many scenes degraded along the way.
    """
    settings = _settings(request)
    orchestrator = _orchestrator(request)
    emitter = _emitter(request)

    upload = PhotoUpload(
        source=source,
        target=target,
        max_bytes=settings.max_upload_bytes,
    )

    try:
        result = await orchestrator.run_batch(
            credential=extract_credential(authorization, token),
            upload=upload,
            emitter=emitter,
        )
    finally:
        await upload.release()

    spool = tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_MEMORY_BYTES)
    try:
        report = await orchestrator.assemble(result, spool, emitter=emitter)
    except BaseException:
        spool.close()
        raise

    logger.info(
        "batch_document_ready",
        extra={
            "batch_id": result.batch_id,
            "page_count": report.page_count,
            "placeholders": len(report.placeholder_scenes),
        },
    )

    return StreamingResponse(
        iter_chunks(spool),
        media_type="application/pdf",
        headers={
            "Content-Disposition": f"inline; filename={PDF_FILENAME}",
            "Cache-Control": "no-store",
            "X-Batch-ID": result.batch_id,
            "X-Quota-Remaining": str(result.remaining_after),
        },
        background=BackgroundTask(spool.close),
    )


# =============================================================================
# GET /api/check-free
# =============================================================================

@router.get(
    "/check-free",
    summary="Report the caller's remaining free batches without consuming one",
)
async def check_free(
    request: Request,
    token: Annotated[Optional[str], Query()] = None,
    authorization: Annotated[Optional[str], Header()] = None,
) -> Dict[str, Any]:
    credential = extract_credential(authorization, token)
    if not credential:
        raise InputError("Missing token")

    identity, status = await _orchestrator(request).check_allowance(credential)

    payload: Dict[str, Any] = {
        "ok": True,
        "email": identity,
        "used": status.used,
        "remaining": status.remaining,
    }
    if status.unlimited:
        payload["note"] = "no quota store"
    return payload


# =============================================================================
# POST /api/request-magic-link
# =============================================================================

@router.post(
    "/request-magic-link",
    summary="Issue a signed upload link for an e-mail address",
)
async def request_magic_link(request: Request) -> JSONResponse:
    """
    Delivery of the link is left to the caller; the link is returned.
    """
    settings = _settings(request)
    if settings.jwt_secret is None or not settings.jwt_secret.get_secret_value():
        raise SceneSwapError("Missing JWT_SECRET")

    issuer: Optional[MagicLinkIssuer] = getattr(
        request.app.state, "magic_link_issuer", None
    )
    if issuer is None:
        raise SceneSwapError("Missing PUBLIC_BASE_URL")

    raw = await request.body()
    if raw.strip():
        try:
            body = json.loads(raw)
        except ValueError:
            raise InputError("Bad JSON")
    else:
        body = {}

    if not isinstance(body, dict):
        raise InputError("Bad JSON")

    return JSONResponse(content=issuer.issue(body.get("email")))
