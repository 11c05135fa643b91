import logging
import sys
from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError, version
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sceneswap.app.api.routes import router as preview_router
from sceneswap.app.auth.tokens import (
    JwtTokenVerifier,
    MagicLinkIssuer,
    TokenVerifier,
    UnconfiguredTokenVerifier,
)
from sceneswap.app.catalog.catalog import load_scene_catalog
from sceneswap.app.core.capabilities import probe_capabilities
from sceneswap.app.core.config import Settings, get_settings
from sceneswap.app.core.errors import install_error_handlers
from sceneswap.app.core.logging_setup import configure_logging
from sceneswap.app.document.assembler import DocumentAssembler
from sceneswap.app.events import LoggingEventEmitter
from sceneswap.app.ledger.ledger import QuotaLedger
from sceneswap.app.ledger.store import build_quota_store
from sceneswap.app.orchestrator.orchestrator import BatchOrchestrator
from sceneswap.app.synthesis.chain import StrategyChain
from sceneswap.app.synthesis.compositor import ImageCompositor
from sceneswap.app.synthesis.provider import OpenAIImageProvider

logger = logging.getLogger("sceneswap.main")


def get_app_version() -> str:
    """
    Resolve application version deterministically.

    Falls back to the source version when the package is not installed.
    """
    try:
        return version("sceneswap")
    except PackageNotFoundError:
        return "0.3.0"


def _build_verifier(settings: Settings) -> TokenVerifier:
    if settings.jwt_secret is None or not settings.jwt_secret.get_secret_value():
        logger.warning("jwt_secret_missing_token_checks_disabled")
        return UnconfiguredTokenVerifier()
    return JwtTokenVerifier(settings.jwt_secret.get_secret_value())


def _lifespan_for(settings: Optional[Settings]):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager.

        Guarantees:
        - Fail-fast startup on malformed configuration
        - Capabilities probed exactly once
        - Pre-allocated shared transports
        - Missing collaborators degrade the service instead of blocking it
        """
        # --------------------------------------------------------------
        # Load and validate configuration (FAIL FAST)
        # --------------------------------------------------------------
        try:
            resolved = settings or get_settings()
        except Exception:
            logger.exception("invalid_sceneswap_configuration")
            raise

        configure_logging(resolved.log_level)

        logger.info(
            "sceneswap_startup_begin",
            extra={"service": "sceneswap", "version": get_app_version()},
        )

        app.state.settings = resolved

        # --------------------------------------------------------------
        # Shared HTTP client (quota store)
        # --------------------------------------------------------------
        app.state.http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(
                timeout=resolved.quota_store_timeout_seconds,
                connect=min(5.0, resolved.quota_store_timeout_seconds),
            ),
            limits=httpx.Limits(
                max_keepalive_connections=20,
                max_connections=50,
            ),
            headers={"User-Agent": f"sceneswap/{get_app_version()}"},
        )

        # --------------------------------------------------------------
        # Capabilities, catalog and synthesis chain
        # --------------------------------------------------------------
        capabilities = probe_capabilities(resolved)
        app.state.capabilities = capabilities

        catalog = load_scene_catalog(resolved.scenes_dir, resolved.scene_names)
        app.state.catalog = catalog

        provider: Optional[OpenAIImageProvider] = None
        if capabilities.provider_enabled:
            provider = OpenAIImageProvider(
                api_key=resolved.openai_api_key.get_secret_value(),
                model=resolved.openai_image_model,
                timeout_seconds=resolved.provider_timeout_seconds,
            )
        app.state.provider = provider

        chain = StrategyChain.from_capabilities(
            capabilities,
            catalog=catalog,
            provider=provider,
            compositor=ImageCompositor() if capabilities.compositor_available else None,
            provider_size=resolved.provider_image_size,
            provider_timeout_seconds=resolved.provider_timeout_seconds,
            provider_photo_max_side=resolved.provider_photo_max_side,
        )
        logger.info(
            "strategy_chain_built",
            extra={"strategies": chain.strategy_names},
        )

        # --------------------------------------------------------------
        # Ledger and identity
        # --------------------------------------------------------------
        ledger = QuotaLedger(
            build_quota_store(resolved, app.state.http_client),
            allowance=resolved.free_allowance,
            ttl_seconds=resolved.quota_ttl_seconds,
            timeout_seconds=resolved.quota_store_timeout_seconds,
            key_prefix=resolved.quota_key_prefix,
        )

        verifier = _build_verifier(resolved)

        app.state.magic_link_issuer = None
        if isinstance(verifier, JwtTokenVerifier) and resolved.public_base_url:
            app.state.magic_link_issuer = MagicLinkIssuer(
                verifier,
                public_base_url=str(resolved.public_base_url),
                ttl_seconds=resolved.magic_link_ttl_seconds,
            )

        app.state.orchestrator = BatchOrchestrator(
            verifier=verifier,
            ledger=ledger,
            catalog=catalog,
            chain=chain,
            assembler=DocumentAssembler(),
            max_concurrent_scenes=resolved.max_concurrent_scenes,
        )
        app.state.event_emitter = LoggingEventEmitter(level=logging.DEBUG)

        logger.info(
            "sceneswap_startup_complete",
            extra={
                "scene_count": len(catalog),
                "ledger_configured": ledger.configured,
            },
        )

        try:
            yield
        finally:
            logger.info("sceneswap_shutdown_begin")

            # Idempotent shutdown
            try:
                await app.state.http_client.aclose()
            except Exception:
                logger.warning("http_client_shutdown_failed")

            if provider is not None:
                try:
                    await provider.close()
                except Exception:
                    logger.warning("provider_shutdown_failed")

    return lifespan


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Application factory for the SceneSwap preview service.

    ``settings`` overrides environment parsing (used by tests).
    """
    allowed_origins = (settings or _cors_settings()).allowed_origins

    app = FastAPI(
        title="SceneSwap",
        description=(
            "Metered face-swap preview service streaming a watermarked "
            "multi-scene PDF."
        ),
        version=get_app_version(),
        docs_url="/docs",
        redoc_url=None,
        lifespan=_lifespan_for(settings),
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
        expose_headers=["X-Batch-ID", "X-Quota-Remaining", "Content-Disposition"],
    )

    install_error_handlers(app)
    app.include_router(preview_router)

    @app.get(
        "/healthz",
        tags=["Monitoring"],
        summary="Liveness probe",
    )
    async def health_check():
        """
        Verifies that the runtime is alive.

        NOTE:
        - Does NOT call the quota store
        - Does NOT call the synthesis provider
        """
        capabilities = getattr(app.state, "capabilities", None)
        return {
            "status": "ok",
            "service": "sceneswap",
            "version": app.version,
            "runtime": f"python {sys.version.split()[0]}",
            "provider_enabled": bool(capabilities and capabilities.provider_enabled),
        }

    return app


def _cors_settings() -> Settings:
    """
    CORS middleware must be installed before startup, so the origin list
    is read eagerly. Malformed configuration still fails in the lifespan.
    """
    try:
        return Settings()
    except Exception:
        logger.warning("cors_settings_unavailable_default_origins")
        return Settings.model_construct()


app = create_app()
