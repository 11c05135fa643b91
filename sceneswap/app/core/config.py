"""
Centralized configuration management for the SceneSwap service.

Pydantic v2 settings management to enforce strict validation,
zero secret leakage, and fast-failure on invalid configuration.

Variable names are read without a prefix so that the historical
deployment environment (JWT_SECRET, UPSTASH_REDIS_REST_URL,
OPENAI_API_KEY, USE_ECHO, FRONTEND_ORIGIN, ...) keeps working.
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated, List, Optional

from pydantic import AnyHttpUrl, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# -------------------------------------------------------------------------
# Reusable Type Aliases
# -------------------------------------------------------------------------

SensitiveEnv = Annotated[
    Optional[SecretStr],
    Field(
        default=None,
        description="Sensitive credential, redacted from logs",
    ),
]

DEFAULT_SCENE_NAMES: List[str] = [
    "Actor.png",
    "Artist.png",
    "Astronaut.png",
    "Athlete.png",
    "Doctor.png",
    "Firefighter.png",
    "Lawyer.png",
    "Musician.png",
    "Policeman.png",
    "Scientist.png",
]


# -------------------------------------------------------------------------
# Settings Model
# -------------------------------------------------------------------------

class Settings(BaseSettings):
    """
    Application settings parsed from the environment.

    Only malformed values fail fast. Missing optional collaborators
    (quota store, synthesis provider) degrade the service instead of
    blocking startup.
    """

    # ---------------------------------------------------------------------
    # Identity tokens
    # ---------------------------------------------------------------------

    jwt_secret: SensitiveEnv

    public_base_url: Annotated[
        Optional[AnyHttpUrl],
        Field(
            default=None,
            description="Base URL used to build magic upload links",
        ),
    ]

    magic_link_ttl_seconds: Annotated[
        int,
        Field(default=3600, ge=60, le=86400),
    ]

    # ---------------------------------------------------------------------
    # CORS
    # ---------------------------------------------------------------------

    frontend_origin: Annotated[
        str,
        Field(
            default="https://face-swap-site.vercel.app",
            description="Comma-separated list of allowed browser origins",
        ),
    ]

    # ---------------------------------------------------------------------
    # Quota ledger (Upstash Redis REST)
    # ---------------------------------------------------------------------

    upstash_redis_rest_url: Annotated[
        Optional[AnyHttpUrl],
        Field(default=None, description="Upstash REST endpoint"),
    ]
    upstash_redis_rest_token: SensitiveEnv

    quota_store_timeout_seconds: Annotated[
        float,
        Field(default=5.0, gt=0, le=30),
    ]
    free_allowance: Annotated[
        int,
        Field(default=10, ge=1, description="Free batches per identity"),
    ]
    quota_ttl_seconds: Annotated[
        int,
        Field(default=60 * 60 * 24 * 365, ge=1),
    ]
    quota_key_prefix: str = "free_count:"

    # ---------------------------------------------------------------------
    # Synthesis provider
    # ---------------------------------------------------------------------

    openai_api_key: SensitiveEnv
    use_echo: Annotated[
        bool,
        Field(
            default=False,
            description="Force the provider off even when a key is present",
        ),
    ]
    openai_image_model: str = "gpt-image-1"
    provider_image_size: Annotated[
        str,
        Field(default="1024x1024", pattern=r"^(auto|\d{3,4}x\d{3,4})$"),
    ]
    provider_timeout_seconds: Annotated[
        float,
        Field(default=60.0, gt=0, le=600),
    ]
    provider_photo_max_side: Annotated[
        int,
        Field(
            default=1024,
            ge=64,
            le=4096,
            description="Longest side of photos sent to the provider",
        ),
    ]

    # ---------------------------------------------------------------------
    # Scene catalog and batch execution
    # ---------------------------------------------------------------------

    scenes_dir: Path = Path("scenes")
    scene_names: List[str] = Field(
        default_factory=lambda: list(DEFAULT_SCENE_NAMES),
    )
    max_concurrent_scenes: Annotated[
        int,
        Field(default=1, ge=1, le=16),
    ]

    # ---------------------------------------------------------------------
    # Operational Boundaries
    # ---------------------------------------------------------------------

    max_upload_mb: Annotated[
        int,
        Field(
            default=8,
            ge=1,
            le=25,
            description="Per-photo upload limit",
        ),
    ]

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        frozen=True,
    )

    # ---------------------------------------------------------------------
    # Validators
    # ---------------------------------------------------------------------

    @field_validator("scene_names")
    @classmethod
    def scene_names_unique(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("scene_names must not be empty")
        if len(set(v)) != len(v):
            raise ValueError("scene_names must be unique")
        for name in v:
            if "/" in name or "\\" in name or name.startswith("."):
                raise ValueError(f"Invalid scene file name: {name!r}")
        return v

    @field_validator("log_level")
    @classmethod
    def log_level_known(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unsupported LOG_LEVEL '{v}'")
        return level

    # ---------------------------------------------------------------------
    # Derived values
    # ---------------------------------------------------------------------

    @property
    def allowed_origins(self) -> List[str]:
        return [
            origin.strip()
            for origin in self.frontend_origin.split(",")
            if origin.strip()
        ]

    @property
    def quota_store_configured(self) -> bool:
        return (
            self.upstash_redis_rest_url is not None
            and self.upstash_redis_rest_token is not None
            and bool(self.upstash_redis_rest_token.get_secret_value())
        )

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024


# -------------------------------------------------------------------------
# Settings Dependency Provider
# -------------------------------------------------------------------------

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Dependency injection provider for application settings.

    Uses an explicit singleton pattern within the FastAPI lifecycle.
    """
    return Settings()  # singleton within process
