"""
Batch domain schemas.

These models are the contract between the catalog, the synthesis
strategy chain, the orchestrator and the document assembler.

Invariant carried by BatchResult:
    len(artifacts) == len(catalog), in catalog order, always.
"""

from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class DegradationLevel(str, Enum):
    """
    How far an artifact fell back from full external synthesis.

    Ordered from best to worst; see ``rank``.
    """

    FULL = "full"
    SYNTHETIC_COMPOSITE = "synthetic_composite"
    CATALOG_ONLY = "catalog_only"
    ECHO = "echo"
    MISSING = "missing"

    @property
    def rank(self) -> int:
        return _DEGRADATION_ORDER.index(self)


_DEGRADATION_ORDER = [
    DegradationLevel.FULL,
    DegradationLevel.SYNTHETIC_COMPOSITE,
    DegradationLevel.CATALOG_ONLY,
    DegradationLevel.ECHO,
    DegradationLevel.MISSING,
]


# ---------------------------------------------------------------------------
# Scene and inputs
# ---------------------------------------------------------------------------

class SceneDescriptor(BaseModel):
    """One catalog entry. Loaded once per process, never mutated."""

    name: str = Field(..., min_length=1)
    asset_available: bool

    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def label(self) -> str:
        """Human-readable scene name (file suffix stripped)."""
        stem, dot, _ = self.name.rpartition(".")
        return stem if dot and stem else self.name


class SourcePhotos(BaseModel):
    """The two reference photos supplied for a whole batch."""

    source: bytes
    target: bytes
    source_content_type: str = "image/png"
    target_content_type: str = "image/png"

    model_config = ConfigDict(frozen=True, extra="forbid")


# ---------------------------------------------------------------------------
# Outputs
# ---------------------------------------------------------------------------

class Artifact(BaseModel):
    """Final image bytes for one scene, tagged with its degradation level."""

    scene: SceneDescriptor
    image_bytes: bytes
    degradation_level: DegradationLevel
    strategy: Optional[str] = Field(
        None,
        description="Name of the strategy that produced the bytes",
    )

    model_config = ConfigDict(frozen=True, extra="forbid")


class QuotaStatus(BaseModel):
    """Non-mutating view of an identity's allowance."""

    used: int = Field(..., ge=0)
    remaining: int = Field(..., ge=0)
    allowance: int = Field(..., ge=0)
    unlimited: bool = False

    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def exhausted(self) -> bool:
        return not self.unlimited and self.remaining <= 0


class BatchResult(BaseModel):
    """Outcome of a completed synthesis batch, ready for assembly."""

    batch_id: str
    artifacts: List[Artifact]
    quota_before: QuotaStatus

    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def remaining_after(self) -> int:
        if self.quota_before.unlimited:
            return self.quota_before.remaining
        return max(0, self.quota_before.remaining - 1)

    def degradation_summary(self) -> List[str]:
        return [a.degradation_level.value for a in self.artifacts]
