from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


# ----------------------------------------------------------------------
# Event Types (Finite)
# ----------------------------------------------------------------------
class BatchEventType(str, Enum):
    """
    Progression events emitted while a batch moves through its states.

    NOTE:
    This enum is finite. New entries must preserve observational
    semantics.
    """

    BATCH_STARTED = "batch_started"
    AUTHORIZED = "authorized"
    QUOTA_CHECKED = "quota_checked"
    UPLOADED = "uploaded"
    SCENE_COMPLETED = "scene_completed"
    UPLOAD_RELEASED = "upload_released"
    LEDGER_COMMITTED = "ledger_committed"
    DOCUMENT_ASSEMBLED = "document_assembled"
    BATCH_COMPLETED = "batch_completed"
    BATCH_REJECTED = "batch_rejected"


# ----------------------------------------------------------------------
# Event Model
# ----------------------------------------------------------------------
class BatchEvent(BaseModel):
    """
    An immutable observation of a state transition within one batch.

    Events are strictly observational and never carry identities or
    image bytes.
    """

    event_id: UUID = Field(default_factory=uuid4)
    batch_id: str = Field(..., description="The batch identifier")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    event_type: BatchEventType

    # Optional contextual metadata (scene, degradation level, counts, ...)
    details: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )
