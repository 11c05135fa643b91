from .models import BatchEvent, BatchEventType
from .emitter import BatchEventEmitter, LoggingEventEmitter, NullEventEmitter

__all__ = [
    "BatchEvent",
    "BatchEventType",
    "BatchEventEmitter",
    "LoggingEventEmitter",
    "NullEventEmitter",
]
