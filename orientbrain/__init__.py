from .config import DesyncMode, ExploitMode, ResolverConfig
from .core import OrientBrain, ResolvedOrientation
from .events import HitEvent, MissEvent, ShotFiredEvent
from .rewind import RewindTarget
from .ring import RingBuffer
from .state import CorrectionSource, EntityStore, TrackedEntity
from .telemetry import SnapshotTelemetry, TelemetrySource

__all__ = [
    "OrientBrain",
    "ResolvedOrientation",
    "ResolverConfig",
    "DesyncMode",
    "ExploitMode",
    "HitEvent",
    "MissEvent",
    "ShotFiredEvent",
    "RewindTarget",
    "RingBuffer",
    "CorrectionSource",
    "EntityStore",
    "TrackedEntity",
    "SnapshotTelemetry",
    "TelemetrySource",
]
