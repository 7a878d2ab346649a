from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple

from .ring import RingBuffer

log = logging.getLogger(__name__)

NEUTRAL_CONFIDENCE = 0.5
DESYNC_HISTORY_SIZE = 10
TICK_INTERVAL_HISTORY_SIZE = 10


class CorrectionSource(str, Enum):
    NONE = "none"
    DEFENSIVE = "defensive"
    FAKE_POSTURE = "fake_posture"
    EXPLOIT = "exploit"
    JITTER = "jitter"
    DESYNC = "desync"
    ADAPTIVE = "adaptive"


class ExploitKind(str, Enum):
    NONE = "none"
    HIGH_RATE = "high_rate"
    LOW_RATE = "low_rate"


# ---------------------- samples ----------------------

@dataclass(frozen=True)
class OrientationSample:
    pitch: float
    yaw: float
    time: float


@dataclass(frozen=True)
class SimTimeSample:
    current: float
    old: float
    time: float
    tick: int


@dataclass(frozen=True)
class VelocitySample:
    x: float
    y: float
    z: float
    speed: float
    time: float


@dataclass(frozen=True)
class PositionSample:
    x: float
    y: float
    z: float
    time: float

    def at_origin(self) -> bool:
        return self.x == 0 and self.y == 0 and self.z == 0

    def as_tuple(self) -> Tuple[float, float, float]:
        return (self.x, self.y, self.z)


@dataclass(frozen=True)
class AnimationLayer:
    index: int
    weight: float
    cycle: float
    sequence: int


@dataclass(frozen=True)
class AnimationSample:
    layers: Tuple[AnimationLayer, ...]
    time: float

    def layer(self, index: int) -> Optional[AnimationLayer]:
        for layer in self.layers:
            if layer.index == index:
                return layer
        return None


@dataclass(frozen=True)
class ShotOutcome:
    hit: bool
    hitgroup: int
    timestamp: float
    damage: Optional[float] = None
    reason: Optional[str] = None


# ---------------------- detector states ----------------------

@dataclass
class JitterState:
    detected: bool = False
    range: float = 0.0
    frequency: float = 0.0
    last_flip_time: float = 0.0
    pattern: str = "unknown"
    max_diff: float = 0.0
    confidence: float = NEUTRAL_CONFIDENCE
    updated_at: float = 0.0


@dataclass(frozen=True)
class DesyncObservation:
    side: int
    time: float


@dataclass
class DesyncState:
    side: int = 0  # -1 left, 0 unknown, 1 right
    amount: float = 0.0
    confidence: float = NEUTRAL_CONFIDENCE
    left_visibility: float = 0.0
    right_visibility: float = 0.0
    history: RingBuffer[DesyncObservation] = field(default_factory=lambda: RingBuffer(DESYNC_HISTORY_SIZE))
    updated_at: float = 0.0


@dataclass
class PostureSpoofState:
    detected: bool = False
    classic: bool = False
    animation_breaking: bool = False
    micro_movement: bool = False
    anim_layer: bool = False
    posture: float = 0.0
    confidence: float = NEUTRAL_CONFIDENCE
    updated_at: float = 0.0


@dataclass
class ExploitState:
    active: bool = False
    kind: ExploitKind = ExploitKind.NONE
    confidence: float = NEUTRAL_CONFIDENCE
    evidence: float = 0.0
    last_detection: float = 0.0
    detection_count: int = 0
    last_tick: int = 0
    tick_intervals: RingBuffer[int] = field(default_factory=lambda: RingBuffer(TICK_INTERVAL_HISTORY_SIZE))
    updated_at: float = 0.0


@dataclass
class DefensiveState:
    detected: bool = False
    static: bool = False
    animation_breaking: bool = False
    rapid_flick: bool = False
    sim_time_anomaly: bool = False
    layer_signature: bool = False
    lag_comp_abuse: bool = False
    last_detection: float = 0.0
    confidence: float = NEUTRAL_CONFIDENCE
    correction_angle: float = 60.0
    updated_at: float = 0.0


# ---------------------- resolver / learner state ----------------------

@dataclass
class Orientation:
    pitch: float = 0.0
    yaw: float = 0.0


@dataclass
class CorrectionFactor:
    yaw_offset: float = 0.0
    pitch_offset: float = 0.0


@dataclass
class ResolverMetadata:
    applied: bool = False
    source: CorrectionSource = CorrectionSource.NONE
    confidence: float = NEUTRAL_CONFIDENCE
    correction_magnitude: float = 0.0
    original_yaw: float = 0.0


@dataclass
class BucketMemory:
    side: int
    amount: float
    yaw_offset: float
    pitch_offset: float
    hit_ratio: float
    last_update: float


@dataclass
class AdaptiveLearning:
    success_count: int = 0
    fail_count: int = 0
    last_update: float = 0.0
    yaw_offset: float = 0.0
    pitch_offset: float = 0.0
    per_bucket_memory: Dict[str, BucketMemory] = field(default_factory=dict)


@dataclass(frozen=True)
class RewindRecord:
    tick: int
    simulation_time: float
    old_simulation_time: float
    position: Tuple[float, float, float]
    age: float
    resolved: Tuple[float, float]


@dataclass
class Backtrack:
    best_tick: int = 0
    best_sample_time: float = 0.0
    records: List[RewindRecord] = field(default_factory=list)


@dataclass
class NetworkEstimate:
    ping: int = 0
    choke: int = 0
    interp_ratio: float = 2.0
    optimal_rewind_ms: float = 200.0


@dataclass
class LocomotionState:
    in_air: bool = False
    crouching: bool = False
    running: bool = False
    walking: bool = False
    standing: bool = False
    slow_walking: bool = False
    fake_posture: bool = False
    defensive: bool = False

    def bucket_key(self) -> str:
        """Coarse behavioral-state descriptor used to index remembered corrections."""
        parts = ["air" if self.in_air else "ground"]
        if self.crouching:
            parts.append("crouch")
        elif self.fake_posture:
            parts.append("fakeduck")
        else:
            parts.append("stand")
        if self.running:
            parts.append("run")
        elif self.walking:
            parts.append("walk")
        elif self.slow_walking:
            parts.append("slowwalk")
        else:
            parts.append("still")
        if self.defensive:
            parts.append("defensive")
        return "_".join(parts)


# ---------------------- tracked entity ----------------------

@dataclass
class TrackedEntity:
    entity_id: int
    orientation_history: RingBuffer[OrientationSample]
    simulation_time_history: RingBuffer[SimTimeSample]
    posture_history: RingBuffer[float]
    velocity_history: RingBuffer[VelocitySample]
    position_history: RingBuffer[PositionSample]
    animation_history: RingBuffer[AnimationSample]
    shot_history: RingBuffer[ShotOutcome]

    jitter_state: JitterState = field(default_factory=JitterState)
    desync_state: DesyncState = field(default_factory=DesyncState)
    posture_spoof_state: PostureSpoofState = field(default_factory=PostureSpoofState)
    exploit_state: ExploitState = field(default_factory=ExploitState)
    defensive_state: DefensiveState = field(default_factory=DefensiveState)

    correction_factor: CorrectionFactor = field(default_factory=CorrectionFactor)
    resolved_orientation: Orientation = field(default_factory=Orientation)
    previous_resolved_orientation: Orientation = field(default_factory=Orientation)
    resolver_metadata: ResolverMetadata = field(default_factory=ResolverMetadata)
    adaptive_learning: AdaptiveLearning = field(default_factory=AdaptiveLearning)
    backtrack: Backtrack = field(default_factory=Backtrack)
    network: NetworkEstimate = field(default_factory=NetworkEstimate)
    locomotion: LocomotionState = field(default_factory=LocomotionState)

    last_update_time: float = 0.0
    last_visible_time: float = 0.0
    hit_count: int = 0
    miss_count: int = 0
    accuracy: Optional[float] = None
    last_hit_time: float = 0.0
    last_miss_time: float = 0.0
    last_shot_time: float = 0.0
    last_shot_hitgroup: Optional[int] = None

    @staticmethod
    def create(entity_id: int, history_size: int = 24, shot_history_size: int = 16) -> "TrackedEntity":
        return TrackedEntity(
            entity_id=entity_id,
            orientation_history=RingBuffer(history_size),
            simulation_time_history=RingBuffer(history_size),
            posture_history=RingBuffer(history_size),
            velocity_history=RingBuffer(history_size),
            position_history=RingBuffer(history_size),
            animation_history=RingBuffer(history_size),
            shot_history=RingBuffer(shot_history_size),
        )

    def recent_shots(self, limit: int = 5) -> Tuple[int, int]:
        """(hits, misses) over the newest `limit` shot outcomes."""
        hits = misses = 0
        for shot in self.shot_history.to_list()[:limit]:
            if shot.hit:
                hits += 1
            else:
                misses += 1
        return hits, misses


class EntityStore:
    """Keyed cache of tracked entities, owned by one update loop."""

    def __init__(self, history_size: int = 24, shot_history_size: int = 16):
        self.history_size = history_size
        self.shot_history_size = shot_history_size
        self._entities: Dict[int, TrackedEntity] = {}

    def get(self, entity_id: int) -> Optional[TrackedEntity]:
        return self._entities.get(entity_id)

    def get_or_create(self, entity_id: int) -> TrackedEntity:
        ent = self._entities.get(entity_id)
        if ent is None:
            ent = TrackedEntity.create(entity_id, self.history_size, self.shot_history_size)
            self._entities[entity_id] = ent
        return ent

    def evict_stale(self, now: float, threshold: float) -> int:
        stale = [eid for eid, ent in self._entities.items() if now - ent.last_update_time > threshold]
        for eid in stale:
            del self._entities[eid]
        if stale:
            log.debug("evicted %d stale entities: %s", len(stale), stale)
        return len(stale)

    def reset_all(self) -> None:
        self._entities.clear()

    def ids(self) -> List[int]:
        return list(self._entities.keys())

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._entities

    def __len__(self) -> int:
        return len(self._entities)

    def __iter__(self) -> Iterator[TrackedEntity]:
        return iter(list(self._entities.values()))
