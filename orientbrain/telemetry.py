"""
Telemetry capability consumed by the resolver core.

The simulation host implements `TelemetrySource`; every read may fail, so the
contract returns Optional values and the `safe_*` helpers below turn raised
exceptions into None. Callers substitute the documented default themselves.

`SnapshotTelemetry` is an in-memory implementation driven by explicit setters.
It backs the HTTP facade, the examples and the test-suite.
"""
from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, Optional, Tuple

log = logging.getLogger(__name__)

Vec3 = Tuple[float, float, float]

# Property names understood by every TelemetrySource
PROP_PITCH = "eye_angles.pitch"
PROP_YAW = "eye_angles.yaw"
PROP_SIM_TIME = "simulation_time"
PROP_OLD_SIM_TIME = "old_simulation_time"
PROP_POSTURE = "duck_amount"
PROP_FLAGS = "flags"
PROP_VELOCITY = ("velocity.x", "velocity.y", "velocity.z")
PROP_ORIGIN = ("origin.x", "origin.y", "origin.z")

FLAG_ON_GROUND = 1

HITBOX_HEAD = 0
HITBOX_PELVIS = 2

ANIMATION_LAYER_COUNT = 14


def layer_prop(index: int, name: str) -> str:
    return f"anim_layer.{index}.{name}"


class TelemetrySource(ABC):
    """Read-only view of the simulation snapshot for the current frame."""

    @abstractmethod
    def read_property(self, entity_id: int, name: str) -> Optional[float]:
        ...

    @abstractmethod
    def is_alive(self, entity_id: int) -> bool:
        ...

    @abstractmethod
    def trace_visibility(self, from_id: Optional[int], from_point: Vec3, to_point: Vec3) -> Optional[Tuple[float, Optional[int]]]:
        """Line-of-sight trace; returns (unobstructed fraction, hit entity id)."""
        ...

    @abstractmethod
    def hitbox_position(self, entity_id: int, hitbox_index: int) -> Optional[Vec3]:
        ...

    @abstractmethod
    def current_ping(self, entity_id: int) -> Optional[int]:
        ...

    @abstractmethod
    def choked_commands(self) -> int:
        ...

    @abstractmethod
    def now(self) -> float:
        ...

    @abstractmethod
    def tick_count(self) -> int:
        ...

    @abstractmethod
    def local_entity_id(self) -> Optional[int]:
        ...

    @abstractmethod
    def eye_position(self) -> Optional[Vec3]:
        """Local viewpoint."""
        ...

    def latency(self) -> Optional[float]:
        """Round-trip latency in seconds; defaults to the local entity's ping."""
        local = self.local_entity_id()
        if local is None:
            return None
        ping = self.current_ping(local)
        return None if ping is None else ping / 1000.0


# ---------------------- safe access ----------------------

def safe_read(source: TelemetrySource, entity_id: int, name: str) -> Optional[float]:
    try:
        value = source.read_property(entity_id, name)
    except Exception as e:
        log.debug("read_property(%s, %s) failed: %s", entity_id, name, e)
        return None
    if value is None:
        return None
    try:
        value = float(value)
    except (TypeError, ValueError):
        return None
    # nan/inf would survive normalize_angle and poison every history
    return value if math.isfinite(value) else None


def read_or(source: TelemetrySource, entity_id: int, name: str, default: float = 0.0) -> float:
    value = safe_read(source, entity_id, name)
    return default if value is None else value


def read_vector(source: TelemetrySource, entity_id: int, names: Iterable[str]) -> Vec3:
    x, y, z = (read_or(source, entity_id, n, 0.0) for n in names)
    return (x, y, z)


def safe_alive(source: TelemetrySource, entity_id: int) -> bool:
    try:
        return bool(source.is_alive(entity_id))
    except Exception as e:
        log.debug("is_alive(%s) failed: %s", entity_id, e)
        return False


def safe_hitbox(source: TelemetrySource, entity_id: int, hitbox_index: int) -> Optional[Vec3]:
    try:
        pos = source.hitbox_position(entity_id, hitbox_index)
    except Exception as e:
        log.debug("hitbox_position(%s, %s) failed: %s", entity_id, hitbox_index, e)
        return None
    if pos is None:
        return None
    try:
        x, y, z = (float(pos[0]), float(pos[1]), float(pos[2]))
    except (TypeError, ValueError, IndexError) as e:
        log.debug("hitbox_position(%s, %s) malformed: %s", entity_id, hitbox_index, e)
        return None
    if not (math.isfinite(x) and math.isfinite(y) and math.isfinite(z)):
        return None
    return (x, y, z)


def safe_trace(source: TelemetrySource, from_id: Optional[int], from_point: Vec3, to_point: Vec3) -> Optional[Tuple[float, Optional[int]]]:
    try:
        return source.trace_visibility(from_id, from_point, to_point)
    except Exception as e:
        log.debug("trace_visibility failed: %s", e)
        return None


def safe_ping(source: TelemetrySource, entity_id: int) -> int:
    try:
        ping = source.current_ping(entity_id)
    except Exception as e:
        log.debug("current_ping(%s) failed: %s", entity_id, e)
        return 0
    return int(ping) if ping else 0


def safe_choke(source: TelemetrySource) -> int:
    try:
        return int(source.choked_commands())
    except Exception as e:
        log.debug("choked_commands failed: %s", e)
        return 0


def safe_latency(source: TelemetrySource) -> float:
    try:
        latency = source.latency()
    except Exception as e:
        log.debug("latency failed: %s", e)
        return 0.0
    return float(latency) if latency and latency > 0 else 0.0


def is_visible_trace(result: Optional[Tuple[float, Optional[int]]], entity_id: int, threshold: float) -> bool:
    if result is None:
        return False
    try:
        fraction, hit_id = result
        return float(fraction) > threshold or hit_id == entity_id
    except (TypeError, ValueError) as e:
        log.debug("malformed trace result %r: %s", result, e)
        return False


# ---------------------- in-memory source ----------------------

@dataclass
class EntitySnapshot:
    alive: bool = True
    props: Dict[str, float] = field(default_factory=dict)
    hitboxes: Dict[int, Vec3] = field(default_factory=dict)
    ping: int = 0


class SnapshotTelemetry(TelemetrySource):
    """Scriptable telemetry: the host (or a test) sets values, the core reads them.

    Visibility defaults to fully unobstructed; pass `visibility` to model
    occlusion as a callable (from_point, to_point) -> fraction.
    """

    def __init__(
        self,
        local_id: int = 1,
        eye: Vec3 = (0.0, 0.0, 64.0),
        latency: float = 0.0,
        choke: int = 0,
        visibility: Optional[Callable[[Vec3, Vec3], float]] = None,
    ):
        self.local_id = local_id
        self.eye = eye
        self.latency_s = latency
        self.choke = choke
        self.visibility = visibility
        self.clock = 0.0
        self.tick = 0
        self.entities: Dict[int, EntitySnapshot] = {}

    # --- host side ---
    def entity(self, entity_id: int) -> EntitySnapshot:
        if entity_id not in self.entities:
            self.entities[entity_id] = EntitySnapshot()
        return self.entities[entity_id]

    def advance(self, dt: float, ticks: int = 1) -> None:
        self.clock += dt
        self.tick += ticks

    def set_props(self, entity_id: int, **props: float) -> None:
        snap = self.entity(entity_id)
        for k, v in props.items():
            snap.props[k] = float(v)

    def set_orientation(self, entity_id: int, pitch: float, yaw: float) -> None:
        snap = self.entity(entity_id)
        snap.props[PROP_PITCH] = float(pitch)
        snap.props[PROP_YAW] = float(yaw)

    def set_position(self, entity_id: int, pos: Vec3) -> None:
        snap = self.entity(entity_id)
        for name, v in zip(PROP_ORIGIN, pos):
            snap.props[name] = float(v)

    def set_velocity(self, entity_id: int, vel: Vec3) -> None:
        snap = self.entity(entity_id)
        for name, v in zip(PROP_VELOCITY, vel):
            snap.props[name] = float(v)

    def set_sim_time(self, entity_id: int, current: float, old: Optional[float] = None) -> None:
        snap = self.entity(entity_id)
        prev = snap.props.get(PROP_SIM_TIME, 0.0)
        snap.props[PROP_OLD_SIM_TIME] = float(prev if old is None else old)
        snap.props[PROP_SIM_TIME] = float(current)

    def set_layer(self, entity_id: int, index: int, weight: float, cycle: float, sequence: int = 0) -> None:
        snap = self.entity(entity_id)
        snap.props[layer_prop(index, "weight")] = float(weight)
        snap.props[layer_prop(index, "cycle")] = float(cycle)
        snap.props[layer_prop(index, "sequence")] = float(sequence)

    def set_hitbox(self, entity_id: int, index: int, pos: Vec3) -> None:
        self.entity(entity_id).hitboxes[index] = pos

    def kill(self, entity_id: int) -> None:
        self.entity(entity_id).alive = False

    # --- TelemetrySource ---
    def read_property(self, entity_id: int, name: str) -> Optional[float]:
        snap = self.entities.get(entity_id)
        if snap is None:
            return None
        return snap.props.get(name)

    def is_alive(self, entity_id: int) -> bool:
        snap = self.entities.get(entity_id)
        return snap is not None and snap.alive

    def trace_visibility(self, from_id: Optional[int], from_point: Vec3, to_point: Vec3) -> Optional[Tuple[float, Optional[int]]]:
        if self.visibility is None:
            return 1.0, None
        return float(self.visibility(from_point, to_point)), None

    def hitbox_position(self, entity_id: int, hitbox_index: int) -> Optional[Vec3]:
        snap = self.entities.get(entity_id)
        if snap is None:
            return None
        return snap.hitboxes.get(hitbox_index)

    def current_ping(self, entity_id: int) -> Optional[int]:
        snap = self.entities.get(entity_id)
        return None if snap is None else snap.ping

    def choked_commands(self) -> int:
        return self.choke

    def now(self) -> float:
        return self.clock

    def tick_count(self) -> int:
        return self.tick

    def local_entity_id(self) -> Optional[int]:
        return self.local_id

    def eye_position(self) -> Optional[Vec3]:
        return self.eye

    def latency(self) -> Optional[float]:
        return self.latency_s
