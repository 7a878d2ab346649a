from __future__ import annotations

import logging
import random
from typing import Optional, Tuple

from .config import ResolverConfig
from .detectors import DetectionContext, run_detectors
from .learner import AdaptiveLearner
from .state import (
    AnimationLayer,
    AnimationSample,
    EntityStore,
    OrientationSample,
    PositionSample,
    SimTimeSample,
    TrackedEntity,
    VelocitySample,
)
from .telemetry import (
    ANIMATION_LAYER_COUNT,
    FLAG_ON_GROUND,
    HITBOX_HEAD,
    PROP_FLAGS,
    PROP_OLD_SIM_TIME,
    PROP_ORIGIN,
    PROP_PITCH,
    PROP_POSTURE,
    PROP_SIM_TIME,
    PROP_VELOCITY,
    PROP_YAW,
    TelemetrySource,
    is_visible_trace,
    layer_prop,
    read_or,
    read_vector,
    safe_alive,
    safe_choke,
    safe_hitbox,
    safe_ping,
    safe_read,
    safe_trace,
)
from .utils import lerp, magnitude

log = logging.getLogger(__name__)

HEAD_VISIBLE_FRACTION = 0.99


def interp_ratio_for_ping(ping: float, config: ResolverConfig) -> float:
    """Linear interpolation between min/max interp ratio above the ping threshold."""
    if ping < config.ping_threshold:
        return config.interp_min
    scale = min(1.0, (ping - config.ping_threshold) / 100.0)
    return lerp(config.interp_min, config.interp_max, scale)


def rewind_window_for_ping(ping: float, config: ResolverConfig) -> float:
    return min(400.0, 100.0 + ping * config.rewind_ping_factor / 100.0)


class TelemetrySampler:
    """Rate-limited per-entity sampling followed by the detect/adapt pass."""

    def __init__(
        self,
        source: TelemetrySource,
        store: EntityStore,
        rng: Optional[random.Random] = None,
        learner: Optional[AdaptiveLearner] = None,
    ):
        self.source = source
        self.store = store
        self.rng = rng or random.Random(42)
        self.learner = learner or AdaptiveLearner(self.rng)

    def update(self, entity_id: int, now: float, tick: int, config: ResolverConfig) -> Optional[TrackedEntity]:
        """Sample, detect and adapt one entity. Returns None when gated off."""
        if not safe_alive(self.source, entity_id) and not config.diagnostics:
            return None
        entity = self.store.get_or_create(entity_id)
        due = entity.orientation_history.count() == 0 or now - entity.last_update_time >= config.update_interval
        if not due and not config.diagnostics:
            return None

        flags, speed, posture = self.sample(entity, now, tick, config)
        self._update_locomotion(entity, flags, speed, posture)
        self._update_visibility(entity, now)

        ctx = DetectionContext(
            source=self.source,
            config=config,
            now=now,
            tick=tick,
            rng=self.rng,
            local_id=self._local_id(),
        )
        run_detectors(entity, ctx)
        self.learner.update(entity, now, config)
        entity.last_update_time = now
        return entity

    def sample(self, entity: TrackedEntity, now: float, tick: int, config: ResolverConfig) -> Tuple[int, float, float]:
        src, eid = self.source, entity.entity_id
        pitch = read_or(src, eid, PROP_PITCH)
        yaw = read_or(src, eid, PROP_YAW)
        sim_time = read_or(src, eid, PROP_SIM_TIME)
        old_sim_time = read_or(src, eid, PROP_OLD_SIM_TIME)
        posture = read_or(src, eid, PROP_POSTURE)
        vel = read_vector(src, eid, PROP_VELOCITY)
        pos = read_vector(src, eid, PROP_ORIGIN)
        flags = int(read_or(src, eid, PROP_FLAGS))
        speed = magnitude(vel)

        entity.orientation_history.push(OrientationSample(pitch=pitch, yaw=yaw, time=now))
        entity.simulation_time_history.push(SimTimeSample(current=sim_time, old=old_sim_time, time=now, tick=tick))
        entity.posture_history.push(posture)
        entity.position_history.push(PositionSample(x=pos[0], y=pos[1], z=pos[2], time=now))
        entity.velocity_history.push(VelocitySample(x=vel[0], y=vel[1], z=vel[2], speed=speed, time=now))

        layers = self._read_layers(eid)
        if layers:
            entity.animation_history.push(AnimationSample(layers=layers, time=now))

        ping = safe_ping(src, eid)
        net = entity.network
        net.ping = ping
        net.choke = safe_choke(src)
        if config.ping_based_rewind:
            net.optimal_rewind_ms = rewind_window_for_ping(ping, config)
        if config.adaptive_interp:
            net.interp_ratio = interp_ratio_for_ping(ping, config)
        return flags, speed, posture

    def _read_layers(self, entity_id: int) -> Tuple[AnimationLayer, ...]:
        out = []
        for i in range(ANIMATION_LAYER_COUNT):
            weight = safe_read(self.source, entity_id, layer_prop(i, "weight"))
            cycle = safe_read(self.source, entity_id, layer_prop(i, "cycle"))
            sequence = safe_read(self.source, entity_id, layer_prop(i, "sequence"))
            if weight is None or cycle is None or sequence is None:
                continue
            out.append(AnimationLayer(index=i, weight=weight, cycle=cycle, sequence=int(sequence)))
        return tuple(out)

    @staticmethod
    def _update_locomotion(entity: TrackedEntity, flags: int, speed: float, posture: float) -> None:
        on_ground = (flags & FLAG_ON_GROUND) == FLAG_ON_GROUND
        loco = entity.locomotion
        loco.in_air = not on_ground
        loco.crouching = posture > 0.5
        loco.running = on_ground and speed > 150
        loco.walking = on_ground and 5 < speed <= 150
        loco.standing = on_ground and speed <= 5
        loco.slow_walking = on_ground and 5 < speed < 100 and posture < 0.5

    def _update_visibility(self, entity: TrackedEntity, now: float) -> None:
        try:
            eye = self.source.eye_position()
        except Exception as e:
            log.debug("eye_position failed: %s", e)
            return
        head = safe_hitbox(self.source, entity.entity_id, HITBOX_HEAD)
        if eye is None or head is None:
            return
        trace = safe_trace(self.source, self._local_id(), eye, head)
        if is_visible_trace(trace, entity.entity_id, HEAD_VISIBLE_FRACTION):
            entity.last_visible_time = now

    def _local_id(self) -> Optional[int]:
        try:
            return self.source.local_entity_id()
        except Exception as e:
            log.debug("local_entity_id failed: %s", e)
            return None
