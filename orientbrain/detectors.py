"""
Behavioral pattern detectors.

Each detector reads one entity's histories and rewrites its own state object
(classification + confidence in [0, 1]). Detectors that need more history than
is available leave their previous state untouched. They run in the fixed
order of DETECTOR_REGISTRY; desync reads the exploit state produced earlier
in the same pass.
"""
from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

import numpy as np

from .animation import AIM_LAYERS, DESYNC_LAYER, MOVEMENT_LAYERS, POSTURE_LAYER, latest_layer_deltas
from .config import ResolverConfig
from .state import (
    DefensiveState,
    DesyncObservation,
    DesyncState,
    ExploitKind,
    JitterState,
    PostureSpoofState,
    TrackedEntity,
)
from .telemetry import HITBOX_HEAD, HITBOX_PELVIS, TelemetrySource, is_visible_trace, safe_hitbox, safe_trace
from .utils import angle_diff, clamp, heading, normalize_angle, yaw_deltas

log = logging.getLogger(__name__)

JITTER_WINDOW = 10
PATTERN_TOLERANCE = 10.0
RANDOM_SPREAD = 15.0
DESYNC_AMOUNT_CAP = 60.0
VISIBILITY_TRACE_THRESHOLD = 0.95
STANDING_HEIGHT = 64.0
CROUCH_DROP = 32.0


@dataclass
class DetectionContext:
    source: TelemetrySource
    config: ResolverConfig
    now: float
    tick: int
    rng: random.Random
    local_id: Optional[int] = None


def _expected_head_height(posture: float) -> float:
    return STANDING_HEIGHT - posture * CROUCH_DROP


def _head_pelvis_mismatch(ctx: DetectionContext, entity_id: int, posture: float) -> Optional[float]:
    """|measured - predicted| head-over-pelvis height, or None if hitboxes are unavailable."""
    head = safe_hitbox(ctx.source, entity_id, HITBOX_HEAD)
    pelvis = safe_hitbox(ctx.source, entity_id, HITBOX_PELVIS)
    if head is None or pelvis is None:
        return None
    return abs((head[2] - pelvis[2]) - _expected_head_height(posture))


# ---------------------- jitter ----------------------

def classify_jitter(yaws: List[float], threshold: float) -> Tuple[str, bool, float, int]:
    """Classify a newest-first yaw window.

    Returns (pattern, jittering, max_diff, spin_direction).
    """
    diffs = yaw_deltas(yaws)
    abs_diffs = np.abs(diffs)
    max_diff = float(abs_diffs.max()) if len(abs_diffs) else 0.0
    jittering = bool(np.any(abs_diffs > threshold))
    n = len(yaws)

    # alternation between two values
    is_switch = jittering and all(
        abs(normalize_angle(yaws[i] - yaws[i - 2])) <= PATTERN_TOLERANCE for i in range(2, n)
    )

    cycle_length = 0
    if jittering:
        for length in range(2, min(4, n // 2) + 1):
            if all(
                abs(normalize_angle(yaws[i] - yaws[i + length])) <= PATTERN_TOLERANCE
                for i in range(length) if i + length < n
            ):
                cycle_length = length
                break

    spin_direction = 0
    if len(diffs) >= 3:
        first = 1 if diffs[0] > 0 else -1
        if all((1 if d > 0 else -1) == first and abs(d) >= PATTERN_TOLERANCE for d in diffs):
            spin_direction = first

    spread = float(np.ptp(abs_diffs)) if len(abs_diffs) >= 3 else RANDOM_SPREAD
    is_random = jittering and spread >= RANDOM_SPREAD

    if is_switch:
        pattern = "switch"
    elif cycle_length:
        pattern = f"cycle-{cycle_length}"
    elif spin_direction:
        pattern = "spin-right" if spin_direction > 0 else "spin-left"
    elif is_random:
        pattern = "random"
    elif max_diff < threshold:
        pattern = "static"
    else:
        pattern = "unknown"
    return pattern, jittering, max_diff, spin_direction


def pattern_confidence(pattern: str) -> float:
    if pattern == "static":
        return 0.9
    if pattern == "switch" or pattern.startswith("cycle"):
        return 0.8
    if pattern.startswith("spin"):
        return 0.7
    if pattern == "random":
        return 0.4
    return 0.5


def detect_jitter(entity: TrackedEntity, ctx: DetectionContext) -> bool:
    history = entity.orientation_history
    if history.count() < 4:
        return entity.jitter_state.detected
    samples = history.to_list()[:JITTER_WINDOW]
    yaws = [s.yaw for s in samples]

    pattern, jittering, max_diff, _ = classify_jitter(yaws, ctx.config.jitter_threshold)

    jitter_range = 0.0
    if jittering:
        jitter_range = float(max(yaws) - min(yaws))
        if jitter_range > 180.0:
            jitter_range = 360.0 - jitter_range

    frequency = 0.0
    last_flip_time = entity.jitter_state.last_flip_time
    diffs = yaw_deltas(yaws)
    if jittering and len(diffs) >= 2:
        signs = np.where(diffs > 0, 1, -1)
        changes = np.nonzero(signs[1:] != signs[:-1])[0]
        time_span = samples[0].time - samples[-1].time
        if time_span > 0:
            frequency = len(changes) / time_span
        if len(changes):
            # change k reverses the turn at sample k + 1 (newest first)
            last_flip_time = samples[int(changes[0]) + 1].time

    entity.jitter_state = JitterState(
        detected=jittering,
        range=jitter_range,
        frequency=frequency,
        last_flip_time=last_flip_time,
        pattern=pattern,
        max_diff=max_diff,
        confidence=pattern_confidence(pattern),
        updated_at=ctx.now,
    )
    return jittering


# ---------------------- desync ----------------------

def side_visibility(ctx: DetectionContext, entity_id: int, eye: Tuple[float, float, float], yaw: float) -> Tuple[float, float]:
    """Fraction of lateral sample points visible on the (left, right) side of the head."""
    fx, fy = math.cos(math.radians(yaw)), math.sin(math.radians(yaw))
    checks = 3
    left = right = 0
    for i in range(1, checks + 1):
        offset = 15 + i * 5
        dz = 0.0 if i == 1 else 5.0
        left_point = (eye[0] + fy * offset, eye[1] - fx * offset, eye[2] - dz)
        right_point = (eye[0] - fy * offset, eye[1] + fx * offset, eye[2] - dz)
        if is_visible_trace(safe_trace(ctx.source, ctx.local_id, eye, left_point), entity_id, VISIBILITY_TRACE_THRESHOLD):
            left += 1
        if is_visible_trace(safe_trace(ctx.source, ctx.local_id, eye, right_point), entity_id, VISIBILITY_TRACE_THRESHOLD):
            right += 1
    return left / checks, right / checks


def _layer_side(entity: TrackedEntity) -> int:
    sample = entity.animation_history.get_latest()
    if sample is None:
        return 0
    layer = sample.layer(DESYNC_LAYER)
    if layer is None:
        return 0
    if layer.weight > 0.55:
        return 1
    if layer.weight < 0.45:
        return -1
    return 0


def _has_micro_adjustments(entity: TrackedEntity) -> bool:
    samples = entity.orientation_history.to_list()[:5]
    for newer, older in zip(samples, samples[1:]):
        d = angle_diff(newer.yaw, older.yaw)
        if 0.5 < d < 15.0:
            return True
    return False


def _is_strafing(entity: TrackedEntity) -> bool:
    vel = entity.velocity_history.get(1)
    prev = entity.velocity_history.get(2)
    if vel is None or prev is None or vel.speed <= 1.0:
        return False
    return angle_diff(heading(vel.x, vel.y), heading(prev.x, prev.y)) > 15.0


def _motion_guess(entity: TrackedEntity, ctx: DetectionContext, yaw: float) -> Tuple[int, float, float]:
    """Side/amount/confidence from movement, posture and layer evidence."""
    max_desync = ctx.config.max_desync_angle
    prev = entity.desync_state
    layer_side = _layer_side(entity)
    vel = entity.velocity_history.get_latest()

    if vel is not None and vel.speed > 1.0:
        offset = normalize_angle(heading(vel.x, vel.y) - yaw)
        side = 1 if offset > 0 else -1
        speed_factor = min(1.0, vel.speed / 250.0)
        strafing = _is_strafing(entity)
        amount = max_desync * (1 - speed_factor * 0.2)
        if strafing:
            amount = min(max_desync, amount * 1.2)
        confidence = 0.6 - speed_factor * 0.2 + (0.2 if strafing else 0.0)
        if layer_side != 0 and layer_side != side and ctx.rng.random() > 0.7:
            side = layer_side
            confidence = 0.65
        return side, amount, confidence

    if prev.side == 0:
        if layer_side != 0:
            return layer_side, max_desync * 0.9, 0.6
        return (1 if ctx.rng.random() > 0.5 else -1), max_desync * 0.9, 0.4

    side = prev.side
    if _has_micro_adjustments(entity):
        amount = min(max_desync * 1.1, DESYNC_AMOUNT_CAP)
        confidence = 0.75
        if ctx.rng.random() > 0.7:
            side = -side
    else:
        amount = min(prev.amount, max_desync)
        confidence = max(0.4, prev.confidence * 0.95)

    posture = entity.posture_history.get(1) or 0.0
    prev_posture = entity.posture_history.get(2) or 0.0
    if abs(posture - prev_posture) > 0.05:
        if ctx.rng.random() > 0.5:
            side = -side
        confidence = 0.6

    if layer_side != 0:
        if layer_side == side:
            confidence = min(0.9, confidence + 0.15)
        elif ctx.rng.random() > 0.7:
            side = layer_side
            confidence = 0.65
    return side, amount, confidence


def detect_desync(entity: TrackedEntity, ctx: DetectionContext) -> bool:
    prev = entity.desync_state
    if ctx.now - prev.updated_at < ctx.config.desync_interval:
        return prev.side != 0
    eye = safe_hitbox(ctx.source, entity.entity_id, HITBOX_HEAD)
    current = entity.orientation_history.get_latest()
    if eye is None or current is None:
        return prev.side != 0

    max_desync = ctx.config.max_desync_angle
    left_vis, right_vis = side_visibility(ctx, entity.entity_id, eye, current.yaw)

    # the exposed side is the fake one; the real head sits on the other side
    if left_vis > 0.5 and left_vis > right_vis * 1.5:
        gap = left_vis - right_vis
        side, amount, confidence = 1, max_desync * (0.8 + gap * 0.4), 0.7 + gap * 0.3
    elif right_vis > 0.5 and right_vis > left_vis * 1.5:
        gap = right_vis - left_vis
        side, amount, confidence = -1, max_desync * (0.8 + gap * 0.4), 0.7 + gap * 0.3
    else:
        side, amount, confidence = _motion_guess(entity, ctx, current.yaw)
        if entity.exploit_state.active:
            amount = max_desync * 1.1
            confidence = 0.8

    if entity.shot_history.count() > 0:
        hits, misses = entity.recent_shots(5)
        if misses >= 3 and hits == 0 and ctx.rng.random() > 0.7:
            side = -side
            confidence = 0.5
        if hits > misses:
            confidence = min(0.9, confidence + 0.1)

    history = prev.history
    if side != 0:
        history.push(DesyncObservation(side=side, time=ctx.now))
        if history.count() >= 3:
            oldest_first = list(reversed(history.to_list()))
            first = oldest_first[0].side
            if all(obs.side == first for obs in oldest_first[2::2]):
                confidence = min(0.95, confidence + 0.1)

    entity.desync_state = DesyncState(
        side=side,
        amount=clamp(amount, 0.0, DESYNC_AMOUNT_CAP),
        confidence=clamp(confidence, 0.0, 1.0),
        left_visibility=left_vis,
        right_visibility=right_vis,
        history=history,
        updated_at=ctx.now,
    )
    log.debug("entity %s desync side=%d amount=%.1f conf=%.2f", entity.entity_id, side, amount, confidence)
    return side != 0


# ---------------------- posture spoof ----------------------

def detect_posture_spoof(entity: TrackedEntity, ctx: DetectionContext) -> bool:
    if entity.posture_history.count() < 1:
        return entity.posture_spoof_state.detected
    cfg = ctx.config
    posture = entity.posture_history.get(1) or 0.0
    prev_posture = entity.posture_history.get(2) or 0.0

    classic = cfg.posture_low < posture < cfg.posture_high and abs(posture - prev_posture) < 0.01

    mismatch = _head_pelvis_mismatch(ctx, entity.entity_id, posture)
    animation_breaking = mismatch is not None and mismatch > 8.0 and posture > 0.1

    vel = entity.velocity_history.get_latest()
    micro_movement = vel is not None and 0.1 < vel.speed < cfg.posture_speed_threshold and posture > 0.1

    anim_layer = any(
        d.weight_delta < 0.05 and 0.1 < posture < 0.9
        for d in latest_layer_deltas(entity.animation_history, (POSTURE_LAYER,))
    )

    sensitivity = cfg.posture_sensitivity / 100.0
    detected = (
        classic
        or animation_breaking
        or (micro_movement and anim_layer)
        or (classic and micro_movement and sensitivity > 0.5)
    )
    entity.posture_spoof_state = PostureSpoofState(
        detected=detected,
        classic=classic,
        animation_breaking=animation_breaking,
        micro_movement=micro_movement,
        anim_layer=anim_layer,
        posture=posture,
        confidence=0.8 if detected else 0.2,
        updated_at=ctx.now,
    )
    entity.locomotion.fake_posture = detected
    return detected


# ---------------------- timing exploit ----------------------

def detect_timing_exploit(entity: TrackedEntity, ctx: DetectionContext) -> bool:
    state = entity.exploit_state
    if state.last_tick > 0:
        delta = ctx.tick - state.last_tick
        if 0 < delta < 10:
            state.tick_intervals.push(delta)
    state.last_tick = ctx.tick

    latest = entity.simulation_time_history.get(1)
    previous = entity.simulation_time_history.get(2)
    if latest is None or previous is None:
        return False

    detected = False
    kind = ExploitKind.NONE
    evidence = 0.0

    sim_delta = latest.current - previous.current
    real_delta = latest.time - previous.time
    if sim_delta > 0 and real_delta > 0:
        ratio = sim_delta / real_delta
        if ratio < 0.3 or sim_delta < ctx.config.exploit_time_anomaly:
            detected = True
            kind = ExploitKind.HIGH_RATE if ratio < 0.2 else ExploitKind.LOW_RATE
            evidence += 0.4

    if state.tick_intervals.count() >= 3:
        if float(np.mean(state.tick_intervals.to_list())) < 0.8:
            detected = True
            kind = ExploitKind.HIGH_RATE
            evidence += 0.3

    if entity.position_history.count() >= 3:
        p1 = entity.position_history.get(1)
        p2 = entity.position_history.get(2)
        if p1 is not None and p2 is not None:
            dt = p1.time - p2.time
            if dt > 0:
                dist = float(np.linalg.norm(np.subtract(p1.as_tuple(), p2.as_tuple())))
                if dist / dt > 500.0 and dist > 20.0:
                    detected = True
                    kind = ExploitKind.HIGH_RATE
                    evidence += 0.3

    for d in latest_layer_deltas(entity.animation_history, MOVEMENT_LAYERS):
        if 0.5 < d.cycle_delta < 0.9:
            detected = True
            kind = ExploitKind.HIGH_RATE
            evidence += 0.2

    if detected:
        state.active = True
        state.kind = kind
        state.confidence = min(state.confidence + 0.15, 1.0)
        state.last_detection = ctx.now
        state.detection_count += 1
    elif ctx.now - state.last_detection > 1.0:
        state.confidence = max(state.confidence - 0.05, 0.0)
        if state.confidence < 0.2:
            state.active = False
            state.kind = ExploitKind.NONE
            state.detection_count = max(0, state.detection_count - 1)
    state.evidence = min(evidence, 1.0)
    state.updated_at = ctx.now
    return detected


# ---------------------- defensive countermeasure ----------------------

def detect_defensive(entity: TrackedEntity, ctx: DetectionContext) -> bool:
    cfg = ctx.config
    current = entity.orientation_history.get_latest()
    velocity = entity.velocity_history.get_latest()
    if current is None or velocity is None:
        return entity.defensive_state.detected

    static = False
    if entity.orientation_history.count() >= 3:
        prev = entity.orientation_history.get(2)
        if prev is not None:
            yaw_change = abs(normalize_angle(current.yaw - prev.yaw))
            static = yaw_change < cfg.defensive_yaw_threshold and velocity.speed < cfg.defensive_velocity_threshold

    posture = entity.posture_history.get_latest() or 0.0
    mismatch = _head_pelvis_mismatch(ctx, entity.entity_id, posture)
    animation_breaking = mismatch is not None and mismatch > 10.0

    rapid_flick = False
    if entity.orientation_history.count() >= 3:
        a1, a2, a3 = entity.orientation_history.to_list()[:3]
        d1 = angle_diff(a1.yaw, a2.yaw)
        d2 = angle_diff(a2.yaw, a3.yaw)
        rapid_flick = (d1 > 50 and d2 < 10) or (d1 < 10 and d2 > 50)

    sim_time_anomaly = False
    sims = entity.simulation_time_history
    if sims.count() >= 3:
        t1, t2, t3 = sims.to_list()[:3]
        sim_time_anomaly = abs((t1.current - t2.current) - (t2.current - t3.current)) > cfg.defensive_sim_time_threshold

    lag_comp_abuse = False
    if cfg.lag_comp_detection and sims.count() >= 2:
        t1, t2 = sims.to_list()[:2]
        lag_comp_abuse = abs(t1.current - t2.current) < cfg.defensive_sim_time_threshold

    layer_signature = any(
        (d.weight_delta > 0.7 or d.cycle_delta > 0.7) and d.cycle_delta < 0.95
        for d in latest_layer_deltas(entity.animation_history, AIM_LAYERS)
    )

    detected = (
        (static and (animation_breaking or sim_time_anomaly))
        or (rapid_flick and (animation_breaking or sim_time_anomaly))
        or (layer_signature and (rapid_flick or sim_time_anomaly))
        or lag_comp_abuse
    )

    confidence = 0.5
    if detected:
        if lag_comp_abuse:
            confidence = 0.9
        elif static and animation_breaking and sim_time_anomaly:
            confidence = 0.85
        else:
            confidence = 0.7

    entity.defensive_state = DefensiveState(
        detected=detected,
        static=static,
        animation_breaking=animation_breaking,
        rapid_flick=rapid_flick,
        sim_time_anomaly=sim_time_anomaly,
        layer_signature=layer_signature,
        lag_comp_abuse=lag_comp_abuse,
        last_detection=ctx.now if detected else entity.defensive_state.last_detection,
        confidence=confidence,
        correction_angle=cfg.defensive_correction_angle,
        updated_at=ctx.now,
    )
    entity.locomotion.defensive = detected
    return detected


# Evaluation order matters: desync consumes the exploit verdict of this pass.
DETECTOR_REGISTRY: List[Tuple[str, Callable[[TrackedEntity, DetectionContext], bool]]] = [
    ("exploit", detect_timing_exploit),
    ("fake_posture", detect_posture_spoof),
    ("defensive", detect_defensive),
    ("jitter", detect_jitter),
    ("desync", detect_desync),
]


def run_detectors(entity: TrackedEntity, ctx: DetectionContext) -> dict:
    return {name: fn(entity, ctx) for name, fn in DETECTOR_REGISTRY}
