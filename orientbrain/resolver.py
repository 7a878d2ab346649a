"""
Correction resolver.

Corrections are an ordered rule table: the first enabled rule whose
detector fired contributes a yaw offset, later rules are skipped. The
learner's persistent bias is layered on afterwards regardless of which rule
won. Final yaw is wrapped to (-180, 180] and pitch clamped to [-89, 89].
"""
from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from .config import DesyncMode, ResolverConfig
from .state import CorrectionSource, Orientation, ResolverMetadata, TrackedEntity
from .utils import angle_diff, clamp_pitch, normalize_angle

log = logging.getLogger(__name__)

FAKE_POSTURE_ANGLE = 45.0
SPIN_CORRECTION = 30.0
FLIP_PERIOD_FRACTION = 0.8
VELOCITY_REFERENCE = 250.0
VELOCITY_SHRINK = 0.3


@dataclass
class ResolveContext:
    config: ResolverConfig
    now: float
    tick: int
    rng: random.Random

    def side_or_coin(self, entity: TrackedEntity) -> int:
        side = entity.desync_state.side
        if side != 0:
            return side
        return 1 if self.rng.random() > 0.5 else -1


@dataclass(frozen=True)
class CorrectionRule:
    source: CorrectionSource
    enabled: Callable[[ResolverConfig], bool]
    applies: Callable[[TrackedEntity], bool]
    # returns (yaw delta, confidence)
    effect: Callable[[TrackedEntity, ResolveContext], Tuple[float, float]]


def _defensive(entity: TrackedEntity, ctx: ResolveContext) -> Tuple[float, float]:
    angle = entity.defensive_state.correction_angle or ctx.config.defensive_correction_angle
    return angle * ctx.side_or_coin(entity) * ctx.config.correction_strength, entity.defensive_state.confidence


def _fake_posture(entity: TrackedEntity, ctx: ResolveContext) -> Tuple[float, float]:
    delta = FAKE_POSTURE_ANGLE * ctx.side_or_coin(entity) * ctx.config.correction_strength
    return delta, entity.posture_spoof_state.confidence


def _exploit(entity: TrackedEntity, ctx: ResolveContext) -> Tuple[float, float]:
    delta = ctx.config.exploit_angle() * ctx.side_or_coin(entity) * ctx.config.correction_strength
    return delta, entity.exploit_state.confidence


def _jitter(entity: TrackedEntity, ctx: ResolveContext) -> Tuple[float, float]:
    js = entity.jitter_state
    scale = ctx.config.jitter_strength / 100.0 * ctx.config.correction_strength
    delta = 0.0
    if js.pattern == "switch":
        if js.frequency > 0 and ctx.now - js.last_flip_time > (1.0 / js.frequency) * FLIP_PERIOD_FRACTION:
            delta = js.range * scale
    elif js.pattern == "random" or js.pattern.startswith("cycle"):
        delta = js.range * 0.5 * scale
    elif js.pattern.startswith("spin"):
        direction = 1 if js.pattern.endswith("right") else -1
        delta = SPIN_CORRECTION * direction * scale
    return delta, js.confidence


def _desync(entity: TrackedEntity, ctx: ResolveContext) -> Tuple[float, float]:
    ds = entity.desync_state
    side = ds.side
    amount = ds.amount or ctx.config.max_desync_angle
    if ctx.config.desync_mode == DesyncMode.BRUTE_FORCE:
        side = 1 if ctx.tick % 2 == 0 else -1
        amount = ctx.config.max_desync_angle
    elif ctx.config.desync_mode == DesyncMode.VELOCITY:
        vel = entity.velocity_history.get_latest()
        if vel is not None and vel.speed > 0:
            amount *= 1 - min(1.0, vel.speed / VELOCITY_REFERENCE) * VELOCITY_SHRINK
    return amount * side * ctx.config.correction_strength, ds.confidence


CORRECTION_RULES: Tuple[CorrectionRule, ...] = (
    CorrectionRule(CorrectionSource.DEFENSIVE, lambda c: c.defensive_enabled,
                   lambda e: e.defensive_state.detected, _defensive),
    CorrectionRule(CorrectionSource.FAKE_POSTURE, lambda c: c.fake_posture_enabled,
                   lambda e: e.posture_spoof_state.detected, _fake_posture),
    CorrectionRule(CorrectionSource.EXPLOIT, lambda c: c.exploit_enabled,
                   lambda e: e.exploit_state.active, _exploit),
    CorrectionRule(CorrectionSource.JITTER, lambda c: c.jitter_enabled,
                   lambda e: e.jitter_state.detected, _jitter),
    CorrectionRule(CorrectionSource.DESYNC, lambda c: c.desync_enabled,
                   lambda e: e.desync_state.side != 0, _desync),
)


def select_rule(entity: TrackedEntity, config: ResolverConfig) -> Optional[CorrectionRule]:
    for rule in CORRECTION_RULES:
        if rule.enabled(config) and rule.applies(entity):
            return rule
    return None


class CorrectionResolver:
    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random(42)

    def resolve(self, entity: TrackedEntity, now: float, tick: int, config: ResolverConfig) -> Optional[Orientation]:
        raw = entity.orientation_history.get_latest()
        if raw is None:
            return None
        ctx = ResolveContext(config=config, now=now, tick=tick, rng=self.rng)

        yaw, pitch = raw.yaw, raw.pitch
        applied = False
        source = CorrectionSource.NONE
        confidence = 0.5

        rule = select_rule(entity, config)
        if rule is not None:
            delta, confidence = rule.effect(entity, ctx)
            yaw += delta
            applied = True
            source = rule.source

        if config.adaptive_enabled:
            bias = entity.correction_factor
            yaw += bias.yaw_offset
            pitch += bias.pitch_offset
            if not applied and (bias.yaw_offset != 0 or bias.pitch_offset != 0):
                applied = True
                source = CorrectionSource.ADAPTIVE
                confidence = 0.5 if entity.accuracy is None else entity.accuracy

        resolved = Orientation(pitch=clamp_pitch(pitch), yaw=normalize_angle(yaw))
        entity.previous_resolved_orientation = entity.resolved_orientation
        entity.resolved_orientation = resolved
        entity.resolver_metadata = ResolverMetadata(
            applied=applied,
            source=source,
            confidence=max(0.0, min(1.0, confidence)),
            correction_magnitude=angle_diff(resolved.yaw, raw.yaw),
            original_yaw=raw.yaw,
        )
        log.debug("entity %s resolved yaw %.1f -> %.1f via %s", entity.entity_id, raw.yaw, resolved.yaw, source.value)
        return resolved
