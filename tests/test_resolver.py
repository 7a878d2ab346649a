import random

import pytest

from orientbrain import CorrectionSource, DesyncMode, ExploitMode, ResolverConfig, TrackedEntity
from orientbrain.learner import AdaptiveLearner
from orientbrain.resolver import CorrectionResolver, select_rule
from orientbrain.state import OrientationSample, ShotOutcome, VelocitySample

EID = 3


def make_entity(yaw=10.0, pitch=0.0):
    ent = TrackedEntity.create(EID)
    ent.orientation_history.push(OrientationSample(pitch=pitch, yaw=yaw, time=1.0))
    return ent


def resolve(ent, config=None, tick=1):
    return CorrectionResolver(random.Random(0)).resolve(ent, now=1.0, tick=tick, config=config or ResolverConfig())


def test_defensive_takes_priority_over_fake_posture():
    ent = make_entity(yaw=10.0)
    ent.desync_state.side = 1
    ent.defensive_state.detected = True
    ent.defensive_state.confidence = 0.85
    ent.posture_spoof_state.detected = True
    out = resolve(ent)
    meta = ent.resolver_metadata
    assert meta.source == CorrectionSource.DEFENSIVE
    assert meta.applied
    assert meta.confidence == 0.85
    assert out.yaw == pytest.approx(70.0)
    assert meta.correction_magnitude == pytest.approx(60.0)
    assert meta.original_yaw == 10.0


def test_disabled_rule_falls_through():
    ent = make_entity(yaw=0.0)
    ent.desync_state.side = -1
    ent.defensive_state.detected = True
    ent.posture_spoof_state.detected = True
    rule = select_rule(ent, ResolverConfig(defensive_enabled=False))
    assert rule.source == CorrectionSource.FAKE_POSTURE
    out = resolve(ent, ResolverConfig(defensive_enabled=False))
    assert out.yaw == pytest.approx(-45.0)


def test_no_detection_passes_through_and_clamps():
    ent = make_entity(yaw=350.0, pitch=120.0)
    out = resolve(ent)
    assert out.pitch == 89.0
    assert out.yaw == pytest.approx(-10.0)
    meta = ent.resolver_metadata
    assert meta.source == CorrectionSource.NONE
    assert not meta.applied
    assert meta.confidence == 0.5


def test_output_always_in_range():
    for yaw in (-720.0, -181.0, 179.0, 540.0):
        ent = make_entity(yaw=yaw, pitch=-300.0)
        ent.desync_state.side = 1
        ent.defensive_state.detected = True
        out = resolve(ent)
        assert -180.0 < out.yaw <= 180.0
        assert out.pitch == -89.0


def test_brute_force_alternates_with_tick():
    cfg = ResolverConfig(desync_mode=DesyncMode.BRUTE_FORCE)
    ent = make_entity(yaw=0.0)
    ent.desync_state.side = -1
    ent.desync_state.amount = 20.0
    assert resolve(ent, cfg, tick=4).yaw == pytest.approx(58.0)
    assert resolve(ent, cfg, tick=5).yaw == pytest.approx(-58.0)
    assert ent.resolver_metadata.source == CorrectionSource.DESYNC


def test_exploit_mode_angle():
    ent = make_entity(yaw=0.0)
    ent.desync_state.side = -1
    ent.exploit_state.active = True
    out = resolve(ent, ResolverConfig(exploit_mode=ExploitMode.AGGRESSIVE))
    assert out.yaw == pytest.approx(-58.0)
    assert ent.resolver_metadata.source == CorrectionSource.EXPLOIT


def test_spin_jitter_correction():
    ent = make_entity(yaw=0.0)
    ent.jitter_state.detected = True
    ent.jitter_state.pattern = "spin-left"
    out = resolve(ent)
    assert out.yaw == pytest.approx(-18.0)
    assert ent.resolver_metadata.source == CorrectionSource.JITTER


def test_adaptive_bias_alone():
    ent = make_entity(yaw=10.0)
    ent.correction_factor.yaw_offset = 35.0
    ent.accuracy = 0.6
    out = resolve(ent)
    assert out.yaw == pytest.approx(45.0)
    assert ent.resolver_metadata.source == CorrectionSource.ADAPTIVE
    assert ent.resolver_metadata.confidence == 0.6

    out = resolve(ent, ResolverConfig(adaptive_enabled=False))
    assert out.yaw == pytest.approx(10.0)
    assert ent.resolver_metadata.source == CorrectionSource.NONE


def test_previous_orientation_kept():
    ent = make_entity(yaw=10.0)
    resolve(ent)
    ent.orientation_history.push(OrientationSample(pitch=0.0, yaw=20.0, time=2.0))
    resolve(ent)
    assert ent.previous_resolved_orientation.yaw == pytest.approx(10.0)
    assert ent.resolved_orientation.yaw == pytest.approx(20.0)


def test_no_samples_returns_none():
    ent = TrackedEntity.create(EID)
    assert resolve(ent) is None


def test_adaptive_confidence_keeps_zero_accuracy():
    ent = make_entity(yaw=0.0)
    for _ in range(5):
        ent.shot_history.push(ShotOutcome(hit=False, hitgroup=1, timestamp=0.0))
    learner = AdaptiveLearner(random.Random(0))
    for now in (1.0, 2.0, 3.0):
        learner.update(ent, now, ResolverConfig())
    assert ent.accuracy == 0.0
    assert ent.correction_factor.yaw_offset == 35.0

    resolve(ent)
    meta = ent.resolver_metadata
    assert meta.source == CorrectionSource.ADAPTIVE
    assert meta.confidence == 0.0


def test_adaptive_confidence_before_any_evaluation():
    ent = make_entity(yaw=0.0)
    ent.correction_factor.yaw_offset = 10.0
    assert ent.accuracy is None
    resolve(ent)
    assert ent.resolver_metadata.confidence == 0.5


def _jittering(pattern, rng=40.0, frequency=0.0, last_flip_time=0.0):
    ent = make_entity(yaw=0.0)
    js = ent.jitter_state
    js.detected = True
    js.pattern = pattern
    js.range = rng
    js.frequency = frequency
    js.last_flip_time = last_flip_time
    return ent


def test_switch_jitter_waits_for_flip_period():
    # period 0.5s, correction once 80% of it has elapsed since the last flip
    assert resolve(_jittering("switch", frequency=2.0, last_flip_time=0.5)).yaw == pytest.approx(24.0)
    assert resolve(_jittering("switch", frequency=2.0, last_flip_time=0.8)).yaw == pytest.approx(0.0)
    assert resolve(_jittering("switch", frequency=0.0)).yaw == pytest.approx(0.0)


def test_random_and_cycle_jitter_use_half_range():
    assert resolve(_jittering("random", rng=50.0)).yaw == pytest.approx(15.0)
    assert resolve(_jittering("cycle-3", rng=50.0)).yaw == pytest.approx(15.0)
    ent = _jittering("random", rng=50.0)
    resolve(ent, ResolverConfig(jitter_strength=100.0))
    assert ent.resolved_orientation.yaw == pytest.approx(25.0)


def test_velocity_mode_shrinks_amount():
    cfg = ResolverConfig(desync_mode=DesyncMode.VELOCITY)
    ent = make_entity(yaw=0.0)
    ent.desync_state.side = 1
    ent.desync_state.amount = 40.0
    ent.velocity_history.push(VelocitySample(x=250.0, y=0.0, z=0.0, speed=250.0, time=1.0))
    assert resolve(ent, cfg).yaw == pytest.approx(28.0)

    ent.velocity_history.push(VelocitySample(x=125.0, y=0.0, z=0.0, speed=125.0, time=1.1))
    assert resolve(ent, cfg).yaw == pytest.approx(34.0)
