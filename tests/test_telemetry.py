from orientbrain import OrientBrain, SnapshotTelemetry
from orientbrain.telemetry import PROP_YAW, is_visible_trace, read_or, safe_hitbox, safe_read


class GarbledTelemetry(SnapshotTelemetry):
    """Host source that hands back wrongly shaped values."""

    def hitbox_position(self, entity_id, hitbox_index):
        return (1.0,)

    def trace_visibility(self, from_id, from_point, to_point):
        return 0.5


class BrokenTelemetry(SnapshotTelemetry):
    def read_property(self, entity_id, name):
        raise RuntimeError("snapshot not ready")


def test_non_finite_reads_are_missing():
    tel = SnapshotTelemetry()
    tel.set_props(4, **{PROP_YAW: float("nan")})
    assert safe_read(tel, 4, PROP_YAW) is None
    assert read_or(tel, 4, PROP_YAW, 12.0) == 12.0
    tel.set_props(4, **{PROP_YAW: float("-inf")})
    assert safe_read(tel, 4, PROP_YAW) is None
    tel.set_props(4, **{PROP_YAW: 45.0})
    assert safe_read(tel, 4, PROP_YAW) == 45.0


def test_raising_source_reads_default():
    assert read_or(BrokenTelemetry(), 4, PROP_YAW) == 0.0


def test_malformed_hitbox_and_trace():
    tel = SnapshotTelemetry()
    tel.set_hitbox(4, 0, (float("inf"), 0.0, 0.0))
    assert safe_hitbox(tel, 4, 0) is None
    assert safe_hitbox(GarbledTelemetry(), 4, 0) is None
    assert is_visible_trace(0.5, 4, 0.9) is False
    assert is_visible_trace(("x", None), 4, 0.9) is False
    assert is_visible_trace((0.2, 4), 4, 0.9) is True


def test_garbled_source_does_not_break_update():
    tel = GarbledTelemetry()
    brain = OrientBrain(tel)
    for i in range(5):
        tel.advance(1 / 64.0)
        tel.set_orientation(3, 0.0, 30.0 * i)
        tel.set_sim_time(3, tel.clock)
        assert brain.update([3]) == [3]
    assert brain.get_resolved_orientation(3) is not None
