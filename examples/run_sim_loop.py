from orientbrain import OrientBrain, SnapshotTelemetry


def main():
    tel = SnapshotTelemetry(latency=0.04)
    brain = OrientBrain(tel)
    eid = 5
    tel.set_position(eid, (300.0, 120.0, 0.0))
    tel.set_hitbox(eid, 0, (300.0, 120.0, 64.0))
    tel.set_hitbox(eid, 2, (300.0, 120.0, 0.0))
    tel.set_props(eid, flags=1)
    for i in range(40):
        tel.advance(1 / 64.0)
        # switch jitter between two headings
        tel.set_orientation(eid, 0.0, 10.0 if i % 2 else 70.0)
        tel.set_sim_time(eid, tel.clock)
        brain.update([eid])
        res = brain.get_resolved_orientation(eid)
        target = brain.get_rewind_target(eid)
        if res is not None:
            print(f"Frame {i+1}: yaw={res.yaw:.1f} source={res.source.value} conf={res.confidence:.2f} rewind={target}")
    print(brain.stats())


if __name__ == "__main__":
    main()
