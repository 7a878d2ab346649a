import json
import random
from typing import Dict

from orientbrain import OrientBrain, ResolverConfig, SnapshotTelemetry
from orientbrain.utils import angle_diff, normalize_angle

ENTITY = 2
HIT_TOLERANCE = 20.0


def simulate_session(config: ResolverConfig, n_frames: int = 2000, hidden_offset: float = -58.0, seed: int = 7) -> Dict:
    """Synthetic opponent: reports a jittering yaw while the true head sits at a fixed hidden offset."""
    rnd = random.Random(seed)
    tel = SnapshotTelemetry(latency=0.05)
    brain = OrientBrain(tel, config=config, random_seed=seed)
    tel.set_hitbox(ENTITY, 0, (200.0, 0.0, 64.0))
    tel.set_hitbox(ENTITY, 2, (200.0, 0.0, 0.0))
    tel.set_props(ENTITY, flags=1)
    tel.set_position(ENTITY, (200.0, 0.0, 0.0))

    hits = shots = 0
    base = 90.0
    for t in range(n_frames):
        tel.advance(1 / 64.0)
        reported = normalize_angle(base + (35.0 if t % 2 else -35.0))
        tel.set_orientation(ENTITY, 0.0, reported)
        tel.set_sim_time(ENTITY, tel.clock)
        brain.update([ENTITY])
        if t % 16 == 0:
            res = brain.get_resolved_orientation(ENTITY)
            if res is None:
                continue
            true_yaw = normalize_angle(base + hidden_offset + rnd.uniform(-5, 5))
            hit = angle_diff(res.yaw, true_yaw) < HIT_TOLERANCE
            shots += 1
            hits += int(hit)
            brain.record_shot_outcome(ENTITY, hit, 1, 30.0 if hit else "resolver")
    return {"shots": shots, "hit_rate": hits / max(1, shots)}


def run_ab():
    # A: adaptive learning off, B: adaptive learning on
    ra = simulate_session(ResolverConfig(adaptive_enabled=False))
    rb = simulate_session(ResolverConfig(adaptive_enabled=True))
    print(json.dumps({"A": ra, "B": rb, "uplift": rb["hit_rate"] - ra["hit_rate"]}, indent=2))


if __name__ == "__main__":
    run_ab()
