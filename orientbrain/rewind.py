from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .config import ResolverConfig
from .state import RewindRecord, TrackedEntity

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RewindTarget:
    tick: int
    simulation_time: float


def max_rewind_ticks(window_ms: float, config: ResolverConfig) -> int:
    tick_ms = 1000.0 / config.tick_rate
    return max(0, min(config.rewind_max_ticks, int(math.floor(window_ms / tick_ms))))


def interpolation_delay(entity: TrackedEntity, config: ResolverConfig) -> float:
    """Seconds of client-side interpolation for this entity."""
    return max(config.base_interp, entity.network.interp_ratio / config.update_rate)


class RewindSelector:
    """Picks the historical sample whose age best matches latency + interpolation."""

    def select(self, entity: TrackedEntity, now: float, latency: float, config: ResolverConfig) -> Optional[RewindTarget]:
        window_ms = config.rewind_time_ms
        if config.ping_based_rewind:
            window_ms = entity.network.optimal_rewind_ms or window_ms
        effective_ms = min(window_ms, config.rewind_cap_ms)
        limit = max_rewind_ticks(effective_ms, config)

        records = []
        count = min(entity.simulation_time_history.count(), limit)
        resolved = (entity.resolved_orientation.pitch, entity.resolved_orientation.yaw)
        for i in range(1, count + 1):
            sim = entity.simulation_time_history.get(i)
            pos = entity.position_history.get(i)
            if sim is None or pos is None:
                continue
            age = now - sim.time
            if age > effective_ms / 1000.0:
                continue
            if pos.at_origin():
                continue
            records.append(RewindRecord(
                tick=sim.tick,
                simulation_time=sim.current,
                old_simulation_time=sim.old,
                position=pos.as_tuple(),
                age=age,
                resolved=resolved,
            ))
        entity.backtrack.records = records
        if not records:
            return None

        optimal = latency + interpolation_delay(entity, config)
        scores = np.abs(np.array([r.age for r in records], dtype=np.float64) - optimal)
        best = records[int(np.argmin(scores))]
        entity.backtrack.best_tick = best.tick
        entity.backtrack.best_sample_time = best.simulation_time
        log.debug("entity %s rewind tick=%d sim_time=%.4f", entity.entity_id, best.tick, best.simulation_time)
        return RewindTarget(tick=best.tick, simulation_time=best.simulation_time)
