from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from .config import ConfigSource, ResolverConfig, as_provider
from .dataset import ShotRecorder
from .events import HitEvent, MissEvent, ShotFiredEvent
from .learner import AdaptiveLearner
from .resolver import CorrectionResolver
from .rewind import RewindSelector, RewindTarget
from .sampler import TelemetrySampler
from .state import CorrectionSource, EntityStore, ShotOutcome, TrackedEntity
from .telemetry import TelemetrySource, safe_alive, safe_latency

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedOrientation:
    pitch: float
    yaw: float
    confidence: float
    source: CorrectionSource


class OrientBrain:
    """
    Orientation resolver for remote entities that obfuscate their facing.

    - Samples telemetry into bounded per-entity histories (rate limited)
    - Runs jitter / desync / posture-spoof / timing-exploit / defensive detectors
    - Fuses them through a fixed-priority correction table plus a learned bias
    - Adapts the bias from hit/miss feedback per behavioral-state bucket
    - Selects the best rewind sample for lag-compensated targeting

    One instance owns all mutable state; nothing is process-global. All
    randomized decisions draw from `rng` so a seed reproduces a run.
    """

    def __init__(
        self,
        source: TelemetrySource,
        config: Optional[ConfigSource] = None,
        random_seed: int = 42,
        rng: Optional[random.Random] = None,
        record_dir: Optional[str] = None,
        record_session: str = "session",
    ):
        self.source = source
        self.config_provider = as_provider(config)
        self.rng = rng or random.Random(random_seed)

        cfg = self.config_provider()
        self.store = EntityStore(history_size=cfg.history_size, shot_history_size=cfg.shot_history_size)
        self.learner = AdaptiveLearner(self.rng)
        self.sampler = TelemetrySampler(source, self.store, self.rng, self.learner)
        self.resolver = CorrectionResolver(self.rng)
        self.rewind = RewindSelector()
        self.recorder = ShotRecorder(record_dir, record_session) if record_dir else None

        self.active_ids: List[int] = []
        self._last_sweep_tick: Optional[int] = None

    # ---------------------- per-frame pipeline ----------------------
    def update(self, entity_ids: Iterable[int]) -> List[int]:
        """Per-frame trigger: sample, detect, resolve and rewind every live entity."""
        config = self.config_provider()
        now, tick = self._clock()

        active = []
        for eid in entity_ids:
            if not safe_alive(self.source, eid) and not config.diagnostics:
                continue
            active.append(eid)
            self.sampler.update(eid, now, tick, config)
        self.active_ids = active

        for eid in active:
            self.resolve(eid, config=config, now=now, tick=tick)

        if config.rewind_enabled:
            latency = safe_latency(self.source)
            for eid in active:
                entity = self.store.get(eid)
                if entity is not None:
                    self.rewind.select(entity, now, latency, config)

        if self._last_sweep_tick is None:
            self._last_sweep_tick = tick
        elif tick - self._last_sweep_tick >= config.cleanup_interval_ticks:
            self.store.evict_stale(now, config.stale_threshold)
            self._last_sweep_tick = tick
        return active

    def update_entity(self, entity_id: int) -> bool:
        """Sample + detect + adapt one entity; False when gated off."""
        now, tick = self._clock()
        return self.sampler.update(entity_id, now, tick, self.config_provider()) is not None

    def resolve(
        self,
        entity_id: int,
        config: Optional[ResolverConfig] = None,
        now: Optional[float] = None,
        tick: Optional[int] = None,
    ) -> Optional[ResolvedOrientation]:
        entity = self.store.get(entity_id)
        if entity is None:
            return None
        if now is None or tick is None:
            now, tick = self._clock()
        if self.resolver.resolve(entity, now, tick, config or self.config_provider()) is None:
            return None
        return self._resolved(entity)

    # ---------------------- consumer API ----------------------
    def get_resolved_orientation(self, entity_id: int) -> Optional[ResolvedOrientation]:
        entity = self.store.get(entity_id)
        if entity is None or entity.orientation_history.count() == 0:
            return None
        return self._resolved(entity)

    def get_rewind_target(self, entity_id: int) -> Optional[RewindTarget]:
        entity = self.store.get(entity_id)
        if entity is None or entity.backtrack.best_tick <= 0:
            return None
        return RewindTarget(tick=entity.backtrack.best_tick, simulation_time=entity.backtrack.best_sample_time)

    def record_shot_outcome(self, entity_id: int, hit: bool, hitgroup: int = 0, detail: Union[float, str, None] = None) -> bool:
        """Feed one hit/miss into the entity's shot history and the learner."""
        entity = self.store.get(entity_id)
        if entity is None:
            return False
        now, tick = self._clock()
        outcome = ShotOutcome(
            hit=hit,
            hitgroup=int(hitgroup),
            timestamp=now,
            damage=float(detail) if hit and isinstance(detail, (int, float)) else None,
            reason=str(detail) if not hit and detail is not None else None,
        )
        entity.shot_history.push(outcome)
        if hit:
            entity.hit_count += 1
            entity.last_hit_time = now
        else:
            entity.miss_count += 1
            entity.last_miss_time = now
        self.learner.update(entity, now, self.config_provider())

        if self.recorder is not None:
            self.recorder.record(entity, outcome, tick)
        return True

    # ---------------------- event feed ----------------------
    def on_hit(self, event: HitEvent) -> bool:
        local = self._local_id()
        if local is not None and event.attacker != local:
            return False
        return self.record_shot_outcome(event.victim, True, event.hitgroup, event.damage)

    def on_miss(self, event: MissEvent) -> bool:
        return self.record_shot_outcome(event.target, False, event.hitgroup, event.reason)

    def on_shot_fired(self, event: ShotFiredEvent) -> bool:
        entity = self.store.get(event.target)
        if entity is None:
            return False
        now, _ = self._clock()
        entity.last_shot_time = now
        entity.last_shot_hitgroup = event.hitgroup
        log.debug("fired at %s hitgroup=%d hit_chance=%s", event.target, event.hitgroup, event.hit_chance)
        return True

    # ---------------------- maintenance ----------------------
    def reset_learning(self) -> None:
        self.store.reset_all()
        log.info("tracked entity cache reset")

    def evict_stale(self, threshold: Optional[float] = None) -> int:
        now, _ = self._clock()
        limit = self.config_provider().stale_threshold if threshold is None else threshold
        return self.store.evict_stale(now, limit)

    def stats(self) -> Dict[str, Any]:
        tracked = [self.store.get(eid) for eid in self.active_ids]
        entities = [e for e in tracked if e is not None]
        confidences = [e.resolver_metadata.confidence for e in entities]
        return {
            "tracked": len(self.store),
            "active": len(entities),
            "average_confidence": sum(confidences) / len(confidences) if confidences else 0.5,
            "hits": sum(e.hit_count for e in entities),
            "misses": sum(e.miss_count for e in entities),
        }

    # ---------------------- internal helpers ----------------------
    def _clock(self) -> Tuple[float, int]:
        try:
            return float(self.source.now()), int(self.source.tick_count())
        except Exception as e:
            log.debug("clock read failed: %s", e)
            return 0.0, 0

    def _local_id(self) -> Optional[int]:
        try:
            return self.source.local_entity_id()
        except Exception:
            return None

    @staticmethod
    def _resolved(entity: TrackedEntity) -> ResolvedOrientation:
        meta = entity.resolver_metadata
        return ResolvedOrientation(
            pitch=entity.resolved_orientation.pitch,
            yaw=entity.resolved_orientation.yaw,
            confidence=meta.confidence,
            source=meta.source,
        )
