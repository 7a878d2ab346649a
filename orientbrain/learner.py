from __future__ import annotations

import logging
import random
from typing import Optional

from .config import ResolverConfig
from .state import BucketMemory, TrackedEntity

log = logging.getLogger(__name__)

RECENT_SHOTS = 5
HIGH_RATIO = 0.7
LOW_RATIO = 0.3
FAIL_STREAK_LIMIT = 3
FIRST_YAW_OFFSET = 35.0
PITCH_NUDGE = 5.0
OFFSET_DECAY = 0.9


class AdaptiveLearner:
    """Hit/miss driven bias for the resolver, one streak counter per entity.

    Good streaks snapshot the current desync guess and offsets under the
    entity's behavioral-state bucket; bad streaks first try to recall a fresh
    snapshot for that bucket and otherwise flip the desync side and explore a
    new yaw offset.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random(42)

    def update(self, entity: TrackedEntity, now: float, config: ResolverConfig) -> Optional[float]:
        """Run one evaluation; returns the hit ratio used, or None when skipped."""
        learning = entity.adaptive_learning
        if now - learning.last_update < config.learner_interval:
            return None
        if entity.shot_history.count() < 2:
            return None

        hits, misses = entity.recent_shots(RECENT_SHOTS)
        total = hits + misses
        hit_ratio = hits / total if total > 0 else 0.0
        entity.accuracy = hit_ratio
        bucket = entity.locomotion.bucket_key()
        desync = entity.desync_state

        if hit_ratio > HIGH_RATIO:
            learning.success_count += 1
            learning.fail_count = 0
            learning.per_bucket_memory[bucket] = BucketMemory(
                side=desync.side,
                amount=desync.amount,
                yaw_offset=learning.yaw_offset,
                pitch_offset=learning.pitch_offset,
                hit_ratio=hit_ratio,
                last_update=now,
            )
        elif hit_ratio < LOW_RATIO:
            learning.fail_count += 1
            learning.success_count = 0
            if learning.fail_count >= FAIL_STREAK_LIMIT:
                memory = learning.per_bucket_memory.get(bucket)
                if memory is not None and memory.hit_ratio > HIGH_RATIO and now - memory.last_update < config.recall_max_age:
                    desync.side = memory.side
                    desync.amount = memory.amount
                    learning.yaw_offset = memory.yaw_offset
                    learning.pitch_offset = memory.pitch_offset
                    log.debug("entity %s recalled bucket %s", entity.entity_id, bucket)
                else:
                    if desync.side != 0:
                        desync.side = -desync.side
                        desync.confidence = 0.5
                    learning.yaw_offset = self._next_yaw_offset(learning.yaw_offset)
                    log.debug("entity %s exploring yaw offset %.1f", entity.entity_id, learning.yaw_offset)
                learning.fail_count = 0
        elif learning.yaw_offset != 0:
            learning.yaw_offset *= OFFSET_DECAY

        if hit_ratio < LOW_RATIO and learning.fail_count >= 2:
            if learning.pitch_offset == 0:
                learning.pitch_offset = PITCH_NUDGE if self.rng.random() > 0.5 else -PITCH_NUDGE
            else:
                learning.pitch_offset = -learning.pitch_offset
        elif hit_ratio > HIGH_RATIO:
            learning.pitch_offset = 0.0

        entity.correction_factor.yaw_offset = learning.yaw_offset
        entity.correction_factor.pitch_offset = learning.pitch_offset
        learning.last_update = now
        return hit_ratio

    @staticmethod
    def _next_yaw_offset(current: float) -> float:
        if current == 0:
            return FIRST_YAW_OFFSET
        if current > 0:
            return -current
        return -current * 0.5
