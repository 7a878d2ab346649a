"""
Shot-outcome recording for offline evaluation.

Every hit/miss is written together with the correction that was in effect
when the shot was taken, so a session can be replayed against detector and
resolver changes (see scripts/offline_eval.py).

Layout: <root>/<session>/e_<entity_id>.jsonl, one JSON object per line.
Records are stamped with the simulation clock and tick; a session name
separates runs instead of wall-clock dates.
"""
from __future__ import annotations

import glob
import json
import logging
import os
from typing import Any, Dict, Iterator, List

from .state import ShotOutcome, TrackedEntity

log = logging.getLogger(__name__)

SCHEMA_VERSION = 1


def shot_record(entity: TrackedEntity, outcome: ShotOutcome, tick: int) -> Dict[str, Any]:
    meta = entity.resolver_metadata
    return {
        "v": SCHEMA_VERSION,
        "entity_id": entity.entity_id,
        "tick": int(tick),
        "time": outcome.timestamp,
        "hit": outcome.hit,
        "hitgroup": outcome.hitgroup,
        "damage": outcome.damage,
        "reason": outcome.reason,
        "source": meta.source.value,
        "confidence": meta.confidence,
        "correction": meta.correction_magnitude,
        "raw_yaw": meta.original_yaw,
        "resolved_yaw": entity.resolved_orientation.yaw,
        "desync_side": entity.desync_state.side,
        "jitter_pattern": entity.jitter_state.pattern,
        "yaw_offset": entity.correction_factor.yaw_offset,
        "accuracy": entity.accuracy,
        "bucket": entity.locomotion.bucket_key(),
    }


class ShotRecorder:
    """Best-effort JSONL sink: write failures are logged and dropped."""

    def __init__(self, root_dir: str, session: str = "session") -> None:
        self.session_dir = os.path.join(root_dir, session)
        os.makedirs(self.session_dir, exist_ok=True)
        self.written = 0

    def path_for(self, entity_id: int) -> str:
        return os.path.join(self.session_dir, f"e_{int(entity_id)}.jsonl")

    def record(self, entity: TrackedEntity, outcome: ShotOutcome, tick: int) -> bool:
        try:
            line = json.dumps(shot_record(entity, outcome, tick), ensure_ascii=False)
            with open(self.path_for(entity.entity_id), "a", encoding="utf-8") as f:
                f.write(line + "\n")
        except (OSError, TypeError, ValueError) as e:
            log.debug("shot record for %s dropped: %s", entity.entity_id, e)
            return False
        self.written += 1
        return True


def iter_records(root: str) -> Iterator[Dict[str, Any]]:
    """Yield every record under `root` (any session), skipping corrupt lines."""
    for path in sorted(glob.glob(os.path.join(root, "**", "e_*.jsonl"), recursive=True)):
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    yield json.loads(line)
                except json.JSONDecodeError:
                    log.debug("skipping corrupt line in %s", path)


def load_records(root: str) -> List[Dict[str, Any]]:
    return list(iter_records(root))
