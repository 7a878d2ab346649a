from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List

from .ring import RingBuffer
from .state import AnimationLayer, AnimationSample

# Layer indices with a known role in the locomotion/aim animation stack
MOVEMENT_LAYERS = (0, 3, 6)
POSTURE_LAYER = 3
DESYNC_LAYER = 2
AIM_LAYERS = (5, 6, 8)


@dataclass(frozen=True)
class LayerDelta:
    index: int
    weight_delta: float
    cycle_delta: float
    current: AnimationLayer
    previous: AnimationLayer


def compare_layers(current: AnimationSample, previous: AnimationSample, indices: Iterable[int]) -> List[LayerDelta]:
    """Absolute weight/cycle change for each requested layer present in both samples."""
    out: List[LayerDelta] = []
    for index in indices:
        cur = current.layer(index)
        prev = previous.layer(index)
        if cur is None or prev is None:
            continue
        out.append(LayerDelta(
            index=index,
            weight_delta=abs(cur.weight - prev.weight),
            cycle_delta=abs(cur.cycle - prev.cycle),
            current=cur,
            previous=prev,
        ))
    return out


def latest_layer_deltas(history: RingBuffer[AnimationSample], indices: Iterable[int]) -> List[LayerDelta]:
    if history.count() < 2:
        return []
    current = history.get(1)
    previous = history.get(2)
    if current is None or previous is None:
        return []
    return compare_layers(current, previous, indices)
