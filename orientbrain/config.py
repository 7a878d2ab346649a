from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Union


class DesyncMode(str, Enum):
    HISTORY = "history"
    BRUTE_FORCE = "brute_force"
    ADAPTIVE = "adaptive"
    VELOCITY = "velocity"


class ExploitMode(str, Enum):
    CONSERVATIVE = "conservative"
    ADAPTIVE = "adaptive"
    AGGRESSIVE = "aggressive"
    DEFENSIVE = "defensive"


EXPLOIT_MODE_ANGLES: Dict[ExploitMode, float] = {
    ExploitMode.CONSERVATIVE: 25.0,
    ExploitMode.ADAPTIVE: 35.0,
    ExploitMode.AGGRESSIVE: 58.0,
    ExploitMode.DEFENSIVE: 60.0,
}


@dataclass
class ResolverConfig:
    # history / cadence
    history_size: int = 24
    shot_history_size: int = 16
    update_interval: float = 0.002
    stale_threshold: float = 5.0
    cleanup_interval_ticks: int = 300
    diagnostics: bool = False
    desync_interval: float = 0.03
    learner_interval: float = 0.5
    recall_max_age: float = 30.0

    # detector thresholds
    max_desync_angle: float = 58.0
    jitter_threshold: float = 30.0
    posture_low: float = 0.1
    posture_high: float = 0.7
    posture_speed_threshold: float = 5.0
    posture_sensitivity: float = 70.0  # percent
    exploit_time_anomaly: float = 0.001
    defensive_yaw_threshold: float = 15.0
    defensive_velocity_threshold: float = 5.0
    defensive_sim_time_threshold: float = 0.01
    defensive_correction_angle: float = 60.0
    lag_comp_detection: bool = False

    # correction switches
    jitter_enabled: bool = True
    desync_enabled: bool = True
    fake_posture_enabled: bool = True
    exploit_enabled: bool = True
    defensive_enabled: bool = True
    adaptive_enabled: bool = True
    jitter_strength: float = 60.0  # percent
    correction_strength: float = 1.0
    desync_mode: DesyncMode = DesyncMode.HISTORY
    exploit_mode: ExploitMode = ExploitMode.ADAPTIVE

    # rewind
    rewind_enabled: bool = True
    rewind_time_ms: float = 200.0
    rewind_cap_ms: float = 200.0
    rewind_max_ticks: int = 16
    tick_rate: float = 64.0
    ping_based_rewind: bool = False
    rewind_ping_factor: float = 100.0  # percent

    # network
    adaptive_interp: bool = False
    interp_min: float = 1.0
    interp_max: float = 3.0
    ping_threshold: float = 60.0
    update_rate: float = 64.0
    base_interp: float = 0.0

    def replace(self, **changes: Any) -> "ResolverConfig":
        return dataclasses.replace(self, **changes)

    def exploit_angle(self) -> float:
        return EXPLOIT_MODE_ANGLES.get(self.exploit_mode, 35.0)

    @classmethod
    def from_env(cls, prefix: str = "ORIENTBRAIN_", environ: Optional[Mapping[str, str]] = None) -> "ResolverConfig":
        """Build a config with any field overridden by `<PREFIX><FIELD>` env vars."""
        env = os.environ if environ is None else environ
        base = cls()
        overrides: Dict[str, Any] = {}
        for f in dataclasses.fields(cls):
            raw = env.get(prefix + f.name.upper())
            if raw is None:
                continue
            value = _parse(raw, getattr(base, f.name))
            if value is not None:
                overrides[f.name] = value
        return dataclasses.replace(base, **overrides)


def _parse(raw: str, current: Any) -> Any:
    raw = raw.strip()
    try:
        if isinstance(current, bool):
            return raw.lower() in ("1", "true", "yes", "on")
        if isinstance(current, Enum):
            return type(current)(raw.lower())
        if isinstance(current, int):
            return int(raw)
        if isinstance(current, float):
            return float(raw)
    except ValueError:
        return None
    return raw


ConfigSource = Union[ResolverConfig, Callable[[], ResolverConfig]]


def as_provider(config: Optional[ConfigSource]) -> Callable[[], ResolverConfig]:
    if config is None:
        fixed = ResolverConfig()
        return lambda: fixed
    if isinstance(config, ResolverConfig):
        return lambda: config
    return config
