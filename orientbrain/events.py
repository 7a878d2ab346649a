"""
Event feed payloads forwarded by the simulation host.

These are the contract between the host's callback glue and the brain:
hits and misses feed the learner, shot-fired events only annotate the
target's bookkeeping.
"""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class HitEvent(BaseModel):
    attacker: int = Field(..., description="Entity that dealt the damage")
    victim: int = Field(..., description="Entity that was hit")
    hitgroup: int = Field(default=0, ge=0)
    damage: float = Field(default=0.0, ge=0)


class MissEvent(BaseModel):
    target: int
    hitgroup: int = Field(default=0, ge=0)
    reason: str = Field(default="unknown", description="Host-reported miss reason")


class ShotFiredEvent(BaseModel):
    target: int
    hitgroup: int = Field(default=0, ge=0)
    hit_chance: Optional[float] = Field(default=None, ge=0, le=100)
