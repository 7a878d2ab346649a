from __future__ import annotations

import os
from typing import Dict, List, Optional, Tuple

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from orientbrain import HitEvent, MissEvent, OrientBrain, ResolverConfig, SnapshotTelemetry
from orientbrain.telemetry import PROP_FLAGS, PROP_POSTURE


app = FastAPI(title="OrientBrain resolver API")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("ALLOW_ORIGINS", "*").split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# The host pushes frames into an in-memory snapshot; the brain reads from it.
telemetry = SnapshotTelemetry(local_id=int(os.getenv("LOCAL_ENTITY_ID", "1")))
brain = OrientBrain(
    telemetry,
    config=ResolverConfig.from_env(),
    record_dir=os.getenv("SHOT_RECORD_DIR") or None,
    record_session=os.getenv("SHOT_RECORD_SESSION", "session"),
)


class LayerReq(BaseModel):
    index: int = Field(..., ge=0)
    weight: float
    cycle: float
    sequence: int = 0


class EntityFrameReq(BaseModel):
    entity_id: int
    alive: bool = True
    pitch: float = 0.0
    yaw: float = 0.0
    simulation_time: float = 0.0
    old_simulation_time: Optional[float] = None
    posture: float = 0.0
    flags: int = 1
    velocity: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    origin: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    ping: int = 0
    hitboxes: Dict[int, Tuple[float, float, float]] = Field(default_factory=dict)
    layers: List[LayerReq] = Field(default_factory=list)


class TelemetryReq(BaseModel):
    time: float
    tick: int
    latency: float = 0.0
    choke: int = 0
    entities: List[EntityFrameReq] = Field(default_factory=list)


class ShotReq(BaseModel):
    entity_id: int
    hit: bool
    hitgroup: int = 0
    damage: Optional[float] = None
    reason: Optional[str] = None


class ResolveRes(BaseModel):
    entity_id: int
    pitch: float
    yaw: float
    confidence: float
    source: str


class RewindRes(BaseModel):
    entity_id: int
    tick: int
    simulation_time: float


class EvictReq(BaseModel):
    threshold: Optional[float] = None


@app.post("/telemetry")
def push_telemetry(req: TelemetryReq):
    telemetry.clock = req.time
    telemetry.tick = req.tick
    telemetry.latency_s = req.latency
    telemetry.choke = req.choke
    for frame in req.entities:
        eid = frame.entity_id
        snap = telemetry.entity(eid)
        snap.alive = frame.alive
        snap.ping = frame.ping
        telemetry.set_orientation(eid, frame.pitch, frame.yaw)
        telemetry.set_sim_time(eid, frame.simulation_time, frame.old_simulation_time)
        telemetry.set_props(eid, **{PROP_POSTURE: frame.posture, PROP_FLAGS: frame.flags})
        telemetry.set_velocity(eid, frame.velocity)
        telemetry.set_position(eid, frame.origin)
        for index, pos in frame.hitboxes.items():
            telemetry.set_hitbox(eid, index, pos)
        for layer in frame.layers:
            telemetry.set_layer(eid, layer.index, layer.weight, layer.cycle, layer.sequence)
    return {"ok": True, "entities": len(req.entities)}


@app.post("/update")
def update():
    active = brain.update(list(telemetry.entities.keys()))
    return {"ok": True, "active": active}


@app.get("/resolve/{entity_id}", response_model=ResolveRes)
def resolve(entity_id: int):
    res = brain.get_resolved_orientation(entity_id)
    if res is None:
        raise HTTPException(status_code=404, detail="entity not tracked")
    return ResolveRes(entity_id=entity_id, pitch=res.pitch, yaw=res.yaw, confidence=res.confidence, source=res.source.value)


@app.get("/rewind/{entity_id}", response_model=RewindRes)
def rewind(entity_id: int):
    target = brain.get_rewind_target(entity_id)
    if target is None:
        raise HTTPException(status_code=404, detail="no rewind target")
    return RewindRes(entity_id=entity_id, tick=target.tick, simulation_time=target.simulation_time)


@app.post("/shot")
def shot(req: ShotReq):
    if req.hit:
        ok = brain.on_hit(HitEvent(attacker=telemetry.local_id, victim=req.entity_id, hitgroup=req.hitgroup, damage=req.damage or 0.0))
    else:
        ok = brain.on_miss(MissEvent(target=req.entity_id, hitgroup=req.hitgroup, reason=req.reason or "unknown"))
    return {"ok": ok}


@app.post("/reset")
def reset():
    brain.reset_learning()
    return {"ok": True}


@app.post("/evict")
def evict(req: EvictReq):
    return {"ok": True, "evicted": brain.evict_stale(req.threshold)}


@app.get("/stats")
def stats():
    return brain.stats()


@app.get("/")
def root():
    return {"ok": True, "service": "OrientBrain resolver"}


@app.get("/healthz")
def healthz():
    return {"status": "healthy"}
