import logging
import os
from typing import Optional, Dict, Any, List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field

from api.engine.constants import (
    ENGINE_VERSION,
    STATUS_CYCLE,
    STATUS_MISMATCH,
    STATUS_PARTIAL,
)
from api.engine.layers.pv_consistency_v1 import run_pv_consistency_v1
from api.engine.layers.pv_delta_v1 import apply_pv_clear_v1, apply_pv_delta_v1, merge_pv_updates_v1
from api.engine.layers.stage_cycle_v1 import map_stage_v1
from api.engine.pv_board_v1 import run_pv_board_v1
from api.engine.pv_policy_v1 import load_pv_policy_v1
from api.engine.topology_cache_v1 import get_cached_topology_v1


logger = logging.getLogger(__name__)


class BoardRequest(BaseModel):
    cards: List[Dict[str, Any]] = Field(default_factory=list)
    connections: List[Dict[str, Any]] = Field(default_factory=list)


class DeltaRequest(BaseModel):
    cards: List[Dict[str, Any]] = Field(default_factory=list)
    connections: List[Dict[str, Any]] = Field(default_factory=list)
    card_id: str = Field(..., description="Card receiving the edit")
    side: str = "left"
    delta: int = Field(..., description="Signed point delta")
    derived: Optional[Dict[str, Dict[str, Any]]] = None


class ClearRequest(BaseModel):
    cards: List[Dict[str, Any]] = Field(default_factory=list)
    connections: List[Dict[str, Any]] = Field(default_factory=list)
    card_id: str = Field(..., description="Card to clear")
    side: Optional[str] = Field(default=None, description="left, right, or omitted for both sides")
    derived: Optional[Dict[str, Dict[str, Any]]] = None


class StageResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    total_packs: int
    cycle: int
    stage: int
    to_next_stage: int


class BoardResponse(BaseModel):
    version: str
    status: str
    policy_version: str
    threshold: int
    cards: Dict[str, Dict[str, Any]]
    parent_of: Dict[str, Dict[str, str]]
    children_of: Dict[str, Dict[str, List[str]]]
    roots: List[str]
    cycle_ids: List[str]
    inconsistent_ids: List[str]
    unknowns: List[Dict[str, Any]]
    topology_hash_v1: str
    rollup_hash_v1: str


class DeltaResponse(BaseModel):
    version: str
    status: str
    card_id: Optional[str] = None
    side: str
    requested_delta: int
    applied_delta: int
    updates: Dict[str, Dict[str, Any]]
    changed_ids: List[str]
    partial: bool
    cards: List[Dict[str, Any]]


app = FastAPI(title="PV Board Engine", version=ENGINE_VERSION)

DEV_CORS = os.getenv("PV_ENGINE_DEV_CORS", "0") == "1"

if DEV_CORS:
    dev_ports = range(5173, 5181)
    allow_origins = [f"http://127.0.0.1:{port}" for port in dev_ports] + [
        f"http://localhost:{port}" for port in dev_ports
    ]
else:
    allow_origins = [
        "http://127.0.0.1:5173",
        "http://localhost:5173",
    ]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health():
    policy = load_pv_policy_v1()
    return {
        "ok": True,
        "engine_version": ENGINE_VERSION,
        "policy_version": policy["version"],
        "threshold": policy["threshold"],
    }


@app.post("/pv/recalc", response_model=BoardResponse)
def pv_recalc(req: BoardRequest):
    payload = run_pv_board_v1(req.cards, req.connections, load_pv_policy_v1())
    if payload["status"] in {STATUS_CYCLE, STATUS_PARTIAL}:
        logger.warning(
            "pv recalc %s: cycle_ids=%s inconsistent_ids=%s",
            payload["status"],
            payload["cycle_ids"],
            payload["inconsistent_ids"],
        )
    return BoardResponse(**payload)


@app.post("/pv/delta", response_model=DeltaResponse)
def pv_delta(req: DeltaRequest):
    topology = get_cached_topology_v1(req.cards, req.connections)
    payload = apply_pv_delta_v1(
        req.cards,
        topology,
        req.card_id,
        req.side,
        req.delta,
        derived=req.derived,
        policy=load_pv_policy_v1(),
    )
    if payload["partial"]:
        logger.warning(
            "pv delta on %s stopped early after %s; full recalc required",
            payload["card_id"],
            payload["changed_ids"],
        )
    payload["cards"] = merge_pv_updates_v1(req.cards, payload["updates"])
    return DeltaResponse(**payload)


@app.post("/pv/clear", response_model=DeltaResponse)
def pv_clear(req: ClearRequest):
    topology = get_cached_topology_v1(req.cards, req.connections)
    payload = apply_pv_clear_v1(
        req.cards,
        topology,
        req.card_id,
        req.side,
        derived=req.derived,
        policy=load_pv_policy_v1(),
    )
    payload["cards"] = merge_pv_updates_v1(req.cards, payload["updates"])
    return DeltaResponse(**payload)


@app.post("/pv/consistency")
def pv_consistency(req: BoardRequest):
    topology = get_cached_topology_v1(req.cards, req.connections)
    payload = run_pv_consistency_v1(req.cards, topology, load_pv_policy_v1())
    if payload["status"] in {STATUS_MISMATCH, STATUS_PARTIAL}:
        logger.warning(
            "pv consistency %s: mismatched_ids=%s inconsistent_ids=%s",
            payload["status"],
            payload["mismatched_ids"],
            payload["inconsistent_ids"],
        )
    return payload


@app.get("/pv/stage/{total_packs}", response_model=StageResponse)
def pv_stage(total_packs: int):
    mapped = map_stage_v1(total_packs, load_pv_policy_v1())
    return StageResponse(total_packs=max(0, total_packs), **mapped)
