from __future__ import annotations

from typing import Any, Dict, List

from api.engine.constants import (
    BOARD_LAYER_VERSION,
    ROLLUP_FINGERPRINT_VERSION,
    STATUS_CYCLE,
    STATUS_OK,
    STATUS_PARTIAL,
)
from api.engine.layers.pv_rollup_v1 import run_pv_rollup_v1
from api.engine.layers.stage_cycle_v1 import map_stage_v1
from api.engine.pv_policy_v1 import resolve_policy_v1
from api.engine.topology_cache_v1 import get_cached_topology_v1, topology_fingerprint_v1
from engine.determinism import fingerprint_hex


def _sorted_unknowns(unknowns: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted(
        unknowns,
        key=lambda row: (
            str(row.get("path") or ""),
            str(row.get("code") or ""),
            str(row.get("message") or ""),
        ),
    )


def run_pv_board_v1(cards: Any, connections: Any, policy: Any = None) -> Dict[str, Any]:
    """
    Full board recalculation: resolve -> rollup -> stage mapping.

    This is the ground-truth pass the editor runs after load, topology edits
    and bulk imports. The payload is deterministic; ``topology_hash_v1``
    covers geometry and connections only while ``rollup_hash_v1`` covers the
    derived per-card fields.
    """
    resolved_policy = resolve_policy_v1(policy)
    topology = get_cached_topology_v1(cards, connections)
    rollup = run_pv_rollup_v1(cards, topology, resolved_policy)

    board_cards: Dict[str, Dict[str, Any]] = {}
    for card_id, result in rollup["results"].items():
        stage = map_stage_v1(result["total_packs"], resolved_policy)
        board_cards[card_id] = {
            "manual": dict(result["manual"]),
            "local_points": dict(result["local_points"]),
            "remainder": dict(result["remainder"]),
            "packs_earned": dict(result["packs_earned"]),
            "total_packs": result["total_packs"],
            "local_contribution": result["local_contribution"],
            "cycle": stage["cycle"],
            "stage": stage["stage"],
            "to_next_stage": stage["to_next_stage"],
        }

    unknowns = list(topology.get("unknowns") or [])
    for card_id in rollup["inconsistent_ids"]:
        unknowns.append(
            {
                "code": "ROLLUP_INCONSISTENT",
                "message": f"Card {card_id} sits on a malformed parent chain; its rollup is partial.",
                "path": f"$.cards[id={card_id}]",
            }
        )

    if topology.get("status") == STATUS_CYCLE:
        status = STATUS_CYCLE
    elif rollup["status"] == STATUS_PARTIAL:
        status = STATUS_PARTIAL
    else:
        status = STATUS_OK

    rollup_hash_v1 = fingerprint_hex(
        {
            "version": ROLLUP_FINGERPRINT_VERSION,
            "threshold": resolved_policy["threshold"],
            "stage_steps": resolved_policy["stage_steps"],
            "cards": board_cards,
        }
    )

    return {
        "version": BOARD_LAYER_VERSION,
        "status": status,
        "policy_version": resolved_policy["version"],
        "threshold": resolved_policy["threshold"],
        "cards": board_cards,
        "parent_of": topology.get("parent_of") or {},
        "children_of": topology.get("children_of") or {},
        "roots": list(topology.get("roots") or []),
        "cycle_ids": list(topology.get("cycle_ids") or []),
        "inconsistent_ids": list(rollup["inconsistent_ids"]),
        "unknowns": _sorted_unknowns(unknowns),
        "topology_hash_v1": topology_fingerprint_v1(cards, connections),
        "rollup_hash_v1": rollup_hash_v1,
    }
