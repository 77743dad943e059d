from __future__ import annotations

from typing import Any, Dict, List

from api.engine.constants import (
    SIDE_LEFT,
    SIDE_RIGHT,
    STATUS_CYCLE,
    STATUS_OK,
    TOPOLOGY_LAYER_VERSION,
)
from api.engine.pv_input_v1 import normalize_cards_v1, normalize_connection_v1


def _add_unknown(unknowns: List[Dict[str, Any]], *, code: str, message: str, path: str) -> None:
    unknowns.append(
        {
            "code": str(code),
            "message": str(message),
            "path": str(path),
        }
    )


def _pick_parent(cards_by_id: Dict[str, Dict[str, Any]], connection: Dict[str, Any]) -> Dict[str, Any]:
    card_a = cards_by_id[connection["a"]]
    card_b = cards_by_id[connection["b"]]
    if card_a["y"] <= card_b["y"]:
        return {
            "parent_id": card_a["id"],
            "child_id": card_b["id"],
            "side": connection["side_on_a"],
        }
    return {
        "parent_id": card_b["id"],
        "child_id": card_a["id"],
        "side": connection["side_on_b"],
    }


def find_cycle_ids_v1(parent_of: Dict[str, Dict[str, Any]]) -> List[str]:
    """Ids of cards whose ancestor chain loops back onto itself."""
    state: Dict[str, int] = {}
    on_cycle: set[str] = set()

    for start_id in sorted(parent_of.keys()):
        if start_id in state:
            continue
        path: List[str] = []
        position: Dict[str, int] = {}
        current: str | None = start_id
        while current is not None and current not in state:
            state[current] = 1
            position[current] = len(path)
            path.append(current)
            relation = parent_of.get(current)
            current = relation.get("parent_id") if isinstance(relation, dict) else None
        if current is not None and state.get(current) == 1 and current in position:
            on_cycle.update(path[position[current]:])
        for node_id in path:
            state[node_id] = 2

    return sorted(on_cycle)


def build_children_of_v1(
    card_ids: List[str],
    parent_of: Dict[str, Dict[str, Any]],
) -> Dict[str, Dict[str, List[str]]]:
    children_temp: Dict[str, Dict[str, List[str]]] = {
        card_id: {SIDE_LEFT: [], SIDE_RIGHT: []} for card_id in card_ids
    }
    for child_id, relation in parent_of.items():
        bucket = children_temp.get(relation["parent_id"])
        if bucket is None:
            continue
        bucket[relation["side"]].append(child_id)
    return {
        card_id: {
            SIDE_LEFT: sorted(children_temp[card_id][SIDE_LEFT]),
            SIDE_RIGHT: sorted(children_temp[card_id][SIDE_RIGHT]),
        }
        for card_id in card_ids
    }


def resolve_topology_v1(cards: Any, connections: Any) -> Dict[str, Any]:
    """
    Derive the partner forest from card geometry.

    The endpoint drawn higher on the board (smaller y) is the parent; on a tie
    endpoint ``a`` wins. A child that already has a parent only moves to a
    candidate parent that sits strictly higher. Locked connections are kept on
    the board but carry no structure.
    """
    cards_by_id, unknowns = normalize_cards_v1(cards)
    connection_list = connections if isinstance(connections, list) else []

    parent_of: Dict[str, Dict[str, Any]] = {}
    connections_total = 0
    connections_used = 0
    connections_locked = 0
    connections_ignored = 0
    reparented_total = 0

    for idx, raw in enumerate(connection_list):
        connections_total += 1
        path = f"$.connections[{idx}]"
        connection = normalize_connection_v1(raw)
        if connection is None:
            connections_ignored += 1
            _add_unknown(
                unknowns,
                code="CONNECTION_INVALID",
                message="Connection must reference two card ids.",
                path=path,
            )
            continue
        if connection["locked"]:
            connections_locked += 1
            continue
        if connection["a"] == connection["b"]:
            connections_ignored += 1
            _add_unknown(
                unknowns,
                code="CONNECTION_SELF_REFERENCE",
                message=f"Connection joins card {connection['a']} to itself.",
                path=path,
            )
            continue
        if connection["a"] not in cards_by_id or connection["b"] not in cards_by_id:
            connections_ignored += 1
            _add_unknown(
                unknowns,
                code="CONNECTION_CARD_MISSING",
                message=f"Connection references unknown card ids: a={connection['a']}, b={connection['b']}.",
                path=path,
            )
            continue

        relation = _pick_parent(cards_by_id, connection)
        child_id = relation["child_id"]
        connections_used += 1

        existing = parent_of.get(child_id)
        if existing is None:
            parent_of[child_id] = {"parent_id": relation["parent_id"], "side": relation["side"]}
            continue

        current_y = cards_by_id[existing["parent_id"]]["y"]
        candidate_y = cards_by_id[relation["parent_id"]]["y"]
        if candidate_y < current_y:
            parent_of[child_id] = {"parent_id": relation["parent_id"], "side": relation["side"]}
            reparented_total += 1

    card_ids = list(cards_by_id.keys())
    parent_of_sorted = {child_id: parent_of[child_id] for child_id in sorted(parent_of.keys())}
    children_of = build_children_of_v1(card_ids, parent_of_sorted)
    roots = sorted(card_id for card_id in card_ids if card_id not in parent_of_sorted)
    cycle_ids = find_cycle_ids_v1(parent_of_sorted)

    if cycle_ids:
        _add_unknown(
            unknowns,
            code="TOPOLOGY_CYCLE",
            message=f"Parent chain loops through cards: {', '.join(cycle_ids)}.",
            path="$.connections",
        )

    return {
        "version": TOPOLOGY_LAYER_VERSION,
        "status": STATUS_CYCLE if cycle_ids else STATUS_OK,
        "parent_of": parent_of_sorted,
        "children_of": children_of,
        "roots": roots,
        "cycle_ids": cycle_ids,
        "unknowns": unknowns,
        "stats": {
            "cards_total": len(card_ids),
            "connections_total": connections_total,
            "connections_used": connections_used,
            "connections_locked": connections_locked,
            "connections_ignored": connections_ignored,
            "reparented_total": reparented_total,
        },
    }


def parent_from_topology_v1(topology: Any, card_id: str) -> Dict[str, str] | None:
    topology_obj = topology if isinstance(topology, dict) else {}
    parent_of = topology_obj.get("parent_of") if isinstance(topology_obj.get("parent_of"), dict) else {}
    relation = parent_of.get(card_id)
    if not isinstance(relation, dict):
        return None
    parent_id = relation.get("parent_id")
    if not isinstance(parent_id, str) or parent_id == "":
        return None
    side = relation.get("side")
    return {
        "parent_id": parent_id,
        "side": SIDE_RIGHT if side == SIDE_RIGHT else SIDE_LEFT,
    }
