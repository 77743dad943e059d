from __future__ import annotations

from typing import Any, Dict, Iterable, List, Tuple

from api.engine.constants import (
    ROLLUP_LAYER_VERSION,
    SIDE_LEFT,
    SIDE_RIGHT,
    SIDES,
    STATUS_OK,
    STATUS_PARTIAL,
)
from api.engine.layers.topology_resolve_v1 import build_children_of_v1, parent_from_topology_v1
from api.engine.pv_input_v1 import normalize_cards_v1
from api.engine.pv_policy_v1 import resolve_policy_v1


def children_index_v1(topology: Any, card_ids: List[str]) -> Dict[str, Dict[str, List[str]]]:
    """Children per side for every card, rebuilt from ``parent_of`` when a
    caller hands over a bare parent map."""
    topology_obj = topology if isinstance(topology, dict) else {}
    children_of = topology_obj.get("children_of")
    if isinstance(children_of, dict):
        out: Dict[str, Dict[str, List[str]]] = {}
        for card_id in card_ids:
            bucket = children_of.get(card_id) if isinstance(children_of.get(card_id), dict) else {}
            out[card_id] = {
                side: [c for c in bucket.get(side, []) if isinstance(c, str)]
                for side in SIDES
            }
        return out

    parent_of: Dict[str, Dict[str, Any]] = {}
    raw_parent_of = topology_obj.get("parent_of") if isinstance(topology_obj.get("parent_of"), dict) else {}
    for child_id in sorted(raw_parent_of.keys()):
        relation = parent_from_topology_v1(topology_obj, child_id)
        if relation is not None:
            parent_of[child_id] = relation
    return build_children_of_v1(card_ids, parent_of)


def build_card_result_v1(manual: Dict[str, int], local_points: Dict[str, int], threshold: int) -> Dict[str, Any]:
    packs_earned = {side: local_points[side] // threshold for side in SIDES}
    remainder = {side: local_points[side] % threshold for side in SIDES}
    total_packs = packs_earned[SIDE_LEFT] + packs_earned[SIDE_RIGHT]
    return {
        "manual": {side: manual[side] for side in SIDES},
        "local_points": {side: local_points[side] for side in SIDES},
        "remainder": remainder,
        "packs_earned": packs_earned,
        "total_packs": total_packs,
        "local_contribution": total_packs * threshold,
    }


def _walk_subtrees(
    *,
    start_ids: Iterable[str],
    cards_by_id: Dict[str, Dict[str, Any]],
    children: Dict[str, Dict[str, List[str]]],
    threshold: int,
    memo: Dict[str, Dict[str, Any]],
    inconsistent: set[str],
) -> None:
    # A card is expanded at most once across all starts (memo or on_stack
    # blocks re-entry), so the walk is bounded by the card count even on
    # cyclic parent maps.
    excluded_edges: set[Tuple[str, str]] = set()

    for start_id in start_ids:
        if start_id in memo or start_id not in cards_by_id:
            continue

        on_stack: set[str] = set()
        stack: List[Tuple[str, bool]] = [(start_id, False)]
        while stack:
            node_id, expanded = stack.pop()

            if expanded:
                manual = cards_by_id[node_id]["manual"]
                local_points = {side: manual[side] for side in SIDES}
                for side in SIDES:
                    for child_id in children[node_id][side]:
                        if (node_id, child_id) in excluded_edges:
                            continue
                        child_result = memo.get(child_id)
                        if child_result is None:
                            continue
                        local_points[side] += child_result["total_packs"] * threshold
                memo[node_id] = build_card_result_v1(manual, local_points, threshold)
                on_stack.discard(node_id)
                continue

            if node_id in memo or node_id in on_stack:
                continue

            on_stack.add(node_id)
            stack.append((node_id, True))
            for side in (SIDE_RIGHT, SIDE_LEFT):
                for child_id in reversed(children[node_id][side]):
                    if child_id not in cards_by_id:
                        excluded_edges.add((node_id, child_id))
                        inconsistent.add(node_id)
                        continue
                    if child_id in on_stack:
                        excluded_edges.add((node_id, child_id))
                        inconsistent.add(node_id)
                        inconsistent.add(child_id)
                        continue
                    if child_id not in memo:
                        stack.append((child_id, False))


def compute_card_states_v1(
    cards_by_id: Dict[str, Dict[str, Any]],
    topology: Any,
    card_ids: Iterable[str],
    policy: Any = None,
) -> Dict[str, Any]:
    """Evaluate only the subtrees below ``card_ids``."""
    threshold = resolve_policy_v1(policy)["threshold"]
    all_ids = list(cards_by_id.keys())
    children = children_index_v1(topology, all_ids)
    memo: Dict[str, Dict[str, Any]] = {}
    inconsistent: set[str] = set()
    _walk_subtrees(
        start_ids=list(card_ids),
        cards_by_id=cards_by_id,
        children=children,
        threshold=threshold,
        memo=memo,
        inconsistent=inconsistent,
    )
    return {
        "results": memo,
        "inconsistent_ids": sorted(inconsistent),
    }


def run_pv_rollup_v1(cards: Any, topology: Any, policy: Any = None) -> Dict[str, Any]:
    """
    Full bottom-up PV rollup (pv_rollup_v1).

    A child passes its whole packs upward as ``total_packs * threshold``
    points on the side it hangs under; its remainder stays local. Cards on a
    parent cycle still get a result, but the looping edge contributes nothing
    and both ends are listed in ``inconsistent_ids``.
    """
    resolved_policy = resolve_policy_v1(policy)
    threshold = resolved_policy["threshold"]

    cards_by_id, _ = normalize_cards_v1(cards)
    card_ids = list(cards_by_id.keys())
    children = children_index_v1(topology, card_ids)

    topology_obj = topology if isinstance(topology, dict) else {}
    parent_of = topology_obj.get("parent_of") if isinstance(topology_obj.get("parent_of"), dict) else {}
    roots = sorted(card_id for card_id in card_ids if card_id not in parent_of)
    rest = sorted(card_id for card_id in card_ids if card_id in parent_of)

    memo: Dict[str, Dict[str, Any]] = {}
    inconsistent: set[str] = set()
    _walk_subtrees(
        start_ids=roots + rest,
        cards_by_id=cards_by_id,
        children=children,
        threshold=threshold,
        memo=memo,
        inconsistent=inconsistent,
    )

    results = {card_id: memo[card_id] for card_id in sorted(memo.keys())}
    inconsistent_ids = sorted(inconsistent)

    return {
        "version": ROLLUP_LAYER_VERSION,
        "status": STATUS_PARTIAL if inconsistent_ids else STATUS_OK,
        "threshold": threshold,
        "results": results,
        "inconsistent_ids": inconsistent_ids,
        "stats": {
            "cards_total": len(card_ids),
            "roots_total": len(roots),
            "packs_total": sum(result["total_packs"] for result in results.values()),
            "inconsistent_total": len(inconsistent_ids),
        },
    }
