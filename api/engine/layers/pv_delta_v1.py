from __future__ import annotations

from typing import Any, Dict, List

from api.engine.constants import (
    DELTA_LAYER_VERSION,
    SIDE_LEFT,
    SIDE_RIGHT,
    SIDES,
    STATUS_NOOP,
    STATUS_OK,
    STATUS_PARTIAL,
)
from api.engine.layers.pv_rollup_v1 import compute_card_states_v1
from api.engine.layers.stage_cycle_v1 import map_stage_v1
from api.engine.layers.topology_resolve_v1 import parent_from_topology_v1
from api.engine.pv_input_v1 import normalize_card_id, normalize_cards_v1, normalize_side, side_pair, to_integer
from api.engine.pv_policy_v1 import resolve_policy_v1


_PATCH_FIELDS = (
    "manual",
    "remainder",
    "packs_earned",
    "total_packs",
    "local_contribution",
    "cycle",
    "stage",
    "to_next_stage",
)


def _state_from_derived(derived: Any, card_id: str) -> Dict[str, Any] | None:
    if not isinstance(derived, dict):
        return None
    row = derived.get(card_id)
    if not isinstance(row, dict):
        return None
    if row.get("remainder") is None or row.get("packs_earned") is None:
        return None
    packs = side_pair(row.get("packs_earned"))
    return {
        "remainder": side_pair(row.get("remainder")),
        "packs_earned": packs,
        "total_packs": packs[SIDE_LEFT] + packs[SIDE_RIGHT],
    }


class _StateBook:
    """Working copy of per-card state for one delta call.

    Lookups go derived map first, then the card's cached fields, then an
    on-demand subtree rollup for whatever is still missing. ``prime`` runs
    that rollup once for a whole ancestor chain so no subtree is walked twice.
    """

    def __init__(
        self,
        cards_by_id: Dict[str, Dict[str, Any]],
        topology: Any,
        derived: Any,
        policy: Dict[str, Any],
    ) -> None:
        self._cards_by_id = cards_by_id
        self._topology = topology
        self._derived = derived
        self._policy = policy
        self._states: Dict[str, Dict[str, Any]] = {}
        self._computed: Dict[str, Dict[str, Any]] = {}

    def _stored_source(self, card_id: str) -> Dict[str, Any] | None:
        return _state_from_derived(self._derived, card_id) or self._cards_by_id[card_id].get("cached")

    def prime(self, card_ids: List[str]) -> None:
        missing = [
            card_id
            for card_id in card_ids
            if card_id not in self._states
            and card_id not in self._computed
            and self._stored_source(card_id) is None
        ]
        if not missing:
            return
        # Topmost first: its walk already covers every missing id below it.
        computed = compute_card_states_v1(
            self._cards_by_id,
            self._topology,
            list(reversed(missing)),
            self._policy,
        )
        self._computed.update(computed["results"])

    def get(self, card_id: str) -> Dict[str, Any]:
        state = self._states.get(card_id)
        if state is not None:
            return state

        source = self._stored_source(card_id)
        if source is None:
            self.prime([card_id])
            source = self._computed[card_id]

        state = {
            "manual": dict(self._cards_by_id[card_id]["manual"]),
            "remainder": {side: int(source["remainder"][side]) for side in SIDES},
            "packs_earned": {side: int(source["packs_earned"][side]) for side in SIDES},
        }
        self._states[card_id] = state
        return state


def _ancestor_chain(cards_by_id: Dict[str, Dict[str, Any]], topology: Any, origin_id: str) -> List[str]:
    """``origin_id`` plus its ancestors, stopping at a loop or a missing card."""
    chain = [origin_id]
    seen = {origin_id}
    current_id = origin_id
    while len(chain) <= len(cards_by_id):
        relation = parent_from_topology_v1(topology, current_id)
        if relation is None:
            break
        parent_id = relation["parent_id"]
        if parent_id in seen or parent_id not in cards_by_id:
            break
        chain.append(parent_id)
        seen.add(parent_id)
        current_id = parent_id
    return chain


def _patch(state: Dict[str, Any], policy: Dict[str, Any]) -> Dict[str, Any]:
    total_packs = state["packs_earned"][SIDE_LEFT] + state["packs_earned"][SIDE_RIGHT]
    stage = map_stage_v1(total_packs, policy)
    patch = {
        "manual": dict(state["manual"]),
        "remainder": dict(state["remainder"]),
        "packs_earned": dict(state["packs_earned"]),
        "total_packs": total_packs,
        "local_contribution": total_packs * policy["threshold"],
        "cycle": stage["cycle"],
        "stage": stage["stage"],
        "to_next_stage": stage["to_next_stage"],
    }
    return {field: patch[field] for field in _PATCH_FIELDS}


def _result(
    *,
    status: str,
    card_id: str | None,
    side: str,
    requested_delta: int,
    applied_delta: int,
    updates: Dict[str, Dict[str, Any]] | None = None,
    changed_ids: List[str] | None = None,
    partial: bool = False,
) -> Dict[str, Any]:
    return {
        "version": DELTA_LAYER_VERSION,
        "status": status,
        "card_id": card_id,
        "side": side,
        "requested_delta": requested_delta,
        "applied_delta": applied_delta,
        "updates": updates if updates is not None else {},
        "changed_ids": changed_ids if changed_ids is not None else [],
        "partial": partial,
    }


def _propagate_packs(
    *,
    book: _StateBook,
    cards_by_id: Dict[str, Dict[str, Any]],
    topology: Any,
    origin_id: str,
    packs: int,
    changed_ids: List[str],
) -> bool:
    """Deliver ``packs`` whole packs up the ancestor chain of ``origin_id``.

    Returns True when the walk stopped early (cycle, dangling parent or step
    budget exhausted).
    """
    visited = {origin_id}
    steps_remaining = len(cards_by_id)
    current_id = origin_id

    while packs > 0:
        relation = parent_from_topology_v1(topology, current_id)
        if relation is None:
            return False
        parent_id = relation["parent_id"]
        if parent_id in visited or parent_id not in cards_by_id or steps_remaining <= 0:
            return True
        steps_remaining -= 1
        visited.add(parent_id)

        parent_state = book.get(parent_id)
        # k whole packs add k * threshold points, so the parent's remainder
        # is untouched and its own total grows by exactly k.
        parent_state["packs_earned"][relation["side"]] += packs
        changed_ids.append(parent_id)
        current_id = parent_id

    return False


def apply_pv_delta_v1(
    cards: Any,
    topology: Any,
    card_id: Any,
    side: Any,
    delta: Any,
    derived: Any = None,
    policy: Any = None,
) -> Dict[str, Any]:
    """
    Apply one signed manual point edit (pv_delta_v1).

    Increases convert whole packs and carry them to every ancestor on the side
    the child hangs under. Decreases are clamped to the card's current
    remainder and stay local, so packs already delivered upward are never
    retracted. Only the origin and the ancestors it reached are returned, in
    root-ward order.
    """
    resolved_policy = resolve_policy_v1(policy)
    threshold = resolved_policy["threshold"]
    normalized_side = normalize_side(side)
    requested_delta = to_integer(delta)

    cards_by_id, _ = normalize_cards_v1(cards)
    target_id = normalize_card_id(card_id)

    if target_id is None or target_id not in cards_by_id or requested_delta == 0:
        return _result(
            status=STATUS_NOOP,
            card_id=target_id,
            side=normalized_side,
            requested_delta=requested_delta,
            applied_delta=0,
        )

    book = _StateBook(cards_by_id, topology, derived, resolved_policy)
    if requested_delta > 0:
        book.prime(_ancestor_chain(cards_by_id, topology, target_id))
    state = book.get(target_id)

    if requested_delta < 0:
        applied_delta = max(requested_delta, -state["remainder"][normalized_side])
        if applied_delta == 0:
            return _result(
                status=STATUS_NOOP,
                card_id=target_id,
                side=normalized_side,
                requested_delta=requested_delta,
                applied_delta=0,
            )
        state["manual"][normalized_side] = max(0, state["manual"][normalized_side] + applied_delta)
        state["remainder"][normalized_side] += applied_delta
        return _result(
            status=STATUS_OK,
            card_id=target_id,
            side=normalized_side,
            requested_delta=requested_delta,
            applied_delta=applied_delta,
            updates={target_id: _patch(state, resolved_policy)},
            changed_ids=[target_id],
        )

    state["manual"][normalized_side] += requested_delta
    carry = state["remainder"][normalized_side] + requested_delta
    new_packs = carry // threshold
    state["remainder"][normalized_side] = carry % threshold
    state["packs_earned"][normalized_side] += new_packs

    changed_ids = [target_id]
    partial = False
    if new_packs > 0:
        partial = _propagate_packs(
            book=book,
            cards_by_id=cards_by_id,
            topology=topology,
            origin_id=target_id,
            packs=new_packs,
            changed_ids=changed_ids,
        )

    updates = {changed_id: _patch(book.get(changed_id), resolved_policy) for changed_id in changed_ids}
    return _result(
        status=STATUS_PARTIAL if partial else STATUS_OK,
        card_id=target_id,
        side=normalized_side,
        requested_delta=requested_delta,
        applied_delta=requested_delta,
        updates=updates,
        changed_ids=changed_ids,
        partial=partial,
    )


def apply_pv_clear_v1(
    cards: Any,
    topology: Any,
    card_id: Any,
    side: Any = None,
    derived: Any = None,
    policy: Any = None,
) -> Dict[str, Any]:
    """Drop the uncommitted remainder on one side, or both when ``side`` is None.

    Points already converted into delivered packs stay in ``manual``.
    """
    resolved_policy = resolve_policy_v1(policy)
    sides = list(SIDES) if side is None else [normalize_side(side)]
    result_side = "both" if side is None else sides[0]

    cards_by_id, _ = normalize_cards_v1(cards)
    target_id = normalize_card_id(card_id)
    if target_id is None or target_id not in cards_by_id:
        return _result(
            status=STATUS_NOOP,
            card_id=target_id,
            side=result_side,
            requested_delta=0,
            applied_delta=0,
        )

    book = _StateBook(cards_by_id, topology, derived, resolved_policy)
    state = book.get(target_id)

    removed = 0
    for clear_side in sides:
        amount = state["remainder"][clear_side]
        if amount <= 0:
            continue
        state["manual"][clear_side] = max(0, state["manual"][clear_side] - amount)
        state["remainder"][clear_side] = 0
        removed += amount

    if removed == 0:
        return _result(
            status=STATUS_NOOP,
            card_id=target_id,
            side=result_side,
            requested_delta=0,
            applied_delta=0,
        )

    return _result(
        status=STATUS_OK,
        card_id=target_id,
        side=result_side,
        requested_delta=-removed,
        applied_delta=-removed,
        updates={target_id: _patch(state, resolved_policy)},
        changed_ids=[target_id],
    )


def merge_pv_updates_v1(cards: Any, updates: Any) -> List[Dict[str, Any]]:
    """Return a new card list with delta patches merged in; input untouched."""
    card_list = cards if isinstance(cards, list) else []
    patches = updates if isinstance(updates, dict) else {}

    merged: List[Dict[str, Any]] = []
    for raw in card_list:
        if not isinstance(raw, dict):
            merged.append(raw)
            continue
        out = dict(raw)
        card_id = normalize_card_id(raw.get("id"))
        patch = patches.get(card_id) if card_id is not None else None
        if isinstance(patch, dict):
            for field in _PATCH_FIELDS:
                if field not in patch:
                    continue
                value = patch[field]
                out[field] = dict(value) if isinstance(value, dict) else value
        merged.append(out)
    return merged
