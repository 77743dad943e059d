from __future__ import annotations

import copy
from typing import Any, Dict, List

from api.engine.constants import TOPOLOGY_FINGERPRINT_VERSION
from api.engine.layers.topology_resolve_v1 import resolve_topology_v1
from api.engine.pv_input_v1 import normalize_card_v1, normalize_connection_v1
from engine.determinism import fingerprint_hex


MAX_CACHED_TOPOLOGIES = 64

_TOPOLOGY_CACHE: Dict[str, Dict[str, Any]] = {}


def topology_fingerprint_v1(cards: Any, connections: Any) -> str:
    """
    Hash of everything ``resolve_topology_v1`` reads: card ids and positions
    in input order plus the normalized connection list. Manual points are not
    part of it, so point edits keep the cached topology valid.
    """
    card_rows: List[Any] = []
    for raw in cards if isinstance(cards, list) else []:
        card = normalize_card_v1(raw)
        card_rows.append(None if card is None else [card["id"], card["x"], card["y"]])

    connection_rows: List[Any] = []
    for raw in connections if isinstance(connections, list) else []:
        connection = normalize_connection_v1(raw)
        if connection is None:
            connection_rows.append(None)
            continue
        connection_rows.append(
            [
                connection["a"],
                connection["b"],
                connection["side_on_a"],
                connection["side_on_b"],
                connection["locked"],
            ]
        )

    return fingerprint_hex(
        {
            "version": TOPOLOGY_FINGERPRINT_VERSION,
            "cards": card_rows,
            "connections": connection_rows,
        }
    )


def get_cached_topology_v1(cards: Any, connections: Any) -> Dict[str, Any]:
    key = topology_fingerprint_v1(cards, connections)
    cached = _TOPOLOGY_CACHE.get(key)
    if cached is None:
        cached = resolve_topology_v1(cards, connections)
        if len(_TOPOLOGY_CACHE) >= MAX_CACHED_TOPOLOGIES:
            oldest_key = next(iter(_TOPOLOGY_CACHE))
            _TOPOLOGY_CACHE.pop(oldest_key, None)
        _TOPOLOGY_CACHE[key] = cached
    return copy.deepcopy(cached)


def topology_cache_size_v1() -> int:
    return len(_TOPOLOGY_CACHE)


def clear_topology_cache_v1() -> None:
    _TOPOLOGY_CACHE.clear()
