from __future__ import annotations

import math
import re
from typing import Any, Dict, List, Tuple

from api.engine.constants import SIDE_LEFT, SIDE_RIGHT


_INT_TOKEN_RE = re.compile(r"-?\d+")

_MANUAL_KEYS = (
    "manual",
    "active_pv_manual",
    "activePvManual",
    "active_pv",
    "activePv",
)

_CONNECTION_A_KEYS = ("a", "from", "start_id", "startId")
_CONNECTION_B_KEYS = ("b", "to", "end_id", "endId")
_CONNECTION_SIDE_A_KEYS = ("side_on_a", "from_side", "start_side", "startSide", "fromSide")
_CONNECTION_SIDE_B_KEYS = ("side_on_b", "to_side", "end_side", "endSide", "toSide")


def to_integer(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isfinite(value):
            return math.trunc(value)
        return 0
    if isinstance(value, str):
        match = _INT_TOKEN_RE.search(value)
        if match is not None:
            return int(match.group(0))
    return 0


def to_nonnegative_int(value: Any) -> int:
    return max(0, to_integer(value))


def to_coordinate(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else 0.0
    if isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return 0.0
        return number if math.isfinite(number) else 0.0
    return 0.0


def normalize_side(side: Any) -> str:
    if isinstance(side, str) and side.strip().lower() == SIDE_RIGHT:
        return SIDE_RIGHT
    return SIDE_LEFT


def normalize_card_id(value: Any) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        token = value.strip()
        if token != "":
            return token
    return None


def _pick(raw: Dict[str, Any], keys: Tuple[str, ...]) -> Any:
    for key in keys:
        if key in raw and raw.get(key) is not None:
            return raw.get(key)
    return None


def _pair(left: Any, right: Any) -> Dict[str, Any]:
    normalized_left = to_nonnegative_int(left)
    normalized_right = to_nonnegative_int(right)
    return {
        "left": normalized_left,
        "right": normalized_right,
        "total": normalized_left + normalized_right,
        "formatted": f"{normalized_left} / {normalized_right}",
    }


def parse_active_pv(source: Any) -> Dict[str, Any]:
    """Parse a manual PV value as typed by users or stored by older boards.

    Accepts ``{"left": .., "right": ..}`` (also ``L``/``R``/``l``/``r``),
    strings such as ``"120 / 45"`` and bare numbers, which count as left.
    """
    if source is None or source == "" or source == {}:
        return _pair(0, 0)

    if isinstance(source, dict):
        left = _pick(source, ("left", "L", "l"))
        right = _pick(source, ("right", "R", "r"))
        return _pair(left, right)

    if isinstance(source, str):
        cleaned = source.replace(",", ".")
        matches = _INT_TOKEN_RE.findall(cleaned)
        if len(matches) >= 2:
            return _pair(matches[0], matches[1])
        return _pair(cleaned, 0)

    if isinstance(source, (int, float)) and not isinstance(source, bool):
        return _pair(source, 0)

    return _pair(0, 0)


def side_pair(source: Any) -> Dict[str, int]:
    parsed = parse_active_pv(source)
    return {SIDE_LEFT: parsed["left"], SIDE_RIGHT: parsed["right"]}


def _position(raw: Dict[str, Any]) -> Tuple[float, float]:
    position = raw.get("position")
    if isinstance(position, dict):
        return to_coordinate(position.get("x")), to_coordinate(position.get("y"))
    if isinstance(position, (list, tuple)) and len(position) == 2:
        return to_coordinate(position[0]), to_coordinate(position[1])
    return to_coordinate(raw.get("x")), to_coordinate(raw.get("y"))


def _cached_state(raw: Dict[str, Any]) -> Dict[str, Any] | None:
    remainder = _pick(raw, ("remainder",))
    packs_earned = _pick(raw, ("packs_earned", "packsEarned"))
    total_packs = _pick(raw, ("total_packs", "totalPacks"))
    if remainder is None or packs_earned is None or total_packs is None:
        return None
    packs = side_pair(packs_earned)
    return {
        "remainder": side_pair(remainder),
        "packs_earned": packs,
        "total_packs": packs[SIDE_LEFT] + packs[SIDE_RIGHT],
    }


def normalize_card_v1(raw: Any) -> Dict[str, Any] | None:
    if not isinstance(raw, dict):
        return None
    card_id = normalize_card_id(raw.get("id"))
    if card_id is None:
        return None
    x, y = _position(raw)
    return {
        "id": card_id,
        "x": x,
        "y": y,
        "manual": side_pair(_pick(raw, _MANUAL_KEYS)),
        "cached": _cached_state(raw),
    }


def normalize_cards_v1(cards: Any) -> Tuple[Dict[str, Dict[str, Any]], List[Dict[str, Any]]]:
    """Index cards by id in input order; the first card wins on duplicate ids."""
    cards_by_id: Dict[str, Dict[str, Any]] = {}
    unknowns: List[Dict[str, Any]] = []
    if not isinstance(cards, list):
        return cards_by_id, unknowns

    for idx, raw in enumerate(cards):
        card = normalize_card_v1(raw)
        if card is None:
            unknowns.append(
                {
                    "code": "CARD_ID_MISSING",
                    "message": "Card entry must be an object with a non-empty id.",
                    "path": f"$.cards[{idx}]",
                }
            )
            continue
        if card["id"] in cards_by_id:
            unknowns.append(
                {
                    "code": "CARD_DUPLICATE_ID",
                    "message": f"Duplicate card id {card['id']} ignored.",
                    "path": f"$.cards[{idx}]",
                }
            )
            continue
        cards_by_id[card["id"]] = card

    return cards_by_id, unknowns


def normalize_connection_v1(raw: Any) -> Dict[str, Any] | None:
    if not isinstance(raw, dict):
        return None
    a = normalize_card_id(_pick(raw, _CONNECTION_A_KEYS))
    b = normalize_card_id(_pick(raw, _CONNECTION_B_KEYS))
    if a is None or b is None:
        return None
    return {
        "a": a,
        "b": b,
        "side_on_a": normalize_side(_pick(raw, _CONNECTION_SIDE_A_KEYS)),
        "side_on_b": normalize_side(_pick(raw, _CONNECTION_SIDE_B_KEYS)),
        "locked": raw.get("locked") is True,
    }
