from __future__ import annotations

from typing import Any, Dict, List

from api.engine.constants import (
    CONSISTENCY_LAYER_VERSION,
    SIDES,
    STATUS_MISMATCH,
    STATUS_OK,
    STATUS_PARTIAL,
)
from api.engine.layers.pv_rollup_v1 import run_pv_rollup_v1
from api.engine.pv_input_v1 import normalize_cards_v1


def run_pv_consistency_v1(cards: Any, topology: Any, policy: Any = None) -> Dict[str, Any]:
    """
    Compare the denormalized fields stored on cards with a fresh full rollup.

    Cards without cached fields are listed in ``uncached_ids`` and do not
    count as mismatches.
    """
    cards_by_id, _ = normalize_cards_v1(cards)
    rollup = run_pv_rollup_v1(cards, topology, policy)
    results = rollup["results"]

    mismatches: List[Dict[str, Any]] = []
    uncached_ids: List[str] = []

    for card_id in sorted(cards_by_id.keys()):
        cached = cards_by_id[card_id].get("cached")
        if cached is None:
            uncached_ids.append(card_id)
            continue
        expected = results.get(card_id)
        if expected is None:
            continue

        for field in ("remainder", "packs_earned"):
            for side in SIDES:
                if cached[field][side] != expected[field][side]:
                    mismatches.append(
                        {
                            "card_id": card_id,
                            "field": f"{field}.{side}",
                            "cached": cached[field][side],
                            "expected": expected[field][side],
                        }
                    )
        if cached["total_packs"] != expected["total_packs"]:
            mismatches.append(
                {
                    "card_id": card_id,
                    "field": "total_packs",
                    "cached": cached["total_packs"],
                    "expected": expected["total_packs"],
                }
            )

    mismatched_ids = sorted({row["card_id"] for row in mismatches})

    if mismatches:
        status = STATUS_MISMATCH
    elif rollup["status"] == STATUS_PARTIAL:
        status = STATUS_PARTIAL
    else:
        status = STATUS_OK

    return {
        "version": CONSISTENCY_LAYER_VERSION,
        "status": status,
        "mismatched_ids": mismatched_ids,
        "mismatches": mismatches,
        "uncached_ids": uncached_ids,
        "inconsistent_ids": list(rollup["inconsistent_ids"]),
        "stats": {
            "cards_total": len(cards_by_id),
            "cards_checked": len(cards_by_id) - len(uncached_ids),
            "mismatches_total": len(mismatches),
        },
    }
