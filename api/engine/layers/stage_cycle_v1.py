from __future__ import annotations

from typing import Any, Dict, List

from api.engine.pv_input_v1 import to_nonnegative_int
from api.engine.pv_policy_v1 import resolve_policy_v1


def cumulative_stage_thresholds_v1(stage_steps: List[int]) -> List[int]:
    out: List[int] = []
    accumulated = 0
    for step in stage_steps:
        accumulated += int(step)
        out.append(accumulated)
    return out


def map_stage_v1(total_packs: Any, policy: Any = None) -> Dict[str, int]:
    """Map a pack count to ``cycle``, ``stage`` and ``to_next_stage``.

    With steps 6/12/18/36 the cumulative stage marks are 6, 18, 36 and 72; a
    full cycle is 72 packs, so reaching the last mark rolls the count into the
    next cycle at stage 0.
    """
    thresholds = cumulative_stage_thresholds_v1(resolve_policy_v1(policy)["stage_steps"])
    cycle_size = thresholds[-1]
    total = to_nonnegative_int(total_packs)

    cycle = total // cycle_size
    within = total % cycle_size

    stage = 0
    for threshold in thresholds:
        if within >= threshold:
            stage += 1
        else:
            break

    # within < cycle_size, so the final mark is always still ahead.
    to_next_stage = thresholds[stage] - within

    return {
        "cycle": cycle,
        "stage": stage,
        "to_next_stage": to_next_stage,
    }
