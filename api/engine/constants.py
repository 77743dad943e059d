from typing import Any, Dict, Tuple


# --- Versions (core) ---
ENGINE_VERSION = "0.1.0"
PV_POLICY_VERSION = "pv_policy_v1"

# --- Layer Versions ---
TOPOLOGY_LAYER_VERSION = "topology_resolve_v1"
ROLLUP_LAYER_VERSION = "pv_rollup_v1"
DELTA_LAYER_VERSION = "pv_delta_v1"
CONSISTENCY_LAYER_VERSION = "pv_consistency_v1"
BOARD_LAYER_VERSION = "pv_board_v1"

TOPOLOGY_FINGERPRINT_VERSION = "topology_fingerprint_v1"
ROLLUP_FINGERPRINT_VERSION = "rollup_fingerprint_v1"

# --- PV model ---
SIDE_LEFT = "left"
SIDE_RIGHT = "right"
SIDES: Tuple[str, str] = (SIDE_LEFT, SIDE_RIGHT)

PV_THRESHOLD = 330
PV_STAGE_STEPS: Tuple[int, ...] = (6, 12, 18, 36)

DEFAULT_PV_POLICY_V1: Dict[str, Any] = {
    "version": PV_POLICY_VERSION,
    "threshold": PV_THRESHOLD,
    "stage_steps": list(PV_STAGE_STEPS),
}

# --- Status tokens ---
STATUS_OK = "OK"
STATUS_NOOP = "NOOP"
STATUS_PARTIAL = "PARTIAL"
STATUS_CYCLE = "CYCLE"
STATUS_MISMATCH = "MISMATCH"
