import py_compile
import sys

FILES = [
    "engine/determinism.py",
    "api/engine/constants.py",
    "api/engine/pv_input_v1.py",
    "api/engine/pv_policy_v1.py",
    "api/engine/topology_cache_v1.py",
    "api/engine/pv_board_v1.py",
    "api/engine/layers/topology_resolve_v1.py",
    "api/engine/layers/pv_rollup_v1.py",
    "api/engine/layers/stage_cycle_v1.py",
    "api/engine/layers/pv_delta_v1.py",
    "api/engine/layers/pv_consistency_v1.py",
    "api/main.py",
    "scripts/inspect_board_pv.py",
]

for f in FILES:
    try:
        py_compile.compile(f, doraise=True)
        print(f"OK: {f}")
    except Exception as e:
        print(f"ERROR in {f}: {e}")
        sys.exit(1)

print("All files compiled successfully.")
