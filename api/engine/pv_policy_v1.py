from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, List

from api.engine.constants import DEFAULT_PV_POLICY_V1


_PV_POLICY_FILE = (
    Path(__file__).resolve().parent
    / "data"
    / "pv"
    / "pv_policy_v1.json"
)

_REQUIRED_ROOT_KEYS = {
    "version",
    "threshold",
    "stage_steps",
}

_POLICY_CACHE: Dict[str, Dict[str, Any]] = {}


def _runtime_error(code: str, detail: str) -> RuntimeError:
    return RuntimeError(f"{code}: {detail}")


def _nonempty_str(value: Any) -> str | None:
    if isinstance(value, str):
        token = value.strip()
        if token != "":
            return token
    return None


def _require_positive_int(value: Any, *, field_path: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise _runtime_error("PV_POLICY_V1_INVALID", f"{field_path} must be int")
    if value <= 0:
        raise _runtime_error("PV_POLICY_V1_INVALID", f"{field_path} must be > 0")
    return int(value)


def _resolve_pv_policy_file() -> Path:
    env_path = _nonempty_str(os.getenv("PV_ENGINE_POLICY_PATH"))
    if env_path is not None:
        return Path(env_path)
    return _PV_POLICY_FILE


def validate_pv_policy_v1(parsed: Any) -> Dict[str, Any]:
    if not isinstance(parsed, dict):
        raise _runtime_error("PV_POLICY_V1_INVALID", "root must be an object")

    if set(parsed.keys()) != _REQUIRED_ROOT_KEYS:
        raise _runtime_error(
            "PV_POLICY_V1_INVALID",
            f"root keys must be exactly {sorted(_REQUIRED_ROOT_KEYS)}",
        )

    version = _nonempty_str(parsed.get("version"))
    if version is None:
        raise _runtime_error("PV_POLICY_V1_INVALID", "version must be a non-empty string")

    threshold = _require_positive_int(parsed.get("threshold"), field_path="threshold")

    stage_steps_raw = parsed.get("stage_steps")
    if not isinstance(stage_steps_raw, list) or len(stage_steps_raw) == 0:
        raise _runtime_error("PV_POLICY_V1_INVALID", "stage_steps must be a non-empty list")

    stage_steps: List[int] = [
        _require_positive_int(step, field_path=f"stage_steps[{idx}]")
        for idx, step in enumerate(stage_steps_raw)
    ]

    return {
        "version": version,
        "threshold": threshold,
        "stage_steps": stage_steps,
    }


def load_pv_policy_v1() -> Dict[str, Any]:
    policy_file = _resolve_pv_policy_file()
    cache_key = str(policy_file)
    cached = _POLICY_CACHE.get(cache_key)
    if cached is not None:
        return dict(cached, stage_steps=list(cached["stage_steps"]))

    if not policy_file.is_file():
        raise _runtime_error("PV_POLICY_V1_MISSING", str(policy_file))

    try:
        parsed = json.loads(policy_file.read_text(encoding="utf-8"))
    except Exception as exc:
        raise _runtime_error(
            "PV_POLICY_V1_INVALID_JSON",
            str(policy_file),
        ) from exc

    policy = validate_pv_policy_v1(parsed)
    _POLICY_CACHE[cache_key] = policy
    return dict(policy, stage_steps=list(policy["stage_steps"]))


def clear_pv_policy_cache_v1() -> None:
    _POLICY_CACHE.clear()


def resolve_policy_v1(policy: Any) -> Dict[str, Any]:
    """Layers take an optional policy dict; ``None`` means built-in defaults."""
    if policy is None:
        return dict(DEFAULT_PV_POLICY_V1, stage_steps=list(DEFAULT_PV_POLICY_V1["stage_steps"]))
    return validate_pv_policy_v1(policy)
