import hashlib
import json
from typing import Any, Dict


def stable_json_dumps(obj: Any) -> str:
    return json.dumps(obj, separators=(",", ":"), sort_keys=True, ensure_ascii=False)


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def fingerprint_hex(payload: Any) -> str:
    return sha256_hex(stable_json_dumps(payload))


def strip_hash_fields(value: Any) -> Any:
    if isinstance(value, dict):
        cleaned: Dict[str, Any] = {}
        for key, child in value.items():
            if isinstance(key, str) and key.endswith("_hash_v1"):
                continue
            cleaned[key] = strip_hash_fields(child)
        return cleaned
    if isinstance(value, list):
        return [strip_hash_fields(item) for item in value]
    return value
