from __future__ import annotations

from typing import Iterator

import pytest

from api.engine.pv_policy_v1 import clear_pv_policy_cache_v1
from api.engine.topology_cache_v1 import clear_topology_cache_v1


@pytest.fixture(autouse=True)
def _isolated_pv_engine_state(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    # Policy and topology caches are module-level; every test starts cold.
    monkeypatch.delenv("PV_ENGINE_POLICY_PATH", raising=False)
    clear_pv_policy_cache_v1()
    clear_topology_cache_v1()
    yield
    clear_pv_policy_cache_v1()
    clear_topology_cache_v1()
