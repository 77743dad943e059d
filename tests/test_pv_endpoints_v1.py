from __future__ import annotations

import unittest

from tests.pv_fixture_harness import chain_board

try:
    from fastapi.testclient import TestClient
    from api.main import app

    _IMPORT_ERROR: Exception | None = None
except Exception as exc:  # pragma: no cover - environment-dependent dependency loading
    TestClient = None
    app = None
    _IMPORT_ERROR = exc


class PvEndpointsV1Tests(unittest.TestCase):
    def setUp(self) -> None:
        if _IMPORT_ERROR is not None:
            self.skipTest(f"FastAPI integration dependencies unavailable: {_IMPORT_ERROR}")

    def test_health_reports_versions(self) -> None:
        with TestClient(app) as client:
            response = client.get("/health")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertTrue(payload.get("ok"))
        self.assertEqual(payload.get("policy_version"), "pv_policy_v1")
        self.assertEqual(payload.get("threshold"), 330)

    def test_recalc_returns_board_payload(self) -> None:
        cards, connections = chain_board()
        cards[2]["manual"] = {"left": 330, "right": 0}

        with TestClient(app) as client:
            response = client.post("/pv/recalc", json={"cards": cards, "connections": connections})

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload.get("status"), "OK")
        self.assertEqual(payload["cards"]["R"]["packs_earned"], {"left": 1, "right": 0})
        self.assertEqual(len(payload["topology_hash_v1"]), 64)

    def test_delta_then_clear_then_consistency(self) -> None:
        cards, connections = chain_board()

        with TestClient(app) as client:
            delta = client.post(
                "/pv/delta",
                json={"cards": cards, "connections": connections, "card_id": "B", "side": "left", "delta": 340},
            )
            self.assertEqual(delta.status_code, 200)
            delta_payload = delta.json()
            self.assertEqual(delta_payload["changed_ids"], ["B", "A", "R"])

            clear = client.post(
                "/pv/clear",
                json={"cards": delta_payload["cards"], "connections": connections, "card_id": "B"},
            )
            self.assertEqual(clear.status_code, 200)
            clear_payload = clear.json()
            self.assertEqual(clear_payload["applied_delta"], -10)
            self.assertEqual(clear_payload["changed_ids"], ["B"])

            check = client.post(
                "/pv/consistency",
                json={"cards": clear_payload["cards"], "connections": connections},
            )

        self.assertEqual(check.status_code, 200)
        self.assertEqual(check.json().get("status"), "OK")

    def test_delta_on_unknown_card_is_noop(self) -> None:
        cards, connections = chain_board()

        with TestClient(app) as client:
            response = client.post(
                "/pv/delta",
                json={"cards": cards, "connections": connections, "card_id": "ghost", "delta": 5},
            )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json().get("status"), "NOOP")
        self.assertEqual(response.json().get("cards"), cards)

    def test_malformed_request_is_rejected(self) -> None:
        with TestClient(app) as client:
            response = client.post("/pv/delta", json={"cards": "nope", "card_id": "A", "delta": 1})

        self.assertEqual(response.status_code, 422)

    def test_stage_endpoint(self) -> None:
        with TestClient(app) as client:
            response = client.get("/pv/stage/73")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(),
            {"total_packs": 73, "cycle": 1, "stage": 0, "to_next_stage": 5},
        )


if __name__ == "__main__":
    unittest.main()
