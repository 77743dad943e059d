from __future__ import annotations

import copy
import unittest

from api.engine.layers.pv_rollup_v1 import compute_card_states_v1, run_pv_rollup_v1
from api.engine.layers.topology_resolve_v1 import resolve_topology_v1
from api.engine.pv_input_v1 import normalize_cards_v1
from tests.pv_fixture_harness import card, chain_board, cycle_board, link


class PvRollupV1Tests(unittest.TestCase):
    def _board(self):
        cards = [
            card("A", 0, left=100),
            card("B", 100, left=400),
            card("C", 100, x=200, right=660),
        ]
        connections = [
            link("A", "B", side_on_a="left"),
            link("A", "C", side_on_a="right"),
        ]
        return cards, connections

    def test_children_contribute_whole_packs_not_remainder(self) -> None:
        cards, connections = self._board()
        payload = run_pv_rollup_v1(cards, resolve_topology_v1(cards, connections))

        self.assertEqual(payload.get("version"), "pv_rollup_v1")
        self.assertEqual(payload.get("status"), "OK")

        b = payload["results"]["B"]
        self.assertEqual(b["packs_earned"], {"left": 1, "right": 0})
        self.assertEqual(b["remainder"], {"left": 70, "right": 0})

        c = payload["results"]["C"]
        self.assertEqual(c["packs_earned"], {"left": 0, "right": 2})
        self.assertEqual(c["total_packs"], 2)

        a = payload["results"]["A"]
        self.assertEqual(a["local_points"], {"left": 430, "right": 660})
        self.assertEqual(a["packs_earned"], {"left": 1, "right": 2})
        self.assertEqual(a["remainder"], {"left": 100, "right": 0})
        self.assertEqual(a["total_packs"], 3)
        self.assertEqual(a["local_contribution"], 990)
        self.assertEqual(payload["stats"]["packs_total"], 6)

    def test_packs_cascade_through_multiple_levels(self) -> None:
        cards, connections = chain_board()
        cards[2]["manual"] = {"left": 330, "right": 330}
        payload = run_pv_rollup_v1(cards, resolve_topology_v1(cards, connections))

        self.assertEqual(payload["results"]["B"]["total_packs"], 2)
        self.assertEqual(payload["results"]["A"]["packs_earned"], {"left": 0, "right": 2})
        self.assertEqual(payload["results"]["R"]["packs_earned"], {"left": 2, "right": 0})
        self.assertEqual(payload["results"]["C"]["total_packs"], 0)

    def test_rollup_is_idempotent(self) -> None:
        cards, connections = self._board()
        topology = resolve_topology_v1(cards, connections)
        cards_before = copy.deepcopy(cards)

        first = run_pv_rollup_v1(cards, topology)
        second = run_pv_rollup_v1(cards, topology)

        self.assertEqual(first, second)
        self.assertEqual(cards, cards_before)

    def test_bare_parent_map_is_accepted(self) -> None:
        cards, connections = self._board()
        topology = resolve_topology_v1(cards, connections)
        bare = {"parent_of": topology["parent_of"]}

        self.assertEqual(
            run_pv_rollup_v1(cards, bare)["results"],
            run_pv_rollup_v1(cards, topology)["results"],
        )

    def test_cycle_is_bounded_and_flagged_partial(self) -> None:
        cards, connections = cycle_board()
        cards[0]["manual"] = {"left": 330, "right": 0}
        cards[1]["manual"] = {"left": 330, "right": 0}
        payload = run_pv_rollup_v1(cards, resolve_topology_v1(cards, connections))

        self.assertEqual(payload.get("status"), "PARTIAL")
        self.assertEqual(payload["inconsistent_ids"], ["A", "B"])
        self.assertEqual(sorted(payload["results"].keys()), ["A", "B"])
        # The looping edge back into A contributes nothing.
        self.assertEqual(payload["results"]["B"]["total_packs"], 1)
        self.assertEqual(payload["results"]["A"]["total_packs"], 2)

    def test_three_card_loop_expands_each_card_once(self) -> None:
        cards = [
            card("A", 0, left=330),
            card("B", 0, left=330),
            card("C", 0, left=330),
        ]
        connections = [link("A", "B"), link("B", "C"), link("C", "A")]
        topology = resolve_topology_v1(cards, connections)
        payload = run_pv_rollup_v1(cards, topology)

        self.assertEqual(topology["cycle_ids"], ["A", "B", "C"])
        self.assertEqual(payload.get("status"), "PARTIAL")
        self.assertEqual(payload["inconsistent_ids"], ["A", "C"])
        # C closes the loop back into A, so its edge adds nothing.
        self.assertEqual(payload["results"]["C"]["total_packs"], 1)
        self.assertEqual(payload["results"]["B"]["total_packs"], 2)
        self.assertEqual(payload["results"]["A"]["total_packs"], 3)

    def test_empty_and_malformed_input(self) -> None:
        payload = run_pv_rollup_v1(None, None)

        self.assertEqual(payload.get("status"), "OK")
        self.assertEqual(payload["results"], {})
        self.assertEqual(payload["stats"]["cards_total"], 0)

    def test_custom_threshold(self) -> None:
        cards = [card("A", 0, left=25)]
        policy = {"version": "test_policy", "threshold": 10, "stage_steps": [6, 12, 18, 36]}
        payload = run_pv_rollup_v1(cards, resolve_topology_v1(cards, []), policy)

        self.assertEqual(payload["threshold"], 10)
        self.assertEqual(payload["results"]["A"]["packs_earned"], {"left": 2, "right": 0})
        self.assertEqual(payload["results"]["A"]["remainder"], {"left": 5, "right": 0})

    def test_compute_card_states_only_walks_requested_subtrees(self) -> None:
        cards, connections = chain_board()
        cards[2]["manual"] = {"left": 330, "right": 0}
        topology = resolve_topology_v1(cards, connections)
        cards_by_id, _ = normalize_cards_v1(cards)

        payload = compute_card_states_v1(cards_by_id, topology, ["A"])

        self.assertEqual(sorted(payload["results"].keys()), ["A", "B"])
        self.assertEqual(payload["results"]["A"]["packs_earned"], {"left": 0, "right": 1})
        self.assertEqual(payload["inconsistent_ids"], [])


if __name__ == "__main__":
    unittest.main()
