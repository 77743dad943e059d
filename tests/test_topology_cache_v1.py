from __future__ import annotations

import copy
import unittest

from api.engine.layers.topology_resolve_v1 import resolve_topology_v1
from api.engine.topology_cache_v1 import (
    get_cached_topology_v1,
    topology_cache_size_v1,
    topology_fingerprint_v1,
)
from tests.pv_fixture_harness import chain_board


class TopologyCacheV1Tests(unittest.TestCase):
    def test_repeat_lookup_reuses_cached_entry(self) -> None:
        cards, connections = chain_board()

        first = get_cached_topology_v1(cards, connections)
        second = get_cached_topology_v1(cards, connections)

        self.assertEqual(first, second)
        self.assertEqual(first, resolve_topology_v1(cards, connections))
        self.assertEqual(topology_cache_size_v1(), 1)

    def test_point_edits_keep_fingerprint_but_moves_change_it(self) -> None:
        cards, connections = chain_board()
        baseline = topology_fingerprint_v1(cards, connections)

        edited = copy.deepcopy(cards)
        edited[1]["manual"] = {"left": 999, "right": 1}
        self.assertEqual(topology_fingerprint_v1(edited, connections), baseline)

        moved = copy.deepcopy(cards)
        moved[1]["position"] = {"x": 0, "y": 300}
        self.assertNotEqual(topology_fingerprint_v1(moved, connections), baseline)

        relinked = copy.deepcopy(connections)
        relinked[0]["locked"] = True
        self.assertNotEqual(topology_fingerprint_v1(cards, relinked), baseline)

    def test_moved_card_resolves_fresh_topology(self) -> None:
        cards, connections = chain_board()
        before = get_cached_topology_v1(cards, connections)

        moved = copy.deepcopy(cards)
        moved[2]["position"] = {"x": 0, "y": 50}
        after = get_cached_topology_v1(moved, connections)

        self.assertEqual(before["parent_of"]["B"], {"parent_id": "A", "side": "right"})
        # B sits below R, so A keeps R and B itself becomes a root.
        self.assertEqual(after["parent_of"]["A"], {"parent_id": "R", "side": "left"})
        self.assertNotIn("B", after["parent_of"])
        self.assertEqual(after["roots"], ["B", "R"])
        self.assertEqual(topology_cache_size_v1(), 2)

    def test_returned_topology_is_a_private_copy(self) -> None:
        cards, connections = chain_board()
        first = get_cached_topology_v1(cards, connections)
        first["parent_of"].clear()

        second = get_cached_topology_v1(cards, connections)
        self.assertIn("B", second["parent_of"])


if __name__ == "__main__":
    unittest.main()
