from __future__ import annotations

import argparse
import json
from pathlib import Path
import sys
from typing import Any, Dict, List

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from api.engine.layers.pv_consistency_v1 import run_pv_consistency_v1
from api.engine.pv_board_v1 import run_pv_board_v1
from api.engine.pv_policy_v1 import load_pv_policy_v1
from api.engine.topology_cache_v1 import get_cached_topology_v1


def _load_board(path: Path) -> Dict[str, Any]:
    parsed = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(parsed, dict):
        raise SystemExit(f"{path}: board file must hold a JSON object")
    return parsed


def _list_of_dicts(raw: Any) -> List[Dict[str, Any]]:
    if not isinstance(raw, list):
        return []
    return [row for row in raw if isinstance(row, dict)]


def main() -> int:
    ap = argparse.ArgumentParser(description="Recalculate PV packs and stages for a saved board")
    ap.add_argument("--board", required=True, help="Path to board JSON with cards and connections")
    ap.add_argument("--check", action="store_true", help="Compare stored card fields against a fresh rollup")
    ap.add_argument("--card", default=None, help="Only print the row for this card id")
    args = ap.parse_args()

    board = _load_board(Path(args.board))
    cards = _list_of_dicts(board.get("cards"))
    connections = _list_of_dicts(board.get("connections"))
    policy = load_pv_policy_v1()

    if args.check:
        report = run_pv_consistency_v1(cards, get_cached_topology_v1(cards, connections), policy)
        print(json.dumps(report, indent=2, sort_keys=True))
        return 0 if report["status"] == "OK" else 1

    payload = run_pv_board_v1(cards, connections, policy)
    if args.card is not None:
        row = payload["cards"].get(args.card)
        if row is None:
            print(f"card not found: {args.card}", file=sys.stderr)
            return 2
        print(json.dumps(row, indent=2, sort_keys=True))
        return 0

    print(f"status={payload['status']} cards={len(payload['cards'])} roots={','.join(payload['roots'])}")
    for card_id in sorted(payload["cards"].keys()):
        row = payload["cards"][card_id]
        print(
            f"{card_id}: packs={row['packs_earned']['left']}/{row['packs_earned']['right']} "
            f"remainder={row['remainder']['left']}/{row['remainder']['right']} "
            f"cycle={row['cycle']} stage={row['stage']} to_next={row['to_next_stage']}"
        )
    for unknown in payload["unknowns"]:
        print(f"  ! {unknown['code']} {unknown['path']}: {unknown['message']}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
