"""Print the keyword clusters that were merged so a reviewer can audit them."""

from __future__ import annotations

import argparse
import json
from pathlib import Path

from keyfold import Settings
from keyfold.observability import configure_logging
from keyfold.records import read_keyword_records


def main(source: str | None, *, limit: int, as_json: bool) -> None:
    configure_logging()
    settings = Settings.from_env()
    parsed = read_keyword_records(Path(source or settings.input_path), delimiter=settings.input_delimiter)
    result = settings.build_engine().run_parsed(parsed)

    if as_json:
        print(json.dumps(result.to_debug_payload(limit=limit), ensure_ascii=False, indent=2))
        return

    merged = result.merged_clusters()
    if not merged:
        print("No keywords were merged.")
        return

    for cluster in merged[:limit]:
        keeper = cluster.representative
        print(f"{keeper.key} ({keeper.score})")
        for member in cluster.merged:
            print(f"    <- {member.key} ({member.score})")
    if len(merged) > limit:
        print(f"... {len(merged) - limit} more merged clusters")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--source",
        default=None,
        help="Keyword table to inspect (default: KEYWORD_INPUT_PATH)",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=50,
        help="Maximum number of merged clusters to print",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the debug payload as JSON",
    )
    args = parser.parse_args()
    main(source=args.source, limit=args.limit, as_json=args.json)
