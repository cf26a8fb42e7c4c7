"""Convert a VOSviewer map export into the two-column keyword table."""

from __future__ import annotations

import argparse
from pathlib import Path

from keyfold import Settings
from keyfold.observability import configure_logging
from keyfold.records import read_vosviewer_map, write_keyword_records


def main(source: str | None, target: str | None) -> None:
    configure_logging()
    settings = Settings.from_env()
    source_path = source or settings.vosviewer_export_path
    target_path = target or settings.input_path

    parsed = read_vosviewer_map(Path(source_path))
    written = write_keyword_records(parsed.records, target_path)
    print(f"Converted {len(parsed.records)} keywords to {written}")
    if parsed.errors:
        print(f"Skipped {parsed.rejected_count} malformed rows")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--source",
        default=None,
        help="VOSviewer map export (default: VOSVIEWER_EXPORT_PATH)",
    )
    parser.add_argument(
        "--target",
        default=None,
        help="Keyword table to write (default: KEYWORD_INPUT_PATH)",
    )
    args = parser.parse_args()
    main(source=args.source, target=args.target)
