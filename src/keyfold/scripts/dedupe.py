"""CLI for deduplicating a keyword table with keyfold."""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import replace
from pathlib import Path

from keyfold.config import OUTPUT_ORDERS, ConfigurationError, Settings
from keyfold.observability import configure_logging
from keyfold.records import read_keyword_records, read_vosviewer_map, records_to_payload, write_keyword_records
from keyfold.remote import RemoteDedupClient, RemoteDedupError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Collapse duplicate keywords into one representative per concept")
    parser.add_argument("--input", dest="input_path", help="Keyword table to read (default: KEYWORD_INPUT_PATH)")
    parser.add_argument("--output", dest="output_path", help="Where to write the result (default: KEYWORD_OUTPUT_PATH)")
    parser.add_argument(
        "--vosviewer",
        action="store_true",
        help="Treat the input as a tab-separated VOSviewer map export",
    )
    parser.add_argument("--synonyms", dest="synonym_table_path", help="YAML synonym table to apply")
    parser.add_argument("--distinct", dest="distinct_terms_path", help="YAML groups of look-alike terms to keep apart")
    parser.add_argument("--order", choices=sorted(OUTPUT_ORDERS), help="Output order (default: KEYWORD_OUTPUT_ORDER)")
    parser.add_argument(
        "--backend",
        choices=("rules", "llm"),
        default="rules",
        help="Use the deterministic engine (rules) or the configured chat backend (llm)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the JSON payload instead of writing the output file",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging()
    settings = Settings.from_env()
    overrides = {
        name: value
        for name, value in (
            ("input_path", args.input_path),
            ("output_path", args.output_path),
            ("synonym_table_path", args.synonym_table_path),
            ("distinct_terms_path", args.distinct_terms_path),
            ("output_order", args.order),
        )
        if value
    }
    settings = replace(settings, **overrides)

    if args.vosviewer and not args.input_path:
        source = Path(settings.vosviewer_export_path)
    else:
        source = Path(settings.input_path)
    if not source.exists():
        print(f"Input file '{source}' does not exist", file=sys.stderr)
        return 1

    metrics = settings.build_metrics_recorder()
    if args.vosviewer:
        parsed = read_vosviewer_map(source, metrics=metrics)
    else:
        parsed = read_keyword_records(source, delimiter=settings.input_delimiter, metrics=metrics)

    if args.backend == "llm":
        with RemoteDedupClient(settings, metrics=metrics) as client:
            if not client.enabled:
                print(f"Remote backend unavailable ({client.disable_reason})", file=sys.stderr)
                return 2
            try:
                entries = client.deduplicate(parsed.records).entries
            except RemoteDedupError as exc:
                print(f"Remote deduplication failed: {exc}", file=sys.stderr)
                return 1
    else:
        try:
            engine = settings.build_engine(metrics=metrics)
        except ConfigurationError as exc:
            print(f"Configuration error: {exc}", file=sys.stderr)
            return 2
        entries = engine.run_parsed(parsed).entries

    if args.dry_run:
        print(json.dumps(records_to_payload(entries), ensure_ascii=False, indent=2))
        return 0

    target = write_keyword_records(entries, settings.output_path)
    rejected = parsed.rejected_count
    print(
        f"Wrote {len(entries)} keyword{'s' if len(entries) != 1 else ''} "
        f"from {len(parsed.records)} record{'s' if len(parsed.records) != 1 else ''} to {target}"
        + (f" ({rejected} rejected)" if rejected else "")
    )
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry
    sys.exit(main())
