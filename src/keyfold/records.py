"""Keyword records and the two-column tabular format they travel in."""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Sequence, TextIO

from .observability import MetricsRecorder

logger = logging.getLogger(__name__)

DEFAULT_HEADER: tuple[str, str] = ("keyword", "total link strength")

# VOSviewer map exports: id, label, weight<Links>, weight<Total link strength>, ...
_VOSVIEWER_LABEL_COLUMN = 1
_VOSVIEWER_STRENGTH_COLUMN = 3


@dataclass(frozen=True, slots=True)
class KeywordRecord:
    """A raw keyword and its score, immutable once read."""

    key: str
    score: int

    def __post_init__(self) -> None:
        if not isinstance(self.score, int) or isinstance(self.score, bool) or self.score < 0:
            raise ValueError(f"Keyword score must be a non-negative integer, got {self.score!r}")

    def to_payload(self) -> dict[str, Any]:
        return {"k": self.key, "t": self.score}


class RecordParseError(ValueError):
    """Raised for a single malformed input row."""

    def __init__(self, reason: str, *, line_number: int | None = None, row: Sequence[str] | None = None) -> None:
        self.reason = reason
        self.line_number = line_number
        self.row = list(row) if row is not None else None
        location = f"line {line_number}: " if line_number is not None else ""
        super().__init__(f"{location}{reason}")

    def to_payload(self) -> dict[str, Any]:
        return {"line": self.line_number, "row": self.row, "reason": self.reason}


@dataclass(slots=True)
class ParsedRecords:
    """Outcome of parsing a tabular source; bad rows are collected, not raised."""

    records: List[KeywordRecord] = field(default_factory=list)
    errors: List[RecordParseError] = field(default_factory=list)
    header: List[str] | None = None

    @property
    def rejected_count(self) -> int:
        return len(self.errors)


def parse_score(value: object) -> int:
    """Parse a non-negative integer score, accepting integral floats such as ``12.0``."""

    if isinstance(value, bool):
        raise RecordParseError(f"score {value!r} is not numeric")
    if isinstance(value, int):
        score = value
    elif isinstance(value, float):
        if not value.is_integer():
            raise RecordParseError(f"score {value!r} is not an integer")
        score = int(value)
    else:
        text = str(value).strip() if value is not None else ""
        if not text:
            raise RecordParseError("missing score")
        try:
            score = int(text)
        except ValueError:
            try:
                number = float(text)
            except ValueError:
                raise RecordParseError(f"score {text!r} is not numeric") from None
            if not number.is_integer():
                raise RecordParseError(f"score {text!r} is not an integer") from None
            score = int(number)
    if score < 0:
        raise RecordParseError(f"score {score} is negative")
    return score


def parse_row(row: Sequence[str], *, key_column: int = 0, score_column: int = 1) -> KeywordRecord:
    if len(row) <= key_column or not row[key_column].strip():
        raise RecordParseError("missing keyword", row=row)
    if len(row) <= score_column:
        raise RecordParseError("missing score", row=row)
    try:
        score = parse_score(row[score_column])
    except RecordParseError as exc:
        raise RecordParseError(exc.reason, row=row) from None
    return KeywordRecord(key=row[key_column].strip(), score=score)


def _open_text(source: str | Path | TextIO) -> tuple[TextIO, bool]:
    if isinstance(source, Path):
        return source.open("r", encoding="utf-8-sig", newline=""), True
    if isinstance(source, str):
        return io.StringIO(source), False
    return source, False


def _parse_rows(
    rows: Iterable[List[str]],
    *,
    key_column: int,
    score_column: int,
    metrics: MetricsRecorder | None,
) -> ParsedRecords:
    result = ParsedRecords()
    for line_number, row in enumerate(rows, start=1):
        if not any(cell.strip() for cell in row):
            continue
        if result.header is None:
            result.header = [cell.strip() for cell in row]
            continue
        try:
            result.records.append(parse_row(row, key_column=key_column, score_column=score_column))
        except RecordParseError as exc:
            error = RecordParseError(exc.reason, line_number=line_number, row=row)
            logger.warning("records.rejected line=%s reason=%s", line_number, exc.reason)
            result.errors.append(error)
    if metrics is not None and result.errors:
        metrics.increment("records.rejected", value=len(result.errors))
    return result


def read_keyword_records(
    source: str | Path | TextIO,
    *,
    delimiter: str = ",",
    metrics: MetricsRecorder | None = None,
) -> ParsedRecords:
    """Parse ``keyword<delimiter>score`` rows, skipping the header row.

    ``source`` is a path, raw text, or an open text stream. Malformed rows
    are reported in ``ParsedRecords.errors`` and parsing continues.
    """

    handle, owned = _open_text(source)
    try:
        reader = csv.reader(handle, delimiter=delimiter, skipinitialspace=True)
        return _parse_rows(reader, key_column=0, score_column=1, metrics=metrics)
    finally:
        if owned:
            handle.close()


def read_vosviewer_map(
    source: str | Path | TextIO,
    *,
    metrics: MetricsRecorder | None = None,
) -> ParsedRecords:
    """Read a tab-separated VOSviewer map export into keyword records."""

    handle, owned = _open_text(source)
    try:
        reader = csv.reader(handle, delimiter="\t", quoting=csv.QUOTE_NONE)
        return _parse_rows(
            reader,
            key_column=_VOSVIEWER_LABEL_COLUMN,
            score_column=_VOSVIEWER_STRENGTH_COLUMN,
            metrics=metrics,
        )
    finally:
        if owned:
            handle.close()


def format_keyword_records(
    records: Iterable[KeywordRecord],
    *,
    header: Sequence[str] = DEFAULT_HEADER,
    delimiter: str = ",",
) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=delimiter, lineterminator="\n")
    writer.writerow(list(header))
    for record in records:
        writer.writerow([record.key, record.score])
    return buffer.getvalue()


def write_keyword_records(
    records: Iterable[KeywordRecord],
    target: str | Path,
    *,
    header: Sequence[str] = DEFAULT_HEADER,
    delimiter: str = ",",
) -> Path:
    """Write records in the same two-column format ``read_keyword_records`` accepts."""

    path = Path(target)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(format_keyword_records(records, header=header, delimiter=delimiter), encoding="utf-8")
    return path


def records_from_payload(items: Iterable[Mapping[str, Any]]) -> ParsedRecords:
    """Convert ``{"k": ..., "t": ...}`` objects, collecting malformed entries."""

    result = ParsedRecords()
    for index, item in enumerate(items, start=1):
        try:
            if not isinstance(item, Mapping):
                raise RecordParseError("entry is not an object")
            key = item.get("k")
            if not isinstance(key, str) or not key.strip():
                raise RecordParseError("missing keyword")
            result.records.append(KeywordRecord(key=key.strip(), score=parse_score(item.get("t"))))
        except RecordParseError as exc:
            logger.warning("records.rejected entry=%s reason=%s", index, exc.reason)
            result.errors.append(RecordParseError(exc.reason, line_number=index))
    return result


def records_to_payload(records: Iterable[KeywordRecord]) -> list[dict[str, Any]]:
    return [record.to_payload() for record in records]


__all__ = [
    "DEFAULT_HEADER",
    "KeywordRecord",
    "ParsedRecords",
    "RecordParseError",
    "format_keyword_records",
    "parse_row",
    "parse_score",
    "read_keyword_records",
    "read_vosviewer_map",
    "records_from_payload",
    "records_to_payload",
    "write_keyword_records",
]
