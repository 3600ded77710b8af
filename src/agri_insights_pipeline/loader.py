from __future__ import annotations

import csv
import io
import logging
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from pathlib import Path
from typing import IO, Dict, Final, Iterator, List, Optional, Sequence, Tuple, Union

import pandas as pd

from .exceptions import DataLoadError, ParseError, RangeError, RowError, SchemaError
from .gcs_client import download_text, is_gcs_uri
from .schema import (
    COLUMN_ALIASES,
    DEFAULT_LOCATIONS,
    FIELDS,
    FRAME_DTYPES,
    HUMIDITY_MAX,
    HUMIDITY_MIN,
    INTEGER_FIELDS,
    NUMERIC_FIELDS,
    YEAR_MAX,
    YEAR_MIN,
    Season,
)

logger = logging.getLogger(__name__)

Source = Union[str, Path, IO[str]]

MISSING_TOKENS = frozenset({"", "na", "n/a", "nan", "null", "none"})

# Lower bound (inclusive) and upper bound (inclusive, None = unbounded) per
# measurement that can be clamped.
CLAMPABLE_BOUNDS: Final[Dict[str, Tuple[float, Optional[float]]]] = {
    "rainfall": (0.0, None),
    "yields": (0.0, None),
    "price": (0, None),
    "humidity": (HUMIDITY_MIN, HUMIDITY_MAX),
}

# Integer fields must round-trip through float64 aggregation unchanged.
MAX_SAFE_INTEGER: Final[int] = 2**53

_LINE = "_line"


class RangePolicy(str, Enum):
    """What to do with a measurement outside its documented domain."""

    REJECT = "reject"
    CLAMP = "clamp"


@dataclass
class LoadReport:
    """Row accounting for a single load."""

    rows_read: int = 0
    rows_loaded: int = 0
    skip_reasons: Counter = field(default_factory=Counter)
    clamped: Counter = field(default_factory=Counter)

    @property
    def rows_skipped(self) -> int:
        return sum(self.skip_reasons.values())

    def summary_lines(self) -> List[str]:
        lines = [
            f"rows read: {self.rows_read}",
            f"rows loaded: {self.rows_loaded}",
            f"rows skipped: {self.rows_skipped}",
        ]
        for reason, count in sorted(self.skip_reasons.items()):
            lines.append(f"  skipped ({reason}): {count}")
        for name, count in sorted(self.clamped.items()):
            lines.append(f"  clamped ({name}): {count}")
        return lines


@dataclass
class LoadResult:
    frame: pd.DataFrame
    report: LoadReport


def normalize_header(name: str) -> str:
    return name.strip().lstrip("\ufeff").lower().replace(" ", "_")


def resolve_columns(header: Sequence[str]) -> Dict[str, int]:
    """
    Map each record field to its column index in `header`.

    Raises SchemaError if a required column is absent or appears twice.
    """
    positions: Dict[str, int] = {}
    ignored: List[str] = []
    for index, raw_name in enumerate(header):
        name = COLUMN_ALIASES.get(normalize_header(raw_name))
        if name is None:
            ignored.append(raw_name)
            continue
        if name in positions:
            raise SchemaError(f"Column for field '{name}' appears more than once in header: {list(header)}")
        positions[name] = index

    missing = [name for name in FIELDS if name not in positions]
    if missing:
        msg = f"Input is missing required columns: {', '.join(missing)}"
        logger.error(msg)
        raise SchemaError(msg)

    if ignored:
        logger.warning("Ignoring unexpected columns: %s", ", ".join(ignored))
    return positions


@contextmanager
def _open_source(source: Source, project_id: Optional[str]) -> Iterator[IO[str]]:
    if hasattr(source, "read"):
        yield source  # type: ignore[misc]
        return

    if is_gcs_uri(source):
        yield io.StringIO(download_text(str(source), project_id=project_id), newline="")
        return

    path = Path(source)
    try:
        fh = path.open(newline="", encoding="utf-8-sig")
    except OSError as exc:
        msg = f"Cannot open input file {path}"
        logger.error(msg)
        raise DataLoadError(msg) from exc
    with fh:
        try:
            yield fh
        except UnicodeDecodeError as exc:
            msg = f"Input file {path} is not valid UTF-8 text"
            logger.error(msg, exc_info=True)
            raise DataLoadError(msg) from exc


class _RowValidator:
    """Runs ordered row checks over a string frame, recording the first failure per row."""

    def __init__(self, raw: pd.DataFrame, report: LoadReport) -> None:
        self.raw = raw
        self.report = report
        self.valid = pd.Series(True, index=raw.index)
        self.first_errors: List[RowError] = []

    def reject(self, mask: pd.Series, reason: str, error_cls: type, name: str, message: str) -> None:
        hit = (mask & self.valid).fillna(False).astype(bool)
        count = int(hit.sum())
        if not count:
            return
        self.valid &= ~hit
        self.report.skip_reasons[reason] += count

        first = hit.idxmax()
        line = int(self.raw.at[first, _LINE])
        value = self.raw.at[first, name]
        self.first_errors.append(
            error_cls(f"line {line}: {message} ({name}={value!r})", line_number=line, field=name, value=value)
        )


def _parse_integer(text: str) -> Optional[int]:
    """
    Parse an integral value exactly ("12", "12.0", "1e3"); None if it is not one.

    Values beyond the safe range are returned saturated at MAX_SAFE_INTEGER + 1
    so the caller can reject them without building huge integers.
    """
    if "_" in text:
        return None
    try:
        number = Decimal(text)
    except InvalidOperation:
        return None
    if not number.is_finite() or number != number.to_integral_value():
        return None
    if abs(number) > MAX_SAFE_INTEGER:
        return int(Decimal(MAX_SAFE_INTEGER + 1).copy_sign(number))
    return int(number)


def _parse_integers(column: pd.Series, name: str, validator: _RowValidator) -> pd.Series:
    numbers = [None if text is None else _parse_integer(text) for text in column]

    bad = column.notna() & pd.Series([n is None for n in numbers], index=column.index)
    validator.reject(bad, f"non_numeric:{name}", ParseError, name, "non-numeric value")

    unsafe = pd.Series([n is not None and abs(n) > MAX_SAFE_INTEGER for n in numbers], index=column.index)
    validator.reject(unsafe, f"out_of_range:{name}", RangeError, name, f"{name} beyond +/-2**53")

    safe = [n if n is not None and abs(n) <= MAX_SAFE_INTEGER else None for n in numbers]
    return pd.Series(pd.array(safe, dtype="Int64"), index=column.index)


def _parse_numeric(raw: pd.DataFrame, validator: _RowValidator) -> Dict[str, pd.Series]:
    parsed: Dict[str, pd.Series] = {}
    for name in NUMERIC_FIELDS:
        column = raw[name]
        if name in INTEGER_FIELDS:
            parsed[name] = _parse_integers(column, name, validator)
            continue
        present = column.notna()
        values = pd.to_numeric(column, errors="coerce").astype("float64")
        bad = present & (values.isna() | (values.abs() == float("inf")))
        validator.reject(bad, f"non_numeric:{name}", ParseError, name, "non-numeric value")
        parsed[name] = values.where(~bad)
    return parsed


def load(
    source: Source,
    *,
    strict: bool = False,
    range_policy: RangePolicy = RangePolicy.REJECT,
    locations: Optional[frozenset] = DEFAULT_LOCATIONS,
    project_id: Optional[str] = None,
) -> LoadResult:
    """
    Read and validate the raw CSV into a record frame.

    Checks run per row in this order, the first failing one decides the
    skip reason:

    1. field count differs from the header        -> ParseError
    2. non-numeric / non-integral numeric value   -> ParseError
    3. year out of range, unknown season/location -> RangeError (always rejected)
    4. measurement outside its domain             -> RangeError (rejected or
       clamped depending on `range_policy`; area <= 0 is always rejected)

    Missing values are kept as NA and left to `clean`. With `strict=True`
    the earliest failing row raises instead of being skipped.
    """
    report = LoadReport()
    lines: List[int] = []
    rows: List[List[Optional[str]]] = []
    column_errors: List[RowError] = []

    with _open_source(source, project_id) as fh:
        reader = csv.reader(fh)
        header = next(reader, None)
        if header is None:
            raise SchemaError("Input is empty: no header row found")
        positions = resolve_columns(header)

        for row in reader:
            if not row:
                continue
            report.rows_read += 1
            if len(row) != len(header):
                report.skip_reasons["wrong_column_count"] += 1
                if not column_errors:
                    column_errors.append(
                        ParseError(
                            f"line {reader.line_num}: expected {len(header)} fields, got {len(row)}",
                            line_number=reader.line_num,
                        )
                    )
                continue
            values: List[Optional[str]] = []
            for name in FIELDS:
                value = row[positions[name]].strip()
                values.append(None if value.lower() in MISSING_TOKENS else value)
            rows.append(values)
            lines.append(reader.line_num)

    raw = pd.DataFrame(rows, columns=list(FIELDS), dtype=object)
    raw[_LINE] = pd.Series(lines, dtype="int64")

    validator = _RowValidator(raw, report)
    parsed = _parse_numeric(raw, validator)

    year = parsed["year"]
    validator.reject(
        year.notna() & ((year < YEAR_MIN) | (year > YEAR_MAX)),
        "out_of_range:year",
        RangeError,
        "year",
        f"year outside {YEAR_MIN}-{YEAR_MAX}",
    )

    season = raw["season"].map(_normalize_season, na_action="ignore")
    validator.reject(
        raw["season"].notna() & season.isna(),
        "out_of_range:season",
        RangeError,
        "season",
        f"season not one of {', '.join(s.value for s in Season)}",
    )

    location = raw["location"]
    if locations is not None:
        canonical = {name.lower(): name for name in locations}
        location = raw["location"].map(lambda v: canonical.get(v.lower()), na_action="ignore")
        validator.reject(
            raw["location"].notna() & location.isna(),
            "out_of_range:location",
            RangeError,
            "location",
            "unknown location",
        )

    area = parsed["area"]
    validator.reject(area.notna() & (area <= 0), "out_of_range:area", RangeError, "area", "area must be positive")

    for name, (low, high) in CLAMPABLE_BOUNDS.items():
        values = parsed[name]
        out = values.notna() & (values < low)
        if high is not None:
            out |= values.notna() & (values > high)

        if range_policy == RangePolicy.CLAMP:
            hit = (out & validator.valid).fillna(False).astype(bool)
            count = int(hit.sum())
            if count:
                parsed[name] = values.mask(hit, values.clip(lower=low, upper=high))
                report.clamped[name] += count
                logger.warning("Clamped %d out-of-range %s value(s) to [%s, %s]", count, name, low, high)
        else:
            bound = f"[{low}, {high}]" if high is not None else f">= {low}"
            validator.reject(out, f"out_of_range:{name}", RangeError, name, f"{name} must be {bound}")

    if strict:
        candidates = column_errors + validator.first_errors
        if candidates:
            error = min(candidates, key=lambda e: e.line_number or 0)
            logger.error("Strict load aborted: %s", error)
            raise error

    frame = raw.loc[:, list(FIELDS)].copy()
    for name in NUMERIC_FIELDS:
        frame[name] = parsed[name]
    frame["season"] = season
    frame["location"] = location
    frame = frame.loc[validator.valid].reset_index(drop=True).astype(FRAME_DTYPES)

    report.rows_loaded = len(frame)
    for reason, count in sorted(report.skip_reasons.items()):
        logger.warning("Skipped %d row(s): %s", count, reason)
    logger.info(
        "Loaded %d of %d row(s) (%d skipped)",
        report.rows_loaded,
        report.rows_read,
        report.rows_skipped,
    )
    return LoadResult(frame=frame, report=report)


def _normalize_season(value: str) -> Optional[str]:
    try:
        return Season.normalize(value)
    except ValueError:
        return None
