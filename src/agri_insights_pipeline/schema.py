from __future__ import annotations

from dataclasses import astuple, dataclass, fields
from enum import Enum
from typing import Any, Dict, Final, FrozenSet, Iterable, Iterator, Tuple

import pandas as pd

# Canonical field order of a record frame.
FIELDS: Final[Tuple[str, ...]] = (
    "year",
    "location",
    "area",
    "rainfall",
    "temperature",
    "soil_type",
    "irrigation",
    "yields",
    "humidity",
    "crop",
    "price",
    "season",
)

# Normalised header name -> field name. Headers are lower-cased, trimmed and
# have spaces replaced by underscores before lookup.
COLUMN_ALIASES: Final[Dict[str, str]] = {
    "year": "year",
    "location": "location",
    "area": "area",
    "rainfall": "rainfall",
    "temperature": "temperature",
    "soil_type": "soil_type",
    "irrigation": "irrigation",
    "yields": "yields",
    "yeilds": "yields",
    "humidity": "humidity",
    "crops": "crop",
    "crop": "crop",
    "price": "price",
    "season": "season",
}

INTEGER_FIELDS: Final[Tuple[str, ...]] = ("year", "price")
FLOAT_FIELDS: Final[Tuple[str, ...]] = ("area", "rainfall", "temperature", "yields", "humidity")
NUMERIC_FIELDS: Final[Tuple[str, ...]] = tuple(f for f in FIELDS if f in INTEGER_FIELDS + FLOAT_FIELDS)
CATEGORICAL_FIELDS: Final[Tuple[str, ...]] = tuple(f for f in FIELDS if f not in NUMERIC_FIELDS)

# Numeric fields that may be imputed; year is part of the grouping key.
MEASUREMENT_FIELDS: Final[Tuple[str, ...]] = tuple(f for f in NUMERIC_FIELDS if f != "year")

# The four dashboards: metric x dimension.
METRICS: Final[Tuple[str, ...]] = ("rainfall", "temperature", "humidity", "yields")
DIMENSIONS: Final[Tuple[str, ...]] = ("year", "season", "crop", "location")

GROUPABLE_FIELDS: Final[Tuple[str, ...]] = ("year",) + CATEGORICAL_FIELDS

YEAR_MIN: Final[int] = 2004
YEAR_MAX: Final[int] = 2018

HUMIDITY_MIN: Final[float] = 0.0
HUMIDITY_MAX: Final[float] = 100.0

DEFAULT_LOCATIONS: Final[FrozenSet[str]] = frozenset(
    {
        "Bangalore",
        "Belagavi",
        "Chikmagaluru",
        "Davangere",
        "Gulbarga",
        "Hassan",
        "Kasaragodu",
        "Kodagu",
        "Mangalore",
        "Mysuru",
        "Raichur",
    }
)

FRAME_DTYPES: Final[Dict[str, str]] = {
    "year": "Int64",
    "location": "object",
    "area": "float64",
    "rainfall": "float64",
    "temperature": "float64",
    "soil_type": "object",
    "irrigation": "object",
    "yields": "float64",
    "humidity": "float64",
    "crop": "object",
    "price": "Int64",
    "season": "object",
}


class Season(str, Enum):
    """Indian cropping seasons."""

    KHARIF = "Kharif"
    RABI = "Rabi"
    ZAID = "Zaid"

    @classmethod
    def normalize(cls, value: str) -> str:
        """Return the canonical spelling of `value`, or raise ValueError."""
        lowered = value.strip().lower()
        for season in cls:
            if season.value.lower() == lowered:
                return season.value
        raise ValueError(f"Unknown season: {value!r}")


@dataclass(frozen=True)
class AgriRecord:
    """
    One row of the raw dataset.

    Before `clean` runs, any field may hold None for a missing value.
    """

    year: int
    location: str
    area: float
    rainfall: float
    temperature: float
    soil_type: str
    irrigation: str
    yields: float
    humidity: float
    crop: str
    price: int
    season: str


@dataclass(frozen=True)
class SummaryRow:
    """One bucket of a summary table: grouping key plus its rounded average."""

    group_by: Tuple[str, ...]
    key: Tuple[Any, ...]
    metric: str
    average: float

    def as_dict(self) -> Dict[str, Any]:
        row: Dict[str, Any] = dict(zip(self.group_by, self.key))
        row["metric"] = self.metric
        row["average"] = self.average
        return row


def empty_frame() -> pd.DataFrame:
    """Return an empty record frame with the canonical columns and dtypes."""
    return pd.DataFrame({name: pd.Series(dtype=dtype) for name, dtype in FRAME_DTYPES.items()})


def to_native(value: Any) -> Any:
    if value is None or value is pd.NA:
        return None
    if isinstance(value, float) and pd.isna(value):
        return None
    if hasattr(value, "item"):
        return value.item()
    return value


def iter_records(frame: pd.DataFrame) -> Iterator[AgriRecord]:
    """Yield an AgriRecord per frame row, converting missing values to None."""
    for values in frame.loc[:, list(FIELDS)].itertuples(index=False, name=None):
        yield AgriRecord(*(to_native(v) for v in values))


def records_to_frame(records: Iterable[AgriRecord]) -> pd.DataFrame:
    """Build a record frame from AgriRecord instances."""
    rows = [astuple(record) for record in records]
    if not rows:
        return empty_frame()
    columns = [f.name for f in fields(AgriRecord)]
    frame = pd.DataFrame(rows, columns=columns)
    return frame.astype(FRAME_DTYPES)


def as_frame(records: Any) -> pd.DataFrame:
    """Accept either a record frame or an iterable of AgriRecord."""
    if isinstance(records, pd.DataFrame):
        missing = set(FIELDS) - set(records.columns)
        if missing:
            raise ValueError(f"Record frame is missing columns: {', '.join(sorted(missing))}")
        return records
    return records_to_frame(records)
