from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Sequence, Tuple, Union

import pandas as pd

from .schema import (
    DIMENSIONS,
    FIELDS,
    GROUPABLE_FIELDS,
    MEASUREMENT_FIELDS,
    METRICS,
    AgriRecord,
    SummaryRow,
    as_frame,
    to_native,
)

logger = logging.getLogger(__name__)

DEFAULT_PRECISION = 2

Records = Union[pd.DataFrame, Iterable[AgriRecord]]
GroupBy = Union[str, Sequence[str], frozenset, set]
GroupKey = Tuple[Any, ...]


def resolve_group_by(group_by: GroupBy) -> Tuple[str, ...]:
    """
    Return the ordered grouping fields.

    A list/tuple keeps the caller's order; a set is ordered by the record
    column order.
    """
    if isinstance(group_by, str):
        names: Tuple[str, ...] = (group_by,)
    elif isinstance(group_by, (set, frozenset)):
        names = tuple(name for name in FIELDS if name in group_by)
        names += tuple(sorted(set(group_by) - set(names)))
    else:
        names = tuple(group_by)

    if not names:
        raise ValueError("group_by must name at least one field")
    unknown = [name for name in names if name not in GROUPABLE_FIELDS]
    if unknown:
        raise ValueError(
            f"Cannot group by {', '.join(unknown)}; expected any of {', '.join(GROUPABLE_FIELDS)}"
        )
    if len(set(names)) != len(names):
        raise ValueError(f"Duplicate field in group_by: {list(names)}")
    return names


def _check_metric(metric: str) -> None:
    if metric not in MEASUREMENT_FIELDS:
        raise ValueError(f"Unknown metric {metric!r}; expected any of {', '.join(MEASUREMENT_FIELDS)}")


@dataclass
class PartialAggregate:
    """
    Sum and count per group.

    Partials computed over disjoint shards can be merged in any order; the
    mean is only taken in `finalize`.
    """

    group_by: Tuple[str, ...]
    metric: str
    sums: Dict[GroupKey, float] = field(default_factory=dict)
    counts: Dict[GroupKey, int] = field(default_factory=dict)

    def merge(self, other: "PartialAggregate") -> "PartialAggregate":
        if (self.group_by, self.metric) != (other.group_by, other.metric):
            raise ValueError(
                "Cannot merge partial aggregates of "
                f"{self.metric} by {self.group_by} and {other.metric} by {other.group_by}"
            )
        sums = dict(self.sums)
        counts = dict(self.counts)
        for key, total in other.sums.items():
            sums[key] = sums.get(key, 0.0) + total
            counts[key] = counts.get(key, 0) + other.counts[key]
        return PartialAggregate(self.group_by, self.metric, sums, counts)

    def finalize(self, precision: int = DEFAULT_PRECISION) -> Dict[GroupKey, float]:
        return {
            key: round(self.sums[key] / self.counts[key], precision)
            for key in sorted(self.sums)
            if self.counts[key]
        }


def partial_aggregate(records: Records, group_by: GroupBy, metric: str) -> PartialAggregate:
    names = resolve_group_by(group_by)
    _check_metric(metric)

    df = as_frame(records)
    subset = df.loc[df[metric].notna(), list(names) + [metric]]
    partial = PartialAggregate(names, metric)
    if subset.empty:
        return partial

    grouped = subset.groupby(list(names), sort=True, dropna=True)[metric].agg(["sum", "count"])
    for key, total, count in zip(grouped.index, grouped["sum"], grouped["count"]):
        if not isinstance(key, tuple):
            key = (key,)
        key = tuple(to_native(value) for value in key)
        partial.sums[key] = float(total)
        partial.counts[key] = int(count)
    return partial


def aggregate(
    records: Records,
    group_by: GroupBy,
    metric: str,
    precision: int = DEFAULT_PRECISION,
) -> Dict[GroupKey, float]:
    """
    Mean of `metric` per grouping key, rounded to `precision` decimals.

    Keys are tuples of the grouping field values in `group_by` order. Groups
    with no rows are absent from the result.
    """
    result = partial_aggregate(records, group_by, metric).finalize(precision)
    logger.debug("Aggregated %s by %s into %d group(s)", metric, group_by, len(result))
    return result


def summary_table(
    records: Records,
    group_by: GroupBy,
    metric: str,
    precision: int = DEFAULT_PRECISION,
) -> pd.DataFrame:
    """Aggregate into a table with the grouping fields, `metric` and `average` columns."""
    names = resolve_group_by(group_by)
    rows = [
        SummaryRow(group_by=names, key=key, metric=metric, average=average)
        for key, average in aggregate(records, names, metric, precision).items()
    ]
    columns = list(names) + ["metric", "average"]
    if not rows:
        return pd.DataFrame(columns=columns)
    return pd.DataFrame([row.as_dict() for row in rows], columns=columns)


def summarize(records: Records, precision: int = DEFAULT_PRECISION) -> Dict[Tuple[str, str], pd.DataFrame]:
    """
    Build the sixteen dashboard tables: average rainfall, temperature,
    humidity and yields, each by year, season, crop and location.
    """
    df = as_frame(records)
    tables: Dict[Tuple[str, str], pd.DataFrame] = {}
    for metric in METRICS:
        for dimension in DIMENSIONS:
            tables[(metric, dimension)] = summary_table(df, (dimension,), metric, precision)
    logger.info("Built %d summary table(s) from %d row(s)", len(tables), len(df))
    return tables
