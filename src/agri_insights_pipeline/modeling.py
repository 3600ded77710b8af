from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Tuple, Union

import pandas as pd

from .schema import CATEGORICAL_FIELDS, MEASUREMENT_FIELDS, AgriRecord, as_frame

logger = logging.getLogger(__name__)

FACT_TABLE = "fact_agri"


@dataclass
class StarSchema:
    """A fact table of observations plus one dimension table per categorical field."""

    fact: pd.DataFrame
    dimensions: Dict[str, pd.DataFrame]

    def tables(self) -> Dict[str, pd.DataFrame]:
        """All tables keyed by their export name (fact_agri, dim_<field>)."""
        named = {FACT_TABLE: self.fact}
        for name, table in self.dimensions.items():
            named[f"dim_{name}"] = table
        return named


def build_dimension(values: pd.Series, name: str) -> pd.DataFrame:
    """
    Distinct values of one categorical field with a surrogate key.

    Keys are numbered from 1 in sorted value order, so the same input always
    yields the same keys.
    """
    distinct = sorted(values.dropna().unique())
    return pd.DataFrame(
        {
            f"{name}_id": pd.Series(range(1, len(distinct) + 1), dtype="int64"),
            name: pd.Series(distinct, dtype="object"),
        }
    )


def build_star_schema(
    records: Union[pd.DataFrame, Iterable[AgriRecord]],
    dimension_fields: Tuple[str, ...] = CATEGORICAL_FIELDS,
) -> StarSchema:
    """
    Normalise a clean record frame into a star schema.

    The fact table keeps year and the measurements and references each
    dimension by `<field>_id`.
    """
    df = as_frame(records).reset_index(drop=True)

    dimensions: Dict[str, pd.DataFrame] = {}
    fact = df.loc[:, ["year"]].copy()
    for name in dimension_fields:
        dimension = build_dimension(df[name], name)
        dimensions[name] = dimension
        lookup = dict(zip(dimension[name], dimension[f"{name}_id"]))
        fact[f"{name}_id"] = df[name].map(lookup).astype("Int64")

    for name in MEASUREMENT_FIELDS:
        fact[name] = df[name]

    fact.insert(0, "record_id", pd.Series(range(1, len(fact) + 1), dtype="int64"))

    logger.info(
        "Built star schema: %d fact row(s), dimensions %s",
        len(fact),
        ", ".join(f"{name}={len(table)}" for name, table in dimensions.items()),
    )
    return StarSchema(fact=fact, dimensions=dimensions)
