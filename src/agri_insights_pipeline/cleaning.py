from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Union

import pandas as pd

from .schema import FIELDS, INTEGER_FIELDS, MEASUREMENT_FIELDS, AgriRecord, as_frame

logger = logging.getLogger(__name__)


class MissingPolicy(str, Enum):
    """How rows with missing values are handled."""

    DROP = "drop"
    IMPUTE = "impute"


@dataclass
class CleanResult:
    frame: pd.DataFrame
    duplicates_removed: int = 0
    missing_dropped: int = 0
    imputed: Counter = field(default_factory=Counter)


def clean(
    records: Union[pd.DataFrame, Iterable[AgriRecord]],
    missing_policy: MissingPolicy = MissingPolicy.DROP,
) -> CleanResult:
    """
    Remove exact duplicate rows and handle missing values.

    - DROP:   every row with at least one missing field is dropped.
    - IMPUTE: missing measurements (area, rainfall, temperature, yields,
              humidity, price) are filled with the column median; rows that
              still miss year or a categorical field are dropped.

    Duplicates are removed last (first occurrence kept), so running `clean`
    on its own output removes nothing.
    """
    df = as_frame(records).loc[:, list(FIELDS)].copy()
    result = CleanResult(frame=df)

    if missing_policy == MissingPolicy.IMPUTE:
        for name in MEASUREMENT_FIELDS:
            missing = int(df[name].isna().sum())
            if not missing:
                continue
            median = df[name].median()
            if pd.isna(median):
                logger.warning("Cannot impute %s: no non-missing values.", name)
                continue
            if name in INTEGER_FIELDS:
                median = int(round(float(median)))
            df[name] = df[name].fillna(median)
            result.imputed[name] = missing
            logger.info("Imputed %d missing %s value(s) with median %s", missing, name, median)

    incomplete = df.isna().any(axis=1)
    result.missing_dropped = int(incomplete.sum())
    if result.missing_dropped:
        logger.warning("Dropping %d row(s) with missing values.", result.missing_dropped)
        df = df.loc[~incomplete]

    duplicated = df.duplicated(keep="first")
    result.duplicates_removed = int(duplicated.sum())
    if result.duplicates_removed:
        logger.warning("Dropping %d exact duplicate row(s).", result.duplicates_removed)
        df = df.loc[~duplicated]

    result.frame = df.reset_index(drop=True)
    logger.info("Clean dataset has %d row(s)", len(result.frame))
    return result
