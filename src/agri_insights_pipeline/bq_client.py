from __future__ import annotations

import logging
from typing import Dict, List

import pandas as pd
from google.api_core.exceptions import GoogleAPIError
from google.cloud import bigquery

from .exceptions import DataLoadError

logger = logging.getLogger(__name__)


def write_tables(
    project_id: str,
    dataset_id: str,
    tables: Dict[str, pd.DataFrame],
) -> List[str]:
    """
    Load each DataFrame into `{project_id}.{dataset_id}.{name}`.

    Tables are written with WRITE_TRUNCATE: a re-run replaces the previous
    summaries instead of appending to them. Returns the full table names.
    """
    client = bigquery.Client(project=project_id)
    job_config = bigquery.LoadJobConfig(
        write_disposition=bigquery.WriteDisposition.WRITE_TRUNCATE,
    )

    written: List[str] = []
    for name, df in tables.items():
        table_full_name = f"{project_id}.{dataset_id}.{name}"
        logger.info("Loading %d row(s) into BigQuery table %s", len(df), table_full_name)
        try:
            job = client.load_table_from_dataframe(df, table_full_name, job_config=job_config)
            job.result()
        except GoogleAPIError as exc:
            msg = f"Failed to load BigQuery table {table_full_name}"
            logger.error(msg, exc_info=True)
            raise DataLoadError(msg) from exc
        written.append(table_full_name)

    logger.info("Loaded %d table(s) into BigQuery dataset %s.%s", len(written), project_id, dataset_id)
    return written
