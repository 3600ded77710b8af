from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Union

import pandas as pd

from .aggregation import resolve_group_by, summarize, summary_table
from .bq_client import write_tables
from .cleaning import MissingPolicy, clean
from .gcs_client import is_gcs_uri, upload_file
from .loader import LoadReport, RangePolicy, load
from .modeling import build_star_schema
from .schema import DEFAULT_LOCATIONS

logger = logging.getLogger(__name__)

OUTPUT_FORMATS = ("csv", "parquet")


@dataclass
class JobConfig:
    """Configuration for the aggregation job."""

    input_source: Union[str, Path]

    # Validation / cleaning
    strict: bool = False
    range_policy: RangePolicy = RangePolicy.REJECT
    missing_policy: MissingPolicy = MissingPolicy.DROP
    locations: Optional[frozenset] = DEFAULT_LOCATIONS

    # Aggregation: a single table when group_by and metric are set,
    # otherwise the sixteen dashboard summaries.
    group_by: Optional[Sequence[str]] = None
    metric: Optional[str] = None
    precision: int = 2
    summaries: bool = True
    star_schema: bool = False

    # Output
    output_dir: Path = Path("data/export")
    output_format: str = "csv"  # "csv" or "parquet"

    # GCP (all optional)
    project_id: Optional[str] = None
    stage_uri: Optional[str] = None
    bq_dataset: Optional[str] = None

    def __post_init__(self) -> None:
        if (self.group_by is None) != (self.metric is None):
            raise ValueError("group_by and metric must be given together")
        if self.output_format not in OUTPUT_FORMATS:
            raise ValueError(f"Unsupported output format: {self.output_format}")
        if self.precision < 0:
            raise ValueError("precision must be >= 0")
        if self.stage_uri is not None and is_gcs_uri(self.input_source):
            raise ValueError("stage_uri requires a local input file")
        if self.bq_dataset is not None and not self.project_id:
            raise ValueError("bq_dataset requires project_id")

    @property
    def uses_gcp(self) -> bool:
        return bool(is_gcs_uri(self.input_source) or self.stage_uri or self.bq_dataset)


@dataclass
class JobReport:
    """Everything the job dropped or changed on its way to the clean dataset."""

    load: LoadReport
    duplicates_removed: int = 0
    missing_dropped: int = 0
    imputed: Counter = field(default_factory=Counter)
    rows_clean: int = 0

    def summary_lines(self) -> List[str]:
        lines = self.load.summary_lines()
        lines.append(f"duplicates removed: {self.duplicates_removed}")
        lines.append(f"rows dropped for missing values: {self.missing_dropped}")
        for name, count in sorted(self.imputed.items()):
            lines.append(f"  imputed ({name}): {count}")
        lines.append(f"rows aggregated: {self.rows_clean}")
        return lines


@dataclass
class JobResult:
    report: JobReport
    outputs: List[Path] = field(default_factory=list)
    bq_tables: List[str] = field(default_factory=list)


def table_name(group_by: Sequence[str], metric: str) -> str:
    return f"avg_{metric}_by_{'_'.join(group_by)}"


def _write_table(df: pd.DataFrame, path: Path, output_format: str) -> None:
    logger.info("Writing %d row(s) to %s", len(df), path)
    if output_format == "parquet":
        df.to_parquet(path, index=False)
    elif output_format == "csv":
        df.to_csv(path, index=False)
    else:
        msg = f"Unsupported output format: {output_format}"
        logger.error(msg)
        raise ValueError(msg)


def _build_tables(config: JobConfig, frame: pd.DataFrame) -> Dict[str, pd.DataFrame]:
    tables: Dict[str, pd.DataFrame] = {}

    if config.group_by is not None and config.metric is not None:
        names = resolve_group_by(config.group_by)
        tables[table_name(names, config.metric)] = summary_table(
            frame, names, config.metric, config.precision
        )
    elif config.summaries:
        for (metric, dimension), table in summarize(frame, config.precision).items():
            tables[table_name((dimension,), metric)] = table

    if config.star_schema:
        tables.update(build_star_schema(frame).tables())
    return tables


def run_job(
    config: JobConfig,
    on_report: Optional[Callable[[JobReport], None]] = None,
) -> JobResult:
    """
    Run the full job:

    1. Optionally stage the raw local file to GCS.
    2. Load and validate the CSV (local path or gs:// URI).
    3. Clean: handle missing values, drop exact duplicates.
    4. Report row accounting (logged, and passed to `on_report`) before any
       output is written.
    5. Build the summary tables (and optionally the star schema).
    6. Write every table to `output_dir`, then optionally load them into
       BigQuery.
    """
    logger.info("Starting job with config: %s", config)

    if config.stage_uri:
        upload_file(Path(config.input_source), config.stage_uri, project_id=config.project_id)

    loaded = load(
        config.input_source,
        strict=config.strict,
        range_policy=config.range_policy,
        locations=config.locations,
        project_id=config.project_id,
    )
    cleaned = clean(loaded.frame, missing_policy=config.missing_policy)

    report = JobReport(
        load=loaded.report,
        duplicates_removed=cleaned.duplicates_removed,
        missing_dropped=cleaned.missing_dropped,
        imputed=cleaned.imputed,
        rows_clean=len(cleaned.frame),
    )
    for line in report.summary_lines():
        logger.info("Report: %s", line)
    if on_report is not None:
        on_report(report)

    if cleaned.frame.empty:
        logger.warning("No rows left after validation and cleaning. Exporting empty tables.")

    tables = _build_tables(config, cleaned.frame)
    result = JobResult(report=report)

    config.output_dir.mkdir(parents=True, exist_ok=True)
    for name, table in tables.items():
        path = config.output_dir / f"{name}.{config.output_format}"
        _write_table(table, path, config.output_format)
        result.outputs.append(path)

    if config.bq_dataset and config.project_id:
        result.bq_tables = write_tables(config.project_id, config.bq_dataset, tables)

    logger.info("Job finished successfully: %d table(s) written.", len(result.outputs))
    return result
