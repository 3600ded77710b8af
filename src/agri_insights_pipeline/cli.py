from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .cleaning import MissingPolicy
from .exceptions import AgriPipelineError
from .loader import RangePolicy
from .pipeline import OUTPUT_FORMATS, JobConfig, JobReport, run_job
from .schema import DEFAULT_LOCATIONS, GROUPABLE_FIELDS, MEASUREMENT_FIELDS


def _field_list(value: str) -> list[str]:
    """Validate a comma-separated list of grouping fields for argparse."""
    names = [part.strip() for part in value.split(",") if part.strip()]
    if not names:
        raise argparse.ArgumentTypeError("Expected at least one field name.")
    unknown = [name for name in names if name not in GROUPABLE_FIELDS]
    if unknown:
        raise argparse.ArgumentTypeError(
            f"Unknown field(s) {', '.join(unknown)}; choose from {', '.join(GROUPABLE_FIELDS)}."
        )
    return names


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--input",
        required=True,
        help="Raw CSV: a local path or a gs://bucket/blob URI.",
    )

    parser.add_argument(
        "--strict",
        action="store_true",
        help="Abort on the first malformed or out-of-range row instead of skipping it.",
    )

    parser.add_argument(
        "--range-policy",
        choices=[p.value for p in RangePolicy],
        default=RangePolicy.REJECT.value,
        help="Out-of-range measurements: reject the row or clamp the value (default: reject).",
    )

    parser.add_argument(
        "--missing-policy",
        choices=[p.value for p in MissingPolicy],
        default=MissingPolicy.DROP.value,
        help="Rows with missing values: drop them or impute medians (default: drop).",
    )

    parser.add_argument(
        "--allow-any-location",
        action="store_true",
        help=f"Accept locations outside the {len(DEFAULT_LOCATIONS)} known districts.",
    )

    parser.add_argument(
        "--output-dir",
        default="data/export",
        help="Output directory for exports (default: data/export).",
    )

    parser.add_argument(
        "--output-format",
        choices=list(OUTPUT_FORMATS),
        default="csv",
        help="Export file format (default: csv).",
    )

    parser.add_argument(
        "--project-id",
        default=os.getenv("GOOGLE_CLOUD_PROJECT"),
        help="GCP project ID, used for gs:// input, staging and BigQuery (default: $GOOGLE_CLOUD_PROJECT).",
    )

    parser.add_argument(
        "--stage-uri",
        help="Upload the local input file to this gs:// URI before processing.",
    )

    parser.add_argument(
        "--bq-dataset",
        help="Also load every exported table into this BigQuery dataset (replacing existing tables).",
    )

    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO).",
    )


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="agri-pipeline",
        description=(
            "Validate and clean the crop/climate CSV, then export the average "
            "rainfall, temperature, humidity and yield tables."
        ),
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser(
        "run",
        help="Compute the dashboard summaries, or a single table with --group-by/--metric.",
    )
    _add_common_arguments(run_parser)
    run_parser.add_argument(
        "--group-by",
        type=_field_list,
        help="Comma-separated grouping fields, e.g. season,crop.",
    )
    run_parser.add_argument(
        "--metric",
        choices=list(MEASUREMENT_FIELDS),
        help="Field to average. Requires --group-by.",
    )
    run_parser.add_argument(
        "--precision",
        type=int,
        default=2,
        help="Decimal places of the averages (default: 2).",
    )
    run_parser.add_argument(
        "--star-schema",
        action="store_true",
        help="Also export the fact and dimension tables.",
    )

    model_parser = subparsers.add_parser("model", help="Export only the star schema (fact + dimension tables).")
    _add_common_arguments(model_parser)

    args = parser.parse_args(argv)
    if args.command == "run" and (args.group_by is None) != (args.metric is None):
        parser.error("--group-by and --metric must be given together.")
    if args.bq_dataset and not args.project_id:
        parser.error("--bq-dataset requires --project-id (or GOOGLE_CLOUD_PROJECT).")
    return args


def _check_credentials_env() -> None:
    """
    Ensure GOOGLE_APPLICATION_CREDENTIALS points to a valid service account file.
    """
    creds_path = os.getenv("GOOGLE_APPLICATION_CREDENTIALS")
    if not creds_path:
        msg = (
            "Environment variable GOOGLE_APPLICATION_CREDENTIALS is not set. "
            "It must point to your service account JSON file when using GCS or BigQuery."
        )
        raise SystemExit(msg)

    if not Path(creds_path).is_file():
        msg = "Credentials file specified by GOOGLE_APPLICATION_CREDENTIALS " f"does not exist: {creds_path}"
        raise SystemExit(msg)


def build_config(args: argparse.Namespace) -> JobConfig:
    is_model = args.command == "model"
    return JobConfig(
        input_source=args.input,
        strict=args.strict,
        range_policy=RangePolicy(args.range_policy),
        missing_policy=MissingPolicy(args.missing_policy),
        locations=None if args.allow_any_location else DEFAULT_LOCATIONS,
        group_by=None if is_model else args.group_by,
        metric=None if is_model else args.metric,
        precision=2 if is_model else args.precision,
        summaries=not is_model,
        star_schema=is_model or args.star_schema,
        output_dir=Path(args.output_dir),
        output_format=args.output_format,
        project_id=args.project_id,
        stage_uri=args.stage_uri,
        bq_dataset=args.bq_dataset,
    )


def _print_report(report: JobReport) -> None:
    for line in report.summary_lines():
        print(line, file=sys.stderr)


def main(argv: Optional[list[str]] = None) -> None:
    # Load .env file if present
    load_dotenv()

    args = parse_args(argv)

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )

    try:
        config = build_config(args)
    except ValueError as exc:
        print(f"[ERROR] {exc}", file=sys.stderr)
        sys.exit(2)

    if config.uses_gcp:
        _check_credentials_env()

    try:
        result = run_job(config, on_report=_print_report)
    except AgriPipelineError as exc:
        print(f"[ERROR] {exc}", file=sys.stderr)
        sys.exit(1)
    except Exception:  # pragma: no cover - generic catch-all
        print("[ERROR] Unexpected error while running the job.", file=sys.stderr)
        logging.getLogger(__name__).exception("Unexpected error")
        sys.exit(99)

    for path in result.outputs:
        print(f"Export written to: {path}")
    for table in result.bq_tables:
        print(f"BigQuery table written: {table}")


if __name__ == "__main__":  # pragma: no cover
    main()
