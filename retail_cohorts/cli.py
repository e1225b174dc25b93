"""Command line entry point for cohort reports."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

import pandas as pd
import structlog
from pydantic import BaseModel, Field

from retail_cohorts.foundation.transactions import (
    TransactionRecord,
    records_from_mappings,
)
from retail_cohorts.logging_config import configure_logging
from retail_cohorts.pandas import dataframe_to_transactions, reports_to_dataframes
from retail_cohorts.pipeline import CohortReportConfig, run_cohort_pipeline

logger = structlog.get_logger(__name__)


MAX_INPUT_BYTES = 256 * 1024 * 1024  # 256 MiB cap to avoid accidental OOM


class RejectedRowSummary(BaseModel):
    """A row that could not be placed in any cohort."""

    index: int
    invoice_id: str
    reason: str


class CohortRunSummary(BaseModel):
    """Summary printed after a cohort report run."""

    records_read: int = Field(ge=0)
    valid_transactions: int = Field(ge=0)
    excluded_rows: int = Field(ge=0)
    cohort_count: int = Field(ge=0)
    customer_count: int = Field(ge=0)
    max_offset: int = Field(ge=0)
    rejected_rows: list[RejectedRowSummary] = Field(default_factory=list)
    output_files: dict[str, str] = Field(default_factory=dict)


def _load_records(path: Path, column_map: dict[str, str]) -> list[TransactionRecord]:
    resolved = path.resolve()
    size = resolved.stat().st_size
    if size > MAX_INPUT_BYTES:
        raise ValueError(
            f"Input file {resolved} is {size} bytes; exceeds limit of {MAX_INPUT_BYTES} bytes"
        )

    if resolved.suffix.lower() == ".csv":
        # Read everything as text so invoice ids and timestamps keep their raw form.
        frame = pd.read_csv(resolved, dtype=str, keep_default_na=True)
        return dataframe_to_transactions(frame, **column_map)

    with resolved.open("r", encoding="utf-8") as fh:
        payload = json.load(fh)
    if not isinstance(payload, list):
        raise ValueError("Expected a list of transactions in the input file")

    rows: list[dict[str, Any]] = []
    for idx, item in enumerate(payload):
        if not isinstance(item, dict):
            raise ValueError(
                f"Expected a JSON object for transaction {idx}, got {type(item).__name__}"
            )
        rows.append(
            {
                field: item.get(column)
                for field, column in (
                    ("customer_id", column_map["customer_id_col"]),
                    ("invoice_id", column_map["invoice_id_col"]),
                    ("quantity", column_map["quantity_col"]),
                    ("unit_price", column_map["unit_price_col"]),
                    ("timestamp", column_map["timestamp_col"]),
                )
            }
        )
    return records_from_mappings(rows)


def _resolve_output_dir(path: Path) -> Path:
    output_dir = path.resolve()
    cwd = Path.cwd().resolve()
    try:
        output_dir.relative_to(cwd)
    except ValueError:
        raise ValueError(
            f"Output directory {output_dir} must reside within the current working directory"
        )
    return output_dir


def cohort_report_cli(argv: list[str] | None = None) -> int:
    """Build cohort report tables from a JSON or CSV file of invoice lines.

    Writes one CSV per report table (counts, retention, churn, revenue,
    average_spend, cumulative_revenue) to the output directory and prints a
    JSON run summary to stdout.

    Args:
        argv: Command line arguments (defaults to sys.argv)

    Returns:
        Exit code (0 for success, 1 when the input holds no transactions)
    """
    parser = argparse.ArgumentParser(
        description="Compute monthly first-purchase cohort reports"
    )
    parser.add_argument(
        "input", type=Path, help="Path to a JSON list or CSV file of invoice lines"
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        help="Directory for the report CSV files. Only the summary is printed if omitted.",
    )
    parser.add_argument(
        "--max-offset",
        type=int,
        help="Highest month offset to report (default: 12, or COHORT_MAX_OFFSET)",
    )
    parser.add_argument(
        "--cancellation-prefix",
        type=str,
        help="Invoice prefix marking cancellations (default: C)",
    )
    parser.add_argument(
        "--timestamp-format",
        dest="timestamp_formats",
        action="append",
        help="strptime format for non-ISO timestamps; may be repeated.",
    )
    parser.add_argument("--customer-id-col", default="customer_id")
    parser.add_argument("--invoice-id-col", default="invoice_id")
    parser.add_argument("--quantity-col", default="quantity")
    parser.add_argument("--unit-price-col", default="unit_price")
    parser.add_argument("--timestamp-col", default="timestamp")
    parser.add_argument(
        "--log-level",
        help="Log level for stderr output (default: INFO, or COHORT_LOG_LEVEL)",
    )

    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    config = CohortReportConfig.from_env(
        max_offset=args.max_offset,
        cancellation_prefix=args.cancellation_prefix,
        timestamp_formats=tuple(args.timestamp_formats) if args.timestamp_formats else None,
    )

    column_map = {
        "customer_id_col": args.customer_id_col,
        "invoice_id_col": args.invoice_id_col,
        "quantity_col": args.quantity_col,
        "unit_price_col": args.unit_price_col,
        "timestamp_col": args.timestamp_col,
    }

    logger.info("loading_transactions", path=str(args.input))
    records = _load_records(args.input, column_map)
    if not records:
        logger.error("no_transactions_found", path=str(args.input))
        return 1

    result = run_cohort_pipeline(records, config)

    output_files: dict[str, str] = {}
    if args.output_dir:
        output_dir = _resolve_output_dir(args.output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        for name, frame in reports_to_dataframes(result.reports).items():
            target = output_dir / f"cohort_{name}.csv"
            frame.to_csv(target)
            output_files[name] = str(target)
        logger.info("reports_exported", output_dir=str(output_dir), tables=len(output_files))

    summary = CohortRunSummary(
        records_read=result.records_read,
        valid_transactions=result.valid_transactions,
        excluded_rows=result.excluded_rows,
        cohort_count=result.cohort_count,
        customer_count=result.customer_count,
        max_offset=config.max_offset,
        rejected_rows=[
            RejectedRowSummary(
                index=row.index, invoice_id=row.record.invoice_id, reason=row.reason
            )
            for row in result.rejected_rows
        ],
        output_files=output_files,
    )
    sys.stdout.write(summary.model_dump_json(indent=2))
    sys.stdout.write("\n")
    return 0


def main() -> None:
    raise SystemExit(cohort_report_cli())


if __name__ == "__main__":  # pragma: no cover
    main()
