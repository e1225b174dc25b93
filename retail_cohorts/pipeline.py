"""End-to-end cohort report pipeline.

Wires the stages together in their fixed order:

    raw records -> filter -> cohort assignment -> bucketing -> aggregation -> reports

The cohort assignment needs every valid transaction of a customer before any
transaction can be bucketed, so valid transactions are materialised once and
read twice. Each run is a pure function of its input snapshot.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

import structlog

from retail_cohorts.analyses.cohort_metrics import (
    CohortMetricsRow,
    aggregate_cohort_metrics,
)
from retail_cohorts.analyses.reports import CohortReports, build_reports
from retail_cohorts.foundation.cohorts import (
    DEFAULT_MAX_OFFSET,
    assign_cohorts,
    bucket_transactions,
    normalise_timezones,
)
from retail_cohorts.foundation.transactions import (
    DEFAULT_CANCELLATION_PREFIX,
    DEFAULT_TIMESTAMP_FORMATS,
    RejectedRow,
    TransactionFilter,
    TransactionRecord,
)

logger = structlog.get_logger(__name__)


@dataclass
class CohortReportConfig:
    """Configuration for a cohort report run.

    Attributes
    ----------
    max_offset:
        Highest month offset reported (``Month_0`` .. ``Month_{max_offset}``).
        Transactions further from their cohort start are left out.
    cancellation_prefix:
        Invoice prefix marking cancelled orders.
    timestamp_formats:
        ``strptime`` formats tried after ISO 8601 for string timestamps.
    parallel:
        Aggregate cohort groups in worker processes for large inputs.
    parallel_threshold:
        Minimum bucketed transactions before parallel aggregation kicks in.
    n_workers:
        Worker processes for parallel aggregation (defaults to CPU count).
    """

    max_offset: int = DEFAULT_MAX_OFFSET
    cancellation_prefix: str = DEFAULT_CANCELLATION_PREFIX
    timestamp_formats: tuple[str, ...] = DEFAULT_TIMESTAMP_FORMATS
    parallel: bool = False
    parallel_threshold: int = 1_000_000
    n_workers: int | None = None

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.max_offset < 0:
            raise ValueError(f"max_offset must be >= 0, got {self.max_offset}")
        if not self.cancellation_prefix:
            raise ValueError("cancellation_prefix cannot be empty")
        if self.parallel_threshold < 0:
            raise ValueError(
                f"parallel_threshold must be >= 0, got {self.parallel_threshold}"
            )
        if self.n_workers is not None and self.n_workers < 1:
            raise ValueError(f"n_workers must be >= 1, got {self.n_workers}")
        self.timestamp_formats = tuple(self.timestamp_formats)

    @classmethod
    def from_env(cls, **overrides: Any) -> "CohortReportConfig":
        """Build a config from ``COHORT_*`` environment variables.

        Recognised variables: ``COHORT_MAX_OFFSET``,
        ``COHORT_CANCELLATION_PREFIX`` and ``COHORT_TIMESTAMP_FORMATS``
        (formats separated by ``;``). Keyword overrides win over the
        environment.
        """
        values: dict[str, Any] = {}
        max_offset = os.getenv("COHORT_MAX_OFFSET")
        if max_offset:
            values["max_offset"] = int(max_offset)
        prefix = os.getenv("COHORT_CANCELLATION_PREFIX")
        if prefix:
            values["cancellation_prefix"] = prefix
        formats = os.getenv("COHORT_TIMESTAMP_FORMATS")
        if formats:
            values["timestamp_formats"] = tuple(
                fmt for fmt in formats.split(";") if fmt.strip()
            )
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


@dataclass(frozen=True)
class CohortReportResult:
    """Outcome of a pipeline run.

    Attributes
    ----------
    metrics:
        Aggregated base metrics, one row per cohort month.
    reports:
        Derived report tables.
    rejected_rows:
        Qualifying rows that could not be placed in a cohort (unparseable
        timestamps).
    records_read:
        Number of raw records consumed.
    valid_transactions:
        Number of records that passed the filter.
    excluded_rows:
        Number of records dropped by the validity rules.
    """

    metrics: Sequence[CohortMetricsRow]
    reports: CohortReports
    rejected_rows: Sequence[RejectedRow] = field(default_factory=tuple)
    records_read: int = 0
    valid_transactions: int = 0
    excluded_rows: int = 0

    @property
    def cohort_count(self) -> int:
        return len(self.metrics)

    @property
    def customer_count(self) -> int:
        return sum(row.cohort_size for row in self.metrics)

    def as_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation with report rounding."""
        return {
            "records_read": self.records_read,
            "valid_transactions": self.valid_transactions,
            "excluded_rows": self.excluded_rows,
            "rejected_rows": [
                {
                    "index": row.index,
                    "invoice_id": row.record.invoice_id,
                    "reason": row.reason,
                }
                for row in self.rejected_rows
            ],
            "reports": self.reports.as_dict(),
        }


def run_cohort_pipeline(
    records: Iterable[TransactionRecord],
    config: CohortReportConfig | None = None,
) -> CohortReportResult:
    """Compute every cohort report from raw transaction records.

    Parameters
    ----------
    records:
        Raw transaction records. Invalid rows are dropped; rows with
        unparseable timestamps are returned in ``rejected_rows``.
    config:
        Run configuration; defaults to :class:`CohortReportConfig`.

    Returns
    -------
    CohortReportResult
        Base metrics, report tables and row accounting. Empty input yields
        empty tables.
    """
    config = config or CohortReportConfig()
    log = logger.bind(max_offset=config.max_offset)

    txn_filter = TransactionFilter(
        cancellation_prefix=config.cancellation_prefix,
        timestamp_formats=config.timestamp_formats,
    )
    valid = list(txn_filter.filter(records))
    log.info(
        "transactions_filtered",
        records_read=txn_filter.records_read,
        valid_transactions=len(valid),
        excluded_rows=txn_filter.excluded_count,
        rejected_rows=len(txn_filter.rejected),
    )
    if txn_filter.rejected:
        log.warning(
            "rows_rejected_unparseable_timestamp",
            count=len(txn_filter.rejected),
            first_indexes=[row.index for row in txn_filter.rejected[:5]],
        )

    valid = normalise_timezones(valid)
    assignments = assign_cohorts(valid)
    bucketed = bucket_transactions(valid, assignments, max_offset=config.max_offset)
    metrics = aggregate_cohort_metrics(
        bucketed,
        parallel=config.parallel,
        parallel_threshold=config.parallel_threshold,
        n_workers=config.n_workers,
    )
    reports = build_reports(metrics, max_offset=config.max_offset)

    log.info(
        "cohort_pipeline_completed",
        cohorts=len(metrics),
        customers=len(assignments),
    )
    return CohortReportResult(
        metrics=tuple(metrics),
        reports=reports,
        rejected_rows=tuple(txn_filter.rejected),
        records_read=txn_filter.records_read,
        valid_transactions=len(valid),
        excluded_rows=txn_filter.excluded_count,
    )
