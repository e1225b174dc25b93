"""Foundational building blocks for cohort analytics.

This package exposes the transaction records and validity filter as well as
the first-purchase cohort assignment and month-offset bucketing that every
cohort report is built on.
"""

from .cohorts import (
    DEFAULT_MAX_OFFSET,
    BucketedTransaction,
    CohortAssignment,
    assign_cohorts,
    bucket_transactions,
    cohort_month_of,
    month_offset,
    normalise_timezones,
)
from .transactions import (
    RejectedRow,
    TransactionFilter,
    TransactionRecord,
    ValidTransaction,
    parse_timestamp,
    records_from_mappings,
)

__all__ = [
    "DEFAULT_MAX_OFFSET",
    "BucketedTransaction",
    "CohortAssignment",
    "assign_cohorts",
    "bucket_transactions",
    "cohort_month_of",
    "month_offset",
    "normalise_timezones",
    "RejectedRow",
    "TransactionFilter",
    "TransactionRecord",
    "ValidTransaction",
    "parse_timestamp",
    "records_from_mappings",
]
