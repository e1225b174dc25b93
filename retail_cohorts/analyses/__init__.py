"""Cohort aggregation and report derivation.

1. Aggregation - distinct customers and revenue per cohort month and offset
2. Reports - counts, retention %, churn %, revenue, average spend and
   cumulative revenue tables
"""

from .cohort_metrics import (
    CohortMetricsRow,
    aggregate_cohort,
    aggregate_cohort_metrics,
    merge_cohort_metrics,
)
from .reports import (
    CohortReports,
    ReportRow,
    ReportTable,
    average_spend_table,
    build_reports,
    churn_table,
    counts_table,
    cumulative_revenue_table,
    month_columns,
    retention_table,
    revenue_table,
)

__all__ = [
    # Aggregation
    "CohortMetricsRow",
    "aggregate_cohort",
    "aggregate_cohort_metrics",
    "merge_cohort_metrics",
    # Reports
    "CohortReports",
    "ReportRow",
    "ReportTable",
    "average_spend_table",
    "build_reports",
    "churn_table",
    "counts_table",
    "cumulative_revenue_table",
    "month_columns",
    "retention_table",
    "revenue_table",
]
