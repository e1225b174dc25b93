"""Monthly first-purchase cohort analytics for retail transactions."""

from retail_cohorts.pipeline import (
    CohortReportConfig,
    CohortReportResult,
    run_cohort_pipeline,
)

__all__ = [
    "CohortReportConfig",
    "CohortReportResult",
    "run_cohort_pipeline",
]
