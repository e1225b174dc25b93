"""Pandas DataFrame adapters for cohort report components."""

from .reports import (
    dataframe_to_transactions,
    report_table_to_dataframe,
    reports_to_dataframes,
    run_cohort_pipeline_df,
)

__all__ = [
    "dataframe_to_transactions",
    "report_table_to_dataframe",
    "reports_to_dataframes",
    "run_cohort_pipeline_df",
]
