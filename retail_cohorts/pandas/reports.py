"""Pandas DataFrame adapters for the cohort report pipeline."""

from typing import Dict, List, Optional

import pandas as pd  # type: ignore

from retail_cohorts.analyses.reports import CohortReports, ReportTable
from retail_cohorts.foundation.transactions import TransactionRecord
from retail_cohorts.pipeline import (
    CohortReportConfig,
    CohortReportResult,
    run_cohort_pipeline,
)
from ._utils import missing_to_none, none_to_nan, to_python_timestamp


def dataframe_to_transactions(
    transactions_df: pd.DataFrame,
    customer_id_col: str = "customer_id",
    invoice_id_col: str = "invoice_id",
    quantity_col: str = "quantity",
    unit_price_col: str = "unit_price",
    timestamp_col: str = "timestamp",
) -> List[TransactionRecord]:
    """Convert a pandas DataFrame of invoice lines to transaction records.

    Missing values (NaN, NaT, None) are passed through as ``None`` so the
    transaction filter can exclude or reject the row; no validity checks are
    applied here.

    Args:
        transactions_df: DataFrame with one row per invoice line
        *_col: Column name mappings for flexibility

    Returns:
        List of TransactionRecord objects in row order

    Raises:
        ValueError: If DataFrame is missing required columns

    Example:
        >>> df = pd.read_csv('online_retail.csv')
        >>> records = dataframe_to_transactions(
        ...     df,
        ...     customer_id_col='CustomerID',
        ...     invoice_id_col='InvoiceNo',
        ...     quantity_col='Quantity',
        ...     unit_price_col='UnitPrice',
        ...     timestamp_col='InvoiceDate',
        ... )
    """
    required_cols = [
        customer_id_col,
        invoice_id_col,
        quantity_col,
        unit_price_col,
        timestamp_col,
    ]
    missing_cols = set(required_cols) - set(transactions_df.columns)
    if missing_cols:
        raise ValueError(f"DataFrame missing required columns: {missing_cols}")

    records = []
    for record in transactions_df.to_dict("records"):
        invoice_id = missing_to_none(record[invoice_id_col])
        records.append(
            TransactionRecord(
                customer_id=missing_to_none(record[customer_id_col]),
                invoice_id="" if invoice_id is None else str(invoice_id),
                quantity=missing_to_none(record[quantity_col]),
                unit_price=missing_to_none(record[unit_price_col]),
                timestamp=to_python_timestamp(record[timestamp_col]),
            )
        )
    return records


def report_table_to_dataframe(table: ReportTable) -> pd.DataFrame:
    """Convert a report table to a DataFrame indexed by cohort month.

    Cells are rounded to the table's report precision and "no data" cells
    become NaN.

    Args:
        table: ReportTable from the report derivers

    Returns:
        DataFrame with a ``cohort_month`` index ("YYYY-MM") and
        ``Month_0`` .. ``Month_N`` columns

    Example:
        >>> df = report_table_to_dataframe(result.reports.retention)
        >>> df.loc['2011-01', 'Month_1']
        23.5
    """
    columns = ["cohort_month"] + table.columns
    rows = [
        {key: none_to_nan(value) for key, value in record.items()}
        for record in table.present()
    ]
    return pd.DataFrame(rows, columns=columns).set_index("cohort_month")


def reports_to_dataframes(reports: CohortReports) -> Dict[str, pd.DataFrame]:
    """Convert every report table to a DataFrame.

    Args:
        reports: CohortReports bundle

    Returns:
        Dictionary keyed by table name: 'counts', 'retention', 'churn',
        'revenue', 'average_spend', 'cumulative_revenue'

    Example:
        >>> dfs = reports_to_dataframes(result.reports)
        >>> dfs['churn'].to_csv('cohort_churn.csv')
    """
    return {
        name: report_table_to_dataframe(table)
        for name, table in reports.tables().items()
    }


def run_cohort_pipeline_df(
    transactions_df: pd.DataFrame,
    config: Optional[CohortReportConfig] = None,
    customer_id_col: str = "customer_id",
    invoice_id_col: str = "invoice_id",
    quantity_col: str = "quantity",
    unit_price_col: str = "unit_price",
    timestamp_col: str = "timestamp",
) -> CohortReportResult:
    """Run the cohort pipeline on a DataFrame of invoice lines.

    Convenience function combining conversion and the pipeline run.

    Args:
        transactions_df: DataFrame with one row per invoice line
        config: Optional pipeline configuration
        *_col: Column name mappings for flexibility

    Returns:
        CohortReportResult; pass ``result.reports`` to
        :func:`reports_to_dataframes` for tabular output

    Example:
        >>> result = run_cohort_pipeline_df(df, CohortReportConfig(max_offset=6))
        >>> reports_to_dataframes(result.reports)['revenue']
    """
    records = dataframe_to_transactions(
        transactions_df,
        customer_id_col=customer_id_col,
        invoice_id_col=invoice_id_col,
        quantity_col=quantity_col,
        unit_price_col=unit_price_col,
        timestamp_col=timestamp_col,
    )
    return run_cohort_pipeline(records, config)
