"""Tests for the cohort report pandas adapters."""

from datetime import datetime
from decimal import Decimal

import numpy as np
import pandas as pd  # type: ignore
import pytest

from retail_cohorts.pandas import (
    dataframe_to_transactions,
    report_table_to_dataframe,
    reports_to_dataframes,
    run_cohort_pipeline_df,
)
from retail_cohorts.pipeline import CohortReportConfig, run_cohort_pipeline


@pytest.fixture
def retail_df():
    """Invoice lines with the column names of the online retail export."""
    return pd.DataFrame(
        {
            "InvoiceNo": ["536365", "536401", "536370", "C536379", "536380", "536381"],
            "CustomerID": [17850.0, 17850.0, 13047.0, 13047.0, np.nan, 13047.0],
            "Quantity": [2, 1, 1, 1, 4, 3],
            "UnitPrice": [10.0, 5.0, 20.0, 20.0, 1.0, 2.0],
            "InvoiceDate": pd.to_datetime(
                [
                    "2023-01-10 09:00",
                    "2023-02-14 12:30",
                    "2023-01-22 16:45",
                    "2023-01-23 10:00",
                    "2023-01-24 10:00",
                    None,
                ]
            ),
        }
    )


COLUMNS = dict(
    customer_id_col="CustomerID",
    invoice_id_col="InvoiceNo",
    quantity_col="Quantity",
    unit_price_col="UnitPrice",
    timestamp_col="InvoiceDate",
)


class TestDataFrameToTransactions:
    """Test DataFrame -> TransactionRecord conversion."""

    def test_converts_rows_in_order(self, retail_df):
        records = dataframe_to_transactions(retail_df, **COLUMNS)
        assert len(records) == 6
        assert records[0].invoice_id == "536365"
        assert records[0].timestamp == datetime(2023, 1, 10, 9, 0)
        assert type(records[0].timestamp) is datetime

    def test_missing_values_become_none(self, retail_df):
        records = dataframe_to_transactions(retail_df, **COLUMNS)
        assert records[4].customer_id is None
        assert records[5].timestamp is None

    def test_missing_columns_raise(self, retail_df):
        with pytest.raises(ValueError, match="missing required columns"):
            dataframe_to_transactions(retail_df)


class TestRunCohortPipelineDF:
    """Test the DataFrame convenience wrapper."""

    def test_pipeline_on_dataframe(self, retail_df):
        result = run_cohort_pipeline_df(retail_df, CohortReportConfig(max_offset=2), **COLUMNS)

        assert result.excluded_rows == 2  # cancellation and anonymous row
        assert len(result.rejected_rows) == 1  # NaT timestamp
        dfs = reports_to_dataframes(result.reports)

        counts = dfs["counts"]
        assert list(counts.columns) == ["Month_0", "Month_1", "Month_2"]
        assert counts.loc["2023-01", "Month_0"] == 2
        assert counts.loc["2023-01", "Month_1"] == 1

        assert dfs["retention"].loc["2023-01", "Month_1"] == 50.0
        assert dfs["revenue"].loc["2023-01", "Month_0"] == 40


class TestReportsToDataFrames:
    """Test report table -> DataFrame conversion."""

    def test_no_data_becomes_nan(self, two_customer_records):
        result = run_cohort_pipeline(two_customer_records)
        spend = report_table_to_dataframe(result.reports.average_spend)
        assert spend.index.name == "cohort_month"
        assert spend.loc["2023-01", "Month_0"] == 20
        assert np.isnan(spend.loc["2023-01", "Month_2"])

    def test_all_tables_present(self, two_customer_records):
        dfs = reports_to_dataframes(run_cohort_pipeline(two_customer_records).reports)
        assert set(dfs) == {
            "counts",
            "retention",
            "churn",
            "revenue",
            "average_spend",
            "cumulative_revenue",
        }
        assert all(len(df.columns) == 13 for df in dfs.values())

    def test_empty_reports_give_empty_frames(self):
        dfs = reports_to_dataframes(run_cohort_pipeline([]).reports)
        assert all(df.empty for df in dfs.values())
        assert list(dfs["churn"].columns)[0] == "Month_0"

    def test_cumulative_revenue(self, two_customer_records):
        result = run_cohort_pipeline(two_customer_records)
        df = report_table_to_dataframe(result.reports.cumulative_revenue)
        assert df.loc["2023-01", "Month_1"] == 45
        assert df.loc["2023-01", "Month_12"] == 45
        assert result.reports.cumulative_revenue.row_for(
            result.metrics[0].cohort_month
        )[1] == Decimal("45")
