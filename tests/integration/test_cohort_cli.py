"""Integration tests for the cohort report command line entry point.

Tests the complete workflow from raw invoice files through the CLI to the
exported report CSV files and the JSON run summary.
"""

import json

import pandas as pd
import pytest

from retail_cohorts.cli import cohort_report_cli


@pytest.fixture
def sample_transactions_json(tmp_path):
    """Create a JSON file of invoice lines, including rows that must be dropped."""
    transactions = [
        # Customer 17850: January cohort, returns in February
        {
            "invoice_id": "536365",
            "customer_id": "17850",
            "timestamp": "2023-01-10T09:00:00",
            "unit_price": 10.0,
            "quantity": 2,
        },
        {
            "invoice_id": "536401",
            "customer_id": "17850",
            "timestamp": "2023-02-14T12:30:00",
            "unit_price": 5.0,
            "quantity": 1,
        },
        # Customer 13047: January only
        {
            "invoice_id": "536370",
            "customer_id": "13047",
            "timestamp": "2023-01-22T16:45:00",
            "unit_price": 20.0,
            "quantity": 1,
        },
        # Customer 12583: February cohort
        {
            "invoice_id": "536402",
            "customer_id": "12583",
            "timestamp": "2/20/2023 11:15",
            "unit_price": 3.5,
            "quantity": 4,
        },
        # Cancellation and return: excluded
        {
            "invoice_id": "C536379",
            "customer_id": "13047",
            "timestamp": "2023-01-23T10:00:00",
            "unit_price": 20.0,
            "quantity": 1,
        },
        {
            "invoice_id": "536403",
            "customer_id": "12583",
            "timestamp": "2023-02-21T10:00:00",
            "unit_price": 3.5,
            "quantity": -5,
        },
        # Corrupt timestamp: rejected
        {
            "invoice_id": "536404",
            "customer_id": "12583",
            "timestamp": "yesterday",
            "unit_price": 3.5,
            "quantity": 1,
        },
    ]
    path = tmp_path / "transactions.json"
    path.write_text(json.dumps(transactions))
    return path


class TestCohortReportCLI:
    """Test the cohort_report_cli command."""

    def test_exports_report_csvs(self, sample_transactions_json, tmp_path, monkeypatch, capsys):
        monkeypatch.chdir(tmp_path)

        exit_code = cohort_report_cli(
            [str(sample_transactions_json), "--output-dir", "reports", "--max-offset", "3"]
        )

        assert exit_code == 0
        summary = json.loads(capsys.readouterr().out)
        assert summary["records_read"] == 7
        assert summary["valid_transactions"] == 4
        assert summary["excluded_rows"] == 2
        assert summary["cohort_count"] == 2
        assert summary["customer_count"] == 3
        assert summary["max_offset"] == 3
        assert [row["invoice_id"] for row in summary["rejected_rows"]] == ["536404"]

        reports_dir = tmp_path / "reports"
        for name in (
            "counts",
            "retention",
            "churn",
            "revenue",
            "average_spend",
            "cumulative_revenue",
        ):
            assert (reports_dir / f"cohort_{name}.csv").exists()

        counts = pd.read_csv(reports_dir / "cohort_counts.csv", index_col="cohort_month")
        assert list(counts.index) == ["2023-01", "2023-02"]
        assert list(counts.columns) == ["Month_0", "Month_1", "Month_2", "Month_3"]
        assert counts.loc["2023-01", "Month_0"] == 2
        assert counts.loc["2023-01", "Month_1"] == 1
        assert counts.loc["2023-02", "Month_0"] == 1

        retention = pd.read_csv(reports_dir / "cohort_retention.csv", index_col="cohort_month")
        assert retention.loc["2023-01", "Month_1"] == 50.0

        spend = pd.read_csv(reports_dir / "cohort_average_spend.csv", index_col="cohort_month")
        assert spend.loc["2023-02", "Month_0"] == 14
        assert pd.isna(spend.loc["2023-02", "Month_1"])

    def test_summary_only_without_output_dir(self, sample_transactions_json, capsys):
        exit_code = cohort_report_cli([str(sample_transactions_json)])

        assert exit_code == 0
        summary = json.loads(capsys.readouterr().out)
        assert summary["output_files"] == {}
        assert summary["cohort_count"] == 2

    def test_csv_input_with_custom_columns(self, tmp_path, monkeypatch, capsys):
        monkeypatch.chdir(tmp_path)
        csv_path = tmp_path / "online_retail.csv"
        csv_path.write_text(
            "InvoiceNo,StockCode,Quantity,InvoiceDate,UnitPrice,CustomerID\n"
            "536365,85123A,6,12/1/2010 8:26,2.55,17850\n"
            "536366,22633,6,1/3/2011 8:28,1.85,17850\n"
            "C536379,D,-1,12/1/2010 9:41,27.5,14527\n"
            "536367,84879,32,12/1/2010 8:34,1.69,\n"
            "536368,22960,6,12/1/2010 8:34,4.25,13047\n"
        )

        exit_code = cohort_report_cli(
            [
                str(csv_path),
                "--output-dir",
                "out",
                "--customer-id-col",
                "CustomerID",
                "--invoice-id-col",
                "InvoiceNo",
                "--quantity-col",
                "Quantity",
                "--unit-price-col",
                "UnitPrice",
                "--timestamp-col",
                "InvoiceDate",
            ]
        )

        assert exit_code == 0
        summary = json.loads(capsys.readouterr().out)
        assert summary["valid_transactions"] == 3
        assert summary["customer_count"] == 2

        counts = pd.read_csv(tmp_path / "out" / "cohort_counts.csv", index_col="cohort_month")
        assert counts.loc["2010-12", "Month_0"] == 2
        assert counts.loc["2010-12", "Month_1"] == 1

    def test_empty_input_returns_error_code(self, tmp_path, capsys):
        path = tmp_path / "empty.json"
        path.write_text("[]")
        assert cohort_report_cli([str(path)]) == 1

    def test_output_outside_cwd_is_refused(self, sample_transactions_json, tmp_path, monkeypatch):
        workdir = tmp_path / "work"
        workdir.mkdir()
        monkeypatch.chdir(workdir)
        with pytest.raises(ValueError, match="must reside within the current working directory"):
            cohort_report_cli(
                [str(sample_transactions_json), "--output-dir", str(tmp_path / "elsewhere")]
            )

    def test_non_list_json_is_refused(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"invoice_id": "1"}))
        with pytest.raises(ValueError, match="Expected a list of transactions"):
            cohort_report_cli([str(path)])

    def test_non_object_json_item_is_refused(self, tmp_path):
        path = tmp_path / "mixed.json"
        path.write_text(json.dumps([{"invoice_id": "1"}, ["536365", "17850"]]))
        with pytest.raises(ValueError, match="transaction 1, got list"):
            cohort_report_cli([str(path)])

    def test_csv_with_float_ids_and_infinite_cells(self, tmp_path, capsys):
        """Spreadsheet ids like 17850.0 join 17850, and an 'inf' cell only drops its row."""
        csv_path = tmp_path / "export.csv"
        csv_path.write_text(
            "invoice_id,customer_id,quantity,unit_price,timestamp\n"
            "536365,17850,6,2.55,12/1/2010 8:26\n"
            "536366,17850.0,6,1.85,1/3/2011 8:28\n"
            "536367,13047,inf,1.69,12/1/2010 8:34\n"
            "536368,13047,6,Infinity,12/1/2010 8:34\n"
        )

        exit_code = cohort_report_cli([str(csv_path)])

        assert exit_code == 0
        summary = json.loads(capsys.readouterr().out)
        assert summary["valid_transactions"] == 2
        assert summary["excluded_rows"] == 2
        assert summary["customer_count"] == 1
        assert summary["cohort_count"] == 1
