"""Cohort report tables derived from the aggregated base metrics.

Every table is keyed by cohort month (ascending) with one column per month
offset, ``Month_0`` .. ``Month_N``. Values are kept unrounded internally;
rounding to the report precision happens only in :meth:`ReportTable.present`
so derived reports never compound rounding error.

A ``None`` cell means "no data": no cohort member transacted at that offset
(average spend) or the cohort has no members at all (retention, churn). It
is deliberately distinct from zero.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP, localcontext
from typing import Sequence, Union

from retail_cohorts.analyses.cohort_metrics import CohortMetricsRow
from retail_cohorts.foundation.cohorts import DEFAULT_MAX_OFFSET

# Percentages are reported with 2 decimal places (e.g., 45.67%)
PERCENTAGE_PRECISION = Decimal("0.01")

# Revenue sums and average spend are reported as whole currency units
CURRENCY_PRECISION = Decimal("1")

HUNDRED = Decimal("100")

Cell = Union[int, Decimal, None]


def month_columns(max_offset: int) -> list[str]:
    """Return the report column labels ``Month_0`` .. ``Month_{max_offset}``."""
    return [f"Month_{offset}" for offset in range(max_offset + 1)]


def round_half_up(value: Decimal, precision: Decimal) -> Decimal:
    # quantize fails once the result has more digits than the context allows
    digits = value.adjusted() - precision.as_tuple().exponent + 1
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, digits)
        return value.quantize(precision, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class ReportRow:
    """One cohort's cells, indexed by month offset."""

    cohort_month: date
    values: tuple[Cell, ...]

    @property
    def cohort_id(self) -> str:
        return self.cohort_month.strftime("%Y-%m")

    def __getitem__(self, offset: int) -> Cell:
        return self.values[offset]


@dataclass(frozen=True)
class ReportTable:
    """A cohort × month-offset report.

    Attributes
    ----------
    name:
        Table name (``counts``, ``retention``, ...).
    max_offset:
        Highest month offset column.
    precision:
        Rounding step applied to ``Decimal`` cells at presentation. Integer
        cells (customer counts) are presented as-is.
    rows:
        One row per cohort month, ascending.
    """

    name: str
    max_offset: int
    precision: Decimal
    rows: tuple[ReportRow, ...]

    def __post_init__(self) -> None:
        width = self.max_offset + 1
        for row in self.rows:
            if len(row.values) != width:
                raise ValueError(
                    f"Row {row.cohort_id} of table {self.name} has {len(row.values)} "
                    f"cells, expected {width}"
                )
        months = [row.cohort_month for row in self.rows]
        if months != sorted(months):
            raise ValueError(f"Rows of table {self.name} must be ordered by cohort month")

    @property
    def columns(self) -> list[str]:
        return month_columns(self.max_offset)

    @property
    def cohort_months(self) -> list[date]:
        return [row.cohort_month for row in self.rows]

    def row_for(self, cohort_month: date) -> ReportRow:
        for row in self.rows:
            if row.cohort_month == cohort_month:
                return row
        raise KeyError(f"No cohort {cohort_month.isoformat()} in table {self.name}")

    def present_cell(self, value: Cell) -> int | float | None:
        """Round a cell to the table's report precision."""
        if value is None:
            return None
        if isinstance(value, int):
            return value
        rounded = round_half_up(value, self.precision)
        if self.precision == CURRENCY_PRECISION:
            return int(rounded)
        return float(rounded)

    def present(self) -> list[dict[str, object]]:
        """Return rounded, JSON-serialisable records, one per cohort."""
        records: list[dict[str, object]] = []
        for row in self.rows:
            record: dict[str, object] = {"cohort_month": row.cohort_id}
            for column, value in zip(self.columns, row.values):
                record[column] = self.present_cell(value)
            records.append(record)
        return records


def _build_table(
    name: str,
    metrics: Sequence[CohortMetricsRow],
    max_offset: int,
    precision: Decimal,
    cell,
) -> ReportTable:
    if max_offset < 0:
        raise ValueError(f"max_offset must be >= 0, got {max_offset}")
    ordered = sorted(metrics, key=lambda m: m.cohort_month)
    rows = tuple(
        ReportRow(
            cohort_month=m.cohort_month,
            values=tuple(cell(m, offset) for offset in range(max_offset + 1)),
        )
        for m in ordered
    )
    return ReportTable(name=name, max_offset=max_offset, precision=precision, rows=rows)


def retention_rate(metrics: CohortMetricsRow, offset: int) -> Decimal | None:
    """Percentage of the cohort transacting at ``offset``; None for empty cohorts."""
    if metrics.cohort_size == 0:
        return None
    return HUNDRED * Decimal(metrics.count_at(offset)) / Decimal(metrics.cohort_size)


def average_spend(metrics: CohortMetricsRow, offset: int) -> Decimal | None:
    """Revenue per active customer at ``offset``; None when nobody transacted."""
    count = metrics.count_at(offset)
    if count == 0:
        return None
    return metrics.revenue_at(offset) / Decimal(count)


def counts_table(
    metrics: Sequence[CohortMetricsRow], max_offset: int = DEFAULT_MAX_OFFSET
) -> ReportTable:
    """Distinct customer counts per offset."""
    return _build_table(
        "counts", metrics, max_offset, CURRENCY_PRECISION, lambda m, k: m.count_at(k)
    )


def retention_table(
    metrics: Sequence[CohortMetricsRow], max_offset: int = DEFAULT_MAX_OFFSET
) -> ReportTable:
    """Retention % per offset, with the raw cohort size in ``Month_0``."""

    def cell(m: CohortMetricsRow, offset: int) -> Cell:
        if offset == 0:
            return m.cohort_size
        return retention_rate(m, offset)

    return _build_table("retention", metrics, max_offset, PERCENTAGE_PRECISION, cell)


def churn_table(
    metrics: Sequence[CohortMetricsRow], max_offset: int = DEFAULT_MAX_OFFSET
) -> ReportTable:
    """Churn % (100 - retention) per offset, with the raw cohort size in ``Month_0``."""

    def cell(m: CohortMetricsRow, offset: int) -> Cell:
        if offset == 0:
            return m.cohort_size
        retention = retention_rate(m, offset)
        return None if retention is None else HUNDRED - retention

    return _build_table("churn", metrics, max_offset, PERCENTAGE_PRECISION, cell)


def revenue_table(
    metrics: Sequence[CohortMetricsRow], max_offset: int = DEFAULT_MAX_OFFSET
) -> ReportTable:
    """Summed sale value per offset."""
    return _build_table(
        "revenue", metrics, max_offset, CURRENCY_PRECISION, lambda m, k: m.revenue_at(k)
    )


def cumulative_revenue_table(
    metrics: Sequence[CohortMetricsRow], max_offset: int = DEFAULT_MAX_OFFSET
) -> ReportTable:
    """Running cohort revenue (cohort CLV) up to and including each offset."""

    def cell(m: CohortMetricsRow, offset: int) -> Cell:
        return sum((m.revenue_at(k) for k in range(offset + 1)), Decimal("0"))

    return _build_table("cumulative_revenue", metrics, max_offset, CURRENCY_PRECISION, cell)


def average_spend_table(
    metrics: Sequence[CohortMetricsRow], max_offset: int = DEFAULT_MAX_OFFSET
) -> ReportTable:
    """Average spend per active customer per offset, ``None`` where count is zero."""
    return _build_table("average_spend", metrics, max_offset, CURRENCY_PRECISION, average_spend)


@dataclass(frozen=True)
class CohortReports:
    """The full set of cohort report tables for one run."""

    counts: ReportTable
    retention: ReportTable
    churn: ReportTable
    revenue: ReportTable
    average_spend: ReportTable
    cumulative_revenue: ReportTable

    def tables(self) -> dict[str, ReportTable]:
        return {
            "counts": self.counts,
            "retention": self.retention,
            "churn": self.churn,
            "revenue": self.revenue,
            "average_spend": self.average_spend,
            "cumulative_revenue": self.cumulative_revenue,
        }

    def as_dict(self) -> dict[str, list[dict[str, object]]]:
        return {name: table.present() for name, table in self.tables().items()}


def build_reports(
    metrics: Sequence[CohortMetricsRow], max_offset: int = DEFAULT_MAX_OFFSET
) -> CohortReports:
    """Derive every report table from the aggregated cohort metrics."""
    return CohortReports(
        counts=counts_table(metrics, max_offset),
        retention=retention_table(metrics, max_offset),
        churn=churn_table(metrics, max_offset),
        revenue=revenue_table(metrics, max_offset),
        average_spend=average_spend_table(metrics, max_offset),
        cumulative_revenue=cumulative_revenue_table(metrics, max_offset),
    )
