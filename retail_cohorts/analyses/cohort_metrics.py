"""Per-cohort, per-offset aggregation of bucketed transactions.

Each cohort month is folded independently into a :class:`CohortMetricsRow`
holding the distinct customer count and the summed sale value for every
observed month offset. Because cohort groups never share customers, the fold
can be split across worker processes by cohort month and merged afterwards.

Quick Start
-----------
>>> from datetime import date
>>> from decimal import Decimal
>>> from retail_cohorts.foundation.cohorts import BucketedTransaction
>>> from retail_cohorts.analyses.cohort_metrics import aggregate_cohort_metrics
>>> bucketed = [
...     BucketedTransaction("A", date(2023, 1, 1), 0, Decimal("20")),
...     BucketedTransaction("A", date(2023, 1, 1), 1, Decimal("5")),
...     BucketedTransaction("B", date(2023, 1, 1), 0, Decimal("20")),
... ]
>>> rows = aggregate_cohort_metrics(bucketed)
>>> rows[0].cohort_size, rows[0].count_at(1), rows[0].revenue_at(0)
(2, 1, Decimal('40'))
"""

from __future__ import annotations

import multiprocessing
import os
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable, Mapping, Sequence

from retail_cohorts.foundation.cohorts import BucketedTransaction


@dataclass(frozen=True)
class CohortMetricsRow:
    """Base metrics for one cohort month.

    Attributes
    ----------
    cohort_month:
        First day of the cohort's acquisition month.
    customer_counts:
        Month offset -> number of distinct cohort members transacting at
        that offset. Offsets not present are implicitly zero.
    revenue:
        Month offset -> summed sale value at that offset (unrounded).
    """

    cohort_month: date
    customer_counts: Mapping[int, int] = field(default_factory=dict)
    revenue: Mapping[int, Decimal] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate cohort metric constraints."""
        for offset, count in self.customer_counts.items():
            if offset < 0:
                raise ValueError(f"month offset must be >= 0, got {offset}")
            if count < 0:
                raise ValueError(
                    f"customer count must be >= 0, got {count} at offset {offset}"
                )
            if count > self.cohort_size:
                raise ValueError(
                    f"customer count at offset {offset} ({count}) exceeds cohort "
                    f"size ({self.cohort_size}) for cohort {self.cohort_id}"
                )
        unknown = set(self.revenue) - set(self.customer_counts)
        if unknown:
            raise ValueError(
                f"revenue reported for offsets without customers: {sorted(unknown)}"
            )

    @property
    def cohort_id(self) -> str:
        return self.cohort_month.strftime("%Y-%m")

    @property
    def cohort_size(self) -> int:
        """Number of customers in the cohort (the offset-0 count)."""
        return self.customer_counts.get(0, 0)

    @property
    def max_observed_offset(self) -> int:
        return max(self.customer_counts, default=0)

    def count_at(self, offset: int) -> int:
        return self.customer_counts.get(offset, 0)

    def revenue_at(self, offset: int) -> Decimal:
        return self.revenue.get(offset, Decimal("0"))


def aggregate_cohort(
    cohort_month: date, bucketed: Iterable[BucketedTransaction]
) -> CohortMetricsRow:
    """Fold the bucketed transactions of a single cohort month.

    Raises
    ------
    ValueError
        If a transaction belongs to a different cohort month.
    """
    customers_by_offset: dict[int, set[str]] = {}
    revenue_by_offset: dict[int, Decimal] = {}
    for txn in bucketed:
        if txn.cohort_month != cohort_month:
            raise ValueError(
                f"Transaction of customer {txn.customer_id!r} belongs to cohort "
                f"{txn.cohort_month.isoformat()}, not {cohort_month.isoformat()}"
            )
        customers_by_offset.setdefault(txn.month_offset, set()).add(txn.customer_id)
        revenue_by_offset[txn.month_offset] = (
            revenue_by_offset.get(txn.month_offset, Decimal("0")) + txn.sale_value
        )

    return CohortMetricsRow(
        cohort_month=cohort_month,
        customer_counts={
            offset: len(customers)
            for offset, customers in sorted(customers_by_offset.items())
        },
        revenue=dict(sorted(revenue_by_offset.items())),
    )


def _aggregate_cohort_group(
    group: tuple[date, list[BucketedTransaction]],
) -> CohortMetricsRow:
    """Worker entry point; unpacks a (cohort_month, rows) pair."""
    cohort_month, rows = group
    return aggregate_cohort(cohort_month, rows)


def merge_cohort_metrics(
    partials: Iterable[Sequence[CohortMetricsRow]],
) -> list[CohortMetricsRow]:
    """Merge independently aggregated cohort groups into one ordered list.

    Partitions must be split by cohort month; a cohort month appearing in two
    partitions cannot be merged because distinct customer counts do not add.

    Raises
    ------
    ValueError
        If the same cohort month appears more than once.
    """
    merged: dict[date, CohortMetricsRow] = {}
    for partial in partials:
        for row in partial:
            if row.cohort_month in merged:
                raise ValueError(
                    f"Cohort {row.cohort_id} aggregated in more than one partition. "
                    f"Partition bucketed transactions by cohort month."
                )
            merged[row.cohort_month] = row
    return [merged[month] for month in sorted(merged)]


def aggregate_cohort_metrics(
    bucketed: Iterable[BucketedTransaction],
    parallel: bool = False,
    parallel_threshold: int = 1_000_000,
    n_workers: int | None = None,
) -> list[CohortMetricsRow]:
    """Aggregate bucketed transactions into one row per cohort month.

    Parameters
    ----------
    bucketed:
        Bucketed transactions of the whole run.
    parallel:
        Fan the per-cohort folds out to a process pool when the input holds
        at least ``parallel_threshold`` transactions.
    parallel_threshold:
        Minimum number of bucketed transactions before parallelising.
    n_workers:
        Worker processes. Defaults to the CPU count. Ignored if
        ``parallel`` is False.

    Returns
    -------
    list[CohortMetricsRow]
        One row per cohort month, ordered by cohort month ascending.
    """
    groups: dict[date, list[BucketedTransaction]] = {}
    total = 0
    for txn in bucketed:
        groups.setdefault(txn.cohort_month, []).append(txn)
        total += 1

    ordered_groups = sorted(groups.items())
    use_parallel = parallel and total >= parallel_threshold and len(ordered_groups) > 1

    if use_parallel:
        workers = max(1, n_workers) if n_workers is not None else (os.cpu_count() or 1)
        with multiprocessing.Pool(processes=min(workers, len(ordered_groups))) as pool:
            rows = pool.map(_aggregate_cohort_group, ordered_groups)
        return merge_cohort_metrics([rows])

    return [aggregate_cohort(month, rows) for month, rows in ordered_groups]
