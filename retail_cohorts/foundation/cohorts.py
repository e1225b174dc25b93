"""First-purchase cohort assignment and month-offset bucketing.

Customers are grouped by the calendar month of their earliest valid
transaction. Every transaction is then labelled with the number of calendar
months between its own month and that cohort month, which is what the
``Month_0`` .. ``Month_12`` report columns are keyed on.

Quick Start
-----------
>>> from datetime import datetime
>>> from decimal import Decimal
>>> from retail_cohorts.foundation.transactions import ValidTransaction
>>> from retail_cohorts.foundation.cohorts import assign_cohorts, bucket_transactions
>>>
>>> transactions = [
...     ValidTransaction("A", "1", 2, Decimal("10"), datetime(2023, 1, 15)),
...     ValidTransaction("A", "2", 1, Decimal("5"), datetime(2023, 2, 3)),
...     ValidTransaction("B", "3", 1, Decimal("20"), datetime(2023, 1, 31)),
... ]
>>> assignments = assign_cohorts(transactions)
>>> assignments["A"].cohort_month
datetime.date(2023, 1, 1)
>>> [b.month_offset for b in bucket_transactions(transactions, assignments)]
[0, 1, 0]
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Iterator, Mapping, Sequence

from retail_cohorts.foundation.transactions import ValidTransaction

logger = logging.getLogger(__name__)

#: Highest month offset kept in the reference reports (Month_0..Month_12).
DEFAULT_MAX_OFFSET = 12


@dataclass(frozen=True)
class CohortAssignment:
    """The cohort a customer belongs to.

    Attributes
    ----------
    customer_id:
        Customer identifier.
    cohort_month:
        First day of the calendar month of the customer's earliest valid
        transaction.
    """

    customer_id: str
    cohort_month: date

    def __post_init__(self) -> None:
        if self.cohort_month.day != 1:
            raise ValueError(
                f"cohort_month must be the first day of a month, got "
                f"{self.cohort_month.isoformat()} (customer_id={self.customer_id})"
            )

    @property
    def cohort_id(self) -> str:
        return self.cohort_month.strftime("%Y-%m")


@dataclass(frozen=True)
class BucketedTransaction:
    """A valid transaction placed relative to its customer's cohort month."""

    customer_id: str
    cohort_month: date
    month_offset: int
    sale_value: Decimal

    def __post_init__(self) -> None:
        if self.month_offset < 0:
            raise ValueError(
                f"month_offset must be >= 0, got {self.month_offset} "
                f"(customer_id={self.customer_id})"
            )


def cohort_month_of(ts: datetime | date) -> date:
    """Return the first day of the calendar month containing ``ts``."""
    return date(ts.year, ts.month, 1)


def month_offset(cohort_month: date, ts: datetime | date) -> int:
    """Number of whole calendar months from ``cohort_month`` to ``ts``.

    Uses year/month arithmetic rather than elapsed days, so January 31st and
    February 1st are one month apart while January 1st and January 31st are
    not.

    >>> month_offset(date(2023, 1, 1), datetime(2023, 2, 1))
    1
    >>> month_offset(date(2022, 12, 1), datetime(2024, 1, 31))
    13
    """
    return (ts.year - cohort_month.year) * 12 + (ts.month - cohort_month.month)


def _validate_timezone_consistency(transactions: Sequence[ValidTransaction]) -> None:
    """Raise ValueError if timestamps mix timezones (or naive and aware).

    Minimum timestamps across mixed naive/aware datetimes cannot be
    computed, and different timezones can shift a transaction across a
    month boundary.
    """
    if not transactions:
        return

    first_tz = transactions[0].timestamp.tzinfo
    for txn in transactions:
        if txn.timestamp.tzinfo != first_tz:
            raise ValueError(
                f"Inconsistent timezone detected. "
                f"Expected {first_tz}, got {txn.timestamp.tzinfo} "
                f"for invoice {txn.invoice_id} (customer {txn.customer_id}). "
                f"All timestamps must use the same timezone; see normalise_timezones."
            )


def normalise_timezones(
    transactions: Iterable[ValidTransaction],
) -> list[ValidTransaction]:
    """Convert aware timestamps to the timezone of the first aware one.

    Exports that carry UTC offsets switch offset across daylight saving
    changes (``+01:00`` in winter, ``+02:00`` in summer). Those instants are
    comparable, so they are moved onto a single zone and the calendar month
    of every transaction is read in that zone. Naive timestamps are returned
    unchanged.

    Raises
    ------
    ValueError
        If naive and aware timestamps are mixed.
    """
    materialised = list(transactions)
    aware = [txn for txn in materialised if txn.timestamp.tzinfo is not None]
    if not aware:
        return materialised
    if len(aware) != len(materialised):
        naive = next(txn for txn in materialised if txn.timestamp.tzinfo is None)
        raise ValueError(
            f"Inconsistent timezone detected. "
            f"Invoice {naive.invoice_id} (customer {naive.customer_id}) has a naive "
            f"timestamp while others carry a timezone."
        )

    target_tz = aware[0].timestamp.tzinfo
    return [
        txn
        if txn.timestamp.tzinfo == target_tz
        else replace(txn, timestamp=txn.timestamp.astimezone(target_tz))
        for txn in materialised
    ]


def assign_cohorts(
    transactions: Iterable[ValidTransaction],
) -> dict[str, CohortAssignment]:
    """Assign every customer to the month of their first valid purchase.

    Parameters
    ----------
    transactions:
        All valid transactions of the run. The full history of each customer
        must be present; the result is only correct once every transaction
        has been seen.

    Returns
    -------
    dict[str, CohortAssignment]
        Mapping of customer_id to assignment, one entry per distinct
        customer.

    Raises
    ------
    ValueError
        If timestamps mix timezones. Pass aware timestamps with differing
        offsets through :func:`normalise_timezones` first.
    """
    materialised = list(transactions)
    _validate_timezone_consistency(materialised)

    first_seen: dict[str, datetime] = {}
    for txn in materialised:
        current = first_seen.get(txn.customer_id)
        if current is None or txn.timestamp < current:
            first_seen[txn.customer_id] = txn.timestamp

    assignments = {
        customer_id: CohortAssignment(customer_id, cohort_month_of(first_ts))
        for customer_id, first_ts in first_seen.items()
    }
    logger.debug(
        f"Assigned {len(assignments)} customers to "
        f"{len({a.cohort_month for a in assignments.values()})} cohorts"
    )
    return assignments


def bucket_transactions(
    transactions: Iterable[ValidTransaction],
    assignments: Mapping[str, CohortAssignment],
    max_offset: int = DEFAULT_MAX_OFFSET,
) -> Iterator[BucketedTransaction]:
    """Label each transaction with its month offset from the cohort start.

    Parameters
    ----------
    transactions:
        Valid transactions; each customer must appear in ``assignments``.
    assignments:
        Output of :func:`assign_cohorts` over the same transactions.
    max_offset:
        Highest offset to keep. Transactions further out are dropped.

    Raises
    ------
    ValueError
        If ``max_offset`` is negative, a customer has no assignment, or a
        transaction predates its customer's cohort month. The last two mean
        ``assignments`` was computed over a different set of transactions.
    """
    if max_offset < 0:
        raise ValueError(f"max_offset must be >= 0, got {max_offset}")

    dropped = 0
    for txn in transactions:
        assignment = assignments.get(txn.customer_id)
        if assignment is None:
            raise ValueError(
                f"No cohort assignment for customer {txn.customer_id!r}. "
                f"Assign cohorts over the full transaction set before bucketing."
            )

        offset = month_offset(assignment.cohort_month, txn.timestamp)
        if offset < 0:
            raise ValueError(
                f"Transaction {txn.invoice_id} ({txn.timestamp.isoformat()}) predates "
                f"cohort month {assignment.cohort_month.isoformat()} of customer "
                f"{txn.customer_id!r}"
            )
        if offset > max_offset:
            dropped += 1
            continue

        yield BucketedTransaction(
            customer_id=txn.customer_id,
            cohort_month=assignment.cohort_month,
            month_offset=offset,
            sale_value=txn.sale_value,
        )

    if dropped:
        logger.debug(f"Dropped {dropped} transactions beyond Month_{max_offset}")
