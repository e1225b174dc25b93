"""Transaction records and the business-validity filter.

Raw retail dumps routinely contain rows that must not count towards any
cohort: cancellations, returns (negative quantities), free or adjustment
lines (zero or negative prices) and anonymous purchases without a customer.
The :class:`TransactionFilter` drops those rows silently and turns the
remaining ones into :class:`ValidTransaction` instances that downstream
cohort code can rely on.

Quick Start
-----------
>>> from datetime import datetime
>>> from decimal import Decimal
>>> from retail_cohorts.foundation.transactions import TransactionFilter, TransactionRecord
>>> records = [
...     TransactionRecord("C1", "536365", 2, Decimal("10"), datetime(2023, 1, 5)),
...     TransactionRecord("C1", "C536379", 1, Decimal("10"), datetime(2023, 1, 6)),
...     TransactionRecord(None, "536366", 1, Decimal("5"), datetime(2023, 1, 7)),
... ]
>>> txn_filter = TransactionFilter()
>>> [t.invoice_id for t in txn_filter.filter(records)]
['536365']
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Iterator, Sequence

logger = logging.getLogger(__name__)

_INTEGRAL_FLOAT_TEXT = re.compile(r"^(\d+)\.0+$")

#: Invoice prefix marking a cancelled order in the retail dump.
DEFAULT_CANCELLATION_PREFIX = "C"

#: Formats tried, in order, after ISO 8601 parsing fails. The first entry is
#: the month/day/year layout used by the online retail invoice export.
DEFAULT_TIMESTAMP_FORMATS: tuple[str, ...] = (
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y %H:%M:%S",
    "%d-%m-%Y %H:%M",
)


@dataclass(frozen=True)
class TransactionRecord:
    """A raw invoice line as delivered by the ingestion layer.

    Attributes
    ----------
    customer_id:
        Customer identifier. May be missing, blank or numeric in raw data.
    invoice_id:
        Invoice number. Cancelled invoices carry a reserved prefix.
    quantity:
        Units on the line. Returns show up as negative quantities.
    unit_price:
        Price per unit. Adjustment lines may carry zero or negative prices.
    timestamp:
        Invoice date-time, either already parsed or as the raw string.
    """

    customer_id: Any
    invoice_id: str
    quantity: Any
    unit_price: Any
    timestamp: datetime | str

    def is_cancellation(self, prefix: str = DEFAULT_CANCELLATION_PREFIX) -> bool:
        """Return True when the invoice id starts with ``prefix``."""
        invoice = str(self.invoice_id or "").strip().upper()
        return bool(prefix) and invoice.startswith(prefix.upper())

    @property
    def invoice_is_cancellation(self) -> bool:
        return self.is_cancellation(DEFAULT_CANCELLATION_PREFIX)


@dataclass(frozen=True)
class ValidTransaction:
    """A transaction that passed every business-validity predicate."""

    customer_id: str
    invoice_id: str
    quantity: int
    unit_price: Decimal
    timestamp: datetime

    def __post_init__(self) -> None:
        """Validate the invariants promised to the cohort assigner."""
        if not self.customer_id:
            raise ValueError("customer_id cannot be empty")
        if self.quantity <= 0:
            raise ValueError(
                f"Quantity must be positive: {self.quantity} (invoice_id={self.invoice_id})"
            )
        if self.unit_price <= 0:
            raise ValueError(
                f"Unit price must be positive: {self.unit_price} (invoice_id={self.invoice_id})"
            )
        if not isinstance(self.timestamp, datetime):
            raise TypeError(
                "timestamp must be a datetime instance",
                {"invoice_id": self.invoice_id, "value": self.timestamp},
            )

    @property
    def sale_value(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class RejectedRow:
    """A qualifying row that could not be placed in any cohort.

    Attributes
    ----------
    index:
        Position of the row in the input sequence.
    record:
        The original record, untouched.
    reason:
        Human-readable description of the failure.
    """

    index: int
    record: TransactionRecord
    reason: str


def normalise_customer_id(value: Any) -> str | None:
    """Return the customer id as a stripped string, or None if missing.

    Numeric ids exported through spreadsheets tend to come back as floats
    (``17850.0``), either as numbers or as text read from a CSV; those are
    folded back to their integer form so the same customer is not split
    across two keys.
    """
    if value is None:
        return None
    if isinstance(value, float):
        if math.isnan(value):
            return None
        if value.is_integer():
            value = int(value)
    text = str(value).strip()
    match = _INTEGRAL_FLOAT_TEXT.match(text)
    if match:
        text = match.group(1)
    return text or None


def _to_decimal(value: Any) -> Decimal | None:
    if value is None:
        return None
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        return None
    if not result.is_finite():
        return None
    return result


def _to_quantity(value: Any) -> int | None:
    amount = _to_decimal(value)
    if amount is None or amount != amount.to_integral_value():
        return None
    return int(amount)


def parse_timestamp(
    value: datetime | date | str, formats: Sequence[str] = DEFAULT_TIMESTAMP_FORMATS
) -> datetime:
    """Parse an invoice timestamp.

    Parameters
    ----------
    value:
        A ``datetime`` (returned as-is), a ``date`` (promoted to midnight) or
        a string in ISO 8601 or one of ``formats``.
    formats:
        ``strptime`` formats tried after ISO 8601.

    Raises
    ------
    ValueError
        If the string matches none of the accepted layouts.
    TypeError
        If ``value`` is not a string or date.
    """
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str):
        raise TypeError(f"Unsupported timestamp type: {type(value).__name__}")

    text = value.strip()
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        pass
    for fmt in formats:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    raise ValueError(f"Unparseable timestamp: {value!r}")


class TransactionFilter:
    """Drop rows that fail the business-validity rules.

    Rows failing a validity predicate are data-quality exclusions and vanish
    without an error. Rows that pass every predicate but carry a timestamp
    that cannot be parsed are collected on :attr:`rejected` instead, so the
    caller can see how much of a cohort went missing.
    """

    def __init__(
        self,
        cancellation_prefix: str = DEFAULT_CANCELLATION_PREFIX,
        timestamp_formats: Sequence[str] = DEFAULT_TIMESTAMP_FORMATS,
    ) -> None:
        self.cancellation_prefix = cancellation_prefix
        self.timestamp_formats = tuple(timestamp_formats)
        self.rejected: list[RejectedRow] = []
        self.excluded_count = 0
        self.records_read = 0

    def is_qualifying(self, record: TransactionRecord) -> bool:
        """Return True if ``record`` passes every validity predicate."""
        if normalise_customer_id(record.customer_id) is None:
            return False
        if record.is_cancellation(self.cancellation_prefix):
            return False
        quantity = _to_quantity(record.quantity)
        if quantity is None or quantity <= 0:
            return False
        unit_price = _to_decimal(record.unit_price)
        if unit_price is None or unit_price <= 0:
            return False
        return True

    def filter(self, records: Iterable[TransactionRecord]) -> Iterator[ValidTransaction]:
        """Lazily yield the valid transactions in ``records``."""
        for idx, record in enumerate(records):
            self.records_read += 1
            if not self.is_qualifying(record):
                self.excluded_count += 1
                continue

            try:
                timestamp = parse_timestamp(record.timestamp, self.timestamp_formats)
            except (ValueError, TypeError) as exc:
                self.rejected.append(RejectedRow(index=idx, record=record, reason=str(exc)))
                continue

            yield ValidTransaction(
                customer_id=normalise_customer_id(record.customer_id),
                invoice_id=str(record.invoice_id).strip(),
                quantity=_to_quantity(record.quantity),
                unit_price=_to_decimal(record.unit_price),
                timestamp=timestamp,
            )

        if self.excluded_count:
            logger.debug(
                f"Excluded {self.excluded_count}/{self.records_read} rows failing "
                f"validity rules"
            )
        if self.rejected:
            logger.warning(
                f"{len(self.rejected)} qualifying rows rejected with unparseable "
                f"timestamps. First 5 row indexes: "
                f"{[row.index for row in self.rejected[:5]]}"
            )


def records_from_mappings(
    rows: Iterable[dict[str, Any]],
) -> list[TransactionRecord]:
    """Build records from dictionaries keyed by the record field names.

    Missing keys become ``None`` and are left for the filter to judge.
    """
    return [
        TransactionRecord(
            customer_id=row.get("customer_id"),
            invoice_id=str(row.get("invoice_id") or ""),
            quantity=row.get("quantity"),
            unit_price=row.get("unit_price"),
            timestamp=row.get("timestamp"),
        )
        for row in rows
    ]
