"""Shared fixtures for cohort report tests."""

import logging
from datetime import datetime
from decimal import Decimal

import pytest
import structlog

from retail_cohorts.foundation.transactions import TransactionRecord


@pytest.fixture(autouse=True)
def _reset_logging():
    """Undo CLI logging configuration so later tests never log to a closed capture stream."""
    yield
    structlog.reset_defaults()
    root = logging.getLogger()
    for handler in list(root.handlers):
        if type(handler) is logging.StreamHandler:
            root.removeHandler(handler)


@pytest.fixture
def two_customer_records():
    """Customer A buys in January and February, customer B only in January."""
    return [
        TransactionRecord("A", "536365", 2, Decimal("10"), datetime(2023, 1, 10, 9, 0)),
        TransactionRecord("A", "536401", 1, Decimal("5"), datetime(2023, 2, 14, 12, 30)),
        TransactionRecord("B", "536370", 1, Decimal("20"), datetime(2023, 1, 22, 16, 45)),
    ]
