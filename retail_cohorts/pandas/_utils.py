"""Shared utilities for pandas conversion operations."""

from typing import Any

import numpy as np
import pandas as pd  # type: ignore


def missing_to_none(value: Any) -> Any:
    """Map pandas/numpy missing markers (NaN, NaT, pd.NA) to None.

    Example:
        >>> missing_to_none(float("nan")) is None
        True
        >>> missing_to_none("17850")
        '17850'
    """
    if value is None:
        return None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        # pd.isna on list-like values returns an array; those are not markers.
        return value
    return value


def to_python_timestamp(value: Any) -> Any:
    """Convert pandas/numpy datetimes to ``datetime``; leave strings untouched."""
    value = missing_to_none(value)
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if isinstance(value, np.datetime64):
        return pd.Timestamp(value).to_pydatetime()
    return value


def none_to_nan(value: Any) -> Any:
    """Replace the "no data" marker with NaN for DataFrame output."""
    return np.nan if value is None else value
