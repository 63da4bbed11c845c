"""
DataFrame helpers shared by the batch replay functions.

The replay APIs accept pandas or polars DataFrames and return the same type they
were given. Internally everything is processed as pandas.
"""

from typing import Optional, Tuple, Union

import numpy as np
import pandas as pd
import polars as pl


def to_pandas_preserve(df: Union[pd.DataFrame, pl.DataFrame]) -> Tuple[pd.DataFrame, bool]:
    """
    Convert input DataFrame to pandas and track original type.

    Returns: (pandas_df, was_polars_flag)
    """
    if isinstance(df, pl.DataFrame):
        return df.to_pandas(), True
    if isinstance(df, pd.DataFrame):
        return df.copy(), False
    raise ValueError("df must be either a pandas DataFrame or a polars DataFrame.")


def from_pandas_preserve(pdf: pd.DataFrame, was_polars: bool) -> Union[pd.DataFrame, pl.DataFrame]:
    """Convert pandas DataFrame back to polars if the input was polars."""
    return pl.from_pandas(pdf) if was_polars else pdf


def require_columns(pdf: pd.DataFrame, *columns: Optional[str]) -> None:
    """Raise ValueError naming the first requested column missing from ``pdf``."""
    for col in columns:
        if col is not None and col not in pdf.columns:
            raise ValueError(f"Column '{col}' not found in DataFrame.")


def timestamps_ms(pdf: pd.DataFrame, time_col: Optional[str]) -> np.ndarray:
    """
    Millisecond timestamps for every row.

    Numeric time columns are taken as milliseconds already. Anything else is
    parsed with ``pandas.to_datetime``. Without a time column, synthetic
    timestamps at 1-second intervals starting from 0 are used.
    """
    n = len(pdf)
    if time_col is None or time_col not in pdf.columns:
        return np.arange(n, dtype=float) * 1000.0

    col = pdf[time_col]
    if pd.api.types.is_numeric_dtype(col):
        return col.to_numpy(dtype=float)

    # datetime64[ns] -> int64 nanoseconds -> float milliseconds
    times = pd.to_datetime(col).to_numpy(dtype="datetime64[ns]")
    return times.view("int64").astype(float) / 1e6


def optional_column(pdf: pd.DataFrame, col: Optional[str]) -> Optional[np.ndarray]:
    """Float array for ``col`` or None when no column was requested."""
    if col is None:
        return None
    return pdf[col].to_numpy(dtype=float)


def value_or_none(arr: Optional[np.ndarray], i: int) -> Optional[float]:
    """Row ``i`` of ``arr`` as a float, with NaN mapped to None."""
    if arr is None:
        return None
    value = float(arr[i])
    return None if np.isnan(value) else value
