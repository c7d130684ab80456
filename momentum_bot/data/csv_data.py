"""
CSV price loader.

This module provides a class to load a historical price series from a
CSV file for backtesting.  Any column can serve as the price; exchange
candle exports are typically read through their ``high`` column:

```
time,low,high,open,close,volume
```

The ``time`` column is optional.  When present it should contain
ISO-formatted timestamps or UNIX epochs (seconds); timestamps are
returned in UTC.
"""

from __future__ import annotations

from pathlib import Path
from typing import List
import pandas as pd

from ..execution.models import Tick
from ..utils.decimals import to_decimal


class CSVPriceLoader:
    """Load a price series from a CSV file.

    Parameters
    ----------
    csv_path : str
        Path to the CSV file.
    price_column : str
        Name of the column holding the price of each row.
    """

    def __init__(self, csv_path: str, price_column: str = "high") -> None:
        self.csv_path = Path(csv_path)
        self.price_column = price_column

    def load_frame(self) -> pd.DataFrame:
        """Return the series as a DataFrame with a ``price`` column, in file order
        unless a ``time`` column allows sorting."""
        if not self.csv_path.exists():
            raise FileNotFoundError(f"CSV price file not found: {self.csv_path}")

        # Prices are kept as strings so the Decimal conversion is exact
        df = pd.read_csv(self.csv_path, dtype={self.price_column: str})
        df.columns = [str(c).strip() for c in df.columns]
        if self.price_column not in df.columns:
            raise ValueError(
                f"Column {self.price_column!r} not found in {self.csv_path}. "
                f"Found columns: {list(df.columns)}"
            )

        out = pd.DataFrame({"price": df[self.price_column].astype(str).str.strip()})
        out = out[out["price"].ne("") & out["price"].str.lower().ne("nan")]

        if "time" in df.columns:
            times = df.loc[out.index, "time"]
            if pd.api.types.is_numeric_dtype(times):
                ts = pd.to_datetime(times, unit="s", utc=True)
            else:
                ts = pd.to_datetime(times, utc=True, errors="raise")
            out.index = pd.DatetimeIndex(ts, name="time")
            out = out.sort_index(kind="stable")
        else:
            out = out.reset_index(drop=True)
        return out

    def load(self) -> List[Tick]:
        df = self.load_frame()
        has_time = isinstance(df.index, pd.DatetimeIndex)
        return [
            Tick(price=to_decimal(price), ts=ts if has_time else None)
            for ts, price in zip(df.index, df["price"])
        ]
