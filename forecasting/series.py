"""
Time Series Container

Chronologically ordered (timestamp, value) observations for one metric.
"""

from typing import List, Iterable, Iterator, Union, Tuple, Optional, Any
from dataclasses import dataclass
import numpy as np
import pandas as pd

from analysis.errors import InvalidParameterError


@dataclass(frozen=True)
class TimeSeriesPoint:
    """Single observation."""
    timestamp: pd.Timestamp
    value: float


PointLike = Union[TimeSeriesPoint, Tuple[Any, float]]


def _as_point(item: PointLike) -> TimeSeriesPoint:
    if isinstance(item, TimeSeriesPoint):
        return item
    timestamp, value = item
    return TimeSeriesPoint(pd.Timestamp(timestamp), float(value))


class TimeSeries:
    """
    Observations kept sorted by timestamp.

    Adding points merges them into the existing data and re-sorts; points
    sharing a timestamp keep their insertion order.
    """

    def __init__(self, points: Optional[Iterable[PointLike]] = None, name: str = 'value'):
        self.name = name
        self._points: List[TimeSeriesPoint] = []
        if points is not None:
            self.add_data(points)

    def add_data(self, points: Iterable[PointLike]) -> 'TimeSeries':
        """Merge new points and re-sort chronologically."""
        merged = self._points + [_as_point(p) for p in points]
        self._points = sorted(merged, key=lambda p: p.timestamp)
        return self

    def add(self, timestamp: Any, value: float) -> 'TimeSeries':
        return self.add_data([(timestamp, value)])

    @property
    def values(self) -> np.ndarray:
        return np.array([p.value for p in self._points], dtype=float)

    @property
    def timestamps(self) -> List[pd.Timestamp]:
        return [p.timestamp for p in self._points]

    def __len__(self) -> int:
        return len(self._points)

    def __iter__(self) -> Iterator[TimeSeriesPoint]:
        return iter(self._points)

    def __getitem__(self, index: int) -> TimeSeriesPoint:
        return self._points[index]

    def to_pandas(self) -> pd.Series:
        """Values as a pandas Series indexed by timestamp."""
        return pd.Series(self.values, index=pd.DatetimeIndex(self.timestamps), name=self.name)

    @classmethod
    def from_pandas(
        cls,
        data: Union[pd.Series, pd.DataFrame],
        value_column: Optional[str] = None,
        date_column: str = 'date'
    ) -> 'TimeSeries':
        """
        Build from a Series indexed by date, or from a DataFrame column.

        Rows with a missing value are skipped.

        Args:
            data: Series (index = timestamps) or DataFrame
            value_column: Column holding values (DataFrame input)
            date_column: Column holding timestamps (DataFrame input)
        """
        if isinstance(data, pd.DataFrame):
            if value_column is None:
                raise InvalidParameterError("value_column is required for DataFrame input", 'forecast')
            series = pd.Series(data[value_column].to_numpy(), index=data[date_column], name=value_column)
        else:
            series = data

        series = series.dropna()
        name = series.name if series.name is not None else 'value'
        return cls(zip(series.index, series.to_numpy(dtype=float)), name=str(name))

    def __repr__(self) -> str:
        return f"TimeSeries(name='{self.name}', n_points={len(self)})"
