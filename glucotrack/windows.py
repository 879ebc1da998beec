"""Resolution of chart periods into half-open time windows."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

import numpy as np
import pandas as pd

from .config import DISPLAY_TIMEZONE


class Granularity(str, Enum):
    DAY = "1day"
    WEEK = "1week"
    MONTH = "1month"
    TWO_MONTHS = "2months"
    THREE_MONTHS = "3months"

    @classmethod
    def coerce(cls, value: Union["Granularity", str]) -> "Granularity":
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Unknown range granularity: {value!r}") from None

    @property
    def months(self) -> int:
        return {Granularity.MONTH: 1, Granularity.TWO_MONTHS: 2, Granularity.THREE_MONTHS: 3}.get(self, 0)


@dataclass(frozen=True)
class TimeWindow:
    """Half-open ``[start, end)`` interval of absolute instants."""

    start: pd.Timestamp
    end: pd.Timestamp

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError(f"Window start {self.start} is after end {self.end}.")

    def contains(self, ts: pd.Timestamp) -> bool:
        return self.start <= ts < self.end

    @property
    def duration(self) -> pd.Timedelta:
        return self.end - self.start


def _as_instant(now: Any) -> pd.Timestamp:
    if now is None:
        return pd.Timestamp.now(tz=DISPLAY_TIMEZONE)
    instant = pd.Timestamp(now)
    if instant.tzinfo is None:
        instant = instant.tz_localize("UTC")
    return instant


def _check_offset(offset: Any) -> int:
    if isinstance(offset, bool) or not isinstance(offset, (int, np.integer)):
        raise TypeError(f"Period offset must be an integer, got {type(offset).__name__}.")
    if offset > 0:
        raise ValueError(f"Period offset {offset} points into the future.")
    return int(offset)


def resolve_window(
    granularity: Union[Granularity, str],
    offset: int = 0,
    now: Optional[Any] = None,
) -> TimeWindow:
    """Return the window shown for ``offset`` periods back from ``now``.

    Calendar boundaries are computed in the fixed UTC offset that ``now``
    carries, so every instant is absolute and a day is always 24 hours.

    The offset is not re-evaluated for the target period: in a zone with
    daylight saving, a winter window resolved from a summer ``now`` starts
    and ends one hour away from local midnight. Pass ``now`` in the zone
    whose boundaries matter.
    """
    granularity = Granularity.coerce(granularity)
    offset = _check_offset(offset)
    instant = _as_instant(now)
    local = instant.tz_convert(dt.timezone(instant.utcoffset()))
    midnight = local.normalize()
    one_day = pd.Timedelta(days=1)

    if granularity is Granularity.DAY:
        start = midnight + offset * one_day
        return TimeWindow(start=start, end=start + one_day)

    if granularity is Granularity.WEEK:
        last_day = midnight + 7 * offset * one_day
        return TimeWindow(start=last_day - 6 * one_day, end=last_day + one_day)

    months = granularity.months
    first_of_month = midnight.replace(day=1)
    # The block for offset 0 is the `months` calendar months ending with the current one.
    start = first_of_month + pd.DateOffset(months=months * offset - (months - 1))
    return TimeWindow(start=start, end=start + pd.DateOffset(months=months))


def _short_date(ts: pd.Timestamp) -> str:
    return f"{ts:%b} {ts.day}"


def describe_window(window: TimeWindow, granularity: Union[Granularity, str], offset: int = 0) -> str:
    """Human label for a resolved window, e.g. ``Today`` or ``Mar 1 - Mar 31, 2025``."""
    granularity = Granularity.coerce(granularity)
    if granularity is Granularity.DAY:
        if offset == 0:
            return "Today"
        if offset == -1:
            return "Yesterday"
        return f"{_short_date(window.start)}, {window.start.year}"
    last = window.end - pd.Timedelta(nanoseconds=1)
    return f"{_short_date(window.start)} - {_short_date(last)}, {last.year}"


__all__ = ["Granularity", "TimeWindow", "describe_window", "resolve_window"]
