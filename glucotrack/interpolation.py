from __future__ import annotations

from typing import Any, Iterable, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .models import GlucoseReading, parse_timestamp


class GlucoseCurve:
    """Glucose readings sorted by time, for placing other events on the curve."""

    def __init__(self, samples: Iterable[Tuple[pd.Timestamp, float]]) -> None:
        # sorted() is stable, so readings sharing a timestamp keep their input order.
        ordered = sorted(samples, key=lambda sample: sample[0].value)
        self._times = np.array([ts.value for ts, _ in ordered], dtype=np.int64)
        self._values = np.array([value for _, value in ordered], dtype=float)

    @classmethod
    def from_readings(cls, readings: Sequence[GlucoseReading]) -> "GlucoseCurve":
        samples = []
        for reading in readings:
            ts = parse_timestamp(reading.timestamp)
            if ts is not None:
                samples.append((ts, reading.value))
        return cls(samples)

    def __len__(self) -> int:
        return len(self._times)

    def value_at(self, timestamp: pd.Timestamp) -> Optional[float]:
        """Linear interpolation between the readings bracketing ``timestamp``.

        Falls back to the single nearest side when only one exists and to
        ``None`` when there are no readings at all.
        """
        count = len(self._times)
        if count == 0:
            return None

        t = int(timestamp.value)
        # Latest reading at or before t, earliest reading at or after t.
        at_or_before = int(np.searchsorted(self._times, t, side="right")) - 1
        at_or_after = int(np.searchsorted(self._times, t, side="left"))
        has_before = at_or_before >= 0
        has_after = at_or_after < count

        if has_before and has_after:
            before_t = int(self._times[at_or_before])
            after_t = int(self._times[at_or_after])
            before_v = float(self._values[at_or_before])
            if after_t == before_t:
                return before_v
            after_v = float(self._values[at_or_after])
            ratio = (t - before_t) / (after_t - before_t)
            return before_v + ratio * (after_v - before_v)
        if has_before:
            return float(self._values[at_or_before])
        if has_after:
            return float(self._values[at_or_after])
        return None


def interpolate(event_timestamp: Any, readings: Sequence[GlucoseReading]) -> Optional[float]:
    """Glucose value at ``event_timestamp`` derived from ``readings``.

    ``readings`` should already be restricted to the active window; readings
    without a usable timestamp are ignored.
    """
    ts = parse_timestamp(event_timestamp)
    if ts is None:
        raise ValueError(f"Cannot interpolate at invalid timestamp {event_timestamp!r}.")
    return GlucoseCurve.from_readings(readings).value_at(ts)


__all__ = ["GlucoseCurve", "interpolate"]
