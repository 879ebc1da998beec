from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Sequence, Tuple, Union

import pandas as pd

from .interpolation import GlucoseCurve
from .models import GlucoseReading, MealEvent, TreatmentEvent, parse_timestamp
from .windows import Granularity, TimeWindow, resolve_window

logger = logging.getLogger(__name__)

Payload = Union[GlucoseReading, MealEvent, TreatmentEvent]


class PointKind(str, Enum):
    GLUCOSE = "glucose"
    MEAL = "meal"
    TREATMENT = "treatment"


_PAYLOAD_TYPES = {
    PointKind.GLUCOSE: GlucoseReading,
    PointKind.MEAL: MealEvent,
    PointKind.TREATMENT: TreatmentEvent,
}

# Glucose points come first when several events share a timestamp.
_KIND_ORDER = {PointKind.GLUCOSE: 0, PointKind.MEAL: 1, PointKind.TREATMENT: 2}


@dataclass(frozen=True)
class ChartPoint:
    """One item on the combined glucose/meal/treatment timeline."""

    timestamp: pd.Timestamp
    kind: PointKind
    glucose_value: Optional[float]
    payload: Payload

    def __post_init__(self) -> None:
        expected = _PAYLOAD_TYPES[self.kind]
        if not isinstance(self.payload, expected):
            raise TypeError(
                f"{self.kind.value} point needs a {expected.__name__} payload, "
                f"got {type(self.payload).__name__}."
            )

    @property
    def plottable(self) -> bool:
        return self.glucose_value is not None

    @property
    def label(self) -> str:
        if isinstance(self.payload, GlucoseReading):
            return f"{self.payload.value:.0f} mg/dL"
        if isinstance(self.payload, MealEvent):
            return f"{self.payload.name or 'Meal'} · {self.payload.carbs_grams:g} g carbs"
        return f"{self.payload.display_name} · {self.payload.dose_amount:g} {self.payload.dose_unit}"


@dataclass(frozen=True)
class AlignmentOptions:
    """Which non-glucose streams a screen shows on the curve."""

    include_meals: bool = True
    include_treatments: bool = True


@dataclass(frozen=True)
class Alignment:
    window: TimeWindow
    points: Tuple[ChartPoint, ...]
    malformed: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.points

    def of_kind(self, kind: PointKind) -> List[ChartPoint]:
        return [point for point in self.points if point.kind is kind]


def _in_window(items: Sequence[Any], window: TimeWindow) -> Tuple[List[Tuple[pd.Timestamp, Any]], int]:
    kept: List[Tuple[pd.Timestamp, Any]] = []
    malformed = 0
    display_tz = window.start.tz
    for item in items:
        ts = parse_timestamp(item.timestamp)
        if ts is None:
            malformed += 1
            continue
        if window.contains(ts):
            kept.append((ts.tz_convert(display_tz), item))
    return kept, malformed


def align_events(
    window: TimeWindow,
    readings: Sequence[GlucoseReading],
    meals: Sequence[MealEvent] = (),
    treatments: Sequence[TreatmentEvent] = (),
    options: Optional[AlignmentOptions] = None,
) -> Alignment:
    """Merge the three event streams inside ``window`` into ordered chart points."""
    options = options or AlignmentOptions()

    glucose_items, malformed = _in_window(readings, window)
    meal_items: List[Tuple[pd.Timestamp, Any]] = []
    treatment_items: List[Tuple[pd.Timestamp, Any]] = []
    if options.include_meals:
        meal_items, bad = _in_window(meals, window)
        malformed += bad
    if options.include_treatments:
        treatment_items, bad = _in_window(treatments, window)
        malformed += bad

    if malformed:
        logger.warning("Excluded %d event(s) with invalid timestamps from %s", malformed, window)

    curve = GlucoseCurve((ts, reading.value) for ts, reading in glucose_items)

    points = [ChartPoint(ts, PointKind.GLUCOSE, float(reading.value), reading) for ts, reading in glucose_items]
    points.extend(ChartPoint(ts, PointKind.MEAL, curve.value_at(ts), meal) for ts, meal in meal_items)
    points.extend(
        ChartPoint(ts, PointKind.TREATMENT, curve.value_at(ts), treatment) for ts, treatment in treatment_items
    )
    points.sort(key=lambda point: (point.timestamp.value, _KIND_ORDER[point.kind]))

    return Alignment(window=window, points=tuple(points), malformed=malformed)


def get_chart_points(
    granularity: Union[Granularity, str],
    offset: int,
    now: Optional[Any],
    readings: Sequence[GlucoseReading],
    meals: Sequence[MealEvent] = (),
    treatments: Sequence[TreatmentEvent] = (),
    options: Optional[AlignmentOptions] = None,
) -> Alignment:
    """Resolve the window for ``(granularity, offset, now)`` and align the events in it."""
    window = resolve_window(granularity, offset, now)
    return align_events(window, readings, meals, treatments, options)


__all__ = [
    "Alignment",
    "AlignmentOptions",
    "ChartPoint",
    "PointKind",
    "align_events",
    "get_chart_points",
]
