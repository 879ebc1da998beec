from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import replace
from typing import Any, List, Optional, Protocol, Tuple, Union

import pandas as pd

from .alignment import AlignmentOptions, align_events
from .cache import ViewCache
from .errors import StorageError
from .models import GlucoseReading, MealEvent, TreatmentEvent
from .state import ChartView, ViewStatus
from .summary import summarize_window
from .windows import Granularity, TimeWindow, describe_window, resolve_window

logger = logging.getLogger(__name__)


class EventSource(Protocol):
    def glucose_readings(
        self, subject_id: str, start: Optional[pd.Timestamp] = None, end: Optional[pd.Timestamp] = None
    ) -> List[GlucoseReading]: ...

    def meal_events(
        self, subject_id: str, start: Optional[pd.Timestamp] = None, end: Optional[pd.Timestamp] = None
    ) -> List[MealEvent]: ...

    def treatment_events(
        self, subject_id: str, start: Optional[pd.Timestamp] = None, end: Optional[pd.Timestamp] = None
    ) -> List[TreatmentEvent]: ...


async def fetch_window_data(
    source: EventSource, subject_id: str, window: TimeWindow
) -> Tuple[List[GlucoseReading], List[MealEvent], List[TreatmentEvent]]:
    """Fetch the three collections for ``window`` concurrently.

    Any failing fetch fails the whole call; partial data is never returned.
    """
    readings, meals, treatments = await asyncio.gather(
        asyncio.to_thread(source.glucose_readings, subject_id, window.start, window.end),
        asyncio.to_thread(source.meal_events, subject_id, window.start, window.end),
        asyncio.to_thread(source.treatment_events, subject_id, window.start, window.end),
    )
    return readings, meals, treatments


class TimelineService:
    """Loads chart views for one subject and remembers the last good one."""

    def __init__(
        self,
        source: EventSource,
        subject_id: str,
        options: Optional[AlignmentOptions] = None,
        cache: Optional[ViewCache] = None,
    ) -> None:
        self._source = source
        self.subject_id = subject_id
        self.options = options or AlignmentOptions()
        self._cache = cache
        self._generation = 0
        self._closed = False
        self._last_good: Optional[ChartView] = cache.load(subject_id) if cache is not None else None

    @property
    def last_good(self) -> Optional[ChartView]:
        return self._last_good

    async def load(
        self,
        granularity: Union[Granularity, str],
        offset: int = 0,
        now: Optional[Any] = None,
    ) -> Optional[ChartView]:
        """Fetch and align one window.

        Returns ``None`` when the load was superseded by a newer one or the
        service was closed while fetching.
        """
        if self._closed:
            return None
        granularity = Granularity.coerce(granularity)
        window = resolve_window(granularity, offset, now)
        label = describe_window(window, granularity, offset)

        self._generation += 1
        generation = self._generation
        try:
            readings, meals, treatments = await fetch_window_data(self._source, self.subject_id, window)
        except StorageError as exc:
            if self._superseded(generation):
                return None
            logger.error("Could not load %s window for %s: %s", label, self.subject_id, exc)
            return self._failed_view(granularity, offset, window, label, exc)

        if self._superseded(generation):
            logger.debug("Discarding superseded %s load for %s", label, self.subject_id)
            return None

        alignment = align_events(window, readings, meals, treatments, self.options)
        view = ChartView(
            granularity=granularity,
            offset=offset,
            window=window,
            label=label,
            status=ViewStatus.READY if alignment.points else ViewStatus.EMPTY,
            alignment=alignment,
            summary=summarize_window(alignment),
            fetched_at=time.time(),
        )
        self._last_good = view
        if self._cache is not None:
            self._cache.save(self.subject_id, view)
        return view

    def _superseded(self, generation: int) -> bool:
        return self._closed or generation != self._generation

    def _failed_view(
        self,
        granularity: Granularity,
        offset: int,
        window: TimeWindow,
        label: str,
        error: Exception,
    ) -> ChartView:
        if self._last_good is not None:
            return replace(self._last_good, status=ViewStatus.STALE, error=error)
        return ChartView(
            granularity=granularity,
            offset=offset,
            window=window,
            label=label,
            status=ViewStatus.ERROR,
            error=error,
        )

    def close(self) -> None:
        self._closed = True
        self._generation += 1


__all__ = ["EventSource", "TimelineService", "fetch_window_data"]
