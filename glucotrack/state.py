from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

from .alignment import Alignment, ChartPoint
from .summary import WindowSummary
from .windows import Granularity, TimeWindow


class ViewStatus(str, Enum):
    READY = "ready"
    EMPTY = "empty"
    STALE = "stale"
    ERROR = "error"


@dataclass(frozen=True)
class ChartView:
    """What the dashboard renders for one window, including failure states."""

    granularity: Granularity
    offset: int
    window: TimeWindow
    label: str
    status: ViewStatus
    alignment: Optional[Alignment] = None
    summary: WindowSummary = field(default_factory=WindowSummary)
    error: Optional[Exception] = None
    fetched_at: Optional[float] = None

    @property
    def points(self) -> Tuple[ChartPoint, ...]:
        return self.alignment.points if self.alignment is not None else ()

    @property
    def malformed(self) -> int:
        return self.alignment.malformed if self.alignment is not None else 0

    @property
    def has_data(self) -> bool:
        return bool(self.points)


__all__ = ["ChartView", "ViewStatus"]
