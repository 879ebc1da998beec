from __future__ import annotations

from typing import Any, Callable, List, Optional, Union

from .config import SWIPE_THRESHOLD
from .windows import Granularity, TimeWindow, resolve_window

OffsetListener = Callable[[int], None]


class PeriodNavigator:
    """Offset cursor over chart periods; never moves past the current period."""

    def __init__(
        self,
        granularity: Union[Granularity, str] = Granularity.DAY,
        swipe_threshold: float = SWIPE_THRESHOLD,
        on_change: Optional[OffsetListener] = None,
    ) -> None:
        self._granularity = Granularity.coerce(granularity)
        self._offset = 0
        self.swipe_threshold = swipe_threshold
        self._listeners: List[OffsetListener] = []
        if on_change is not None:
            self._listeners.append(on_change)

    @property
    def offset(self) -> int:
        return self._offset

    @property
    def granularity(self) -> Granularity:
        return self._granularity

    @property
    def can_go_next(self) -> bool:
        return self._offset < 0

    def add_listener(self, listener: OffsetListener) -> None:
        self._listeners.append(listener)

    def _set_offset(self, offset: int) -> bool:
        if offset == self._offset:
            return False
        self._offset = offset
        for listener in list(self._listeners):
            listener(offset)
        return True

    def previous(self) -> bool:
        return self._set_offset(self._offset - 1)

    def next(self) -> bool:
        """Step towards the present; rejected (returns False) at offset 0."""
        if not self.can_go_next:
            return False
        return self._set_offset(self._offset + 1)

    def reset_to_present(self) -> bool:
        return self._set_offset(0)

    def on_granularity_change(self, granularity: Union[Granularity, str]) -> None:
        new_granularity = Granularity.coerce(granularity)
        changed = new_granularity is not self._granularity
        self._granularity = new_granularity
        if not self._set_offset(0) and changed:
            # Listeners redraw on range switches even when already at the present.
            for listener in list(self._listeners):
                listener(0)

    def handle_drag(self, start_x: float, end_x: float, threshold: Optional[float] = None) -> Optional[str]:
        """Map a horizontal drag to ``previous``/``next``.

        A finger moving right-to-left reveals older data. Returns the name of
        the operation that changed the offset, or ``None``.
        """
        limit = self.swipe_threshold if threshold is None else threshold
        diff = start_x - end_x
        if abs(diff) <= limit:
            return None
        if diff > 0:
            return "previous" if self.previous() else None
        return "next" if self.next() else None

    def window(self, now: Optional[Any] = None) -> TimeWindow:
        return resolve_window(self._granularity, self._offset, now)

    def dispose(self) -> None:
        self._listeners.clear()


__all__ = ["PeriodNavigator"]
