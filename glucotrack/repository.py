from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, TypeVar

import pandas as pd
import requests

from .backend_client import BackendClient
from .config import GLUCOSE_TABLE, MEALS_TABLE, TREATMENTS_TABLE
from .errors import StorageError
from .models import GlucoseReading, MealEvent, TreatmentEvent

logger = logging.getLogger(__name__)

E = TypeVar("E")


class HealthRepository:
    """Storage queries for a subject's glucose readings, meals and treatments."""

    def __init__(
        self,
        client: BackendClient,
        glucose_table: str = GLUCOSE_TABLE,
        meals_table: str = MEALS_TABLE,
        treatments_table: str = TREATMENTS_TABLE,
    ) -> None:
        self._client = client
        self._glucose_table = glucose_table
        self._meals_table = meals_table
        self._treatments_table = treatments_table

    def glucose_readings(
        self,
        subject_id: str,
        start: Optional[pd.Timestamp] = None,
        end: Optional[pd.Timestamp] = None,
    ) -> List[GlucoseReading]:
        return self._fetch(self._glucose_table, "date", subject_id, start, end, GlucoseReading.from_row)

    def meal_events(
        self,
        subject_id: str,
        start: Optional[pd.Timestamp] = None,
        end: Optional[pd.Timestamp] = None,
    ) -> List[MealEvent]:
        return self._fetch(self._meals_table, "date", subject_id, start, end, MealEvent.from_row)

    def treatment_events(
        self,
        subject_id: str,
        start: Optional[pd.Timestamp] = None,
        end: Optional[pd.Timestamp] = None,
    ) -> List[TreatmentEvent]:
        return self._fetch(
            self._treatments_table, "timestamp", subject_id, start, end, TreatmentEvent.from_row
        )

    def _fetch(
        self,
        table: str,
        time_column: str,
        subject_id: str,
        start: Optional[pd.Timestamp],
        end: Optional[pd.Timestamp],
        factory: Callable[[Dict[str, Any]], E],
    ) -> List[E]:
        filters: Dict[str, Any] = {"user_id": subject_id}
        time_range: Dict[str, Any] = {}
        if start is not None:
            time_range["gte"] = start
        if end is not None:
            time_range["lt"] = end
        if time_range:
            filters[time_column] = time_range

        try:
            rows = self._client.select(table, filters=filters, order=f"{time_column}.asc")
        except requests.RequestException as exc:
            logger.error("Fetching %s for %s failed: %s", table, subject_id, exc)
            raise StorageError(f"Could not load {table}: {exc}") from exc

        entities: List[E] = []
        for row in rows:
            try:
                entities.append(factory(row))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping invalid %s row %r: %s", table, row.get("id"), exc)
        return entities


__all__ = ["HealthRepository"]
