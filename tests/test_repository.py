import logging

import pandas as pd
import pytest
import requests

from glucotrack.errors import StorageError
from glucotrack.models import InsulinClass, TreatmentKind
from glucotrack.repository import HealthRepository


class FakeClient:
    def __init__(self, tables=None, error=None):
        self.tables = tables or {}
        self.error = error
        self.calls = []

    def select(self, table, filters=None, order=None, or_filter=None):
        self.calls.append({"table": table, "filters": filters, "order": order})
        if self.error is not None:
            raise self.error
        return self.tables.get(table, [])


def make_repository(client) -> HealthRepository:
    return HealthRepository(client, "glucose_readings", "meals", "insulin_logs")


@pytest.fixture
def window_bounds():
    return pd.Timestamp("2025-03-12", tz="UTC"), pd.Timestamp("2025-03-13", tz="UTC")


def test_glucose_query_filters_subject_and_range(window_bounds) -> None:
    client = FakeClient({"glucose_readings": [{"id": 1, "user_id": "p1", "value": 104, "date": "2025-03-12T08:00:00Z"}]})
    start, end = window_bounds

    readings = make_repository(client).glucose_readings("p1", start, end)

    assert [r.value for r in readings] == [104]
    assert readings[0].timestamp == pd.Timestamp("2025-03-12 08:00", tz="UTC")
    assert client.calls[0]["filters"] == {"user_id": "p1", "date": {"gte": start, "lt": end}}
    assert client.calls[0]["order"] == "date.asc"


def test_unbounded_query_has_no_range() -> None:
    client = FakeClient()

    make_repository(client).meal_events("p1")

    assert client.calls[0]["filters"] == {"user_id": "p1"}


def test_meal_rows_are_mapped() -> None:
    client = FakeClient(
        {
            "meals": [
                {
                    "id": "m1",
                    "user_id": "p1",
                    "date": "2025-03-12T12:00:00Z",
                    "name": "Pasta",
                    "carbs": 70,
                    "protein": 20,
                    "fat": None,
                    "calories": 540,
                    "photo_url": "meals/m1.jpg",
                }
            ]
        }
    )

    (meal,) = make_repository(client).meal_events("p1")

    assert meal.name == "Pasta"
    assert meal.carbs_grams == 70
    assert meal.fat_grams is None
    assert meal.photo_ref == "meals/m1.jpg"


def test_treatments_use_timestamp_column(window_bounds) -> None:
    client = FakeClient(
        {
            "insulin_logs": [
                {"id": 1, "user_id": "p1", "timestamp": "2025-03-12T07:00:00Z", "dose": 12, "insulin_type": "basal"},
                {
                    "id": 2,
                    "user_id": "p1",
                    "timestamp": "2025-03-12T08:00:00Z",
                    "dose": 500,
                    "dose_unit": "mg",
                    "treatment_type": "pills",
                    "medication_name": "Metformin",
                },
            ]
        }
    )

    basal, pill = make_repository(client).treatment_events("p1", *window_bounds)

    assert "timestamp" in client.calls[0]["filters"]
    assert client.calls[0]["order"] == "timestamp.asc"
    assert (basal.kind, basal.insulin_class, basal.display_name) == (
        TreatmentKind.INSULIN,
        InsulinClass.BASAL,
        "Basal Insulin",
    )
    assert (pill.kind, pill.dose_unit, pill.display_name) == (TreatmentKind.PILL, "mg", "Metformin")


def test_invalid_rows_are_skipped(caplog) -> None:
    client = FakeClient(
        {
            "glucose_readings": [
                {"id": 1, "user_id": "p1", "value": 0, "date": "2025-03-12T08:00:00Z"},
                {"id": 2, "user_id": "p1", "date": "2025-03-12T08:05:00Z"},
                {"id": 3, "user_id": "p1", "value": 99, "date": "2025-03-12T08:10:00Z"},
            ]
        }
    )

    with caplog.at_level(logging.WARNING, logger="glucotrack.repository"):
        readings = make_repository(client).glucose_readings("p1")

    assert [r.id for r in readings] == ["3"]
    assert "Skipping invalid" in caplog.text


def test_unparsable_dates_are_kept_for_counting() -> None:
    client = FakeClient({"glucose_readings": [{"id": 1, "user_id": "p1", "value": 99, "date": "yesterday-ish"}]})

    (reading,) = make_repository(client).glucose_readings("p1")

    assert reading.timestamp is None


def test_request_failures_become_storage_errors(caplog) -> None:
    client = FakeClient(error=requests.ConnectionError("offline"))

    with caplog.at_level(logging.ERROR, logger="glucotrack.repository"):
        with pytest.raises(StorageError):
            make_repository(client).glucose_readings("p1")

    assert "offline" in caplog.text
