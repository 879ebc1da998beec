import pytest

from glucotrack.alignment import align_events
from glucotrack.config import BG_CATEGORIES
from glucotrack.models import TreatmentKind
from glucotrack.summary import WindowSummary, glucose_status, mean_glucose_to_hba1c, summarize_window
from glucotrack.windows import Granularity, resolve_window


@pytest.fixture
def day(now):
    return resolve_window(Granularity.DAY, 0, now)


def test_summary_of_a_day(day, reading, meal, treatment) -> None:
    alignment = align_events(
        day,
        readings=[
            reading(60, "2025-03-12 06:00"),
            reading(100, "2025-03-12 09:00"),
            reading(200, "2025-03-12 14:00"),
        ],
        meals=[meal("2025-03-12 08:00", carbs=30), meal("2025-03-12 13:00", carbs=15)],
        treatments=[
            treatment("2025-03-12 08:00", dose=4),
            treatment("2025-03-12 22:00", dose=10, insulin_class=None),
            treatment("2025-03-12 09:00", dose=500, kind=TreatmentKind.PILL, medication_name="Metformin"),
        ],
    )

    summary = summarize_window(alignment)

    assert summary.reading_count == 3
    assert summary.average_glucose == 120
    assert (summary.min_glucose, summary.max_glucose) == (60, 200)
    assert summary.total_carbs == 45
    assert summary.total_insulin == 14
    assert (summary.meal_count, summary.treatment_count) == (2, 3)
    assert summary.estimated_hba1c == 6.2
    assert summary.latest_status == "high"
    assert summary.time_in_range["50-69"] == pytest.approx(1 / 3)
    assert summary.time_in_range["70-150"] == pytest.approx(1 / 3)
    assert summary.time_in_range["181-250"] == pytest.approx(1 / 3)
    assert sum(summary.time_in_range.values()) == pytest.approx(1)


def test_average_rounds_half_up(day, reading) -> None:
    alignment = align_events(day, readings=[reading(100, "2025-03-12 06:00"), reading(101, "2025-03-12 07:00")])

    assert summarize_window(alignment).average_glucose == 101


def test_empty_window_summary(day, meal) -> None:
    summary = summarize_window(align_events(day, readings=[], meals=[meal("2025-03-12 08:00", carbs=20)]))

    assert summary.reading_count == 0
    assert summary.average_glucose is None
    assert summary.latest_status is None
    assert summary.total_carbs == 20
    assert summary.time_in_range == {cat: 0.0 for cat in BG_CATEGORIES}


def test_default_summary_is_blank() -> None:
    assert WindowSummary().estimated_hba1c is None


@pytest.mark.parametrize(
    "value, status",
    [(54, "low"), (69.9, "low"), (70, "normal"), (180, "normal"), (181, "high")],
)
def test_glucose_status(value, status) -> None:
    assert glucose_status(value) == status


def test_hba1c_estimate() -> None:
    assert mean_glucose_to_hba1c(154) == pytest.approx(6.9983)
