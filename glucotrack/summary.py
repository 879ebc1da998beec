from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, Optional

import numpy as np
import pandas as pd

from .alignment import Alignment, PointKind
from .config import (
    BG_CATEGORIES,
    TARGET_HIGH,
    TARGET_LOW,
    TARGET_MILD_HIGH,
    TARGET_SEVERE_HIGH,
    TARGET_SEVERE_LOW,
)
from .models import MealEvent, TreatmentEvent, TreatmentKind


def mean_glucose_to_hba1c(g: float) -> float:
    """
    Estimated HbA1c (GMI) for a mean glucose, after Bergenstal et al (doi: 10.2337/dc18-1581)

    Parameters
    ----------
    g : float
    Mean glucose of the readings in mg/dL

    Returns
    -------
    float
    Estimated HbA1c (in %).
    """
    return 3.31 + 0.02395 * g


def glucose_status(value: float) -> str:
    if value < TARGET_LOW:
        return "low"
    if value > TARGET_HIGH:
        return "high"
    return "normal"


@dataclass(frozen=True)
class WindowSummary:
    """Headline numbers for the chart window."""

    reading_count: int = 0
    average_glucose: Optional[int] = None
    min_glucose: Optional[float] = None
    max_glucose: Optional[float] = None
    total_carbs: float = 0.0
    total_insulin: float = 0.0
    meal_count: int = 0
    treatment_count: int = 0
    time_in_range: Dict[str, float] = field(default_factory=lambda: {cat: 0.0 for cat in BG_CATEGORIES})
    estimated_hba1c: Optional[float] = None
    latest_status: Optional[str] = None


def summarize_window(alignment: Alignment) -> WindowSummary:
    glucose_points = alignment.of_kind(PointKind.GLUCOSE)
    meals = [point.payload for point in alignment.of_kind(PointKind.MEAL)]
    treatments = [point.payload for point in alignment.of_kind(PointKind.TREATMENT)]

    total_carbs = float(sum(meal.carbs_grams for meal in meals if isinstance(meal, MealEvent)))
    total_insulin = float(
        sum(
            dose.dose_amount
            for dose in treatments
            if isinstance(dose, TreatmentEvent) and dose.kind is TreatmentKind.INSULIN
        )
    )

    if not glucose_points:
        return WindowSummary(
            total_carbs=total_carbs,
            total_insulin=total_insulin,
            meal_count=len(meals),
            treatment_count=len(treatments),
        )

    values = pd.Series([point.glucose_value for point in glucose_points], dtype=float)
    categories = pd.cut(
        values,
        bins=[0, TARGET_SEVERE_LOW, TARGET_LOW, TARGET_MILD_HIGH, TARGET_HIGH, TARGET_SEVERE_HIGH, np.inf],
        labels=BG_CATEGORIES,
    )
    shares = categories.value_counts(normalize=True)
    mean = float(values.mean())

    return WindowSummary(
        reading_count=len(values),
        average_glucose=int(math.floor(mean + 0.5)),
        min_glucose=float(values.min()),
        max_glucose=float(values.max()),
        total_carbs=total_carbs,
        total_insulin=total_insulin,
        meal_count=len(meals),
        treatment_count=len(treatments),
        time_in_range={cat: float(shares.get(cat, 0.0)) for cat in BG_CATEGORIES},
        estimated_hba1c=round(mean_glucose_to_hba1c(mean), 1),
        latest_status=glucose_status(float(values.iloc[-1])),
    )


__all__ = ["WindowSummary", "glucose_status", "mean_glucose_to_hba1c", "summarize_window"]
