"""Typed entities for glucose, meal, treatment and message rows."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

import pandas as pd


class TreatmentKind(str, Enum):
    INSULIN = "insulin"
    PILL = "pills"


class InsulinClass(str, Enum):
    BASAL = "basal"
    RAPID = "rapid"


def parse_timestamp(value: Any) -> Optional[pd.Timestamp]:
    """Parse a storage timestamp into a UTC-aware ``pd.Timestamp``.

    Returns ``None`` for missing or unparsable values so callers can count
    them instead of crashing on them.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        ts = pd.Timestamp(value)
        if pd.isna(ts):
            return None
        return ts.tz_localize("UTC") if ts.tzinfo is None else ts
    if isinstance(value, str) and not value.strip():
        return None
    try:
        ts = pd.to_datetime(value, utc=True, errors="coerce")
    except (TypeError, ValueError, OverflowError):
        return None
    if ts is None or pd.isna(ts) or not isinstance(ts, pd.Timestamp):
        return None
    return ts


def _optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


@dataclass(frozen=True)
class GlucoseReading:
    """One glucose measurement (mg/dL)."""

    id: str
    subject_id: str
    value: float
    timestamp: Optional[pd.Timestamp]
    note: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.value > 0:
            raise ValueError(f"Glucose value must be positive, got {self.value!r}.")

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "GlucoseReading":
        return cls(
            id=str(row["id"]),
            subject_id=str(row.get("user_id", "")),
            value=float(row["value"]),
            timestamp=parse_timestamp(row.get("date")),
            note=row.get("notes") or None,
        )


@dataclass(frozen=True)
class MealEvent:
    """A logged meal with its macro-nutrients."""

    id: str
    subject_id: str
    timestamp: Optional[pd.Timestamp]
    carbs_grams: float
    name: str = ""
    protein_grams: Optional[float] = None
    fat_grams: Optional[float] = None
    calories_kcal: Optional[float] = None
    photo_ref: Optional[str] = None

    def __post_init__(self) -> None:
        if self.carbs_grams < 0:
            raise ValueError(f"Carbs must be >= 0, got {self.carbs_grams!r}.")

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "MealEvent":
        return cls(
            id=str(row["id"]),
            subject_id=str(row.get("user_id", "")),
            timestamp=parse_timestamp(row.get("date")),
            carbs_grams=float(row.get("carbs") or 0),
            name=row.get("name") or "",
            protein_grams=_optional_float(row.get("protein")),
            fat_grams=_optional_float(row.get("fat")),
            calories_kcal=_optional_float(row.get("calories")),
            photo_ref=row.get("photo_url") or None,
        )


@dataclass(frozen=True)
class TreatmentEvent:
    """An insulin injection or oral medication dose."""

    id: str
    subject_id: str
    timestamp: Optional[pd.Timestamp]
    kind: TreatmentKind
    dose_amount: float
    dose_unit: str = "units"
    insulin_class: Optional[InsulinClass] = None
    medication_name: Optional[str] = None

    def __post_init__(self) -> None:
        if self.dose_amount < 0:
            raise ValueError(f"Dose must be >= 0, got {self.dose_amount!r}.")

    @property
    def display_name(self) -> str:
        if self.kind is TreatmentKind.INSULIN:
            return "Basal Insulin" if self.insulin_class is InsulinClass.BASAL else "Rapid Insulin"
        return self.medication_name or "Pills"

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "TreatmentEvent":
        insulin_type = row.get("insulin_type")
        return cls(
            id=str(row["id"]),
            subject_id=str(row.get("user_id", "")),
            timestamp=parse_timestamp(row.get("timestamp")),
            kind=TreatmentKind(row.get("treatment_type") or TreatmentKind.INSULIN.value),
            dose_amount=float(row.get("dose") or 0),
            dose_unit=row.get("dose_unit") or "units",
            insulin_class=InsulinClass(insulin_type) if insulin_type else None,
            medication_name=row.get("medication_name") or None,
        )


@dataclass(frozen=True)
class DirectMessage:
    """A chat message between a patient and a clinician."""

    id: str
    sender_id: str
    receiver_id: str
    body: str
    created_at: pd.Timestamp
    is_read: bool = False

    def involves(self, user_id: str) -> bool:
        return user_id in (self.sender_id, self.receiver_id)

    def counterparty_of(self, viewer_id: str) -> str:
        return self.receiver_id if self.sender_id == viewer_id else self.sender_id

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "DirectMessage":
        created_at = parse_timestamp(row.get("created_at"))
        if created_at is None:
            raise ValueError(f"Message {row.get('id')!r} has no valid created_at.")
        return cls(
            id=str(row["id"]),
            sender_id=str(row["sender_id"]),
            receiver_id=str(row["receiver_id"]),
            body=row.get("message") or "",
            created_at=created_at,
            is_read=bool(row.get("is_read", False)),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sender_id": self.sender_id,
            "receiver_id": self.receiver_id,
            "message": self.body,
            "is_read": self.is_read,
            "created_at": self.created_at.isoformat(),
        }


__all__ = [
    "DirectMessage",
    "GlucoseReading",
    "InsulinClass",
    "MealEvent",
    "TreatmentEvent",
    "TreatmentKind",
    "parse_timestamp",
]
