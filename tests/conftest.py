from __future__ import annotations

import os
import subprocess
import sys
import time
from typing import Callable, Iterator, Optional

import pandas as pd
import pytest
import requests

from glucotrack.models import (
    DirectMessage,
    GlucoseReading,
    InsulinClass,
    MealEvent,
    TreatmentEvent,
    TreatmentKind,
)

RUN_E2E = os.environ.get("RUN_E2E", "0").lower() in {"1", "true", "yes"}

# Wednesday afternoon, used as "now" throughout the suite.
NOW = pd.Timestamp("2025-03-12 15:30", tz="UTC")


def pytest_configure(config):
    config.addinivalue_line("markers", "e2e: mark as end-to-end test")


def ts(value: str) -> pd.Timestamp:
    return pd.Timestamp(value, tz="UTC")


@pytest.fixture
def now() -> pd.Timestamp:
    return NOW


@pytest.fixture
def reading() -> Callable[..., GlucoseReading]:
    counter = iter(range(1, 10_000))

    def make(value: float, at: Optional[str], subject_id: str = "patient-1") -> GlucoseReading:
        return GlucoseReading(
            id=f"g{next(counter)}",
            subject_id=subject_id,
            value=value,
            timestamp=ts(at) if at is not None else None,
        )

    return make


@pytest.fixture
def meal() -> Callable[..., MealEvent]:
    counter = iter(range(1, 10_000))

    def make(at: Optional[str], carbs: float = 45, name: str = "Lunch") -> MealEvent:
        return MealEvent(
            id=f"m{next(counter)}",
            subject_id="patient-1",
            timestamp=ts(at) if at is not None else None,
            carbs_grams=carbs,
            name=name,
        )

    return make


@pytest.fixture
def treatment() -> Callable[..., TreatmentEvent]:
    counter = iter(range(1, 10_000))

    def make(
        at: Optional[str],
        dose: float = 4,
        kind: TreatmentKind = TreatmentKind.INSULIN,
        insulin_class: Optional[InsulinClass] = InsulinClass.RAPID,
        medication_name: Optional[str] = None,
    ) -> TreatmentEvent:
        return TreatmentEvent(
            id=f"t{next(counter)}",
            subject_id="patient-1",
            timestamp=ts(at) if at is not None else None,
            kind=kind,
            dose_amount=dose,
            dose_unit="units" if kind is TreatmentKind.INSULIN else "mg",
            insulin_class=insulin_class if kind is TreatmentKind.INSULIN else None,
            medication_name=medication_name,
        )

    return make


@pytest.fixture
def message() -> Callable[..., DirectMessage]:
    def make(
        message_id: str,
        sender: str,
        receiver: str,
        at: str,
        is_read: bool = False,
        body: str = "hello",
    ) -> DirectMessage:
        return DirectMessage(
            id=message_id,
            sender_id=sender,
            receiver_id=receiver,
            body=body,
            created_at=ts(at),
            is_read=is_read,
        )

    return make


def _wait_for_health(url: str, timeout: float = 25.0) -> None:
    start = time.time()
    while time.time() - start < timeout:
        try:
            response = requests.get(url, timeout=1.0)
            if response.status_code == 200:
                return
        except requests.RequestException:
            time.sleep(0.5)
    raise RuntimeError(f"Timed out waiting for NiceGUI health endpoint at {url}")


@pytest.fixture(scope="session")
def nicegui_server(tmp_path_factory) -> Iterator[str]:
    if not RUN_E2E:
        pytest.skip("Set RUN_E2E=1 to run Selenium e2e tests")

    port = int(os.environ.get("E2E_APP_PORT", "8090"))

    env = os.environ.copy()
    env.setdefault("PORT", str(port))
    env.setdefault("GLUCOTRACK_CACHE_DIR", str(tmp_path_factory.mktemp("cache")))
    env.setdefault("STORAGE_SECRET", "test-secret")
    env.setdefault("NICEGUI_RELOAD", "0")
    env.pop("GLUCOTRACK_BACKEND_URL", None)

    cmd = [sys.executable, "nicegui_app.py"]
    proc = subprocess.Popen(cmd, env=env, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
    try:
        _wait_for_health(f"http://localhost:{port}/health")
        yield f"http://localhost:{port}"
    finally:
        proc.terminate()
        try:
            proc.wait(timeout=10)
        except subprocess.TimeoutExpired:
            proc.kill()
