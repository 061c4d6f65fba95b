from __future__ import annotations

import io
from datetime import datetime
from pathlib import Path

import pytest
from dateutil import tz as dateutil_tz
from PIL import Image

from appointment_intake.appointment_store import AppointmentStore
from appointment_intake.entity_extractor import StubEntityExtractor
from appointment_intake.event_models import RawEntities
from appointment_intake.intake_controller import IntakeController
from appointment_intake.ocr_client import StubImageTextExtractor

KOLKATA = "Asia/Kolkata"


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    settings_path = tmp_path / "settings.json"
    monkeypatch.setenv("APPOINTMENT_INTAKE_SETTINGS", str(settings_path))
    for name in (
        "DEFAULT_TIMEZONE",
        "GEMINI_API_KEY",
        "MISTRAL_API_KEY",
        "USE_STUB",
        "APPOINTMENT_INTAKE_LOG_DIR",
    ):
        monkeypatch.delenv(name, raising=False)
    return settings_path


@pytest.fixture
def kolkata_now() -> datetime:
    return datetime(2026, 1, 20, 0, 0, tzinfo=dateutil_tz.gettz(KOLKATA))


@pytest.fixture
def clear_entities() -> RawEntities:
    return RawEntities(
        date_phrase="tomorrow",
        time_phrase="3pm",
        department="Dentist",
        confidence=0.92,
        is_clear=True,
    )


@pytest.fixture
def store() -> AppointmentStore:
    return AppointmentStore()


@pytest.fixture
def controller(store: AppointmentStore, kolkata_now: datetime) -> IntakeController:
    return IntakeController(
        entity_extractor=StubEntityExtractor(),
        ocr_client=StubImageTextExtractor(),
        store=store,
        timezone=KOLKATA,
        clock=lambda: kolkata_now,
    )


@pytest.fixture
def png_bytes() -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (24, 12), color="white").save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def jpeg_bytes() -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (24, 12), color="white").save(buffer, format="JPEG")
    return buffer.getvalue()
