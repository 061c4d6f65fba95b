"""
Intake controller.
Runs a request through extraction, normalization and the clarification gate,
stores committed appointments, and builds the response payloads.
"""

from datetime import datetime
from typing import Any, Callable, Dict, Optional

from dateutil import tz as dateutil_tz

from appointment_intake.appointment_store import DEFAULT_LIST_LIMIT, AppointmentStore
from appointment_intake.entity_extractor import EntityExtractor, get_entity_extractor
from appointment_intake.event_models import Clarify, NormalizedAppointment, RawEntities
from appointment_intake.event_normalizer import normalization_confidence, process, resolve_department
from appointment_intake.logging_helper import Log
from appointment_intake.ocr_client import (
    ImageTextExtractionError,
    ImageTextExtractor,
    get_ocr_client,
    validate_extracted_text,
)
from appointment_intake.settings_manager import get_default_timezone
from appointment_intake.timezone_composer import resolve_timezone

TEXT_CONFIDENCE = 1.0


def _utc_now() -> datetime:
    return datetime.now(dateutil_tz.UTC)


class IntakeController:
    """
    Handles text and image appointment requests.
    One request commits at most one record.
    """

    def __init__(
        self,
        entity_extractor: Optional[EntityExtractor] = None,
        ocr_client: Optional[ImageTextExtractor] = None,
        store: Optional[AppointmentStore] = None,
        timezone: Optional[str] = None,
        clock: Callable[[], datetime] = _utc_now
    ):
        self.entity_extractor = entity_extractor or get_entity_extractor()
        self.ocr_client = ocr_client or get_ocr_client()
        self.store = store if store is not None else AppointmentStore()
        self.timezone = timezone or get_default_timezone()
        resolve_timezone(self.timezone)
        self.clock = clock

    def process_text(
        self,
        text: str,
        timezone: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Process a free text request.

        Raises:
            ValueError: if the text is empty or the timezone is unknown
        """
        if not isinstance(text, str) or not text.strip():
            raise ValueError("text must be a non-empty string")

        Log.section("Text Intake")
        Log.info(f"Processing text: {text}")

        entities = self.entity_extractor.extract(text)
        return self._route(text, entities, TEXT_CONFIDENCE, "text", timezone, now)

    def process_image(
        self,
        image_bytes: bytes,
        image_name: Optional[str] = None,
        timezone: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Process a photo of an appointment note.

        Raises:
            ImageTextExtractionError: if the image yields no meaningful text
            ValueError: if the timezone is unknown
        """
        Log.section("Image Intake")
        Log.info(f"Processing image: {image_name or '<upload>'} ({len(image_bytes)} bytes)")

        ocr_result = self.ocr_client.extract_text(image_bytes)
        if not validate_extracted_text(ocr_result.text):
            Log.kv({"stage": "intake", "source": "image", "result": "failed", "reason": "no_meaningful_text"})
            raise ImageTextExtractionError("Could not extract meaningful text from image")

        Log.info(f"Extracted text: \"{ocr_result.text}\", Confidence: {ocr_result.confidence * 100:.0f}%")

        entities = self.entity_extractor.extract(ocr_result.text)
        return self._route(
            ocr_result.text,
            entities,
            ocr_result.confidence,
            "image",
            timezone,
            now,
            image_name=image_name,
        )

    def list_appointments(self, limit: int = DEFAULT_LIST_LIMIT) -> Dict[str, Any]:
        records = self.store.list_recent(limit)
        return {
            "success": True,
            "count": self.store.count(),
            "appointments": [record.to_dict() for record in records],
        }

    def _route(
        self,
        raw_text: str,
        entities: RawEntities,
        source_confidence: float,
        source: str,
        timezone: Optional[str],
        now: Optional[datetime],
        image_name: Optional[str] = None
    ) -> Dict[str, Any]:
        timezone = timezone or self.timezone
        normalized, decision = process(entities, timezone, now or self.clock())

        if isinstance(decision, Clarify):
            Log.kv({"stage": "intake", "source": source, "result": "needs_clarification"})
            return {
                "status": "needs_clarification",
                "message": decision.message,
                "raw_text": raw_text,
                "confidence": source_confidence,
                "entities_confidence": entities.confidence,
            }

        department = resolve_department(decision.normalized, entities)
        record = self.store.save(
            raw_text=raw_text,
            entities=entities,
            normalized=decision.normalized,
            department=department,
            source=source,
            image_name=image_name,
        )
        Log.kv({"stage": "intake", "source": source, "result": "committed", "id": record.id})
        return self._success_payload(raw_text, entities, decision.normalized, department, source_confidence, source, record.id)

    @staticmethod
    def _success_payload(
        raw_text: str,
        entities: RawEntities,
        normalized: NormalizedAppointment,
        department: str,
        source_confidence: float,
        source: str,
        record_id: str
    ) -> Dict[str, Any]:
        confidence_key = "ocr_confidence" if source == "image" else "confidence"
        return {
            "status": "ok",
            "raw_text": raw_text,
            confidence_key: source_confidence,
            "entities": {
                "date_phrase": entities.date_phrase,
                "time_phrase": entities.time_phrase,
                "department": entities.department,
            },
            "entities_confidence": entities.confidence,
            "normalized": {
                "date": normalized.date,
                "time": normalized.time,
                "datetime": normalized.datetime,
                "tz": normalized.timezone,
            },
            "normalization_confidence": normalization_confidence(normalized),
            "appointment": {
                "department": department,
                "date": normalized.date,
                "time": normalized.time,
                "tz": normalized.timezone,
            },
            "_id": record_id,
        }
