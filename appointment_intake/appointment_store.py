"""
In-memory appointment store.
Append-only: records are created for committed requests and never updated or deleted.
"""

import threading
import uuid
from datetime import datetime
from typing import List, Optional

from dateutil import tz as dateutil_tz

from appointment_intake.event_models import AppointmentRecord, NormalizedAppointment, RawEntities
from appointment_intake.logging_helper import Log

DEFAULT_LIST_LIMIT = 50


class AppointmentStore:
    """Thread-safe in-memory list of appointment records, newest first."""

    def __init__(self):
        self._lock = threading.Lock()
        self._records: List[AppointmentRecord] = []

    def save(
        self,
        raw_text: str,
        entities: RawEntities,
        normalized: NormalizedAppointment,
        department: str,
        source: str,
        image_name: Optional[str] = None
    ) -> AppointmentRecord:
        if source not in ("text", "image"):
            raise ValueError(f"Invalid record source: {source}")

        record = AppointmentRecord(
            id=f"appt_{uuid.uuid4().hex}",
            raw_text=raw_text,
            extracted_entities=entities,
            normalized_data=normalized,
            department=department,
            source=source,
            created_at=datetime.now(dateutil_tz.UTC),
            image_name=image_name,
        )
        with self._lock:
            self._records.insert(0, record)
            total = len(self._records)

        Log.kv({"stage": "store", "result": "saved", "id": record.id, "source": source, "total": total})
        return record

    def list_recent(self, limit: int = DEFAULT_LIST_LIMIT) -> List[AppointmentRecord]:
        if limit < 0:
            raise ValueError("limit must not be negative")
        with self._lock:
            return self._records[:limit]

    def count(self) -> int:
        with self._lock:
            return len(self._records)

    def get(self, record_id: str) -> Optional[AppointmentRecord]:
        with self._lock:
            for record in self._records:
                if record.id == record_id:
                    return record
        return None
