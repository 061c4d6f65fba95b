"""
Appointment data models.
Defines RawEntities (from the entity extractor), the transient parse results,
NormalizedAppointment, the routing Decision and the stored AppointmentRecord.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union


class InvalidEntitiesError(ValueError):
    """Raised when an entities payload violates the RawEntities contract."""


def _is_blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


def _optional_text(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is None or isinstance(value, str):
        return value
    raise InvalidEntitiesError(f"'{key}' must be a string or null, got {type(value).__name__}")


@dataclass(frozen=True)
class RawEntities:
    """
    Loosely structured fields extracted from a request by the LLM.
    This is the unnormalized output of the entity extractor.
    """
    date_phrase: Optional[str]
    time_phrase: Optional[str]
    department: Optional[str]
    confidence: float
    is_clear: bool
    error: Optional[str] = None  # Extractor failure reason, informational only

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RawEntities":
        """
        Build RawEntities from a plain mapping, failing fast on contract violations.

        Args:
            data: Mapping with date_phrase, time_phrase, department, confidence, is_clear

        Returns:
            RawEntities instance

        Raises:
            InvalidEntitiesError: if confidence is missing, non-numeric or out of range,
                or a phrase field is not a string
        """
        if not isinstance(data, dict):
            raise InvalidEntitiesError("entities must be a mapping")
        if "confidence" not in data:
            raise InvalidEntitiesError("entities are missing the 'confidence' field")

        confidence = data["confidence"]
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            raise InvalidEntitiesError(f"'confidence' must be a number, got {confidence!r}")
        if not 0.0 <= confidence <= 1.0:
            raise InvalidEntitiesError(f"'confidence' must be within [0, 1], got {confidence}")

        return cls(
            date_phrase=_optional_text(data, "date_phrase"),
            time_phrase=_optional_text(data, "time_phrase"),
            department=_optional_text(data, "department"),
            confidence=float(confidence),
            is_clear=data.get("is_clear") is not False,
            error=_optional_text(data, "error"),
        )

    @classmethod
    def failed(cls, error: str) -> "RawEntities":
        """Entities for an extraction that did not produce anything usable."""
        return cls(
            date_phrase=None,
            time_phrase=None,
            department=None,
            confidence=0.0,
            is_clear=False,
            error=error,
        )

    def missing_fields(self) -> List[str]:
        """Names of the phrase fields that are null or blank, in date/time/department order."""
        fields = (
            ("date", self.date_phrase),
            ("time", self.time_phrase),
            ("department", self.department),
        )
        return [name for name, value in fields if _is_blank(value)]

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "date_phrase": self.date_phrase,
            "time_phrase": self.time_phrase,
            "department": self.department,
            "confidence": self.confidence,
            "is_clear": self.is_clear,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass(frozen=True)
class ParsedDate:
    """Calendar date resolved from a date phrase, anchored at local midnight."""
    calendar_date: date
    anchor: datetime  # Timezone-aware local midnight

    def as_text(self) -> str:
        return self.calendar_date.isoformat()


@dataclass(frozen=True)
class ParsedTime:
    """Wall clock time resolved from a time phrase."""
    hour: int
    minute: int

    def as_text(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"


@dataclass(frozen=True)
class NormalizedAppointment:
    """
    Appointment fields normalized to calendar values in a target timezone.
    datetime is set only when both date and time are set.
    """
    date: Optional[str]
    time: Optional[str]
    datetime: Optional[str]  # ISO-8601 UTC instant, e.g. 2026-01-21T09:30:00.000Z
    department: Optional[str]
    timezone: str

    def is_complete(self) -> bool:
        return self.date is not None and self.time is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "time": self.time,
            "datetime": self.datetime,
            "department": self.department,
            "timezone": self.timezone,
        }


@dataclass(frozen=True)
class Commit:
    """Routing outcome: the normalized appointment can be stored."""
    normalized: NormalizedAppointment


@dataclass(frozen=True)
class Clarify:
    """Routing outcome: ask the requester for missing or ambiguous information."""
    message: str


Decision = Union[Commit, Clarify]


@dataclass(frozen=True)
class AppointmentRecord:
    """Stored appointment. Created only for committed requests and never modified."""
    id: str
    raw_text: str
    extracted_entities: RawEntities
    normalized_data: NormalizedAppointment
    department: str
    source: str  # "text" or "image"
    created_at: datetime
    status: str = "success"
    image_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "_id": self.id,
            "rawText": self.raw_text,
            "extractedEntities": self.extracted_entities.to_dict(),
            "normalizedData": self.normalized_data.to_dict(),
            "department": self.department,
            "status": self.status,
            "source": self.source,
            "createdAt": self.created_at.isoformat(),
        }
        if self.image_name is not None:
            data["imageName"] = self.image_name
        return data
