"""
Clarification gate.
Decides from the raw extracted entities whether a request can be committed,
and builds the message that asks the requester for what is missing.
"""

from appointment_intake.event_models import RawEntities

CONFIDENCE_THRESHOLD = 0.6

GENERIC_CLARIFICATION = "Please provide the appointment date, time, and department."

FIELD_PROMPTS = {
    "date": 'Date (e.g., "tomorrow", "Jan 25")',
    "time": 'Time (e.g., "3pm", "10:00")',
    "department": 'Department (e.g., "Cardiology", "Dentist")',
}


def needs_clarification(entities: RawEntities) -> bool:
    """
    Check whether the extraction is too weak or incomplete to commit.

    This looks only at the raw phrases. A request can pass the gate and still
    fail to normalize.
    """
    # NaN fails every comparison, so test for a passing confidence
    if not entities.confidence >= CONFIDENCE_THRESHOLD:
        return True

    if entities.missing_fields():
        return True

    return not entities.is_clear


def generate_clarification_message(entities: RawEntities) -> str:
    """
    Build a prompt listing the missing fields in date, time, department order.

    Returns:
        "Please provide: ..." with one example per missing field, or the generic
        prompt when nothing is missing (low confidence or unclear request)
    """
    missing = [FIELD_PROMPTS[name] for name in entities.missing_fields()]
    if missing:
        return f"Please provide: {', '.join(missing)}"
    return GENERIC_CLARIFICATION
