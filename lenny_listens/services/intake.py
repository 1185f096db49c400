from typing import Any, Dict, Optional
from pydantic import BaseModel
from lenny_listens.errors import ValidationError
from lenny_listens.models import IntakeRecord

# Perspective has posted each of these shapes at some point
ID_KEYS = ("interview_id", "conversation_id", "id")
FIELD_KEYS = ("structured_output", "fields")

OPTIONAL_FIELDS = ("problem_to_solve", "current_workaround", "market_or_audience",
                   "hypothesis", "feature_name", "feedback_aspects")

class WebhookIntake(BaseModel):
    intake: IntakeRecord
    session_id: Optional[str] = None

def _text(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return value if isinstance(value, str) else str(value)

def _first(payload: Dict[str, Any], keys) -> Any:
    for k in keys:
        if payload.get(k):
            return payload[k]
    return None

def parse_webhook(payload: Dict[str, Any]) -> WebhookIntake:
    if not isinstance(payload, dict):
        raise ValidationError("webhook body must be a JSON object")
    conversation_id = _first(payload, ID_KEYS)
    if not conversation_id:
        raise ValidationError("Missing conversation_id/interview_id")
    fields = next((payload[k] for k in FIELD_KEYS if isinstance(payload.get(k), dict)), None)
    if fields is None:
        raise ValidationError("Missing structured_output/fields")
    meta = payload.get("participant_metadata")
    if not isinstance(meta, dict):
        meta = {}

    intake = IntakeRecord(
        conversation_id=str(conversation_id),
        name=_text(fields.get("name")) or _text(meta.get("name")) or "Unknown",
        company_domain=_text(fields.get("company_domain")) or "",
        use_case=_text(fields.get("use_case")) or "feature_request",
        **{k: _text(fields[k]) for k in OPTIONAL_FIELDS if _text(fields.get(k))},
    )
    return WebhookIntake(intake=intake, session_id=_text(meta.get("session_id")))

def intake_from_dict(conversation_id: str, data: Dict[str, Any]) -> IntakeRecord:
    """Build an IntakeRecord from a bare field map, as posted to /generate."""
    if not isinstance(data, dict):
        raise ValidationError("Missing intake data")
    known = {k: _text(data[k]) for k in ("name", "company_domain", "use_case", *OPTIONAL_FIELDS) if _text(data.get(k))}
    return IntakeRecord(conversation_id=conversation_id, **known)
