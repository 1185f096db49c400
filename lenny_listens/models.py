from sqlmodel import SQLModel, Field
from pydantic import BaseModel, Field as ModelField
from typing import Optional
from datetime import datetime, timezone
from enum import Enum

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

class Status(str, Enum):
    pending = "pending"
    generating = "generating"
    ready = "ready"
    error = "error"

TERMINAL = (Status.ready, Status.error)

class IntakeRecord(BaseModel):
    conversation_id: str
    name: str = "Unknown"
    company_domain: str = ""
    use_case: str = "feature_request"  # feature_request|new_product_discovery|existing_feature_feedback
    problem_to_solve: Optional[str] = None
    current_workaround: Optional[str] = None
    market_or_audience: Optional[str] = None
    hypothesis: Optional[str] = None
    feature_name: Optional[str] = None
    feedback_aspects: Optional[str] = None
    created_at: datetime = ModelField(default_factory=utcnow)

class StatusRecord(BaseModel):
    conversation_id: str
    status: Status = Status.pending
    intake: IntakeRecord
    perspective_id: Optional[str] = None
    preview_url: Optional[str] = None
    share_url: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime = ModelField(default_factory=utcnow)
    generated_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL

class GenerationResult(BaseModel):
    perspective_id: Optional[str] = None
    preview_url: Optional[str] = None
    share_url: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return bool(self.preview_url and self.share_url)

# Tables backing the SQL key-value store
class KVEntry(SQLModel, table=True):
    key: str = Field(primary_key=True)
    value: str
    expires_at: Optional[datetime] = None

class KVListItem(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    list_key: str = Field(index=True)
    value: str
