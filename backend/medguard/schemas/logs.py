from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator


_TRUE_STRINGS = {"true", "1", "yes", "ok", "success"}
_FALSE_STRINGS = {"false", "0", "no", "failed", "failure"}


class LogDetails(BaseModel):
    """
    Typed view of the free-form `details` payload of an external log row.
    Unknown keys are kept so exports can show the payload as received.
    """
    success: Optional[bool] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    user_id: Optional[str] = None

    class Config:
        extra = "allow"

    @field_validator("success", mode="before")
    @classmethod
    def _coerce_success(cls, value: Any) -> Optional[bool]:
        if value is None or isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
        return None

    @field_validator("ip_address", "user_agent", "user_id", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        text = str(value).strip()
        return text or None


class LogRecord(BaseModel):
    id: str
    system_id: int
    event_type: str
    created_at: datetime
    details: LogDetails = Field(default_factory=LogDetails)
    raw_details: Dict[str, Any] = Field(default_factory=dict)
    user_id: Optional[str] = None


class LogRecordResponse(BaseModel):
    id: str
    system_id: int
    system_name: str
    event_type: str
    created_at: datetime
    user_id: Optional[str]
    details: Dict[str, Any]
