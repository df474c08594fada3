from pydantic import BaseModel
from typing import Optional
from datetime import datetime
from enum import Enum


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


SEVERITY_RANK = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class Finding(BaseModel):
    rule_id: str
    category: str
    severity: Severity
    description: str


class ThreatAlertBase(BaseModel):
    system_id: int
    system_name: str
    rule_id: str
    event_type: str
    severity: Severity
    description: str
    source_record_id: str
    source_timestamp: datetime


class ThreatAlertCreate(ThreatAlertBase):
    fingerprint: str


class ThreatAlertResponse(ThreatAlertBase):
    id: int
    is_resolved: bool
    fingerprint: str
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class AlertFilter(BaseModel):
    severity: Optional[Severity] = None
    system_id: Optional[int] = None
    since: Optional[datetime] = None
    limit: int = 100
