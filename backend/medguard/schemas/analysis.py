from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from medguard.schemas.alerts import ThreatAlertCreate


class OutcomeStatus(str, Enum):
    OK = "ok"
    FAILED = "failed"
    CANCELLED = "cancelled"


class SystemOutcome(BaseModel):
    system_id: int
    system_name: str
    status: OutcomeStatus
    fetch_succeeded: bool = False
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    records_fetched: int = 0
    alerts_generated: int = 0
    alerts_stored: int = 0


class SweepResult(BaseModel):
    ruleset_version: str
    alerts: List[ThreatAlertCreate] = Field(default_factory=list)
    systems: List[SystemOutcome] = Field(default_factory=list)

    @property
    def failed_systems(self) -> List[SystemOutcome]:
        return [s for s in self.systems if s.status == OutcomeStatus.FAILED]

    @property
    def cancelled(self) -> bool:
        return any(s.status == OutcomeStatus.CANCELLED for s in self.systems)


class SweepRequest(BaseModel):
    system_ids: Optional[List[int]] = None
    per_system_limit: Optional[int] = Field(default=None, ge=1)
    incremental: bool = True


class SystemAnalysisRequest(BaseModel):
    limit: Optional[int] = Field(default=None, ge=1)
    incremental: bool = True


class SweepResponse(BaseModel):
    status: str
    ruleset_version: str
    alerts_generated: int
    alerts_stored: int
    alerts: List[ThreatAlertCreate]
    systems: List[SystemOutcome]
    failed_systems: List[SystemOutcome]
