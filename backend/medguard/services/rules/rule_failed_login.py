from typing import Any, Dict, Optional

from medguard.schemas.alerts import Finding, Severity
from medguard.schemas.logs import LogRecord
from medguard.schemas.systems import ExternalSystemDescriptor
from medguard.services.rules.base_rule import BaseRule


class FailedLoginRule(BaseRule):
    """
    Flags login/signin events that the source marks as unsuccessful.
    """

    rule_id = "RULE-AUTH-001"
    rule_name = "Suspicious Login Attempt"
    severity = Severity.HIGH

    def evaluate(
        self,
        record: LogRecord,
        system: ExternalSystemDescriptor,
        context: Dict[str, Any]
    ) -> Optional[Finding]:
        if not self._is_login(record):
            return None
        failed = record.details.success is False or "failed" in self._event_type(record)
        if not failed:
            return None
        origin = record.details.ip_address or "unknown IP"
        return self._finding(f"Failed login attempt detected from {origin}")
