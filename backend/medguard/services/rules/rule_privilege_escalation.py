from typing import Any, Dict, Optional

from medguard.schemas.alerts import Finding, Severity
from medguard.schemas.logs import LogRecord
from medguard.schemas.systems import ExternalSystemDescriptor
from medguard.services.rules.base_rule import BaseRule

PRIVILEGE_MARKERS = ("admin", "privilege", "role")


class PrivilegeEscalationRule(BaseRule):
    rule_id = "RULE-PRIV-001"
    rule_name = "Privilege Escalation Attempt"
    severity = Severity.CRITICAL

    def evaluate(
        self,
        record: LogRecord,
        system: ExternalSystemDescriptor,
        context: Dict[str, Any]
    ) -> Optional[Finding]:
        event_type = self._event_type(record)
        if not any(marker in event_type for marker in PRIVILEGE_MARKERS):
            return None
        return self._finding(f"Potential privilege escalation detected: {record.event_type}")
