from typing import Any, Dict, Optional

from medguard.schemas.alerts import Finding, Severity
from medguard.schemas.logs import LogRecord
from medguard.schemas.systems import ExternalSystemDescriptor
from medguard.services.rules.base_rule import BaseRule

DATA_ACCESS_MARKERS = ("select", "query", "read", "export")


class AutomatedAccessRule(BaseRule):
    """
    Flags data reads/exports issued by a client whose user agent looks automated.
    """

    rule_id = "RULE-DATA-001"
    rule_name = "Automated Data Access"
    severity = Severity.MEDIUM

    def evaluate(
        self,
        record: LogRecord,
        system: ExternalSystemDescriptor,
        context: Dict[str, Any]
    ) -> Optional[Finding]:
        event_type = self._event_type(record)
        if not any(marker in event_type for marker in DATA_ACCESS_MARKERS):
            return None
        user_agent = record.details.user_agent or ""
        lowered = user_agent.lower()
        signatures = context.get("automation_signatures") or []
        if not any(sig and sig.lower() in lowered for sig in signatures):
            return None
        return self._finding(f"Automated access detected from: {user_agent}")
