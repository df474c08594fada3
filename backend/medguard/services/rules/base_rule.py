from typing import Any, Dict, Optional

from medguard.schemas.alerts import Finding, Severity
from medguard.schemas.logs import LogRecord
from medguard.schemas.systems import ExternalSystemDescriptor


class BaseRule:
    """
    Base rule with helper utilities to emit normalized findings.

    A rule looks at one record in isolation and returns at most one finding.
    """

    rule_id: str = "RULE-BASE"
    rule_name: str = "Base Rule"
    severity: Severity = Severity.LOW

    def evaluate(
        self,
        record: LogRecord,
        system: ExternalSystemDescriptor,
        context: Dict[str, Any]
    ) -> Optional[Finding]:
        raise NotImplementedError()

    def _event_type(self, record: LogRecord) -> str:
        return str(record.event_type or "").lower()

    def _is_login(self, record: LogRecord) -> bool:
        event_type = self._event_type(record)
        return "login" in event_type or "signin" in event_type

    def _finding(self, description: str) -> Finding:
        return Finding(
            rule_id=self.rule_id,
            category=self.rule_name,
            severity=self.severity,
            description=description
        )
