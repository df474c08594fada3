from datetime import timezone
from typing import Any, Dict, Optional

from medguard.core.config import reference_zone
from medguard.schemas.alerts import Finding, Severity
from medguard.schemas.logs import LogRecord
from medguard.schemas.systems import ExternalSystemDescriptor
from medguard.services.rules.base_rule import BaseRule


class OffHoursRule(BaseRule):
    """
    Flags activity outside the business-hours window [start, end).

    The hour comes from the record's own timestamp in the reference zone,
    never from the evaluation clock.
    """

    rule_id = "RULE-TIME-001"
    rule_name = "Off-Hours Access"
    severity = Severity.LOW

    def evaluate(
        self,
        record: LogRecord,
        system: ExternalSystemDescriptor,
        context: Dict[str, Any]
    ) -> Optional[Finding]:
        start = int(context.get("business_hours_start", 6))
        end = int(context.get("business_hours_end", 22))
        zone = reference_zone(context.get("reference_timezone"))
        occurred = record.created_at
        if occurred.tzinfo is None:
            occurred = occurred.replace(tzinfo=timezone.utc)
        local = occurred.astimezone(zone)
        if start <= local.hour < end:
            return None
        return self._finding(
            f"System access detected outside business hours at {local.strftime('%H:%M:%S %Z')}"
        )
