from typing import Any, Dict, Iterable, Optional

from medguard.schemas.alerts import Finding, Severity
from medguard.schemas.logs import LogRecord
from medguard.schemas.systems import ExternalSystemDescriptor
from medguard.services.rules.base_rule import BaseRule


class UnusualOriginRule(BaseRule):
    """
    Flags logins whose network origin is outside the trusted prefix allow-list.
    """

    rule_id = "RULE-AUTH-002"
    rule_name = "Unusual Access Location"
    severity = Severity.MEDIUM

    def evaluate(
        self,
        record: LogRecord,
        system: ExternalSystemDescriptor,
        context: Dict[str, Any]
    ) -> Optional[Finding]:
        if not self._is_login(record):
            return None
        ip_address = record.details.ip_address
        if not ip_address:
            return None
        if self._is_trusted(ip_address, context.get("trusted_ip_prefixes") or []):
            return None
        return self._finding(f"Login from unusual IP address: {ip_address}")

    def _is_trusted(self, ip_address: str, prefixes: Iterable[str]) -> bool:
        return any(prefix and ip_address.startswith(prefix) for prefix in prefixes)
