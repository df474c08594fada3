import logging
from typing import Any, Dict, List, Optional, Sequence

from medguard.core.config import rule_context
from medguard.schemas.alerts import Finding, Severity
from medguard.schemas.logs import LogRecord
from medguard.schemas.systems import ExternalSystemDescriptor
from medguard.services.errors import RuleEvaluationError
from medguard.services.rules.base_rule import BaseRule
from medguard.services.rules.rule_automated_access import AutomatedAccessRule
from medguard.services.rules.rule_failed_login import FailedLoginRule
from medguard.services.rules.rule_off_hours import OffHoursRule
from medguard.services.rules.rule_privilege_escalation import PrivilegeEscalationRule
from medguard.services.rules.rule_unusual_origin import UnusualOriginRule

logger = logging.getLogger(__name__)

# Bump whenever a rule is added, removed or its condition changes.
RULESET_VERSION = "2025.1"


def _load_rules() -> List[BaseRule]:
    # Explicit rule list keeps evaluation deterministic and ordered.
    return [
        FailedLoginRule(),
        UnusualOriginRule(),
        PrivilegeEscalationRule(),
        AutomatedAccessRule(),
        OffHoursRule()
    ]


RULES: Sequence[BaseRule] = tuple(_load_rules())


def _run_rule(
    rule: BaseRule,
    record: LogRecord,
    system: ExternalSystemDescriptor,
    context: Dict[str, Any]
) -> Optional[Finding]:
    try:
        finding = rule.evaluate(record, system, context)
    except Exception as exc:
        raise RuleEvaluationError(rule.rule_id, record.id, exc) from exc
    if finding is not None and not isinstance(finding.severity, Severity):
        raise RuleEvaluationError(rule.rule_id, record.id, ValueError("invalid severity"))
    return finding


def evaluate(
    record: LogRecord,
    system: ExternalSystemDescriptor,
    context: Optional[Dict[str, Any]] = None,
    rules: Optional[Sequence[BaseRule]] = None
) -> List[Finding]:
    """
    Runs every registered rule against one record, in registration order.
    A failing rule is logged and skipped; the remaining rules still run.
    """
    ctx = context if context is not None else rule_context()
    findings: List[Finding] = []
    for rule in rules if rules is not None else RULES:
        try:
            finding = _run_rule(rule, record, system, ctx)
        except RuleEvaluationError as err:
            # Prevent a single broken rule from stopping the others
            logger.exception(
                "rule evaluation failed",
                extra={"rule_id": err.rule_id, "record_id": err.record_id, "system_id": system.id}
            )
            continue
        if finding is not None:
            findings.append(finding)
    return findings
