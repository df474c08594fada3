import logging
from datetime import datetime, timezone

import pytest

from medguard.core.config import rule_context
from medguard.schemas.alerts import Severity
from medguard.services import rule_engine
from medguard.services.rules.base_rule import BaseRule
from medguard.services.rules.rule_failed_login import FailedLoginRule


class ExplodingRule(BaseRule):
    rule_id = "RULE-TEST-BOOM"
    rule_name = "Exploding Rule"

    def evaluate(self, record, system, context):
        raise RuntimeError("boom")


def _at(hour, minute=0):
    return datetime(2025, 1, 15, hour, minute, tzinfo=timezone.utc)


def test_failed_login_from_untrusted_ip_at_night_yields_three_findings(make_system, make_record):
    system = make_system(name="ECG Monitor")
    record = make_record(
        event_type="login_failed",
        created_at=_at(3),
        success=False,
        ip_address="203.0.113.5"
    )

    findings = rule_engine.evaluate(record, system, rule_context())

    assert [(f.category, f.severity) for f in findings] == [
        ("Suspicious Login Attempt", Severity.HIGH),
        ("Unusual Access Location", Severity.MEDIUM),
        ("Off-Hours Access", Severity.LOW),
    ]
    assert "203.0.113.5" in findings[0].description


def test_automated_export_yields_single_finding(make_system, make_record):
    record = make_record(event_type="data_export", user_agent="curl-bot/1.0")

    findings = rule_engine.evaluate(record, make_system(), rule_context())

    assert len(findings) == 1
    assert findings[0].rule_id == "RULE-DATA-001"
    assert findings[0].category == "Automated Data Access"
    assert findings[0].severity == Severity.MEDIUM


def test_failed_login_reported_exactly_once(make_system, make_record):
    record = make_record(event_type="user_login_failed", success=False, ip_address="10.0.0.4")

    findings = rule_engine.evaluate(record, make_system(), rule_context())

    assert [f.rule_id for f in findings].count("RULE-AUTH-001") == 1
    assert findings[0].severity == Severity.HIGH


def test_success_flag_given_as_text_is_understood(make_system, make_record):
    record = make_record(event_type="signin", success="false", ip_address="127.0.0.1")

    findings = rule_engine.evaluate(record, make_system(), rule_context())

    assert [f.rule_id for f in findings] == ["RULE-AUTH-001"]


def test_successful_login_from_trusted_network_is_quiet(make_system, make_record):
    record = make_record(event_type="login", success=True, ip_address="192.168.1.20")

    assert rule_engine.evaluate(record, make_system(), rule_context()) == []


def test_failed_login_without_ip_mentions_unknown_origin(make_system, make_record):
    record = make_record(event_type="login", success=False)

    findings = rule_engine.evaluate(record, make_system(), rule_context())

    assert [f.rule_id for f in findings] == ["RULE-AUTH-001"]
    assert "unknown IP" in findings[0].description


def test_privilege_change_is_critical(make_system, make_record):
    record = make_record(event_type="admin_role_change")

    findings = rule_engine.evaluate(record, make_system(), rule_context())

    assert [(f.rule_id, f.severity) for f in findings] == [("RULE-PRIV-001", Severity.CRITICAL)]


def test_data_read_from_browser_is_not_flagged(make_system, make_record):
    record = make_record(event_type="record_read", user_agent="Mozilla/5.0")

    assert rule_engine.evaluate(record, make_system(), rule_context()) == []


@pytest.mark.parametrize("hour", range(24))
def test_off_hours_fires_only_outside_window(make_system, make_record, hour):
    record = make_record(event_type="heartbeat", created_at=_at(hour, 30))

    findings = rule_engine.evaluate(record, make_system(), rule_context())

    fired = any(f.rule_id == "RULE-TIME-001" for f in findings)
    assert fired == (hour < 6 or hour >= 22)


@pytest.mark.parametrize("created_at, fired", [
    (datetime(2025, 1, 15, 10, 59, tzinfo=timezone.utc), True),
    (datetime(2025, 1, 15, 11, 0, tzinfo=timezone.utc), False),
    (datetime(2025, 1, 16, 2, 59, tzinfo=timezone.utc), False),
    (datetime(2025, 1, 16, 3, 0, tzinfo=timezone.utc), True),
    (datetime(2025, 7, 15, 9, 59, tzinfo=timezone.utc), True),
    (datetime(2025, 7, 15, 10, 0, tzinfo=timezone.utc), False),
    (datetime(2025, 7, 16, 1, 59, tzinfo=timezone.utc), False),
    (datetime(2025, 7, 16, 2, 0, tzinfo=timezone.utc), True),
])
def test_off_hours_uses_reference_timezone(make_system, make_record, created_at, fired):
    context = dict(rule_context(), reference_timezone="America/New_York")
    record = make_record(event_type="heartbeat", created_at=created_at)

    findings = rule_engine.evaluate(record, make_system(), context)

    assert any(f.rule_id == "RULE-TIME-001" for f in findings) == fired


def test_off_hours_window_comes_from_context(make_system, make_record):
    context = dict(rule_context(), business_hours_start=9, business_hours_end=17)
    record = make_record(event_type="heartbeat", created_at=_at(8, 59))

    findings = rule_engine.evaluate(record, make_system(), context)

    assert [f.rule_id for f in findings] == ["RULE-TIME-001"]


def test_broken_rule_is_logged_and_others_still_run(make_system, make_record, caplog):
    record = make_record(event_type="login_failed", success=False, ip_address="10.1.1.1")

    with caplog.at_level(logging.ERROR, logger="medguard.services.rule_engine"):
        findings = rule_engine.evaluate(
            record, make_system(), rule_context(), rules=[ExplodingRule(), FailedLoginRule()]
        )

    assert [f.rule_id for f in findings] == ["RULE-AUTH-001"]
    assert any(r.rule_id == "RULE-TEST-BOOM" for r in caplog.records)


def test_evaluation_is_pure(make_system, make_record):
    system = make_system()
    record = make_record(
        event_type="login_failed",
        created_at=_at(23),
        success=False,
        ip_address="198.51.100.7"
    )
    before = record.model_dump()

    first = rule_engine.evaluate(record, system, rule_context())
    second = rule_engine.evaluate(record, system, rule_context())

    assert first == second
    assert record.model_dump() == before


def test_registered_rules_are_unique_and_ordered():
    ids = [r.rule_id for r in rule_engine.RULES]

    assert ids == ["RULE-AUTH-001", "RULE-AUTH-002", "RULE-PRIV-001", "RULE-DATA-001", "RULE-TIME-001"]
    assert len(set(ids)) == len(ids)
