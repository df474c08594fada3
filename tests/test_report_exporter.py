from datetime import datetime, timezone

from medguard.schemas.alerts import Severity, ThreatAlertCreate
from medguard.services.report_exporter import (
    ALERT_COLUMNS,
    LOG_COLUMNS,
    export_alerts,
    export_logs,
    parse_csv,
    summarize_alerts,
    summarize_logs,
)


def _alert(record_id, hour, description, severity=Severity.HIGH, system_name="ECG Monitor"):
    return ThreatAlertCreate(
        system_id=1,
        system_name=system_name,
        rule_id="RULE-AUTH-001",
        event_type="Suspicious Login Attempt",
        severity=severity,
        description=description,
        source_record_id=record_id,
        source_timestamp=datetime(2025, 1, 15, hour, 0, tzinfo=timezone.utc),
        fingerprint=f"fp-{record_id}"
    )


def test_alert_export_round_trips_awkward_text():
    alerts = [
        _alert("1", 3, 'Failed login, user said "let me in"'),
        _alert("2", 5, "Line one\nline two", system_name="Pump, Ward 3"),
    ]

    document = export_alerts(alerts)
    parsed = parse_csv(document.to_csv())

    assert tuple(parsed.columns) == ALERT_COLUMNS
    assert parsed.rows == document.rows
    assert parsed.rows[0][3] == "Pump, Ward 3"


def test_alert_export_quotes_every_field():
    text = export_alerts([_alert("1", 3, 'say "hi"')]).to_csv()

    lines = text.split("\n")
    assert lines[0] == '"Timestamp","Event Type","Severity","System","Description"'
    assert lines[1] == (
        '"2025-01-15T03:00:00+00:00","Suspicious Login Attempt","high","ECG Monitor","say ""hi"""'
    )


def test_alert_export_is_newest_first():
    document = export_alerts([_alert("old", 1, "a"), _alert("new", 9, "b"), _alert("mid", 4, "c")])

    assert [row[4] for row in document.rows] == ["b", "c", "a"]


def test_log_export_flattens_details_and_names_unknown_systems(make_record):
    records = [
        make_record(record_id="1", event_type="login", system_id=1, ip_address="10.0.0.2", success=True),
        make_record(record_id="2", event_type="alarm", system_id=9),
    ]

    document = export_logs(records, {1: "ECG Monitor"})
    rows = parse_csv(document.to_csv()).as_dicts()

    assert tuple(document.columns) == LOG_COLUMNS
    assert rows[0]["System"] == "ECG Monitor"
    assert '"ip_address": "10.0.0.2"' in rows[0]["Details"]
    assert rows[1]["System"] == "Unknown"
    assert rows[1]["Details"] == "{}"


def test_empty_export_keeps_header():
    parsed = parse_csv(export_alerts([]).to_csv())

    assert tuple(parsed.columns) == ALERT_COLUMNS
    assert parsed.rows == []


def test_summaries_count_by_severity_and_events(make_record):
    alerts = [_alert("1", 3, "a"), _alert("2", 4, "b", severity=Severity.LOW)]
    records = [make_record(record_id="1", event_type="login"), make_record(record_id="2", event_type="login")]

    assert summarize_alerts(alerts) == {
        "total_alerts": 2,
        "low_alerts": 1,
        "medium_alerts": 0,
        "high_alerts": 1,
        "critical_alerts": 0,
    }
    assert summarize_logs(records, {1: "ECG Monitor"}) == {
        "total_logs": 2,
        "total_systems": 1,
        "unique_events": 1,
    }
