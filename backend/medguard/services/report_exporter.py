import csv
import io
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from medguard.schemas.alerts import Severity, ThreatAlertBase
from medguard.schemas.logs import LogRecord

ALERT_COLUMNS = ("Timestamp", "Event Type", "Severity", "System", "Description")
LOG_COLUMNS = ("Timestamp", "Event Type", "User ID", "System", "Details")


@dataclass
class TabularDocument:
    """
    Flat export: fixed header plus rows of strings in the same column order.
    """
    columns: Sequence[str]
    rows: List[List[str]] = field(default_factory=list)

    def to_csv(self) -> str:
        buffer = io.StringIO()
        # Every field is quoted and embedded quotes are doubled.
        writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
        writer.writerow(self.columns)
        writer.writerows(self.rows)
        return buffer.getvalue()

    def as_dicts(self) -> List[Dict[str, str]]:
        return [dict(zip(self.columns, row)) for row in self.rows]


def parse_csv(text: str) -> TabularDocument:
    reader = csv.reader(io.StringIO(text))
    rows = list(reader)
    if not rows:
        return TabularDocument(columns=())
    return TabularDocument(columns=tuple(rows[0]), rows=[list(r) for r in rows[1:]])


def _as_utc(value: Optional[datetime]) -> datetime:
    if value is None:
        return datetime.min.replace(tzinfo=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _format_timestamp(value: Optional[datetime]) -> str:
    if value is None:
        return ""
    return _as_utc(value).isoformat()


def _flatten_details(details: Any) -> str:
    if details is None:
        return ""
    if isinstance(details, str):
        return details
    return json.dumps(details, default=str, ensure_ascii=False)


def export_alerts(alerts: Iterable[ThreatAlertBase]) -> TabularDocument:
    ordered = sorted(alerts, key=lambda a: _as_utc(a.source_timestamp), reverse=True)
    rows = [
        [
            _format_timestamp(alert.source_timestamp),
            alert.event_type,
            Severity(alert.severity).value,
            alert.system_name,
            alert.description or ""
        ]
        for alert in ordered
    ]
    return TabularDocument(columns=ALERT_COLUMNS, rows=rows)


def export_logs(
    records: Iterable[LogRecord],
    system_names: Optional[Mapping[int, str]] = None
) -> TabularDocument:
    names = system_names or {}
    rows = [
        [
            _format_timestamp(record.created_at),
            record.event_type,
            record.user_id or "",
            names.get(record.system_id) or "Unknown",
            _flatten_details(record.raw_details)
        ]
        for record in records
    ]
    return TabularDocument(columns=LOG_COLUMNS, rows=rows)


def summarize_alerts(alerts: Iterable[ThreatAlertBase]) -> Dict[str, int]:
    summary = {"total_alerts": 0}
    for sev in Severity:
        summary[f"{sev.value}_alerts"] = 0
    for alert in alerts:
        summary["total_alerts"] += 1
        summary[f"{Severity(alert.severity).value}_alerts"] += 1
    return summary


def summarize_logs(
    records: Sequence[LogRecord],
    system_names: Optional[Mapping[int, str]] = None
) -> Dict[str, int]:
    names = system_names or {}
    return {
        "total_logs": len(records),
        "total_systems": len(names),
        "unique_events": len({r.event_type for r in records})
    }
