import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from pydantic import BaseModel
from sqlalchemy.orm import Session

from medguard.core.dependencies import get_alert_store, get_orchestrator, http_error_for
from medguard.database.db import get_db
from medguard.models.models import ReportRecord
from medguard.routes.alerts import alert_filter_params
from medguard.schemas.alerts import AlertFilter
from medguard.services.alert_store import AlertStore
from medguard.services.errors import StoreError
from medguard.services.report_exporter import (
    export_alerts,
    export_logs,
    summarize_alerts,
    summarize_logs,
)
from medguard.services.sync_orchestrator import SyncOrchestrator

router = APIRouter()
logger = logging.getLogger(__name__)


class ReportRecordResponse(BaseModel):
    id: int
    kind: str
    title: str
    export_format: str
    row_count: int
    summary: Dict[str, Any]
    generated_at: Optional[datetime]


def _csv_response(content: str, prefix: str) -> Response:
    day = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{prefix}-{day}.csv"'}
    )


def _record_report(db: Session, kind: str, title: str, row_count: int, summary: Dict[str, Any]) -> None:
    db.add(
        ReportRecord(
            kind=kind,
            title=title,
            export_format="csv",
            row_count=row_count,
            summary_json=json.dumps(summary)
        )
    )
    db.commit()


@router.get("/reports/alerts.csv")
def download_alerts_report(
    alert_filter: AlertFilter = Depends(alert_filter_params),
    store: AlertStore = Depends(get_alert_store),
    db: Session = Depends(get_db)
):
    try:
        alerts = store.list(alert_filter)
    except StoreError as exc:
        raise http_error_for(exc)
    document = export_alerts(alerts)
    _record_report(db, "alerts", "Threat Alerts Report", len(document.rows), summarize_alerts(alerts))
    return _csv_response(document.to_csv(), "threat-alerts")


@router.get("/reports/logs.csv")
async def download_logs_report(
    system_id: Optional[int] = None,
    limit: int = Query(50, ge=1, le=1000),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    db: Session = Depends(get_db)
):
    records, names, failures = await orchestrator.fetch_logs([system_id] if system_id else None, limit)
    if failures:
        logger.warning("logs report missing systems", extra={"failed_systems": failures})
    document = export_logs(records, names)
    summary = summarize_logs(records, names)
    summary["failed_systems"] = len(failures)
    _record_report(db, "logs", "External Systems Activity Report", len(document.rows), summary)
    return _csv_response(document.to_csv(), "external-systems-logs")


@router.get("/reports", response_model=List[ReportRecordResponse])
def list_reports(limit: int = Query(50, ge=1, le=500), db: Session = Depends(get_db)):
    rows = db.query(ReportRecord).order_by(ReportRecord.generated_at.desc(), ReportRecord.id.desc()).limit(limit).all()
    return [
        {
            "id": r.id,
            "kind": r.kind,
            "title": r.title,
            "export_format": r.export_format,
            "row_count": r.row_count,
            "summary": json.loads(r.summary_json) if r.summary_json else {},
            "generated_at": r.generated_at
        }
        for r in rows
    ]
