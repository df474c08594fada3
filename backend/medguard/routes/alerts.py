from datetime import datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from medguard.core.dependencies import get_alert_store, http_error_for
from medguard.schemas.alerts import AlertFilter, Severity, ThreatAlertResponse
from medguard.services.alert_store import AlertStore
from medguard.services.errors import StoreError

router = APIRouter()


def alert_filter_params(
    severity: Optional[Severity] = None,
    system_id: Optional[int] = None,
    since: Optional[datetime] = None,
    limit: int = Query(100, ge=1, le=1000)
) -> AlertFilter:
    return AlertFilter(severity=severity, system_id=system_id, since=since, limit=limit)


@router.get("/alerts", response_model=List[ThreatAlertResponse])
def get_alerts(
    alert_filter: AlertFilter = Depends(alert_filter_params),
    store: AlertStore = Depends(get_alert_store)
):
    """
    Lists stored threat alerts, newest first.
    """
    try:
        return store.list(alert_filter)
    except StoreError as exc:
        raise http_error_for(exc)


@router.get("/alerts/summary", response_model=Dict[str, int])
def get_alert_summary(
    alert_filter: AlertFilter = Depends(alert_filter_params),
    store: AlertStore = Depends(get_alert_store)
):
    try:
        counts = store.count_by_severity(alert_filter)
    except StoreError as exc:
        raise http_error_for(exc)
    return {"total": sum(counts.values()), **counts}
