import hashlib
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from medguard.models.models import ThreatAlert
from medguard.schemas.alerts import AlertFilter, Severity, ThreatAlertCreate, ThreatAlertResponse
from medguard.services.errors import StoreError

logger = logging.getLogger(__name__)


def alert_fingerprint(system_id: int, source_record_id: str, category: str) -> str:
    """
    Natural key of an alert: one row per (system, source event, detection category).
    """
    payload = f"{system_id}|{source_record_id}|{category}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_row(alert: ThreatAlertCreate) -> ThreatAlert:
    return ThreatAlert(
        system_id=alert.system_id,
        system_name=alert.system_name,
        rule_id=alert.rule_id,
        event_type=alert.event_type,
        severity=alert.severity.value,
        description=alert.description,
        source_record_id=alert.source_record_id,
        source_timestamp=_ensure_utc(alert.source_timestamp),
        is_resolved=False,
        fingerprint=alert.fingerprint
    )


def _to_response(row: ThreatAlert) -> ThreatAlertResponse:
    alert = ThreatAlertResponse.model_validate(row)
    alert.source_timestamp = _ensure_utc(alert.source_timestamp)
    alert.created_at = _ensure_utc(alert.created_at)
    return alert


class AlertStore:
    """
    Durable threat alerts with insert-if-absent semantics on the fingerprint.

    Every call opens its own session, so concurrent sweep workers can share one store.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def save(self, alerts: List[ThreatAlertCreate]) -> int:
        """
        Persists alerts not already stored and returns how many rows were written.
        Raises StoreError carrying the committed count and the unsaved remainder.
        """
        if not alerts:
            return 0

        db = self.session_factory()
        try:
            unique: Dict[str, ThreatAlertCreate] = {}
            for alert in alerts:
                unique.setdefault(alert.fingerprint, alert)

            try:
                rows = (
                    db.query(ThreatAlert.fingerprint)
                    .filter(ThreatAlert.fingerprint.in_(list(unique.keys())))
                    .all()
                )
            except SQLAlchemyError as exc:
                raise StoreError(f"Unable to read existing alerts: {exc}", 0, list(unique.values())) from exc
            existing = {r[0] for r in rows}

            pending = [a for fp, a in unique.items() if fp not in existing]
            skipped_duplicates = len(alerts) - len(pending)
            if not pending:
                logger.debug("alerts skipped", extra={"reason": "duplicate", "count": skipped_duplicates})
                return 0

            try:
                db.add_all([_to_row(a) for a in pending])
                db.commit()
                stored = len(pending)
            except IntegrityError:
                # A concurrent writer got there first; fall back to row-by-row inserts.
                db.rollback()
                stored = self._save_one_by_one(db, pending)
            except SQLAlchemyError as exc:
                db.rollback()
                raise StoreError(f"Unable to persist alerts: {exc}", 0, pending) from exc

            logger.info(
                "alerts stored",
                extra={"stored": stored, "skipped_duplicates": len(alerts) - stored}
            )
            return stored
        finally:
            db.close()

    def _save_one_by_one(self, db: Session, pending: List[ThreatAlertCreate]) -> int:
        stored = 0
        for index, alert in enumerate(pending):
            try:
                db.add(_to_row(alert))
                db.commit()
                stored += 1
            except IntegrityError:
                db.rollback()
                logger.debug("alert skipped", extra={"reason": "duplicate", "fingerprint": alert.fingerprint})
            except SQLAlchemyError as exc:
                db.rollback()
                raise StoreError(
                    f"Unable to persist alert {alert.fingerprint}: {exc}",
                    stored,
                    pending[index:]
                ) from exc
        return stored

    def _filtered(self, db: Session, alert_filter: AlertFilter):
        query = db.query(ThreatAlert)
        if alert_filter.severity is not None:
            query = query.filter(ThreatAlert.severity == alert_filter.severity.value)
        if alert_filter.system_id is not None:
            query = query.filter(ThreatAlert.system_id == alert_filter.system_id)
        if alert_filter.since is not None:
            query = query.filter(ThreatAlert.source_timestamp >= _ensure_utc(alert_filter.since))
        return query

    def list(self, alert_filter: Optional[AlertFilter] = None) -> List[ThreatAlertResponse]:
        """
        Stored alerts matching the filter, newest source timestamp first.
        """
        alert_filter = alert_filter or AlertFilter()
        db = self.session_factory()
        try:
            rows = (
                self._filtered(db, alert_filter)
                .order_by(ThreatAlert.source_timestamp.desc(), ThreatAlert.id.desc())
                .limit(max(1, alert_filter.limit))
                .all()
            )
            return [_to_response(r) for r in rows]
        except SQLAlchemyError as exc:
            raise StoreError(f"Unable to list alerts: {exc}") from exc
        finally:
            db.close()

    def count_by_severity(self, alert_filter: Optional[AlertFilter] = None) -> Dict[str, int]:
        alert_filter = alert_filter or AlertFilter()
        db = self.session_factory()
        try:
            rows = (
                self._filtered(db, alert_filter)
                .with_entities(ThreatAlert.severity, func.count(ThreatAlert.id))
                .group_by(ThreatAlert.severity)
                .all()
            )
        except SQLAlchemyError as exc:
            raise StoreError(f"Unable to count alerts: {exc}") from exc
        finally:
            db.close()
        counts = {sev.value: 0 for sev in Severity}
        for severity, count in rows:
            counts[str(severity)] = int(count)
        return counts
