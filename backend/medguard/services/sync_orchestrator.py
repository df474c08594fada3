import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from medguard.models.models import ExternalSystem
from medguard.schemas.alerts import ThreatAlertCreate
from medguard.schemas.analysis import OutcomeStatus, SweepResult, SystemOutcome
from medguard.schemas.logs import LogRecord
from medguard.schemas.systems import ExternalSystemDescriptor, SystemStatus
from medguard.services.alert_aggregator import AlertAggregator
from medguard.services.errors import IngestError, StoreError
from medguard.services.log_source_adapter import LogSourceAdapter

logger = logging.getLogger(__name__)


class SystemNotFound(LookupError):
    def __init__(self, system_id: int):
        super().__init__(f"External system {system_id} not found")
        self.system_id = system_id


def to_descriptor(row: ExternalSystem) -> ExternalSystemDescriptor:
    return ExternalSystemDescriptor(
        id=row.id,
        name=row.name,
        system_type=row.system_type or "Medical Device",
        url=row.url,
        api_key=row.api_key,
        status=SystemStatus(row.status or SystemStatus.ACTIVE.value),
        last_sync=row.last_sync
    )


class SyncOrchestrator:
    """
    Drives sweeps and single-system actions, and is the only place that
    writes `status` / `last_sync` back onto registered systems.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        adapter: LogSourceAdapter,
        aggregator: AlertAggregator
    ):
        self.session_factory = session_factory
        self.adapter = adapter
        self.aggregator = aggregator

    def load_systems(self, system_ids: Optional[List[int]] = None) -> List[ExternalSystemDescriptor]:
        """
        Registered systems to poll. Inactive systems are left out unless asked for by id.
        """
        db = self.session_factory()
        try:
            query = db.query(ExternalSystem)
            if system_ids:
                query = query.filter(ExternalSystem.id.in_(system_ids))
            else:
                query = query.filter(ExternalSystem.status != SystemStatus.INACTIVE.value)
            rows = query.order_by(ExternalSystem.id.asc()).all()
            return [to_descriptor(r) for r in rows]
        finally:
            db.close()

    def get_system(self, system_id: int) -> ExternalSystemDescriptor:
        db = self.session_factory()
        try:
            row = db.query(ExternalSystem).filter(ExternalSystem.id == system_id).first()
            if not row:
                raise SystemNotFound(system_id)
            return to_descriptor(row)
        finally:
            db.close()

    def record_sync_result(
        self,
        system_id: int,
        succeeded: bool,
        error_message: Optional[str] = None,
        synced_at: Optional[datetime] = None,
        advance_last_sync: bool = True
    ) -> None:
        """
        `last_sync` is the read watermark for incremental analysis. It should be
        taken before the read started, so rows written while it ran are picked
        up next time, and it is left alone when the alerts were not persisted.
        """
        db = self.session_factory()
        try:
            row = db.query(ExternalSystem).filter(ExternalSystem.id == system_id).first()
            if not row:
                return
            if succeeded:
                row.status = SystemStatus.ACTIVE.value
                row.last_error = None
                if advance_last_sync:
                    row.last_sync = synced_at or datetime.now(timezone.utc)
            else:
                row.status = SystemStatus.ERROR.value
                row.last_error = error_message
            db.commit()
        finally:
            db.close()

    def _apply_outcomes(self, outcomes: List[SystemOutcome], synced_at: datetime) -> None:
        for outcome in outcomes:
            if outcome.status == OutcomeStatus.CANCELLED:
                continue
            if outcome.fetch_succeeded:
                # The source answered even if a later step failed.
                self.record_sync_result(
                    outcome.system_id,
                    True,
                    synced_at=synced_at,
                    advance_last_sync=outcome.status == OutcomeStatus.OK
                )
            else:
                self.record_sync_result(outcome.system_id, False, outcome.error_message)

    async def run_sweep(
        self,
        system_ids: Optional[List[int]] = None,
        per_system_limit: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None,
        incremental: bool = True
    ) -> SweepResult:
        started = datetime.now(timezone.utc)
        systems = await asyncio.to_thread(self.load_systems, system_ids)
        result = await self.aggregator.analyze_all(
            systems, per_system_limit, cancel_event, incremental=incremental
        )
        await asyncio.to_thread(self._apply_outcomes, result.systems, started)
        return result

    async def analyze_one(
        self,
        system_id: int,
        limit: Optional[int] = None,
        incremental: bool = True
    ) -> Tuple[SystemOutcome, List[ThreatAlertCreate]]:
        started = datetime.now(timezone.utc)
        system = await asyncio.to_thread(self.get_system, system_id)
        since = system.last_sync if incremental else None
        try:
            outcome, alerts = await self.aggregator.analyze_system(system, limit, since=since)
        except IngestError as exc:
            await asyncio.to_thread(self.record_sync_result, system.id, False, exc.message)
            raise
        except StoreError:
            # The source answered; only persistence failed.
            await asyncio.to_thread(
                lambda: self.record_sync_result(system.id, True, advance_last_sync=False)
            )
            raise
        await asyncio.to_thread(self.record_sync_result, system.id, True, None, started)
        return outcome, alerts

    async def sync_system(self, system_id: int) -> ExternalSystemDescriptor:
        """
        Connection check for one system; raises IngestError after marking it as failed.
        No logs are read, so `last_sync` does not move.
        """
        system = await asyncio.to_thread(self.get_system, system_id)
        try:
            await self.adapter.validate(system)
        except IngestError as exc:
            await asyncio.to_thread(self.record_sync_result, system.id, False, exc.message)
            raise
        await asyncio.to_thread(
            lambda: self.record_sync_result(system.id, True, advance_last_sync=False)
        )
        return await asyncio.to_thread(self.get_system, system_id)

    async def fetch_logs(
        self,
        system_ids: Optional[List[int]] = None,
        limit: Optional[int] = None
    ) -> Tuple[List[LogRecord], Dict[int, str], List[Dict[str, object]]]:
        """
        Raw logs for viewing and export, merged across systems newest first.
        Systems that fail are reported and skipped.
        """
        systems = await asyncio.to_thread(self.load_systems, system_ids)
        names = {s.id: s.name for s in systems}

        async def _one(system: ExternalSystemDescriptor):
            try:
                return system, await self.adapter.fetch(system, limit), None
            except IngestError as exc:
                logger.warning(
                    "log fetch failed",
                    extra={"system_id": system.id, "error_kind": exc.kind}
                )
                return system, [], exc

        results = await asyncio.gather(*[_one(s) for s in systems])
        records: List[LogRecord] = []
        failures: List[Dict[str, object]] = []
        for system, fetched, error in results:
            if error is not None:
                failures.append({"system_id": system.id, "system_name": system.name, **error.to_dict()})
                continue
            records.extend(fetched)
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records, names, failures
