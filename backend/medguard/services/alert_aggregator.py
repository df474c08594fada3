import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from medguard.core.config import rule_context, settings
from medguard.schemas.alerts import Finding, ThreatAlertCreate
from medguard.schemas.analysis import OutcomeStatus, SweepResult, SystemOutcome
from medguard.schemas.logs import LogRecord
from medguard.schemas.systems import ExternalSystemDescriptor
from medguard.services import rule_engine
from medguard.services.alert_store import AlertStore, alert_fingerprint
from medguard.services.errors import IngestError, StoreError
from medguard.services.log_source_adapter import LogSourceAdapter
from medguard.services.rules.base_rule import BaseRule

logger = logging.getLogger(__name__)


class AlertAggregator:
    """
    Turns log batches into persisted threat alerts.

    The adapter and the store are injected; the aggregator never touches
    descriptor status, which is the orchestrator's job.
    """

    def __init__(
        self,
        adapter: LogSourceAdapter,
        store: AlertStore,
        context: Optional[Dict[str, Any]] = None,
        max_workers: Optional[int] = None,
        unit_timeout: Optional[float] = None,
        rules: Optional[Sequence[BaseRule]] = None
    ):
        self.adapter = adapter
        self.store = store
        self.context = context if context is not None else rule_context()
        self.max_workers = max(1, max_workers or settings.SWEEP_MAX_WORKERS)
        self.unit_timeout = unit_timeout
        self.rules = rules

    def build_alerts(
        self,
        system: ExternalSystemDescriptor,
        record: LogRecord,
        findings: List[Finding]
    ) -> List[ThreatAlertCreate]:
        return [
            ThreatAlertCreate(
                system_id=system.id,
                system_name=system.name,
                rule_id=finding.rule_id,
                event_type=finding.category,
                severity=finding.severity,
                description=finding.description,
                source_record_id=record.id,
                source_timestamp=record.created_at,
                fingerprint=alert_fingerprint(system.id, record.id, finding.category)
            )
            for finding in findings
        ]

    def evaluate_batch(
        self,
        system: ExternalSystemDescriptor,
        records: List[LogRecord]
    ) -> List[ThreatAlertCreate]:
        """
        Rule evaluation only, no persistence. Order follows records, then rules.
        """
        alerts: List[ThreatAlertCreate] = []
        for record in records:
            findings = rule_engine.evaluate(record, system, self.context, self.rules)
            alerts.extend(self.build_alerts(system, record, findings))
        return alerts

    def analyze(
        self,
        system: ExternalSystemDescriptor,
        records: List[LogRecord]
    ) -> List[ThreatAlertCreate]:
        """
        Evaluates a batch from one system and submits the alerts to the store.
        StoreError propagates to the caller.
        """
        alerts = self.evaluate_batch(system, records)
        self.store.save(alerts)
        return alerts

    async def analyze_system(
        self,
        system: ExternalSystemDescriptor,
        limit: Optional[int] = None,
        since: Optional[datetime] = None,
        outcome: Optional[SystemOutcome] = None
    ) -> Tuple[SystemOutcome, List[ThreatAlertCreate]]:
        """
        Fetch, evaluate and persist for a single system. Ingest and store
        errors propagate so single-system callers can report them directly.

        A caller-supplied `outcome` is filled in as the unit progresses, so it
        still shows whether the fetch finished when a later step raises.
        """
        if outcome is None:
            outcome = SystemOutcome(
                system_id=system.id,
                system_name=system.name,
                status=OutcomeStatus.FAILED
            )
        fetch = self.adapter.fetch(system, limit, since=since)
        if self.unit_timeout:
            records = await asyncio.wait_for(fetch, timeout=self.unit_timeout)
        else:
            records = await fetch
        outcome.fetch_succeeded = True
        outcome.records_fetched = len(records)

        alerts = self.evaluate_batch(system, records)
        outcome.alerts_generated = len(alerts)
        outcome.alerts_stored = await asyncio.to_thread(self.store.save, alerts)
        outcome.status = OutcomeStatus.OK
        return outcome, alerts

    async def _run_unit(
        self,
        system: ExternalSystemDescriptor,
        limit: Optional[int],
        since: Optional[datetime] = None
    ) -> Tuple[SystemOutcome, List[ThreatAlertCreate]]:
        progress = SystemOutcome(
            system_id=system.id,
            system_name=system.name,
            status=OutcomeStatus.FAILED
        )
        try:
            return await self.analyze_system(system, limit, since=since, outcome=progress)
        except IngestError as exc:
            outcome = self._failed(progress, exc.kind, exc.message)
        except asyncio.TimeoutError:
            outcome = self._failed(progress, "timeout", "Timed out fetching logs")
        except StoreError as exc:
            outcome = self._failed(progress, exc.kind, exc.message)
        except Exception as exc:
            logger.exception("system analysis crashed", extra={"system_id": system.id})
            outcome = self._failed(progress, "internal_error", str(exc))
        logger.warning(
            "system skipped in sweep",
            extra={
                "system_id": system.id,
                "system_name": system.name,
                "error_kind": outcome.error_kind,
                "error_message": outcome.error_message
            }
        )
        return outcome, []

    def _failed(self, progress: SystemOutcome, kind: str, message: str) -> SystemOutcome:
        progress.status = OutcomeStatus.FAILED
        progress.error_kind = kind
        progress.error_message = message
        return progress

    async def analyze_all(
        self,
        systems: List[ExternalSystemDescriptor],
        per_system_limit: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None,
        incremental: bool = False
    ) -> SweepResult:
        """
        Sweeps every system with at most `max_workers` units in flight.
        With `incremental`, each system is only read past its `last_sync`.

        A failing system is reported in the result and never aborts the sweep.
        Once `cancel_event` is set, systems that have not started yet are
        skipped while running ones finish and keep their alerts.
        """
        limit = per_system_limit or settings.SWEEP_PER_SYSTEM_LIMIT
        semaphore = asyncio.Semaphore(self.max_workers)

        async def _unit(system: ExternalSystemDescriptor):
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    return (
                        SystemOutcome(
                            system_id=system.id,
                            system_name=system.name,
                            status=OutcomeStatus.CANCELLED
                        ),
                        []
                    )
                since = system.last_sync if incremental else None
                return await self._run_unit(system, limit, since)

        results = await asyncio.gather(*[_unit(system) for system in systems])

        alerts: List[ThreatAlertCreate] = []
        outcomes: List[SystemOutcome] = []
        for outcome, unit_alerts in results:
            outcomes.append(outcome)
            alerts.extend(unit_alerts)
        alerts.sort(key=lambda a: a.source_timestamp, reverse=True)

        logger.info(
            "sweep finished",
            extra={
                "systems": len(systems),
                "failed": sum(1 for o in outcomes if o.status == OutcomeStatus.FAILED),
                "cancelled": sum(1 for o in outcomes if o.status == OutcomeStatus.CANCELLED),
                "alerts_generated": len(alerts),
                "ruleset_version": rule_engine.RULESET_VERSION
            }
        )
        return SweepResult(
            ruleset_version=rule_engine.RULESET_VERSION,
            alerts=alerts,
            systems=outcomes
        )
