from typing import Optional

from fastapi import APIRouter, Depends

from medguard.core.dependencies import get_orchestrator, http_error_for
from medguard.schemas.analysis import SweepRequest, SweepResponse, SystemAnalysisRequest
from medguard.services.errors import IngestError, StoreError
from medguard.services.rule_engine import RULESET_VERSION
from medguard.services.sync_orchestrator import SyncOrchestrator, SystemNotFound

router = APIRouter()


@router.post("/analysis/systems/{system_id}", response_model=SweepResponse)
async def analyze_system(
    system_id: int,
    payload: Optional[SystemAnalysisRequest] = None,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
):
    """
    Pulls recent logs from one system, runs the detection rules and stores the alerts.
    """
    payload = payload or SystemAnalysisRequest()
    try:
        outcome, alerts = await orchestrator.analyze_one(system_id, payload.limit, payload.incremental)
    except (SystemNotFound, IngestError, StoreError) as exc:
        raise http_error_for(exc)
    return {
        "status": "ok",
        "ruleset_version": RULESET_VERSION,
        "alerts_generated": outcome.alerts_generated,
        "alerts_stored": outcome.alerts_stored,
        "alerts": alerts,
        "systems": [outcome],
        "failed_systems": []
    }


@router.post("/analysis/sweep", response_model=SweepResponse)
async def run_sweep(
    payload: Optional[SweepRequest] = None,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
):
    """
    Analyses every registered system (or the listed ones). Failing systems
    are reported in `failed_systems` instead of failing the request.
    """
    payload = payload or SweepRequest()
    result = await orchestrator.run_sweep(
        payload.system_ids, payload.per_system_limit, incremental=payload.incremental
    )
    failed = result.failed_systems
    status = "ok"
    if failed:
        status = "partial" if len(failed) < len(result.systems) else "failed"
    return {
        "status": status,
        "ruleset_version": result.ruleset_version,
        "alerts_generated": len(result.alerts),
        "alerts_stored": sum(s.alerts_stored for s in result.systems),
        "alerts": result.alerts,
        "systems": result.systems,
        "failed_systems": failed
    }
