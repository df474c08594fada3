import asyncio
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from medguard.core.dependencies import get_adapter, get_orchestrator, http_error_for
from medguard.database.db import get_db
from medguard.models.models import ExternalSystem
from medguard.schemas.logs import LogRecordResponse
from medguard.schemas.systems import (
    ConnectionTestRequest,
    ConnectionTestResponse,
    ExternalSystemCreate,
    ExternalSystemResponse,
)
from medguard.services.errors import IngestError
from medguard.services.log_source_adapter import LogSourceAdapter, describe_ingest_error
from medguard.services.sync_orchestrator import SyncOrchestrator, SystemNotFound

router = APIRouter()


class LogsResponse(BaseModel):
    logs: List[LogRecordResponse]
    failed_systems: List[Dict[str, Any]]


def _log_rows(records, names) -> List[LogRecordResponse]:
    return [
        LogRecordResponse(
            id=r.id,
            system_id=r.system_id,
            system_name=names.get(r.system_id) or "Unknown",
            event_type=r.event_type,
            created_at=r.created_at,
            user_id=r.user_id,
            details=r.raw_details
        )
        for r in records
    ]


@router.post("/systems", response_model=ExternalSystemResponse, status_code=201)
async def register_system(
    payload: ExternalSystemCreate,
    db: Session = Depends(get_db),
    adapter: LogSourceAdapter = Depends(get_adapter)
):
    """
    Registers an external log source, optionally checking the connection first.
    """
    existing = db.query(ExternalSystem).filter(ExternalSystem.name == payload.name).first()
    if existing:
        raise HTTPException(status_code=409, detail="External system already registered")

    if payload.validate_connection:
        try:
            await adapter.probe(payload.url, payload.api_key)
        except IngestError as exc:
            raise HTTPException(
                status_code=400,
                detail={"kind": exc.kind, "message": describe_ingest_error(exc)}
            )

    system = ExternalSystem(
        name=payload.name,
        system_type=payload.system_type,
        description=payload.description,
        url=payload.url,
        api_key=payload.api_key,
        status=payload.status.value
    )
    db.add(system)
    db.commit()
    db.refresh(system)
    return system


@router.get("/systems", response_model=List[ExternalSystemResponse])
def list_systems(db: Session = Depends(get_db)):
    return db.query(ExternalSystem).order_by(ExternalSystem.created_at.desc(), ExternalSystem.id.desc()).all()


@router.post("/systems/test-connection", response_model=ConnectionTestResponse)
async def test_connection(
    payload: ConnectionTestRequest,
    adapter: LogSourceAdapter = Depends(get_adapter)
):
    try:
        await adapter.probe(payload.url, payload.api_key)
    except IngestError as exc:
        return ConnectionTestResponse(success=False, message=describe_ingest_error(exc), error_kind=exc.kind)
    return ConnectionTestResponse(success=True, message="Connection successful! System logs table found.")


@router.get("/systems/logs", response_model=LogsResponse)
async def get_all_system_logs(
    limit: int = Query(50, ge=1, le=1000),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
):
    """
    Recent logs from every registered system, newest first. Failing systems are skipped.
    """
    records, names, failures = await orchestrator.fetch_logs(None, limit)
    return {"logs": _log_rows(records, names), "failed_systems": failures}


@router.get("/systems/{system_id}", response_model=ExternalSystemResponse)
def get_system(system_id: int, db: Session = Depends(get_db)):
    system = db.query(ExternalSystem).filter(ExternalSystem.id == system_id).first()
    if not system:
        raise HTTPException(status_code=404, detail="External system not found")
    return system


@router.get("/systems/{system_id}/logs", response_model=LogsResponse)
async def get_system_logs(
    system_id: int,
    limit: int = Query(100, ge=1, le=1000),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    adapter: LogSourceAdapter = Depends(get_adapter)
):
    try:
        system = await asyncio.to_thread(orchestrator.get_system, system_id)
        records = await adapter.fetch(system, limit)
    except (SystemNotFound, IngestError) as exc:
        raise http_error_for(exc)
    return {"logs": _log_rows(records, {system.id: system.name}), "failed_systems": []}


@router.post("/systems/{system_id}/sync", response_model=ExternalSystemResponse)
async def sync_system(
    system_id: int,
    db: Session = Depends(get_db),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
):
    """
    Re-checks the connection and updates status. Reads no logs.
    """
    try:
        await orchestrator.sync_system(system_id)
    except (SystemNotFound, IngestError) as exc:
        raise http_error_for(exc)
    return db.query(ExternalSystem).filter(ExternalSystem.id == system_id).first()
