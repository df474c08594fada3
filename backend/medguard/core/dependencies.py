from fastapi import HTTPException, Request

from medguard.services.alert_store import AlertStore
from medguard.services.errors import IngestError, StoreError
from medguard.services.log_source_adapter import LogSourceAdapter, describe_ingest_error
from medguard.services.sync_orchestrator import SyncOrchestrator, SystemNotFound

# Process-wide services are built once in the app lifespan and injected from app.state.


def get_alert_store(request: Request) -> AlertStore:
    return request.app.state.alert_store


def get_adapter(request: Request) -> LogSourceAdapter:
    return request.app.state.adapter


def get_orchestrator(request: Request) -> SyncOrchestrator:
    return request.app.state.orchestrator


def http_error_for(exc: Exception) -> HTTPException:
    if isinstance(exc, SystemNotFound):
        return HTTPException(status_code=404, detail="External system not found")
    if isinstance(exc, IngestError):
        return HTTPException(
            status_code=502,
            detail={"kind": exc.kind, "message": exc.message, "hint": describe_ingest_error(exc)}
        )
    if isinstance(exc, StoreError):
        return HTTPException(
            status_code=503,
            detail={"kind": exc.kind, "message": exc.message, "saved": exc.saved}
        )
    return HTTPException(status_code=500, detail="Internal error")
