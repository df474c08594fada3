from fastapi import APIRouter, Request
from datetime import datetime, timezone

from medguard.services.rule_engine import RULES, RULESET_VERSION

router = APIRouter()
_STARTED_AT = datetime.now(timezone.utc)

@router.get("/health")
async def get_health():
    """
    Standard health check endpoint.
    """
    return {"status": "ok", "service": "medguard-log-sentinel"}


@router.get("/api/v1/health")
async def get_health_v1(request: Request):
    """
    Health check with uptime, rule set and scheduler state.
    """
    now = datetime.now(timezone.utc)
    uptime_seconds = int((now - _STARTED_AT).total_seconds())
    scheduler = getattr(request.app.state, "scheduler", None)
    return {
        "status": "ok",
        "service": "medguard-log-sentinel",
        "server_time": now.isoformat(),
        "uptime_seconds": uptime_seconds,
        "ruleset": {
            "version": RULESET_VERSION,
            "rules": [r.rule_id for r in RULES]
        },
        "scheduler": {
            "running": bool(scheduler and scheduler.running),
            "interval_seconds": scheduler.interval_seconds if scheduler else 0
        }
    }
