from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from starlette.responses import JSONResponse

from capacity_gate import __version__
from capacity_gate.core.logger import get_logger
from capacity_gate.services.providers import get_scaling_controller, get_scaling_loop
from capacity_gate.services.scaling_controller import ScalingController, ScalingLoop

router = APIRouter()
logger = get_logger(__name__)


@router.post("/run")
async def run_scaling_tick(controller: ScalingController = Depends(get_scaling_controller)):
    """Run one control-loop tick now"""
    report = await controller.run_once()
    if not report.success:
        logger.error(f"Manual scaling tick failed: {report.error}")
        return JSONResponse(status_code=502, content=report.to_dict())
    return report.to_dict()


@router.get("/status")
async def get_scaling_status(loop: ScalingLoop = Depends(get_scaling_loop)):
    """Periodic loop state and the last tick's report"""
    return {
        "running": loop.running,
        "interval_seconds": loop.interval_seconds,
        "tick_count": loop.tick_count,
        "service_id": loop.controller.service_id,
        "last_report": loop.last_report.to_dict() if loop.last_report else None,
    }


@router.get("/health")
async def scaling_health():
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": __version__,
    }
