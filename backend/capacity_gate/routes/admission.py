import math

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from starlette.responses import JSONResponse

from capacity_gate.core.exceptions import StoreUnavailableError
from capacity_gate.core.logger import get_logger
from capacity_gate.models.admission import AdmissionReason
from capacity_gate.services.admission_gate import AdmissionGate
from capacity_gate.services.providers import get_admission_gate

router = APIRouter()
logger = get_logger(__name__)

DENIAL_STATUS = {
    AdmissionReason.LIMIT_EXCEEDED: (402, "limit_exceeded", "Usage limit reached for your subscription tier"),
    AdmissionReason.RATE_LIMITED: (429, "rate_limit_error", "Rate limit exceeded"),
    AdmissionReason.STORE_UNAVAILABLE: (503, "store_unavailable", "Usage accounting temporarily unavailable"),
}


class AdmissionRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    tier: str = "FREE"
    operation: str = ""


class UsageCommit(BaseModel):
    user_id: str = Field(..., min_length=1)
    tier: str = "FREE"
    tokens: int = Field(0, ge=0)
    cost: float = Field(0.0, ge=0)


@router.post("/check")
async def check_admission(body: AdmissionRequest, gate: AdmissionGate = Depends(get_admission_gate)):
    """Run the admission gate for one request without processing it"""
    result = await gate.admit(body.user_id, body.tier, body.operation)
    if result.allowed:
        return result.to_dict()

    status_code, error_type, message = DENIAL_STATUS[result.reason]
    headers = {}
    if result.retry_after is not None:
        headers["Retry-After"] = str(max(1, math.ceil(result.retry_after)))
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {"code": status_code, "type": error_type, "message": message},
            "admission": result.to_dict(),
        },
        headers=headers,
    )


@router.get("/usage/{user_id}")
async def get_usage(
    user_id: str,
    tier: str = Query("FREE"),
    gate: AdmissionGate = Depends(get_admission_gate),
):
    """Daily and monthly requests, tokens and cost against the tier's limits"""
    try:
        usage = await gate.get_usage(user_id, tier)
    except StoreUnavailableError as e:
        logger.error(f"Failed to get usage for {user_id}: {e}")
        raise HTTPException(status_code=503, detail="Usage store unavailable")
    return usage.to_dict()


@router.post("/commit")
async def commit_usage(body: UsageCommit, gate: AdmissionGate = Depends(get_admission_gate)):
    """Record one processed request with its token count and cost"""
    usage = await gate.commit(body.user_id, body.tier, body.tokens, body.cost)
    if usage is None:
        raise HTTPException(status_code=503, detail="Usage store unavailable")
    return usage.to_dict()


@router.get("/recommendations/{user_id}")
async def get_recommendations(
    user_id: str,
    tier: str = Query("FREE"),
    gate: AdmissionGate = Depends(get_admission_gate),
):
    """Cost optimization recommendations from the user's current usage"""
    try:
        recommendations = await gate.get_recommendations(user_id, tier)
    except StoreUnavailableError as e:
        logger.error(f"Failed to get recommendations for {user_id}: {e}")
        raise HTTPException(status_code=503, detail="Usage store unavailable")
    return {
        "user_id": user_id,
        "recommendations": [r.to_dict() for r in recommendations],
    }
