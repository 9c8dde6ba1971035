"""
LendTrust — Social Scoring API

Public endpoints:
    GET  /v1/social/proximity?borrower=&viewer=   - Pairwise social proximity
    GET  /v1/social/reputation/{address}          - Composite reputation (social + wallet)
    POST /v1/social/loan-support                  - Loan-level lender support
    GET  /v1/social/cache/stats                   - Cache and provider status

Scores are best effort and conservative on failure: HIGH risk or NONE
support may mean "no connection" or "data temporarily unavailable".
"""
import re
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
import structlog

from lendtrust.compute.pipeline import ScoringService, get_service
from lendtrust.trust.proximity import describe_risk
from lendtrust.trust.support import describe_support

logger = structlog.get_logger()

_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")

router = APIRouter(prefix="/v1/social", tags=["social-scoring"])


# =============================================
# REQUEST/RESPONSE MODELS
# =============================================

class ProximityResponse(BaseModel):
    borrower: str
    viewer: str
    mutual_count: int
    effective_mutual_weight: float
    social_distance: int
    risk_tier: str
    overlap_percent: float
    quality_tier: Optional[str] = None
    avg_quality: Optional[float] = None
    borrower_followers: int = 0
    viewer_followers: int = 0
    description: str


class ReputationResponse(BaseModel):
    address: str
    overall: int
    social_component: int
    wallet_component: int
    breakdown: Dict[str, int]
    badges: Dict[str, bool]


class LoanSupportRequest(BaseModel):
    borrower: str
    lenders: List[str] = Field(default_factory=list, max_length=500)
    include_details: bool = True


class LenderDetailResponse(BaseModel):
    address: str
    fid: Optional[int] = None
    mutual_connections: int
    is_connected: bool


class LoanSupportResponse(BaseModel):
    borrower: str
    total_lenders: int
    connected_lender_count: int
    average_mutual_connections: float
    percent_connected: int
    support_tier: str
    lender_details: Optional[List[LenderDetailResponse]] = None
    description: str


def _check_address(value: str, field: str) -> str:
    value = (value or "").strip()
    if not _ADDRESS_RE.match(value):
        raise HTTPException(status_code=422, detail=f"{field} must be a 0x-prefixed 20-byte hex address")
    return value.lower()


# =============================================
# ENDPOINTS
# =============================================

@router.get("/proximity", response_model=ProximityResponse)
async def get_proximity(
    borrower: str = Query(..., description="Borrower wallet address"),
    viewer: str = Query(..., description="Viewer / prospective lender wallet address"),
    service: ScoringService = Depends(get_service),
):
    borrower = _check_address(borrower, "borrower")
    viewer = _check_address(viewer, "viewer")
    score = await service.proximity(borrower, viewer)
    return ProximityResponse(
        borrower=borrower,
        viewer=viewer,
        description=describe_risk(score),
        **score.to_dict(),
    )


@router.get("/reputation/{address}", response_model=ReputationResponse)
async def get_reputation(address: str, service: ScoringService = Depends(get_service)):
    address = _check_address(address, "address")
    score = await service.reputation(address)
    if score is None:
        raise HTTPException(status_code=404, detail="Address could not be resolved")
    return ReputationResponse(address=address, **score.to_dict())


@router.post("/loan-support", response_model=LoanSupportResponse)
async def post_loan_support(body: LoanSupportRequest, service: ScoringService = Depends(get_service)):
    borrower = _check_address(body.borrower, "borrower")
    lenders = [_check_address(a, "lenders[]") for a in body.lenders]
    support = await service.loan_support(borrower, lenders)

    data = support.to_dict()
    if not body.include_details:
        data["lender_details"] = None
    return LoanSupportResponse(borrower=borrower, description=describe_support(support), **data)


@router.get("/cache/stats")
async def get_cache_stats(service: ScoringService = Depends(get_service)):
    return service.cache_stats()
