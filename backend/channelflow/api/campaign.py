import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from channelflow.api.deps import get_services, http_error
from channelflow.bootstrap import Services
from channelflow.exceptions import ChannelflowError
from channelflow.models.campaign import CampaignDefinition, CampaignRun, CampaignStep
from channelflow.models.journal import DispatchAttempt

logger = logging.getLogger(__name__)
router = APIRouter()


class CampaignRequest(BaseModel):
    campaign_id: Optional[str] = None
    name: str
    steps: List[CampaignStep] = Field(..., min_length=1)


class StartRunRequest(BaseModel):
    target_id: str
    started_at: Optional[datetime] = None


class EnrollRequest(BaseModel):
    content: str = Field(..., description="CSV export with an 'email' column")
    started_at: Optional[datetime] = None


class EnrollResponse(BaseModel):
    campaign_id: str
    runs_started: int
    run_ids: List[str]


class CancelRequest(BaseModel):
    reason: Optional[str] = None


@router.post("/campaigns", response_model=CampaignDefinition, status_code=201)
async def create_campaign(request: CampaignRequest, services: Services = Depends(get_services)):
    """Register a multi-step campaign definition."""
    data = request.model_dump(exclude_none=True)
    definition = CampaignDefinition(**data)
    logger.info(f"Campaign creation requested: {definition.campaign_id} ({definition.step_count} steps)")
    return await services.campaigns.register_campaign(definition)


@router.post("/campaigns/{campaign_id}/runs", response_model=CampaignRun, status_code=201)
async def start_run(campaign_id: str, request: StartRunRequest, services: Services = Depends(get_services)):
    try:
        return await services.campaigns.start_run(campaign_id, request.target_id, request.started_at)
    except ChannelflowError as e:
        raise http_error(e)


@router.post("/campaigns/{campaign_id}/enroll", response_model=EnrollResponse, status_code=201)
async def enroll_contacts(campaign_id: str, request: EnrollRequest, services: Services = Depends(get_services)):
    """Start a run for every contact in a CSV contact file."""
    try:
        runs = await services.campaigns.enroll_contacts(campaign_id, request.content, request.started_at)
    except ChannelflowError as e:
        raise http_error(e)
    return EnrollResponse(campaign_id=campaign_id, runs_started=len(runs), run_ids=[r.run_id for r in runs])


@router.get("/runs/{run_id}", response_model=CampaignRun)
async def get_run(run_id: str, services: Services = Depends(get_services)):
    try:
        return await services.campaigns.get_run(run_id)
    except ChannelflowError as e:
        raise http_error(e)


@router.post("/runs/{run_id}/cancel", response_model=CampaignRun)
async def cancel_run(run_id: str, request: Optional[CancelRequest] = None, services: Services = Depends(get_services)):
    try:
        return await services.campaigns.cancel_run(run_id, reason=request.reason if request else None)
    except ChannelflowError as e:
        raise http_error(e)


@router.get("/runs/{run_id}/journal", response_model=List[DispatchAttempt])
async def get_run_journal(run_id: str, services: Services = Depends(get_services)):
    """Every dispatch attempt of a run, oldest first."""
    try:
        await services.campaigns.get_run(run_id)
    except ChannelflowError as e:
        raise http_error(e)
    return await services.store.list_attempts(run_id)


@router.delete("/targets/{target_id}")
async def remove_target(target_id: str, services: Services = Depends(get_services)):
    """Cancel all active runs of a target removed upstream."""
    cancelled = await services.campaigns.remove_target(target_id)
    return {
        "message": "Target removed",
        "target_id": target_id,
        "cancelled_runs": [r.run_id for r in cancelled],
    }
