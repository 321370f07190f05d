"""Bid endpoints."""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.auth.middleware import AuthenticatedUser, verify_request
from servicehub.auth.rate_limit import check_rate_limit
from servicehub.database import get_db
from servicehub.schemas.bid import BidAcceptResponse, BidCreate, BidResponse
from servicehub.services import bids as bid_service

router = APIRouter(tags=["bids"], dependencies=[Depends(check_rate_limit)])


@router.post("/jobs/{job_id}/bids", response_model=BidResponse, status_code=201)
async def submit_bid(
    job_id: uuid.UUID,
    data: BidCreate,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> BidResponse:
    bid = await bid_service.submit_bid(db, job_id, auth.user_id, data.amount, data.equipment_cost)
    return BidResponse.model_validate(bid)


@router.get("/jobs/{job_id}/bids", response_model=list[BidResponse])
async def list_bids(
    job_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> list[BidResponse]:
    """All bids for the job's customer; a worker sees only their own."""
    bids = await bid_service.list_bids(db, job_id, auth.user)
    return [BidResponse.model_validate(b) for b in bids]


@router.post("/bids/{bid_id}/accept", response_model=BidAcceptResponse)
async def accept_bid(
    bid_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> BidAcceptResponse:
    bid, conversation = await bid_service.accept_bid(db, bid_id, auth.user_id)
    return BidAcceptResponse(
        bid=BidResponse.model_validate(bid),
        job_id=bid.job_id,
        conversation_chat_id=conversation.chat_id,
    )


@router.post("/bids/{bid_id}/reject", response_model=BidResponse)
async def reject_bid(
    bid_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> BidResponse:
    bid = await bid_service.reject_bid(db, bid_id, auth.user_id)
    return BidResponse.model_validate(bid)
