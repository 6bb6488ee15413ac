"""
Join request endpoints.

Guests ask to join an event and may cancel; the host and co-hosts
review, approve, decline, waitlist and manage holds. Every
request-scoped route checks that the request belongs to the event in
the URL.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from app.api.deps import get_request_service
from app.core.security import get_current_user_id
from app.models.join_request import JoinRequestStatus
from app.schemas.join_request import (
    AvailabilityResponse,
    ExtendHoldRequest,
    JoinRequestCreate,
    JoinRequestResponse,
    ListRequestsQuery,
    PaginatedJoinRequests,
    PromoteResponse,
    ReorderWaitlistRequest,
)
from app.services.join_request_service import JoinRequestService

router = APIRouter(prefix="/events/{event_id}", tags=["Join Requests"])


@router.get("/availability", response_model=AvailabilityResponse)
async def get_availability(
    event_id: int,
    service: JoinRequestService = Depends(get_request_service),
):
    """Advisory seat counts. Holds that have elapsed are not counted."""
    availability = await service.get_event_availability(event_id)
    return availability.as_dict()


@router.post("/requests", response_model=JoinRequestResponse, status_code=status.HTTP_201_CREATED)
async def create_join_request(
    event_id: int,
    payload: JoinRequestCreate,
    user_id: int = Depends(get_current_user_id),
    service: JoinRequestService = Depends(get_request_service),
):
    """
    Request to join an event.

    The party's seats are held until the host decides or the hold
    expires. Fails with 409 when the event has no room, the caller
    already has a pending request, or the caller is already attending.
    """
    return await service.create_join_request(event_id, user_id, payload)


@router.get("/requests", response_model=PaginatedJoinRequests)
async def list_join_requests(
    event_id: int,
    limit: int = Query(25, ge=1, le=100),
    offset: int = Query(0, ge=0),
    status_filter: Optional[JoinRequestStatus] = Query(None, alias="status"),
    user_id: int = Depends(get_current_user_id),
    service: JoinRequestService = Depends(get_request_service),
):
    """Host view of the requests for an event, newest first."""
    query = ListRequestsQuery(limit=limit, offset=offset, status=status_filter)
    page = await service.list_join_requests(event_id, user_id, query)
    return PaginatedJoinRequests(
        data=[JoinRequestResponse.model_validate(item) for item in page.items],
        nextOffset=page.next_offset,
        totalCount=page.total_count,
    )


@router.post("/requests/promote", response_model=PromoteResponse)
async def promote_waitlist(
    event_id: int,
    user_id: int = Depends(get_current_user_id),
    service: JoinRequestService = Depends(get_request_service),
):
    moved = await service.promote_waitlist(event_id, user_id)
    return PromoteResponse(moved=moved)


@router.get("/requests/{request_id}", response_model=JoinRequestResponse)
async def get_join_request(
    event_id: int,
    request_id: int,
    user_id: int = Depends(get_current_user_id),
    service: JoinRequestService = Depends(get_request_service),
):
    return await service.get_join_request(event_id, request_id, user_id)


@router.patch("/requests/{request_id}/approve", response_model=JoinRequestResponse)
async def approve_request(
    event_id: int,
    request_id: int,
    user_id: int = Depends(get_current_user_id),
    service: JoinRequestService = Depends(get_request_service),
):
    """Approve a pending request. Capacity is re-checked at decision time."""
    return await service.approve_request(event_id, request_id, user_id)


@router.patch("/requests/{request_id}/decline", response_model=JoinRequestResponse)
async def decline_request(
    event_id: int,
    request_id: int,
    user_id: int = Depends(get_current_user_id),
    service: JoinRequestService = Depends(get_request_service),
):
    return await service.decline_request(event_id, request_id, user_id)


@router.patch("/requests/{request_id}/waitlist", response_model=JoinRequestResponse)
async def waitlist_request(
    event_id: int,
    request_id: int,
    user_id: int = Depends(get_current_user_id),
    service: JoinRequestService = Depends(get_request_service),
):
    return await service.waitlist_request(event_id, request_id, user_id)


@router.patch("/requests/{request_id}/cancel", response_model=JoinRequestResponse)
async def cancel_request(
    event_id: int,
    request_id: int,
    user_id: int = Depends(get_current_user_id),
    service: JoinRequestService = Depends(get_request_service),
):
    """Withdraw your own pending or waitlisted request."""
    return await service.cancel_request(event_id, request_id, user_id)


@router.post("/requests/{request_id}/extend", response_model=JoinRequestResponse)
async def extend_hold(
    event_id: int,
    request_id: int,
    payload: ExtendHoldRequest,
    user_id: int = Depends(get_current_user_id),
    service: JoinRequestService = Depends(get_request_service),
):
    """Push a pending hold's deadline out. Capacity is not re-checked."""
    return await service.extend_request_hold(event_id, request_id, user_id, payload.extension_minutes)


@router.patch("/requests/{request_id}/reorder", response_model=JoinRequestResponse)
async def reorder_waitlist(
    event_id: int,
    request_id: int,
    payload: ReorderWaitlistRequest,
    user_id: int = Depends(get_current_user_id),
    service: JoinRequestService = Depends(get_request_service),
):
    return await service.reorder_waitlist(event_id, request_id, user_id, payload.waitlist_pos)
