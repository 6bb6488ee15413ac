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

__all__ = [
    "AvailabilityResponse", "ExtendHoldRequest",
    "JoinRequestCreate", "JoinRequestResponse",
    "ListRequestsQuery", "PaginatedJoinRequests",
    "PromoteResponse", "ReorderWaitlistRequest",
]
