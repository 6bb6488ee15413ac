"""
Concurrency tests: every caller gets its own session, as concurrent API
requests would, and the calls race through asyncio.gather.
"""

import asyncio

import pytest
from sqlalchemy import func, select

from app.core.errors import DuplicateActiveRequest, InsufficientCapacity, JoinRequestError
from app.models.join_request import JoinRequest, JoinRequestStatus
from app.schemas.join_request import JoinRequestCreate

from conftest import GUEST_ID, HOST_ID


async def _create(session_factory, make_service, event_id: int, user_id: int, party_size: int):
    async with session_factory() as session:
        service = make_service(session)
        try:
            return await service.create_join_request(event_id, user_id, JoinRequestCreate(party_size=party_size))
        except JoinRequestError as e:
            return e


@pytest.mark.asyncio
async def test_two_parties_of_six_on_ten_seats(session_factory, make_service, event):
    results = await asyncio.gather(
        _create(session_factory, make_service, event.id, 500, 6),
        _create(session_factory, make_service, event.id, 501, 6),
    )

    created = [r for r in results if isinstance(r, JoinRequest)]
    rejected = [r for r in results if isinstance(r, InsufficientCapacity)]
    assert len(created) == 1
    assert len(rejected) == 1

    async with session_factory() as session:
        availability = await make_service(session).get_event_availability(event.id)
    assert availability.held == 6
    assert availability.available == 4


@pytest.mark.asyncio
async def test_never_over_committed(session_factory, make_service, make_event):
    event = await make_event(capacity=7)
    sizes = [1, 2, 3, 2, 1, 3, 2, 1, 2, 3]
    results = await asyncio.gather(*[
        _create(session_factory, make_service, event.id, 600 + i, size) for i, size in enumerate(sizes)
    ])

    held = sum(r.party_size for r in results if isinstance(r, JoinRequest))
    assert held <= 7
    assert all(isinstance(r, (JoinRequest, InsufficientCapacity)) for r in results)

    async with session_factory() as session:
        availability = await make_service(session).get_event_availability(event.id)
    assert availability.confirmed + availability.held <= availability.total
    assert availability.held == held


@pytest.mark.asyncio
async def test_one_pending_request_per_guest(session_factory, make_service, event):
    results = await asyncio.gather(*[
        _create(session_factory, make_service, event.id, GUEST_ID, 1) for _ in range(5)
    ])

    assert sum(isinstance(r, JoinRequest) for r in results) == 1
    assert sum(isinstance(r, DuplicateActiveRequest) for r in results) == 4

    async with session_factory() as session:
        pending = await session.scalar(
            select(func.count(JoinRequest.id)).where(
                JoinRequest.event_id == event.id,
                JoinRequest.user_id == GUEST_ID,
                JoinRequest.status == JoinRequestStatus.PENDING.value,
            )
        )
    assert pending == 1


@pytest.mark.asyncio
async def test_concurrent_approvals_respect_capacity(session_factory, make_service, make_event):
    """Two waitlisted parties of 3 compete for 4 free seats."""
    event = await make_event(capacity=4)
    async with session_factory() as session:
        service = make_service(session)
        ids = []
        for user_id in (700, 701):
            request = await service.create_join_request(event.id, user_id, JoinRequestCreate(party_size=3))
            await service.waitlist_request(event.id, request.id, HOST_ID)
            ids.append(request.id)

    async def approve(request_id):
        async with session_factory() as session:
            service = make_service(session)
            try:
                return await service.repo.transition_status(
                    request_id,
                    JoinRequestStatus.APPROVED.value,
                    expected_current_status=JoinRequestStatus.WAITLISTED.value,
                    now=service.clock(),
                )
            except JoinRequestError as e:
                return e

    results = await asyncio.gather(approve(ids[0]), approve(ids[1]))
    assert sum(isinstance(r, JoinRequest) for r in results) == 1
    assert sum(isinstance(r, InsufficientCapacity) for r in results) == 1


@pytest.mark.asyncio
async def test_concurrent_sweeps_expire_once(session_factory, make_service, event, clock, notifier):
    async with session_factory() as session:
        service = make_service(session)
        for user_id in (800, 801, 802):
            await service.create_join_request(event.id, user_id, JoinRequestCreate(party_size=1))
    clock.advance(minutes=31)

    async def sweep():
        async with session_factory() as session:
            return await make_service(session).expire_holds()

    counts = await asyncio.gather(sweep(), sweep(), sweep())
    assert sum(counts) == 3
    assert notifier.types().count("hold_expired") == 3
