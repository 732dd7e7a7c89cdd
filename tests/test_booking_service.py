from datetime import datetime, timedelta

import pytest
from sqlalchemy import update

from app.core.exceptions import ValidationError, NotEligibleError, NotFoundError, IllegalTransitionError
from app.models.booking import Booking, BookingStatusEnum
from app.models.engagement import EngagementStatusEnum
from app.schemas.booking_schema import BookingCreate
from app.services.booking_service import BookingService
from app.utils.pagination import PageParams


def make_booking(expert_id, **overrides):
    data = dict(
        expert_id=expert_id,
        title="Quarterly tax review",
        message="We need help reviewing our quarterly tax filings.",
        proposed_budget=120000,
        currency="CHF",
    )
    data.update(overrides)
    return BookingCreate(**data)


async def test_create_booking(db, client_actor, expert_actor):
    booking = await BookingService(db).create_booking(make_booking(expert_actor.user_id), client_actor)

    assert booking.status == BookingStatusEnum.pending
    assert booking.currency == "chf"
    assert booking.expires_at > datetime.now() + timedelta(days=6)


async def test_booking_needs_client_and_real_expert(db, client_actor, expert_actor, other_expert_actor):
    service = BookingService(db)
    with pytest.raises(NotEligibleError):
        await service.create_booking(make_booking(other_expert_actor.user_id), expert_actor)
    with pytest.raises(NotFoundError):
        await service.create_booking(make_booking(client_actor.user_id), client_actor)


async def test_booking_dates_must_be_ordered(db, client_actor, expert_actor):
    start = datetime.now() + timedelta(days=10)
    with pytest.raises(ValidationError):
        await BookingService(db).create_booking(
            make_booking(expert_actor.user_id, proposed_start_date=start, proposed_deadline=start - timedelta(days=1)),
            client_actor,
        )


async def test_accepting_booking_creates_engagement(db, market, client_actor, expert_actor):
    service = BookingService(db)
    booking = await service.create_booking(make_booking(expert_actor.user_id), client_actor)

    accepted = await service.respond(booking.booking_id, expert_actor, True, "Happy to help")

    assert accepted.status == BookingStatusEnum.accepted
    assert accepted.expert_response == "Happy to help"
    assert accepted.engagement_id is not None

    engagement = await market.engagements.get_engagement(accepted.engagement_id, client_actor)
    assert engagement.status == EngagementStatusEnum.accepted
    assert engagement.booking_id == booking.booking_id
    assert engagement.price == 120000
    assert engagement.platform_fee == 12000
    assert engagement.expert_payout == 108000
    assert engagement.revisions_allowed == 2


async def test_declining_booking(db, client_actor, expert_actor):
    service = BookingService(db)
    booking = await service.create_booking(make_booking(expert_actor.user_id), client_actor)

    declined = await service.respond(booking.booking_id, expert_actor, False, "Fully booked this month")
    assert declined.status == BookingStatusEnum.declined
    assert declined.engagement_id is None

    with pytest.raises(IllegalTransitionError):
        await service.respond(booking.booking_id, expert_actor, True)


async def test_only_booked_expert_responds(db, client_actor, expert_actor, other_expert_actor):
    service = BookingService(db)
    booking = await service.create_booking(make_booking(expert_actor.user_id), client_actor)

    with pytest.raises(NotEligibleError):
        await service.respond(booking.booking_id, other_expert_actor, True)


async def test_accept_without_budget_is_invalid(db, client_actor, expert_actor):
    service = BookingService(db)
    booking = await service.create_booking(make_booking(expert_actor.user_id, proposed_budget=None), client_actor)
    booking_id = booking.booking_id

    with pytest.raises(ValidationError):
        await service.respond(booking_id, expert_actor, True)

    # 仍可婉拒
    declined = await service.respond(booking_id, expert_actor, False)
    assert declined.status == BookingStatusEnum.declined


async def test_expired_booking_cannot_be_answered(db, client_actor, expert_actor):
    service = BookingService(db)
    booking = await service.create_booking(make_booking(expert_actor.user_id), client_actor)
    booking_id = booking.booking_id
    await db.execute(
        update(Booking)
        .where(Booking.booking_id == booking_id)
        .values(expires_at=datetime.now() - timedelta(minutes=1))
    )
    await db.commit()

    with pytest.raises(IllegalTransitionError):
        await service.respond(booking_id, expert_actor, True)

    booking = await service.booking_repo.get_booking_by_id(booking_id)
    assert booking.status == BookingStatusEnum.expired


async def test_client_cancels_pending_booking(db, client_actor, expert_actor):
    service = BookingService(db)
    booking = await service.create_booking(make_booking(expert_actor.user_id), client_actor)
    booking_id = booking.booking_id

    with pytest.raises(NotEligibleError):
        await service.cancel_booking(booking_id, expert_actor)

    cancelled = await service.cancel_booking(booking_id, client_actor)
    assert cancelled.status == BookingStatusEnum.cancelled

    with pytest.raises(IllegalTransitionError):
        await service.cancel_booking(booking_id, client_actor)


async def test_list_my_bookings_for_both_sides(db, client_actor, expert_actor):
    service = BookingService(db)
    await service.create_booking(make_booking(expert_actor.user_id), client_actor)
    await service.create_booking(make_booking(expert_actor.user_id, title="Annual audit"), client_actor)

    _, client_total = await service.list_my_bookings(client_actor, PageParams())
    bookings, expert_total = await service.list_my_bookings(expert_actor, PageParams())
    assert client_total == 2
    assert expert_total == 2
    assert {b.title for b in bookings} == {"Quarterly tax review", "Annual audit"}
