import pytest

from app.core.exceptions import (
    ValidationError, NotEligibleError, NotFoundError, IllegalTransitionError, PaymentFailedError,
)
from app.core.database import atomic
from app.models.engagement import EngagementStatusEnum as S
from app.models.payment import Payment, PaymentStatusEnum, PayoutStatusEnum
from app.repositories.payment_repo import PaymentRepository
from app.schemas.payment_schema import CheckoutCreate, ServicePurchase
from app.services.payment_service import PaymentService, PAYMENT_FAILED_REASON
from app.services.engagement_service import EngagementService
from app.utils.pagination import PageParams


async def test_checkout_creates_pending_payment(market, client_actor, expert_actor):
    engagement = await market.accepted_engagement(client_actor, expert_actor, price=300000)

    session = await market.payments.create_checkout_session(
        CheckoutCreate(engagement_id=engagement.engagement_id, amount=300000, currency="CHF"), client_actor
    )

    assert session.session_id.startswith("cs_")
    assert session.redirect_url.startswith("https://checkout.test/pay?")
    assert session.engagement_id == engagement.engagement_id

    payment = await market.payments.get_payment(session.payment_id, client_actor)
    assert payment.status == PaymentStatusEnum.pending
    assert payment.amount == 300000
    assert payment.platform_fee == 30000
    assert payment.net_amount == 270000
    assert payment.session_id == session.session_id


async def test_checkout_amount_must_match_engagement(market, client_actor, expert_actor):
    engagement = await market.accepted_engagement(client_actor, expert_actor)
    engagement_id = engagement.engagement_id

    with pytest.raises(ValidationError):
        await market.payments.create_checkout_session(
            CheckoutCreate(engagement_id=engagement_id, amount=1), client_actor
        )
    with pytest.raises(ValidationError):
        await market.payments.create_checkout_session(
            CheckoutCreate(engagement_id=engagement_id, currency="eur"), client_actor
        )


async def test_only_the_client_can_pay(market, client_actor, expert_actor):
    engagement = await market.accepted_engagement(client_actor, expert_actor)
    with pytest.raises(NotEligibleError):
        await market.payments.create_checkout_session(
            CheckoutCreate(engagement_id=engagement.engagement_id), expert_actor
        )


async def test_checkout_below_minimum_is_rejected(market, client_actor, expert_actor):
    with pytest.raises(ValidationError):
        await market.payments.create_checkout_session(
            CheckoutCreate(service=ServicePurchase(
                expert_id=expert_actor.user_id, title="Tiny fix", price=50, currency="chf",
            )),
            client_actor,
        )
    # 整段 rollback，不會留下 pending 的專案
    engagements, total = await market.engagements.list_my_engagements(client_actor, PageParams())
    assert total == 0


async def test_service_purchase_needs_a_real_expert(market, client_actor):
    with pytest.raises(NotFoundError):
        await market.payments.create_checkout_session(
            CheckoutCreate(service=ServicePurchase(
                expert_id=client_actor.user_id, title="Self purchase", price=10000, currency="chf",
            )),
            client_actor,
        )


async def test_gateway_failure_cancels_engagement(db, market, failing_gateway, client_actor, expert_actor):
    engagement = await market.accepted_engagement(client_actor, expert_actor)
    payments = PaymentService(db, failing_gateway)

    with pytest.raises(PaymentFailedError):
        await payments.create_checkout_session(CheckoutCreate(engagement_id=engagement.engagement_id), client_actor)

    engagement = await market.engagements.get_engagement(engagement.engagement_id, client_actor)
    assert engagement.status == S.cancelled
    assert engagement.cancellation_reason == PAYMENT_FAILED_REASON

    records = await market.payments.list_engagement_payments(engagement.engagement_id, client_actor)
    assert [p.status for p in records] == [PaymentStatusEnum.failed]
    assert records[0].failure_reason == "card_declined"


async def test_success_notification_marks_paid_once(market, client_actor, expert_actor):
    engagement = await market.accepted_engagement(client_actor, expert_actor)
    session = await market.payments.create_checkout_session(
        CheckoutCreate(engagement_id=engagement.engagement_id), client_actor
    )

    first = await market.payments.on_payment_succeeded(session.session_id)
    paid_at = first.paid_at
    second = await market.payments.on_payment_succeeded(session.session_id)

    assert first.status == S.paid
    assert second.status == S.paid
    assert second.paid_at == paid_at

    activities = await market.engagements.list_activities(engagement.engagement_id, client_actor)
    assert [a.kind for a in activities].count("mark_paid") == 1


async def test_failure_notification_cancels_unpaid_engagement(market, client_actor, expert_actor):
    engagement = await market.accepted_engagement(client_actor, expert_actor)
    session = await market.payments.create_checkout_session(
        CheckoutCreate(engagement_id=engagement.engagement_id), client_actor
    )

    cancelled = await market.payments.on_payment_failed(session.session_id, "insufficient_funds")
    assert cancelled.status == S.cancelled
    assert cancelled.cancellation_reason == PAYMENT_FAILED_REASON

    payment = await market.payments.get_payment(session.payment_id, client_actor)
    assert payment.status == PaymentStatusEnum.failed
    assert payment.failure_reason == "insufficient_funds"

    # 失敗之後才送來的成功通知不能把付款改回成功
    with pytest.raises(IllegalTransitionError):
        await market.payments.on_payment_succeeded(session.session_id)


async def test_unknown_session_is_not_found(market):
    with pytest.raises(NotFoundError):
        await market.payments.on_payment_succeeded("cs_does_not_exist")


async def test_payment_is_private_to_participants(market, client_actor, expert_actor, other_expert_actor, admin_actor):
    engagement = await market.accepted_engagement(client_actor, expert_actor)
    session = await market.payments.create_checkout_session(
        CheckoutCreate(engagement_id=engagement.engagement_id), client_actor
    )

    assert (await market.payments.get_payment(session.payment_id, expert_actor)).payment_id == session.payment_id
    assert (await market.payments.get_payment(session.payment_id, admin_actor)).payment_id == session.payment_id
    with pytest.raises(NotEligibleError):
        await market.payments.get_payment(session.payment_id, other_expert_actor)


async def test_payout_limited_to_completed_earnings(market, client_actor, expert_actor):
    await market.completed_engagement(client_actor, expert_actor, price=100000)
    # 已付款但尚未完成的專案不算入可提領餘額
    await market.paid_engagement(client_actor, expert_actor, price=50000)

    assert await market.payments.available_balance(expert_actor.user_id, "chf") == 90000

    with pytest.raises(ValidationError):
        await market.payments.request_payout(expert_actor, 90001, "chf")

    payout = await market.payments.request_payout(expert_actor, 60000, "chf")
    assert payout.status == PayoutStatusEnum.in_transit
    assert payout.gateway_payout_id.startswith("po_")
    assert await market.payments.available_balance(expert_actor.user_id, "chf") == 30000

    payouts, total = await market.payments.list_my_payouts(expert_actor, PageParams())
    assert total == 1
    assert payouts[0].amount == 60000


async def test_failed_payout_does_not_reduce_balance(db, market, failing_gateway, client_actor, expert_actor):
    await market.completed_engagement(client_actor, expert_actor, price=100000)

    payout = await PaymentService(db, failing_gateway).request_payout(expert_actor, 50000, "chf")
    assert payout.status == PayoutStatusEnum.failed
    assert payout.failure_reason == "payout_rejected"
    assert await market.payments.available_balance(expert_actor.user_id, "chf") == 90000


async def test_only_experts_request_payouts(market, client_actor):
    with pytest.raises(NotEligibleError):
        await market.payments.request_payout(client_actor, 10000, "chf")


async def test_second_checkout_reuses_open_session(market, client_actor, expert_actor):
    engagement = await market.accepted_engagement(client_actor, expert_actor, price=10000)

    first = await market.payments.create_checkout_session(
        CheckoutCreate(engagement_id=engagement.engagement_id), client_actor
    )
    second = await market.payments.create_checkout_session(
        CheckoutCreate(engagement_id=engagement.engagement_id), client_actor
    )

    assert second.session_id == first.session_id
    assert second.payment_id == first.payment_id
    assert second.redirect_url == first.redirect_url
    records = await market.payments.list_engagement_payments(engagement.engagement_id, client_actor)
    assert len(records) == 1


async def test_second_success_for_paid_engagement_is_refunded(db, market, client_actor, expert_actor):
    engagement = await market.accepted_engagement(client_actor, expert_actor, price=10000)
    engagement_id = engagement.engagement_id
    first = await market.payments.create_checkout_session(
        CheckoutCreate(engagement_id=engagement_id), client_actor
    )
    # 金流商那邊另外成立的第二個工作階段 (例如兩個分頁同時結帳)
    async with atomic(db):
        extra = await PaymentRepository(db).create_payment(Payment(
            engagement_id=engagement_id,
            payer_id=client_actor.user_id,
            payee_id=expert_actor.user_id,
            amount=10000,
            currency="chf",
            platform_fee=1000,
            net_amount=9000,
            status=PaymentStatusEnum.pending,
            session_id="cs_second_tab",
        ))
        extra_id = extra.payment_id

    paid = await market.payments.on_payment_succeeded(first.session_id)
    assert paid.status == S.paid
    # 第二筆成功通知不能回 409，否則金流商會一直重送
    again = await market.payments.on_payment_succeeded("cs_second_tab")
    assert again.status == S.paid

    extra = await market.payments.get_payment(extra_id, client_actor)
    assert extra.status == PaymentStatusEnum.refunded
    assert extra.refunded_at is not None
    kept = await market.payments.get_payment(first.payment_id, client_actor)
    assert kept.status == PaymentStatusEnum.succeeded

    await market.engagements.start_work(engagement_id, expert_actor)
    await market.engagements.deliver(engagement_id, expert_actor, "Done")
    completed = await market.engagements.accept(engagement_id, client_actor)

    assert await market.payments.available_balance(expert_actor.user_id, "chf") == completed.expert_payout == 9000
    activities = await market.engagements.list_activities(engagement_id, client_actor)
    assert [a.kind for a in activities].count("mark_paid") == 1


async def test_success_after_cancellation_is_refunded(db, market, client_actor, expert_actor):
    engagement = await market.accepted_engagement(client_actor, expert_actor)
    engagement_id = engagement.engagement_id
    session = await market.payments.create_checkout_session(
        CheckoutCreate(engagement_id=engagement_id), client_actor
    )
    await EngagementService(db).cancel(engagement_id, client_actor, "found someone else")

    result = await market.payments.on_payment_succeeded(session.session_id)
    assert result.status == S.cancelled

    payment = await market.payments.get_payment(session.payment_id, client_actor)
    assert payment.status == PaymentStatusEnum.refunded
    assert payment.failure_reason == "engagement_cancelled"
    assert await market.payments.available_balance(expert_actor.user_id, "chf") == 0

    engagement = await market.accepted_engagement(client_actor, expert_actor)
    session = await market.payments.create_checkout_session(
        CheckoutCreate(engagement_id=engagement.engagement_id), client_actor
    )
    await EngagementService(db).cancel(engagement.engagement_id, client_actor, "found someone else")

    with pytest.raises(IllegalTransitionError):
        await market.payments.on_payment_succeeded(session.session_id)

    # 整段 rollback：付款仍是 pending
    payment = await market.payments.get_payment(session.payment_id, client_actor)
    assert payment.status == PaymentStatusEnum.pending
