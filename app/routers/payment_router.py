# app/routers/payment_router.py

import logging
import secrets
from fastapi import APIRouter, Depends, Header, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from app.services.payment_service import PaymentService
from app.schemas.payment_schema import (
    CheckoutCreate, CheckoutSessionOut, PaymentOut, PaymentWebhookEvent,
    PayoutRequest, PayoutOut, BalanceOut
)
from app.schemas.engagement_schema import EngagementOut
from app.schemas.common_schema import ApiResponse, PaginatedResponse
from app.schemas.user_schema import Actor
from app.core.config import settings
from app.core.exceptions import ValidationError, UnauthorizedError
from app.core.payment_gateway import PaymentGateway, get_payment_gateway
from app.core.security import get_current_actor
from app.core.database import get_db
from app.utils.money import normalize_currency
from app.utils.pagination import PageParams, page_params, build_meta

logger = logging.getLogger(__name__)

# 結帳與金流回呼
router = APIRouter(
    prefix="/payments",
    tags=["Payments"]
)

# 專家撥款
payout_router = APIRouter(
    prefix="/payouts",
    tags=["Payouts"]
)

def get_payment_service(
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> PaymentService:
    return PaymentService(db, gateway)


@router.post(
    "/checkout",
    response_model=ApiResponse[CheckoutSessionOut],
    status_code=status.HTTP_201_CREATED,
    summary="建立結帳工作階段 (發案方)"
)
async def api_create_checkout(
    data: CheckoutCreate,
    service: PaymentService = Depends(get_payment_service),
    actor: Actor = Depends(get_current_actor),
):
    """
    (發案方) 為專案付款，或直接購買專家的服務方案。

    - `engagementId`：為已成立 (pending / accepted) 的專案付款
    - `service`：直接購買，會先成立一個 pending 的專案

    回傳金流商的付款頁網址；付款結果由金流商透過 /payments/webhook 通知。
    """
    session = await service.create_checkout_session(data, actor)
    return ApiResponse[CheckoutSessionOut](data=session)

@router.post(
    "/webhook",
    response_model=ApiResponse[EngagementOut],
    summary="金流商付款結果通知"
)
async def api_payment_webhook(
    event: PaymentWebhookEvent,
    webhook_secret: Optional[str] = Header(None, alias="X-Webhook-Secret"),
    service: PaymentService = Depends(get_payment_service),
):
    """
    (金流商) 通知付款成功或失敗。同一通知重送不會重複處理。
    """
    if not webhook_secret or not secrets.compare_digest(webhook_secret, settings.PAYMENT_WEBHOOK_SECRET):
        logger.warning(f"付款通知驗證失敗 (session {event.session_id})")
        raise UnauthorizedError("無效的通知簽章")

    if event.status == "succeeded":
        engagement = await service.on_payment_succeeded(event.session_id)
    else:
        engagement = await service.on_payment_failed(event.session_id, event.failure_reason)
    return ApiResponse[EngagementOut](data=EngagementOut.model_validate(engagement))

@router.get(
    "/{payment_id}",
    response_model=ApiResponse[PaymentOut],
    summary="檢視付款紀錄"
)
async def api_get_payment(
    payment_id: str,
    service: PaymentService = Depends(get_payment_service),
    actor: Actor = Depends(get_current_actor),
):
    payment = await service.get_payment(payment_id, actor)
    return ApiResponse[PaymentOut](data=PaymentOut.model_validate(payment))


@router.get(
    "/engagement/{engagement_id}",
    response_model=ApiResponse[List[PaymentOut]],
    summary="專案的付款紀錄"
)
async def api_list_engagement_payments(
    engagement_id: str,
    service: PaymentService = Depends(get_payment_service),
    actor: Actor = Depends(get_current_actor),
):
    payments = await service.list_engagement_payments(engagement_id, actor)
    return ApiResponse[List[PaymentOut]](data=[PaymentOut.model_validate(p) for p in payments])

@payout_router.get(
    "/balance",
    response_model=ApiResponse[BalanceOut],
    summary="可提領餘額 (專家)"
)
async def api_get_balance(
    currency: str = Query("chf"),
    service: PaymentService = Depends(get_payment_service),
    actor: Actor = Depends(get_current_actor),
):
    try:
        currency = normalize_currency(currency)
    except ValueError as e:
        raise ValidationError(str(e))
    available = await service.available_balance(actor.user_id, currency)
    return ApiResponse[BalanceOut](data=BalanceOut(currency=currency, available=available))

@payout_router.post(
    "/request",
    response_model=ApiResponse[PayoutOut],
    status_code=status.HTTP_201_CREATED,
    summary="申請撥款 (專家)"
)
async def api_request_payout(
    data: PayoutRequest,
    service: PaymentService = Depends(get_payment_service),
    actor: Actor = Depends(get_current_actor),
):
    """
    (專家) 將已完成專案的收入撥到自己的帳戶，金額不可超過可提領餘額。
    """
    payout = await service.request_payout(actor, data.amount, data.currency)
    return ApiResponse[PayoutOut](data=PayoutOut.model_validate(payout))

@payout_router.get(
    "/my",
    response_model=PaginatedResponse[PayoutOut],
    summary="我的撥款紀錄 (專家)"
)
async def api_list_my_payouts(
    params: PageParams = Depends(page_params),
    service: PaymentService = Depends(get_payment_service),
    actor: Actor = Depends(get_current_actor),
):
    payouts, total = await service.list_my_payouts(actor, params)
    return PaginatedResponse[PayoutOut](
        data=[PayoutOut.model_validate(p) for p in payouts],
        meta=build_meta(params, total),
    )
