# app/core/payment_gateway.py
# 外部金流 (託管結帳頁 + 撥款) 的介面。
# 平台只負責建立結帳工作階段、接收成功/失敗回呼；實際扣款由金流商處理。
import logging
import uuid
from abc import ABC, abstractmethod
from urllib.parse import urlencode

from pydantic import BaseModel

from app.core.config import settings

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    """金流商回應錯誤或無法連線"""


class CheckoutSession(BaseModel):
    session_id: str
    redirect_url: str


class GatewayPayout(BaseModel):
    payout_id: str
    status: str  # pending / in_transit / paid / failed


class PaymentGateway(ABC):
    @abstractmethod
    async def create_checkout_session(self, reference: str, amount: int, currency: str) -> CheckoutSession:
        """為一筆款項建立結帳工作階段，回傳 session id 與付款頁網址"""

    @abstractmethod
    async def create_payout(self, expert_id: str, amount: int, currency: str) -> GatewayPayout:
        """將款項撥給專家"""


class HostedCheckoutGateway(PaymentGateway):
    """
    託管結帳頁：只產生 session id 與導向網址，
    付款結果由金流商之後透過 webhook 通知 (/payments/webhook)。
    """

    def __init__(self, base_url: str = None):
        self.base_url = base_url or settings.CHECKOUT_BASE_URL

    async def create_checkout_session(self, reference: str, amount: int, currency: str) -> CheckoutSession:
        if amount <= 0:
            raise GatewayError("金額必須大於 0")
        session_id = f"cs_{uuid.uuid4().hex}"
        query = urlencode({"session": session_id, "ref": reference, "amount": amount, "currency": currency})
        logger.info(f"建立結帳工作階段 {session_id} ({reference}, {amount} {currency})")
        return CheckoutSession(session_id=session_id, redirect_url=f"{self.base_url}?{query}")

    async def create_payout(self, expert_id: str, amount: int, currency: str) -> GatewayPayout:
        payout_id = f"po_{uuid.uuid4().hex}"
        logger.info(f"建立撥款 {payout_id} 給專家 {expert_id} ({amount} {currency})")
        return GatewayPayout(payout_id=payout_id, status="in_transit")


_gateway: PaymentGateway = HostedCheckoutGateway()

def get_payment_gateway() -> PaymentGateway:
    """FastAPI Dependency: 取得金流介面 (測試時以 dependency_overrides 替換)"""
    return _gateway
