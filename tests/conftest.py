import os
import sys
import uuid

# Ensure backend package is on sys.path for imports during tests
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Settings() is built at import time, so the environment must be ready first
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./marketplace_test.db")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key-for-the-marketplace")
os.environ.setdefault("PAYMENT_WEBHOOK_SECRET", "test-webhook-secret")

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from app.main import app
from app.core.database import Base, build_engine, build_session_factory, get_db
from app.core.payment_gateway import (
    PaymentGateway, HostedCheckoutGateway, GatewayError, get_payment_gateway,
)
from app.core.security import get_password_hash, create_access_token
from app.models.user import User, UserRoleEnum
from app.schemas.posting_schema import PostingCreate
from app.schemas.proposal_schema import ProposalCreate
from app.schemas.payment_schema import CheckoutCreate
from app.schemas.user_schema import Actor
from app.services.posting_service import PostingService
from app.services.proposal_service import ProposalService
from app.services.engagement_service import EngagementService
from app.services.payment_service import PaymentService

PASSWORD = "Passw0rd123"
PASSWORD_HASH = get_password_hash(PASSWORD)


class FailingGateway(PaymentGateway):
    """每次都失敗的金流商 (模擬卡片被拒、金流商當機)"""

    async def create_checkout_session(self, reference, amount, currency):
        raise GatewayError("card_declined")

    async def create_payout(self, expert_id, amount, currency):
        raise GatewayError("payout_rejected")


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'marketplace.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def gateway():
    return HostedCheckoutGateway(base_url="https://checkout.test/pay")


@pytest.fixture
def failing_gateway():
    return FailingGateway()


@pytest_asyncio.fixture
async def make_user(session_factory):
    async def _make(role: str = "client", full_name: str = None, is_active: bool = True) -> User:
        async with session_factory() as session:
            user = User(
                email=f"{role}-{uuid.uuid4().hex[:8]}@example.com",
                password_hash=PASSWORD_HASH,
                full_name=full_name or f"Test {role}",
                role=UserRoleEnum(role),
                is_active=is_active,
            )
            session.add(user)
            await session.commit()
            return user
    return _make


@pytest_asyncio.fixture
async def client_user(make_user):
    return await make_user("client", "Clara Client")


@pytest_asyncio.fixture
async def expert_user(make_user):
    return await make_user("expert", "Erik Expert")


@pytest_asyncio.fixture
async def other_expert_user(make_user):
    return await make_user("expert", "Olga Expert")


@pytest_asyncio.fixture
async def admin_user(make_user):
    return await make_user("admin", "Ada Admin")


@pytest.fixture
def client_actor(client_user):
    return Actor.from_user(client_user)


@pytest.fixture
def expert_actor(expert_user):
    return Actor.from_user(expert_user)


@pytest.fixture
def other_expert_actor(other_expert_user):
    return Actor.from_user(other_expert_user)


@pytest.fixture
def admin_actor(admin_user):
    return Actor.from_user(admin_user)


def auth_headers(user: User) -> dict:
    token = create_access_token({"user_id": user.user_id, "role": user.role.value})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers_for():
    return auth_headers


@pytest_asyncio.fixture
async def api(session_factory, gateway):
    """httpx client，DB 與金流都換成測試用的"""
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


class Marketplace:
    """
    透過各個 service 把資料推進到指定的階段，
    讓每個測試只需要專注在自己要驗證的那一步。
    """

    def __init__(self, db, gateway):
        self.db = db
        self.postings = PostingService(db)
        self.proposals = ProposalService(db)
        self.engagements = EngagementService(db)
        self.payments = PaymentService(db, gateway)

    async def open_posting(self, client: Actor, budget: int = 250000, **overrides):
        data = dict(
            title="Landing page redesign",
            description="Redesign our product landing page",
            budget_type="fixed",
            budget_min=budget,
            currency="chf",
            status="open",
        )
        data.update(overrides)
        return await self.postings.create_posting(PostingCreate(**data), client)

    async def submit(self, posting, expert: Actor, price: int = 250000, currency: str = "chf"):
        return await self.proposals.submit_proposal(
            posting.posting_id,
            ProposalCreate(cover_letter="I have done this many times.", proposed_price=price, currency=currency),
            expert,
        )

    async def accepted_engagement(self, client: Actor, expert: Actor, price: int = 250000):
        posting = await self.open_posting(client)
        proposal = await self.submit(posting, expert, price=price)
        return await self.proposals.accept_proposal(posting.posting_id, proposal.proposal_id, client)

    async def pay(self, engagement, client: Actor):
        session = await self.payments.create_checkout_session(
            CheckoutCreate(engagement_id=engagement.engagement_id), client
        )
        return await self.payments.on_payment_succeeded(session.session_id)

    async def paid_engagement(self, client: Actor, expert: Actor, price: int = 250000):
        engagement = await self.accepted_engagement(client, expert, price=price)
        return await self.pay(engagement, client)

    async def delivered_engagement(self, client: Actor, expert: Actor, price: int = 250000):
        engagement = await self.paid_engagement(client, expert, price=price)
        await self.engagements.start_work(engagement.engagement_id, expert)
        return await self.engagements.deliver(engagement.engagement_id, expert, "First version attached")

    async def completed_engagement(self, client: Actor, expert: Actor, price: int = 250000):
        engagement = await self.delivered_engagement(client, expert, price=price)
        return await self.engagements.accept(engagement.engagement_id, client)


@pytest.fixture
def market(db, gateway):
    return Marketplace(db, gateway)
