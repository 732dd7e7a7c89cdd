import pytest

from app.core.exceptions import ValidationError, NotEligibleError, NotFoundError, IllegalTransitionError
from app.models.posting import PostingStatusEnum
from app.schemas.posting_schema import PostingCreate, PostingUpdate
from app.schemas.user_schema import Actor
from app.services.posting_service import PostingService, validate_budget
from app.utils.pagination import PageParams


def make_posting_data(**overrides):
    data = dict(
        title="Data pipeline audit",
        description="Review our nightly ETL jobs",
        budget_type="fixed",
        budget_min=150000,
        currency="CHF",
    )
    data.update(overrides)
    return PostingCreate(**data)


def test_validate_budget_rules():
    validate_budget("fixed", 100, None)
    validate_budget("range", 100, 200)
    with pytest.raises(ValidationError):
        validate_budget("fixed", None, None)
    with pytest.raises(ValidationError):
        validate_budget("range", 100, None)
    with pytest.raises(ValidationError):
        validate_budget("range", 300, 200)


async def test_create_posting_defaults_to_draft(db, client_actor):
    posting = await PostingService(db).create_posting(make_posting_data(), client_actor)

    assert posting.status == PostingStatusEnum.draft
    assert posting.currency == "chf"
    assert posting.client_id == client_actor.user_id
    assert posting.proposal_count == 0


async def test_only_clients_can_create_postings(db, expert_actor):
    with pytest.raises(NotEligibleError):
        await PostingService(db).create_posting(make_posting_data(), expert_actor)


async def test_open_posting_is_idempotent(db, client_actor):
    service = PostingService(db)
    posting = await service.create_posting(make_posting_data(), client_actor)

    opened = await service.open_posting(posting.posting_id, client_actor)
    again = await service.open_posting(posting.posting_id, client_actor)

    assert opened.status == PostingStatusEnum.open
    assert again.status == PostingStatusEnum.open


async def test_only_owner_can_change_posting(db, client_actor, make_user):
    stranger = Actor.from_user(await make_user("client"))
    service = PostingService(db)
    posting = await service.create_posting(make_posting_data(), client_actor)

    with pytest.raises(NotEligibleError):
        await service.open_posting(posting.posting_id, stranger)


async def test_update_toggles_between_open_and_in_review(db, client_actor):
    service = PostingService(db)
    posting = await service.create_posting(make_posting_data(status="open"), client_actor)

    paused = await service.update_posting(posting.posting_id, PostingUpdate(status="in_review"), client_actor)
    assert paused.status == PostingStatusEnum.in_review

    reopened = await service.update_posting(
        posting.posting_id, PostingUpdate(status="open", title="Data pipeline audit v2"), client_actor
    )
    assert reopened.status == PostingStatusEnum.open
    assert reopened.title == "Data pipeline audit v2"


async def test_draft_cannot_jump_to_in_review(db, client_actor):
    service = PostingService(db)
    posting = await service.create_posting(make_posting_data(), client_actor)

    with pytest.raises(IllegalTransitionError):
        await service.update_posting(posting.posting_id, PostingUpdate(status="in_review"), client_actor)


async def test_update_rejects_inverted_budget(db, client_actor):
    service = PostingService(db)
    posting = await service.create_posting(
        make_posting_data(budget_type="range", budget_min=1000, budget_max=2000), client_actor
    )

    with pytest.raises(ValidationError):
        await service.update_posting(posting.posting_id, PostingUpdate(budget_min=5000), client_actor)


async def test_close_posting_is_terminal(db, client_actor):
    service = PostingService(db)
    posting = await service.create_posting(make_posting_data(status="open"), client_actor)

    posting_id = posting.posting_id
    closed = await service.close_posting(posting_id, client_actor, "budget cut")
    assert closed.status == PostingStatusEnum.cancelled
    assert closed.cancellation_reason == "budget cut"
    assert closed.cancelled_at is not None

    with pytest.raises(IllegalTransitionError):
        await service.close_posting(posting_id, client_actor)
    with pytest.raises(IllegalTransitionError):
        await service.update_posting(posting_id, PostingUpdate(title="again"), client_actor)


async def test_delete_draft_removes_it(db, client_actor):
    service = PostingService(db)
    posting = await service.create_posting(make_posting_data(), client_actor)

    assert await service.delete_posting(posting.posting_id, client_actor) is None
    with pytest.raises(NotFoundError):
        await service.get_posting(posting.posting_id)


async def test_delete_open_posting_closes_it(db, client_actor):
    service = PostingService(db)
    posting = await service.create_posting(make_posting_data(status="open"), client_actor)

    closed = await service.delete_posting(posting.posting_id, client_actor)
    assert closed.status == PostingStatusEnum.cancelled
    assert closed.cancellation_reason == "deleted_by_client"


async def test_list_open_postings_filters(db, client_actor):
    service = PostingService(db)
    await service.create_posting(make_posting_data(status="open", is_urgent=True), client_actor)
    await service.create_posting(make_posting_data(status="open", currency="eur"), client_actor)
    await service.create_posting(make_posting_data(), client_actor)  # draft

    postings, total = await service.list_open_postings(PageParams())
    assert total == 2
    assert postings[0].is_urgent  # 急件排在前面

    urgent, urgent_total = await service.list_open_postings(PageParams(), urgent_only=True)
    assert urgent_total == 1

    eur, eur_total = await service.list_open_postings(PageParams(), currency="eur")
    assert eur_total == 1
    assert eur[0].currency == "eur"

    mine, mine_total = await service.list_my_postings(client_actor, PageParams(per_page=2))
    assert mine_total == 3
    assert len(mine) == 2
