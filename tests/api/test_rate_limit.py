"""Rate limiting integration tests."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from limits import parse

from civic_tracker.api.v1.endpoints.issues import get_issue_service
from civic_tracker.core.config import settings
from civic_tracker.core.rate_limiter import limiter
from civic_tracker.core.security import get_current_actor, get_optional_actor
from civic_tracker.main import app
from civic_tracker.services.issues import IssueService
from tests.conftest import make_issue

API = "/api/v1/issues"


def _service_for(issue) -> IssueService:
    result = MagicMock()
    result.scalar_one_or_none.return_value = issue
    db = AsyncMock()
    db.execute.return_value = result
    return IssueService(db)


@pytest.fixture
def voting_citizen(citizen):
    issue = make_issue()
    app.dependency_overrides[get_issue_service] = lambda: _service_for(issue)
    app.dependency_overrides[get_current_actor] = lambda: citizen
    app.dependency_overrides[get_optional_actor] = lambda: citizen
    return issue


async def _exhaust_vote_limit(api_client, issue) -> None:
    allowed = parse(settings.VOTE_RATE_LIMIT).amount
    for n in range(allowed):
        # Alternating keeps every vote a valid switch.
        vote = "up" if n % 2 == 0 else "down"
        response = await api_client.post(f"{API}/{issue.id}/vote", json={"voteType": vote})
        assert response.status_code == 200


@pytest.mark.asyncio
async def test_vote_route_is_rate_limited(api_client, voting_citizen):
    from slowapi import extension as slowapi_extension

    assert slowapi_extension._rate_limit_exceeded_handler.__name__ == "_rate_limit_handler"
    limiter.reset()
    await _exhaust_vote_limit(api_client, voting_citizen)

    response = await api_client.post(f"{API}/{voting_citizen.id}/vote", json={"voteType": "up"})

    assert response.status_code == 429
    body = response.json()
    assert body["success"] is False
    assert body["message"].startswith("Rate limit exceeded")
    assert set(body) == {"success", "message"}


@pytest.mark.asyncio
async def test_vote_limit_does_not_block_other_routes(api_client, voting_citizen):
    limiter.reset()
    await _exhaust_vote_limit(api_client, voting_citizen)

    response = await api_client.get(f"{API}/{voting_citizen.id}")

    assert response.status_code == 200
    assert response.json()["data"]["id"] == str(voting_citizen.id)
