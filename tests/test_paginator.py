import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

from collector_github.errors import (
    GitHubAPIError,
    NotFoundError,
    RateLimitError,
    TransientAPIError,
)
from collector_github.paginator import BackoffPolicy, Page, paginate

from conftest import RecordingSleep


def paged_fetch(pages, failures=None):
    """Fetch function over ``pages``; ``failures`` maps page -> exceptions to raise first."""
    failures = {page: list(errors) for page, errors in (failures or {}).items()}
    visited = []

    async def fetch(page, per_page):
        visited.append(page)
        pending = failures.get(page)
        if pending:
            raise pending.pop(0)
        next_page = page + 1 if page < len(pages) else 0
        return Page(list(pages[page - 1]), next_page)

    return fetch, visited


def rate_limited(seconds=30):
    return RateLimitError(
        "rate limited",
        reset_at=datetime.now(timezone.utc) + timedelta(seconds=seconds),
        status=403,
    )


@pytest.mark.asyncio
async def test_visits_every_page_once_in_order(policy):
    fetch, visited = paged_fetch([[1, 2], [3], [4, 5]])

    result = await paginate(fetch, policy)

    assert result.items == [1, 2, 3, 4, 5]
    assert result.complete is True
    assert result.pages == 3
    assert visited == [1, 2, 3]


@pytest.mark.asyncio
async def test_single_page_without_cursor_stops(policy):
    fetch, visited = paged_fetch([[]])

    result = await paginate(fetch, policy)

    assert result.items == []
    assert result.complete is True
    assert visited == [1]


@pytest.mark.asyncio
async def test_rate_limited_page_is_retried_after_reset():
    sleep = RecordingSleep()
    policy = BackoffPolicy(transient_attempts=1, sleep=sleep)
    fetch, visited = paged_fetch([["a"], ["b"], ["c"]], {2: [rate_limited(30)]})

    result = await paginate(fetch, policy)

    assert result.items == ["a", "b", "c"]
    assert result.complete is True
    assert visited == [1, 2, 2, 3]
    assert len(sleep.delays) == 1
    delay = sleep.delays[0]
    assert 0 < delay <= 30


@pytest.mark.asyncio
async def test_rate_limit_with_past_reset_does_not_sleep_negative():
    sleep = RecordingSleep()
    policy = BackoffPolicy(sleep=sleep)
    fetch, _ = paged_fetch([["a"]], {1: [rate_limited(-10)]})

    result = await paginate(fetch, policy)

    assert result.items == ["a"]
    assert sleep.delays == [0.0]


@pytest.mark.asyncio
async def test_error_truncates_and_keeps_partial_result(policy):
    error = GitHubAPIError("boom", status=422)
    fetch, visited = paged_fetch([["a"], ["b"], ["c"]], {2: [error]})

    result = await paginate(fetch, policy)

    assert result.items == ["a"]
    assert result.complete is False
    assert result.error is error
    assert result.pages == 1
    assert visited == [1, 2]


@pytest.mark.asyncio
async def test_error_on_first_page_returns_empty(policy):
    fetch, visited = paged_fetch([["a"]], {1: [NotFoundError("missing", status=404)]})

    result = await paginate(fetch, policy)

    assert result.items == []
    assert result.complete is False
    assert visited == [1]


@pytest.mark.asyncio
async def test_transient_errors_are_retried_with_bounded_attempts():
    sleep = RecordingSleep()
    policy = BackoffPolicy(transient_attempts=3, transient_wait=2.0, sleep=sleep)
    fetch, visited = paged_fetch(
        [["a"], ["b"]], {2: [TransientAPIError("502"), TransientAPIError("503")]}
    )

    result = await paginate(fetch, policy)

    assert result.items == ["a", "b"]
    assert result.complete is True
    assert visited == [1, 2, 2, 2]
    assert sleep.delays == [2.0, 2.0]


@pytest.mark.asyncio
async def test_transient_errors_give_up_after_attempts():
    policy = BackoffPolicy(transient_attempts=2, transient_wait=0, sleep=RecordingSleep())
    errors = [TransientAPIError("502"), TransientAPIError("503"), TransientAPIError("504")]
    fetch, visited = paged_fetch([["a"], ["b"]], {2: errors})

    result = await paginate(fetch, policy)

    assert result.items == ["a"]
    assert result.complete is False
    assert isinstance(result.error, TransientAPIError)
    assert visited == [1, 2, 2]


@pytest.mark.asyncio
async def test_policy_run_returns_value_and_propagates_other_errors():
    policy = BackoffPolicy(transient_attempts=3, transient_wait=0, sleep=RecordingSleep())

    assert await policy.run(AsyncMock(return_value=7)) == 7

    call = AsyncMock(side_effect=NotFoundError("gone", status=404))
    with pytest.raises(NotFoundError):
        await policy.run(call)
    assert call.await_count == 1


@pytest.mark.asyncio
async def test_per_page_is_capped(policy):
    seen = []

    async def fetch(page, per_page):
        seen.append(per_page)
        return Page([], 0)

    await paginate(fetch, policy, per_page=500)
    assert seen == [100]
