"""Page-cursor iteration with rate-limit backoff shared by every fetch site."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, List, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from .errors import GitHubAPIError, RateLimitError, TransientAPIError


logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

MAX_PER_PAGE = 100
FIRST_PAGE = 1


@dataclass
class Page(Generic[T]):
    items: List[T]
    next_page: int = 0


@dataclass
class PaginationResult(Generic[T]):
    items: List[T] = field(default_factory=list)
    complete: bool = True
    error: Optional[GitHubAPIError] = None
    pages: int = 0


class BackoffPolicy:
    """How a single API call is retried.

    Rate limits are waited out until the advertised reset instant, as many
    times as it takes. Transient errors get ``transient_attempts`` tries in
    total with a fixed pause between them. Anything else propagates at once.
    """

    def __init__(
        self,
        transient_attempts: int = 3,
        transient_wait: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.transient_attempts = max(1, transient_attempts)
        self.transient_wait = transient_wait
        self.sleep = sleep

    async def wait_for_reset(self, error: RateLimitError, what: str):
        delay = error.seconds_until_reset()
        logger.warning(
            f"{what} rate limited, pausing {delay:.0f}s until "
            f"{error.reset_at.isoformat()}"
        )
        await self.sleep(delay)

    async def run(self, call: Callable[[], Awaitable[R]], what: str = "request") -> R:
        while True:
            try:
                return await self._with_transient_retries(call)
            except RateLimitError as e:
                await self.wait_for_reset(e, what)

    async def _with_transient_retries(self, call: Callable[[], Awaitable[R]]) -> R:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.transient_attempts),
            wait=wait_fixed(self.transient_wait),
            retry=retry_if_exception_type(TransientAPIError),
            sleep=self.sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await call()


async def paginate(
    fetch: Callable[[int, int], Awaitable[Page[T]]],
    policy: BackoffPolicy,
    per_page: int = MAX_PER_PAGE,
    what: str = "list",
) -> PaginationResult[T]:
    """Concatenate every page returned by ``fetch(page, per_page)``.

    A rate-limited page is retried after the reset instant with the same
    cursor. Any other error stops the walk and the items gathered so far are
    returned with ``complete=False``. The walk ends when a page reports no
    next cursor.
    """
    result: PaginationResult[T] = PaginationResult()
    cursor = FIRST_PAGE
    per_page = min(per_page, MAX_PER_PAGE)

    while True:
        try:
            page = await policy.run(
                lambda: fetch(cursor, per_page), what=f"{what} page {cursor}"
            )
        except GitHubAPIError as e:
            logger.warning(
                f"{what} failed on page {cursor}, keeping "
                f"{len(result.items)} item(s) fetched so far: {e}"
            )
            result.complete = False
            result.error = e
            return result

        result.pages += 1
        result.items.extend(page.items)

        if not page.next_page:
            return result
        cursor = page.next_page
