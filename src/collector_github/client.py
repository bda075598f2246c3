"""Async GitHub REST client with conditional-request caching and rate-limit detection."""

import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from actions_core.schemas import (
    Repository,
    Runner,
    Workflow,
    WorkflowRun,
    WorkflowRunUsage,
    WorkflowUsage,
)

from .auth import build_auth
from .config import PUBLIC_API_HOST, ExporterConfig
from .errors import GitHubAPIError, NotFoundError, RateLimitError, TransientAPIError
from .paginator import MAX_PER_PAGE, Page


logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

API_VERSION = "2022-11-28"
USER_AGENT = "github-actions-exporter/1.0"


def normalize_api_url(api_url: str) -> str:
    """Turn the configured API location into a base URL without trailing slash."""
    url = api_url.strip().rstrip("/")
    if "://" not in url:
        url = f"https://{url}"
    host = httpx.URL(url).host
    if host != PUBLIC_API_HOST and not url.endswith("/api/v3"):
        url = f"{url}/api/v3"
    return url


@dataclass
class CachedResponse:
    etag: str
    data: Any
    next_page: int
    size: int


class ResponseCache:
    """LRU of ETag-validated responses bounded by approximate body size."""

    def __init__(self, max_bytes: int):
        self.max_bytes = max_bytes
        self.current_bytes = 0
        self._entries: "OrderedDict[str, CachedResponse]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Optional[CachedResponse]:
        entry = self._entries.get(key)
        if entry is not None:
            self._entries.move_to_end(key)
        return entry

    def put(self, key: str, entry: CachedResponse):
        if entry.size > self.max_bytes:
            self.discard(key)
            return
        self.discard(key)
        self._entries[key] = entry
        self.current_bytes += entry.size
        while self.current_bytes > self.max_bytes:
            _, evicted = self._entries.popitem(last=False)
            self.current_bytes -= evicted.size

    def discard(self, key: str):
        entry = self._entries.pop(key, None)
        if entry is not None:
            self.current_bytes -= entry.size


def next_page_from(response: httpx.Response) -> int:
    next_link = response.links.get("next")
    if not next_link or "url" not in next_link:
        return 0
    page = httpx.URL(next_link["url"]).params.get("page")
    try:
        return int(page)
    except (TypeError, ValueError):
        return 0


def rate_limit_reset(response: httpx.Response) -> Optional[datetime]:
    """Reset instant if ``response`` is a primary or secondary rate-limit refusal."""
    if response.status_code not in (403, 429):
        return None

    if response.headers.get("X-RateLimit-Remaining") == "0":
        reset = response.headers.get("X-RateLimit-Reset")
        try:
            return datetime.fromtimestamp(int(reset), tz=timezone.utc)
        except (TypeError, ValueError):
            return datetime.now(timezone.utc) + timedelta(seconds=60)

    retry_after = response.headers.get("Retry-After")
    if retry_after is not None:
        try:
            seconds = int(retry_after)
        except ValueError:
            seconds = 60
        return datetime.now(timezone.utc) + timedelta(seconds=seconds)

    if response.status_code == 429:
        return datetime.now(timezone.utc) + timedelta(seconds=60)
    return None


class GitHubClient:
    """Thin wrapper over the Actions, runners and repositories endpoints."""

    def __init__(
        self,
        config: ExporterConfig,
        auth=None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = normalize_api_url(config.api_url)
        self.auth = auth if auth is not None else build_auth(config, self.base_url)
        self.cache = ResponseCache(config.cache_size_bytes)

        self.rate_limit_remaining: Optional[int] = None
        self.rate_limit_limit: Optional[int] = None

        self.client = httpx.AsyncClient(
            http2=transport is None,
            transport=transport,
            timeout=httpx.Timeout(config.timeout_read, connect=config.timeout_connect),
            headers={
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": API_VERSION,
                "User-Agent": USER_AGENT,
            },
        )

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    def _record_rate_limit(self, response: httpx.Response):
        remaining = response.headers.get("X-RateLimit-Remaining")
        limit = response.headers.get("X-RateLimit-Limit")
        try:
            if remaining is not None:
                self.rate_limit_remaining = int(remaining)
            if limit is not None:
                self.rate_limit_limit = int(limit)
        except ValueError:
            logger.debug(f"Unparseable rate limit headers: {remaining}/{limit}")

    async def _get(
        self, path: str, params: Optional[Dict[str, Any]] = None
    ) -> Tuple[Any, int]:
        """GET ``path`` and return the decoded body and the next page cursor."""
        url = httpx.URL(f"{self.base_url}{path}", params=params or {})
        key = str(url)

        headers = {}
        authorization = await self.auth.authorization(self.client)
        if authorization:
            headers["Authorization"] = authorization

        cached = self.cache.get(key)
        if cached is not None:
            headers["If-None-Match"] = cached.etag

        try:
            response = await self.client.get(url, headers=headers)
        except httpx.TransportError as e:
            raise TransientAPIError(f"GET {path} failed: {e}", url=key) from e

        self._record_rate_limit(response)

        if response.status_code == 304 and cached is not None:
            logger.debug(f"304 Not Modified for {path}")
            return cached.data, cached.next_page

        reset_at = rate_limit_reset(response)
        if reset_at is not None:
            raise RateLimitError(
                f"GET {path} rate limited (HTTP {response.status_code})",
                reset_at=reset_at,
                status=response.status_code,
                url=key,
            )

        if response.status_code == 404:
            raise NotFoundError(f"GET {path} not found", status=404, url=key)
        if response.status_code >= 500:
            raise TransientAPIError(
                f"GET {path} server error (HTTP {response.status_code})",
                status=response.status_code,
                url=key,
            )
        if response.status_code >= 400:
            raise GitHubAPIError(
                f"GET {path} failed (HTTP {response.status_code})",
                status=response.status_code,
                url=key,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise GitHubAPIError(
                f"GET {path} returned invalid JSON", status=response.status_code, url=key
            ) from e

        next_page = next_page_from(response)
        etag = response.headers.get("ETag")
        if etag:
            self.cache.put(
                key,
                CachedResponse(
                    etag=etag, data=data, next_page=next_page, size=len(response.content)
                ),
            )
        return data, next_page

    @staticmethod
    def _parse_items(model: Type[M], raw_items: Any, what: str) -> List[M]:
        items = []
        for raw in raw_items or []:
            try:
                items.append(model.model_validate(raw))
            except ValidationError as e:
                logger.warning(f"Skipping malformed {what} record: {e}")
        return items

    @staticmethod
    def _validate(model: Type[M], data: Any, path: str) -> M:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise GitHubAPIError(f"GET {path} returned an unexpected body: {e}") from e

    async def _list_page(
        self,
        model: Type[M],
        path: str,
        params: Dict[str, Any],
        key: Optional[str] = None,
    ) -> Page[M]:
        """GET one listing page; records sit under ``key`` or are the body itself."""
        data, next_page = await self._get(path, params)
        if key is not None:
            if not isinstance(data, dict):
                raise GitHubAPIError(
                    f"GET {path} returned {type(data).__name__}, expected an object"
                )
            data = data.get(key) or []
        if not isinstance(data, list):
            raise GitHubAPIError(
                f"GET {path} returned {type(data).__name__}, expected a list"
            )
        return Page(self._parse_items(model, data, model.__name__), next_page)

    @staticmethod
    def _page_params(page: int, per_page: int, **extra) -> Dict[str, Any]:
        params = {"per_page": min(per_page, MAX_PER_PAGE), "page": page}
        params.update(extra)
        return params

    async def list_repository_runners(
        self, owner: str, repo: str, page: int = 1, per_page: int = MAX_PER_PAGE
    ) -> Page[Runner]:
        return await self._list_page(
            Runner,
            f"/repos/{owner}/{repo}/actions/runners",
            self._page_params(page, per_page),
            key="runners",
        )

    async def list_organization_runners(
        self, org: str, page: int = 1, per_page: int = MAX_PER_PAGE
    ) -> Page[Runner]:
        return await self._list_page(
            Runner,
            f"/orgs/{org}/actions/runners",
            self._page_params(page, per_page),
            key="runners",
        )

    async def list_workflows(
        self, owner: str, repo: str, page: int = 1, per_page: int = MAX_PER_PAGE
    ) -> Page[Workflow]:
        return await self._list_page(
            Workflow,
            f"/repos/{owner}/{repo}/actions/workflows",
            self._page_params(page, per_page),
            key="workflows",
        )

    async def list_organization_repositories(
        self, org: str, page: int = 1, per_page: int = MAX_PER_PAGE
    ) -> Page[Repository]:
        # This endpoint answers with a bare array.
        return await self._list_page(
            Repository, f"/orgs/{org}/repos", self._page_params(page, per_page)
        )

    async def list_workflow_runs(
        self,
        owner: str,
        repo: str,
        created: str,
        page: int = 1,
        per_page: int = MAX_PER_PAGE,
    ) -> Page[WorkflowRun]:
        return await self._list_page(
            WorkflowRun,
            f"/repos/{owner}/{repo}/actions/runs",
            self._page_params(page, per_page, created=created),
            key="workflow_runs",
        )

    async def get_workflow_run_usage(
        self, owner: str, repo: str, run_id: int
    ) -> WorkflowRunUsage:
        path = f"/repos/{owner}/{repo}/actions/runs/{run_id}/timing"
        data, _ = await self._get(path)
        return self._validate(WorkflowRunUsage, data, path)

    async def get_workflow_usage(
        self, owner: str, repo: str, workflow_id: int
    ) -> WorkflowUsage:
        path = f"/repos/{owner}/{repo}/actions/workflows/{workflow_id}/timing"
        data, _ = await self._get(path)
        return self._validate(WorkflowUsage, data, path)
