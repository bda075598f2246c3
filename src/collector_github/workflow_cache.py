"""Periodic refresh of the repository set and the workflow-definition cache."""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional

from actions_core.schemas import Workflow

from .client import GitHubClient
from .config import ExporterConfig
from .fields import split_repository
from .metrics import ExporterMetrics
from .paginator import BackoffPolicy, paginate
from .repositories import resolve_repositories
from .state import SharedState, WorkflowSnapshot


logger = logging.getLogger(__name__)


async def fetch_repository_workflows(
    client: GitHubClient, policy: BackoffPolicy, repo: str
) -> Dict[int, Workflow]:
    owner_and_name = split_repository(repo)
    if owner_and_name is None:
        logger.warning(f"Invalid repository format '{repo}', skipping workflow fetch")
        return {}
    owner, name = owner_and_name

    result = await paginate(
        lambda page, per_page: client.list_workflows(
            owner, name, page=page, per_page=per_page
        ),
        policy,
        what=f"list workflows of {repo}",
    )
    return {wf.id: wf for wf in result.items if wf.id is not None}


class WorkflowCacheRefresher:
    """Keeps ``SharedState`` populated on its own interval."""

    def __init__(
        self,
        client: GitHubClient,
        policy: BackoffPolicy,
        state: SharedState,
        config: ExporterConfig,
        metrics: Optional[ExporterMetrics] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.policy = policy
        self.state = state
        self.config = config
        self.metrics = metrics
        self.sleep = sleep
        self.interval = config.workflow_cache_refresh_seconds

    async def refresh_once(self):
        logger.info("Starting repository and workflow definition refresh")
        repositories = await resolve_repositories(
            self.client,
            self.policy,
            self.config.repositories,
            self.config.organizations,
        )

        if not repositories:
            self.state.clear()
            self._update_gauges()
            logger.info("No repositories to monitor, cleared workflow cache")
            return

        self.state.replace_repositories(repositories)

        data: Dict[str, Dict[int, Workflow]] = {}
        for repo in repositories:
            try:
                workflows = await fetch_repository_workflows(
                    self.client, self.policy, repo
                )
            except Exception as e:
                logger.error(f"Workflow fetch for {repo} failed: {e}", exc_info=True)
                continue
            if workflows:
                data[repo] = workflows

        self.state.replace_workflows(WorkflowSnapshot.build(data))
        self._update_gauges()
        logger.info(
            f"Workflow definitions cache updated: {len(data)} repositories with "
            f"workflows, {len(repositories)} monitored"
        )

    def _update_gauges(self):
        if self.metrics is None:
            return
        self.metrics.monitored_repositories.set(len(self.state.repositories))
        self.metrics.cached_workflows.set(self.state.workflows.workflow_count)

    async def run(self):
        logger.info(
            f"Refreshing repositories and workflow definitions every {self.interval}s"
        )
        while True:
            try:
                await self.refresh_once()
            except Exception as e:
                logger.error(f"Workflow cache refresh failed: {e}", exc_info=True)
            await self.sleep(self.interval)
