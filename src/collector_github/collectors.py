"""Periodic collectors: fetch, derive, then publish with reset-then-set."""

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import (
    Any,
    Awaitable,
    Callable,
    Generic,
    List,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    TypeVar,
)

from actions_core.schemas import Runner, Workflow, WorkflowRun, WorkflowUsage

from .client import GitHubClient
from .config import ExporterConfig
from .errors import GitHubAPIError
from .fields import (
    billable_points,
    numeric_status,
    run_duration_ms,
    run_label_values,
    runner_is_complete,
    runner_labels,
    runner_value,
    split_repository,
    workflow_is_complete,
)
from .metrics import (
    ORGANIZATION_RUNNER_STATUS,
    RUN_DURATION,
    RUN_STATUS,
    RUNNER_STATUS,
    WORKFLOW_USAGE,
    ExporterMetrics,
    GaugePublisher,
    Sample,
)
from .paginator import BackoffPolicy, Page, PaginationResult, paginate
from .state import SharedState


logger = logging.getLogger(__name__)

T = TypeVar("T")


class Source(Protocol[T]):
    """What a collector needs to know about one kind of upstream record."""

    def targets(self) -> Sequence[str]: ...

    async def fetch(self, target: str) -> PaginationResult[T]: ...

    async def derive(self, target: str, record: T) -> List[Sample]: ...


class PeriodicCollector(Generic[T]):
    """Idle -> fetching -> deriving -> publishing -> idle, on a fixed interval."""

    def __init__(
        self,
        name: str,
        interval: float,
        source: Source[T],
        publisher: GaugePublisher,
        metrics: Optional[ExporterMetrics] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.interval = interval
        self.source = source
        self.publisher = publisher
        self.metrics = metrics
        self.sleep = sleep
        self.clock = clock

    async def collect_once(self) -> int:
        """Run one full cycle and return the number of published series."""
        started = self.clock()
        targets = list(self.source.targets())
        status = "ok"
        samples: List[Sample] = []

        if not targets:
            logger.debug(f"{self.name}: nothing to collect")
        else:
            logger.info(f"{self.name}: starting cycle for {len(targets)} target(s)")

        for target in targets:
            try:
                result = await self.source.fetch(target)
            except Exception as e:
                logger.error(f"{self.name}: fetch for {target} failed: {e}", exc_info=True)
                status = "partial"
                continue

            if not result.complete:
                status = "partial"

            for record in result.items:
                try:
                    samples.extend(await self.source.derive(target, record))
                except Exception as e:
                    logger.warning(
                        f"{self.name}: skipping record from {target}: {e}", exc_info=True
                    )

        written = self.publisher.publish(samples)
        duration = self.clock() - started
        if self.metrics is not None:
            self.metrics.record_cycle(self.name, status, duration)
        logger.info(
            f"{self.name}: published {written} series in {duration:.2f}s ({status})"
        )
        return written

    async def run(self):
        logger.info(f"{self.name}: collecting every {self.interval}s")
        while True:
            started = self.clock()
            try:
                await self.collect_once()
            except Exception as e:
                logger.error(f"{self.name}: cycle failed: {e}", exc_info=True)
                if self.metrics is not None:
                    self.metrics.record_cycle(self.name, "error", self.clock() - started)
            elapsed = self.clock() - started
            await self.sleep(max(0.0, self.interval - elapsed))


def _require_repository(repo: str) -> Tuple[str, str]:
    owner_and_name = split_repository(repo)
    if owner_and_name is None:
        raise ValueError(f"invalid repository format '{repo}'")
    return owner_and_name


class WorkflowRunSource:
    """Runs created inside the lookback window, labelled by the configured fields."""

    def __init__(
        self,
        client: GitHubClient,
        policy: BackoffPolicy,
        state: SharedState,
        config: ExporterConfig,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.client = client
        self.policy = policy
        self.state = state
        self.field_names = list(config.workflow_fields)
        self.lookback = timedelta(hours=config.max_workflow_creation_age_hours)
        self.fetch_usage = config.fetch_workflow_run_usage
        self.now = now

    def targets(self) -> Sequence[str]:
        return self.state.repositories

    def created_filter(self) -> str:
        window_start = self.now() - self.lookback
        return ">=" + window_start.strftime("%Y-%m-%dT%H:%M:%SZ")

    async def fetch(self, target: str) -> PaginationResult[WorkflowRun]:
        owner, name = _require_repository(target)
        created = self.created_filter()
        return await paginate(
            lambda page, per_page: self.client.list_workflow_runs(
                owner, name, created, page=page, per_page=per_page
            ),
            self.policy,
            what=f"list workflow runs of {target}",
        )

    async def usage_ms(self, owner: str, name: str, run_id: int) -> Optional[int]:
        try:
            usage = await self.policy.run(
                lambda: self.client.get_workflow_run_usage(owner, name, run_id),
                what=f"run usage of {owner}/{name}#{run_id}",
            )
        except GitHubAPIError as e:
            logger.debug(f"No usage for run {run_id} of {owner}/{name}: {e}")
            return None
        return usage.run_duration_ms

    async def derive(self, target: str, record: WorkflowRun) -> List[Sample]:
        if record.id is None:
            logger.warning(f"Skipping workflow run without id in {target}")
            return []

        labels = tuple(
            run_label_values(
                target,
                record,
                self.field_names,
                self.state.workflows.workflows_for(target),
            )
        )
        samples = [
            Sample(RUN_STATUS, labels, numeric_status(record.status, record.conclusion))
        ]

        if self.fetch_usage:
            owner, name = _require_repository(target)
            usage_ms = await self.usage_ms(owner, name, record.id)
            samples.append(Sample(RUN_DURATION, labels, run_duration_ms(record, usage_ms)))
        return samples


class RunnerSource:
    """Self-hosted runners of a repository or of an organization."""

    def __init__(
        self,
        metric: str,
        targets: Callable[[], Sequence[str]],
        list_page: Callable[[str, int, int], Awaitable[Page[Runner]]],
        policy: BackoffPolicy,
    ):
        self.metric = metric
        self._targets = targets
        self.list_page = list_page
        self.policy = policy

    def targets(self) -> Sequence[str]:
        return self._targets()

    async def fetch(self, target: str) -> PaginationResult[Runner]:
        result = await paginate(
            lambda page, per_page: self.list_page(target, page, per_page),
            self.policy,
            what=f"list runners of {target}",
        )
        logger.info(f"Fetched {len(result.items)} runners for {target}")
        return result

    async def derive(self, target: str, record: Runner) -> List[Sample]:
        if not runner_is_complete(record):
            logger.warning(f"Incomplete runner data for an entry in {target}, skipping")
            return []
        return [Sample(self.metric, runner_labels(target, record), runner_value(record))]


def repository_runner_source(
    client: GitHubClient, policy: BackoffPolicy, state: SharedState
) -> RunnerSource:
    async def list_page(repo: str, page: int, per_page: int) -> Page[Runner]:
        owner, name = _require_repository(repo)
        return await client.list_repository_runners(
            owner, name, page=page, per_page=per_page
        )

    return RunnerSource(RUNNER_STATUS, lambda: state.repositories, list_page, policy)


def organization_runner_source(
    client: GitHubClient, policy: BackoffPolicy, organizations: Sequence[str]
) -> RunnerSource:
    async def list_page(org: str, page: int, per_page: int) -> Page[Runner]:
        return await client.list_organization_runners(org, page=page, per_page=per_page)

    orgs = tuple(org for org in organizations if org)
    return RunnerSource(ORGANIZATION_RUNNER_STATUS, lambda: orgs, list_page, policy)


class WorkflowUsageSource:
    """Billable time per cached workflow definition, split by operating system."""

    def __init__(self, client: GitHubClient, policy: BackoffPolicy, state: SharedState):
        self.client = client
        self.policy = policy
        self.state = state

    def targets(self) -> Sequence[str]:
        return list(self.state.workflows.by_repository)

    async def fetch(self, target: str) -> PaginationResult[Tuple[Workflow, WorkflowUsage]]:
        owner, name = _require_repository(target)
        result: PaginationResult[Any] = PaginationResult()

        for workflow_id, workflow in self.state.workflows.workflows_for(target).items():
            if not workflow_is_complete(workflow):
                logger.warning(
                    f"Incomplete workflow definition {workflow_id} in {target}, skipping"
                )
                continue
            try:
                usage = await self.policy.run(
                    lambda: self.client.get_workflow_usage(owner, name, workflow.id),
                    what=f"usage of workflow {workflow.id} in {target}",
                )
            except GitHubAPIError as e:
                logger.warning(
                    f"Failed to get usage data for workflow {workflow.id} in {target}: {e}"
                )
                result.complete = False
                result.error = e
                continue
            result.items.append((workflow, usage))
        return result

    async def derive(
        self, target: str, record: Tuple[Workflow, WorkflowUsage]
    ) -> List[Sample]:
        workflow, usage = record
        return [
            Sample(WORKFLOW_USAGE, labels, seconds)
            for labels, seconds in billable_points(target, workflow, usage)
        ]
