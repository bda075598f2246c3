import pytest

from prometheus_client import CollectorRegistry

from actions_core.schemas import (
    Repository,
    Runner,
    Workflow,
    WorkflowRun,
    WorkflowRunUsage,
    WorkflowUsage,
)
from collector_github.config import ExporterConfig
from collector_github.errors import NotFoundError
from collector_github.paginator import BackoffPolicy, Page


class RecordingSleep:
    """Async sleep replacement that records the requested delays."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


class FakeGitHub:
    """In-memory stand-in for GitHubClient; every listing is a list of pages."""

    def __init__(self):
        self.runs = {}
        self.workflows = {}
        self.repo_runners = {}
        self.org_runners = {}
        self.org_repos = {}
        self.run_usage = {}
        self.workflow_usage = {}
        self.calls = []
        self.rate_limit_remaining = None

    @staticmethod
    def _page(pages, page, model):
        if not pages:
            return Page([], 0)
        items = [model.model_validate(raw) for raw in pages[page - 1]]
        next_page = page + 1 if page < len(pages) else 0
        return Page(items, next_page)

    async def list_workflow_runs(self, owner, repo, created, page=1, per_page=100):
        self.calls.append(("runs", f"{owner}/{repo}", page))
        return self._page(self.runs.get(f"{owner}/{repo}"), page, WorkflowRun)

    async def list_workflows(self, owner, repo, page=1, per_page=100):
        self.calls.append(("workflows", f"{owner}/{repo}", page))
        return self._page(self.workflows.get(f"{owner}/{repo}"), page, Workflow)

    async def list_repository_runners(self, owner, repo, page=1, per_page=100):
        self.calls.append(("repo_runners", f"{owner}/{repo}", page))
        return self._page(self.repo_runners.get(f"{owner}/{repo}"), page, Runner)

    async def list_organization_runners(self, org, page=1, per_page=100):
        self.calls.append(("org_runners", org, page))
        return self._page(self.org_runners.get(org), page, Runner)

    async def list_organization_repositories(self, org, page=1, per_page=100):
        self.calls.append(("org_repos", org, page))
        return self._page(self.org_repos.get(org), page, Repository)

    async def get_workflow_run_usage(self, owner, repo, run_id):
        self.calls.append(("run_usage", f"{owner}/{repo}", run_id))
        value = self.run_usage.get(run_id)
        if isinstance(value, Exception):
            raise value
        if value is None:
            raise NotFoundError("no timing", status=404)
        return WorkflowRunUsage(run_duration_ms=value)

    async def get_workflow_usage(self, owner, repo, workflow_id):
        self.calls.append(("workflow_usage", f"{owner}/{repo}", workflow_id))
        value = self.workflow_usage.get((f"{owner}/{repo}", workflow_id))
        if isinstance(value, Exception):
            raise value
        return WorkflowUsage.model_validate(value or {})

    async def close(self):
        pass


@pytest.fixture
def fake_github():
    return FakeGitHub()


@pytest.fixture
def policy():
    """Backoff policy that never really sleeps and does not retry."""
    return BackoffPolicy(transient_attempts=1, transient_wait=0, sleep=RecordingSleep())


@pytest.fixture
def registry():
    return CollectorRegistry()


@pytest.fixture
def make_config():
    def _make(**overrides):
        values = {
            "workflow_fields": ["repo", "run_id", "workflow_name", "status", "conclusion"],
            "fetch_workflow_run_usage": False,
        }
        values.update(overrides)
        return ExporterConfig(**values)

    return _make


def series(registry, name):
    """All samples currently exported for metric ``name``."""
    return [
        sample
        for metric in registry.collect()
        for sample in metric.samples
        if sample.name == name
    ]
