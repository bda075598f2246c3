"""Label and value derivation for workflow runs, runners and billable usage."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from actions_core.schemas import Runner, Workflow, WorkflowRun, WorkflowUsage


UNKNOWN_WORKFLOW_NAME = "unknown_workflow_name"
DURATION_NOT_COMPUTABLE = -1.0

DEFAULT_WORKFLOW_FIELDS = (
    "repo,workflow_id,workflow_name,run_id,run_number,run_attempt,event,status,"
    "conclusion,head_branch,derived_target_branch,pr_number,derived_commit_pr_title,"
    "display_title,actor_login,triggering_actor_login,created_at_unix,"
    "updated_at_unix,run_started_at_unix,path"
)

RUNNER_LABELS = [
    "repo_full_name",
    "runner_os",
    "runner_name",
    "runner_id",
    "runner_busy",
]
ORGANIZATION_RUNNER_LABELS = [
    "organization_name",
    "runner_os",
    "runner_name",
    "runner_id",
    "runner_busy",
]
USAGE_LABELS = [
    "repo",
    "workflow_id",
    "workflow_node_id",
    "workflow_name",
    "workflow_state",
    "os_type",
]

_COMPLETED_CODES = {
    "success": 1.0,
    "failure": 0.0,
    "skipped": 2.0,
    "cancelled": 5.0,
    "neutral": 6.0,
    "timed_out": 7.0,
}
_STATUS_CODES = {
    "in_progress": 3.0,
    "requested": 3.0,
    "waiting": 3.0,
    "queued": 4.0,
    "action_required": 9.0,
    "stale": 10.0,
}
_TERMINAL_STATUSES = ("completed", "stale")
_ONE_MS = timedelta(milliseconds=1)


def numeric_status(status: Optional[str], conclusion: Optional[str]) -> float:
    """Encode a run's (status, conclusion) pair as a gauge value."""
    if status == "completed":
        return _COMPLETED_CODES.get(conclusion or "", 8.0)
    return _STATUS_CODES.get(status or "", 99.0)


@dataclass(frozen=True)
class RunContext:
    """Everything a field extractor may look at for one run."""

    repo: str
    run: WorkflowRun
    workflows: Mapping[int, Workflow]

    @property
    def pull_request(self):
        if self.run.pull_requests:
            return self.run.pull_requests[0]
        return None

    @property
    def is_pull_request_event(self) -> bool:
        return self.run.event == "pull_request"


def _text(value: Optional[str]) -> str:
    return value if value is not None else ""


def _integer(value: Optional[int]) -> str:
    return str(value) if value is not None else "0"


def _unix(value: Optional[datetime]) -> str:
    if value is None:
        return "0"
    return str(int(value.timestamp()))


def _login(actor) -> str:
    if actor is None:
        return ""
    return _text(actor.login)


def workflow_name(ctx: RunContext) -> str:
    definition = ctx.workflows.get(ctx.run.workflow_id)
    if definition is not None and definition.name is not None:
        return definition.name
    return UNKNOWN_WORKFLOW_NAME


def target_branch(ctx: RunContext) -> str:
    pr = ctx.pull_request
    if ctx.is_pull_request_event and pr is not None and pr.base is not None:
        if pr.base.ref is not None:
            return pr.base.ref
    return _text(ctx.run.head_branch)


def commit_or_pr_title(ctx: RunContext) -> str:
    pr = ctx.pull_request
    if ctx.is_pull_request_event and pr is not None and pr.title is not None:
        return pr.title
    if ctx.run.display_title:
        return ctx.run.display_title
    if ctx.run.head_commit is not None and ctx.run.head_commit.message is not None:
        return ctx.run.head_commit.message.split("\n", 1)[0].strip()
    return ""


def pr_number(ctx: RunContext) -> str:
    pr = ctx.pull_request
    if pr is not None and pr.number is not None:
        return str(pr.number)
    return ""


# Derived fields depend on more than one attribute of the run.
DERIVED_FIELDS: Dict[str, Callable[[RunContext], str]] = {
    "workflow_name": workflow_name,
    "derived_target_branch": target_branch,
    "derived_commit_pr_title": commit_or_pr_title,
}

DIRECT_FIELDS: Dict[str, Callable[[RunContext], str]] = {
    "repo": lambda ctx: ctx.repo,
    "run_id": lambda ctx: _integer(ctx.run.id),
    "node_id": lambda ctx: _text(ctx.run.node_id),
    "workflow_id": lambda ctx: _integer(ctx.run.workflow_id),
    "head_branch": lambda ctx: _text(ctx.run.head_branch),
    "head_sha": lambda ctx: _text(ctx.run.head_sha),
    "path": lambda ctx: _text(ctx.run.path),
    "run_number": lambda ctx: _integer(ctx.run.run_number),
    "run_attempt": lambda ctx: _integer(ctx.run.run_attempt),
    "event": lambda ctx: _text(ctx.run.event),
    "display_title": lambda ctx: _text(ctx.run.display_title),
    "status": lambda ctx: _text(ctx.run.status),
    "conclusion": lambda ctx: _text(ctx.run.conclusion),
    "pr_number": pr_number,
    "actor_login": lambda ctx: _login(ctx.run.actor),
    "triggering_actor_login": lambda ctx: _login(ctx.run.triggering_actor),
    "created_at_unix": lambda ctx: _unix(ctx.run.created_at),
    "updated_at_unix": lambda ctx: _unix(ctx.run.updated_at),
    "run_started_at_unix": lambda ctx: _unix(ctx.run.run_started_at),
}

KNOWN_FIELDS = frozenset(DERIVED_FIELDS) | frozenset(DIRECT_FIELDS)


def parse_field_list(raw: str) -> List[str]:
    return [name.strip() for name in raw.split(",") if name.strip()]


def unknown_fields(names: Iterable[str]) -> List[str]:
    return [name for name in names if name not in KNOWN_FIELDS]


def run_label_values(
    repo: str,
    run: WorkflowRun,
    field_names: Sequence[str],
    workflows: Mapping[int, Workflow],
) -> List[str]:
    """Build the label vector for one run, one value per requested field.

    Names outside the registry render as an empty string so that a bad
    label list never breaks a collection cycle.
    """
    ctx = RunContext(repo=repo, run=run, workflows=workflows)
    derived = {
        name: extract(ctx)
        for name, extract in DERIVED_FIELDS.items()
        if name in field_names
    }

    values = []
    for name in field_names:
        if name in derived:
            values.append(derived[name])
        elif name in DIRECT_FIELDS:
            values.append(DIRECT_FIELDS[name](ctx))
        else:
            values.append("")
    return values


def run_duration_ms(run: WorkflowRun, usage_ms: Optional[int]) -> float:
    """Duration from the usage endpoint, falling back to UpdatedAt - RunStartedAt.

    The fallback only applies to terminal runs whose update time is strictly
    after the start time; anything else yields DURATION_NOT_COMPUTABLE.
    """
    if usage_ms is not None:
        return float(usage_ms)
    if run.status not in _TERMINAL_STATUSES:
        return DURATION_NOT_COMPUTABLE
    if run.run_started_at is None or run.updated_at is None:
        return DURATION_NOT_COMPUTABLE
    if run.updated_at > run.run_started_at:
        delta = run.updated_at - run.run_started_at
        return float(delta // _ONE_MS)
    return DURATION_NOT_COMPUTABLE


def runner_is_complete(runner: Runner) -> bool:
    return None not in (runner.id, runner.name, runner.os, runner.status, runner.busy)


def runner_labels(scope: str, runner: Runner) -> Tuple[str, ...]:
    return (
        scope,
        runner.os,
        runner.name,
        str(runner.id),
        "true" if runner.busy else "false",
    )


def runner_value(runner: Runner) -> float:
    return 1.0 if runner.status == "online" else 0.0


def workflow_is_complete(workflow: Workflow) -> bool:
    return None not in (workflow.id, workflow.name, workflow.node_id, workflow.state)


def billable_points(
    repo: str, workflow: Workflow, usage: WorkflowUsage
) -> List[Tuple[Tuple[str, ...], float]]:
    """One (labels, seconds) pair per operating system in the billable map."""
    points = []
    for os_type, entry in usage.billable.items():
        if entry is None or entry.total_ms is None:
            continue
        labels = (
            repo,
            str(workflow.id),
            workflow.node_id,
            workflow.name,
            workflow.state,
            os_type.upper(),
        )
        points.append((labels, entry.total_ms / 1000))
    return points


def split_repository(full_name: str) -> Optional[Tuple[str, str]]:
    parts = full_name.split("/")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        return None
    return parts[0], parts[1]
