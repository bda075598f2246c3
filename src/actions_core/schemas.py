from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class GitHubModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class Actor(GitHubModel):
    login: Optional[str] = None


class BranchRef(GitHubModel):
    ref: Optional[str] = None
    sha: Optional[str] = None


class PullRequestRef(GitHubModel):
    number: Optional[int] = None
    title: Optional[str] = None
    base: Optional[BranchRef] = None
    head: Optional[BranchRef] = None


class HeadCommit(GitHubModel):
    id: Optional[str] = None
    message: Optional[str] = None


class WorkflowRun(GitHubModel):
    id: Optional[int] = None
    node_id: Optional[str] = None
    workflow_id: Optional[int] = None
    run_number: Optional[int] = None
    run_attempt: Optional[int] = None
    event: Optional[str] = None
    status: Optional[str] = None
    conclusion: Optional[str] = None
    head_branch: Optional[str] = None
    head_sha: Optional[str] = None
    path: Optional[str] = None
    display_title: Optional[str] = None
    actor: Optional[Actor] = None
    triggering_actor: Optional[Actor] = None
    pull_requests: List[PullRequestRef] = Field(default_factory=list)
    head_commit: Optional[HeadCommit] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    run_started_at: Optional[datetime] = None


class Workflow(GitHubModel):
    id: Optional[int] = None
    node_id: Optional[str] = None
    name: Optional[str] = None
    state: Optional[str] = None
    path: Optional[str] = None


class Runner(GitHubModel):
    id: Optional[int] = None
    name: Optional[str] = None
    os: Optional[str] = None
    status: Optional[str] = None
    busy: Optional[bool] = None


class Repository(GitHubModel):
    id: Optional[int] = None
    full_name: Optional[str] = None


class BillableEntry(GitHubModel):
    total_ms: Optional[int] = None


class WorkflowUsage(GitHubModel):
    billable: Dict[str, BillableEntry] = Field(default_factory=dict)


class WorkflowRunUsage(GitHubModel):
    run_duration_ms: Optional[int] = None
