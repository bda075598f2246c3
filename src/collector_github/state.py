"""Snapshots shared between the refresher and the collectors.

Both the monitored-repository list and the workflow-definition cache are
immutable values. Writers build a complete replacement and swap the
reference; readers grab the reference once and work from it, so they see
either the old or the new snapshot, never a half-built one.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Tuple

from actions_core.schemas import Workflow


_NO_WORKFLOWS: Mapping[int, Workflow] = MappingProxyType({})


@dataclass(frozen=True)
class WorkflowSnapshot:
    by_repository: Mapping[str, Mapping[int, Workflow]] = field(
        default_factory=lambda: MappingProxyType({})
    )

    @classmethod
    def build(cls, data: Dict[str, Dict[int, Workflow]]) -> "WorkflowSnapshot":
        frozen = {repo: MappingProxyType(dict(wfs)) for repo, wfs in data.items()}
        return cls(by_repository=MappingProxyType(frozen))

    def workflows_for(self, repo: str) -> Mapping[int, Workflow]:
        return self.by_repository.get(repo, _NO_WORKFLOWS)

    @property
    def workflow_count(self) -> int:
        return sum(len(wfs) for wfs in self.by_repository.values())

    def __len__(self) -> int:
        return len(self.by_repository)


class SharedState:
    def __init__(self):
        self._repositories: Tuple[str, ...] = ()
        self._workflows = WorkflowSnapshot()

    @property
    def repositories(self) -> Tuple[str, ...]:
        return self._repositories

    @property
    def workflows(self) -> WorkflowSnapshot:
        return self._workflows

    def replace_repositories(self, repositories: Iterable[str]):
        self._repositories = tuple(repositories)

    def replace_workflows(self, snapshot: WorkflowSnapshot):
        self._workflows = snapshot

    def clear(self):
        self._repositories = ()
        self._workflows = WorkflowSnapshot()
