# dag.py
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List, Set, Tuple

from .errors import CycleError, DuplicateInstanceError, UnknownDependencyError
from .matrix import expand
from .model import JobInstance, WorkflowDefinition


@dataclass
class JobGraph:
    """
    Expanded job instances plus the dependency relation between them.

    instances:  id -> JobInstance, in declaration then matrix order
    deps:       id -> ids that must finish first
    dependents: id -> ids waiting on it
    priority:   id -> (topological level, declaration index); lower runs first
    """
    instances: Dict[str, JobInstance] = field(default_factory=dict)
    deps: Dict[str, Set[str]] = field(default_factory=dict)
    dependents: Dict[str, Set[str]] = field(default_factory=dict)
    priority: Dict[str, Tuple[int, int]] = field(default_factory=dict)
    by_job: Dict[str, List[str]] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.instances)

    def siblings(self, instance_id: str) -> List[str]:
        job = self.instances[instance_id].name
        return [i for i in self.by_job[job] if i != instance_id]

    def downstream(self, instance_id: str) -> List[str]:
        """Every instance reachable through the dependents relation, in priority order."""
        seen: Set[str] = set()
        q = deque([instance_id])
        while q:
            node = q.popleft()
            for child in self.dependents.get(node, set()):
                if child not in seen:
                    seen.add(child)
                    q.append(child)
        return sorted(seen, key=self.priority.__getitem__)

    def levels(self) -> List[List[str]]:
        """Instances grouped into stages; each stage only needs earlier ones."""
        out: Dict[int, List[str]] = {}
        for iid in sorted(self.instances, key=self.priority.__getitem__):
            out.setdefault(self.priority[iid][0], []).append(iid)
        return [out[k] for k in sorted(out)]


def _job_levels(definition: WorkflowDefinition) -> Dict[str, int]:
    """
    Kahn's algorithm over job names. Returns job -> level, or raises
    CycleError with the jobs that never reached in-degree zero.
    """
    names = list(definition.jobs)
    adj: Dict[str, Set[str]] = {n: set() for n in names}   # dep -> dependents
    indeg: Dict[str, int] = {n: 0 for n in names}

    for template in definition.jobs.values():
        for dep in template.needs:
            if dep not in definition.jobs:
                raise UnknownDependencyError(template.name, dep, names)
            # needs must run before job
            if template.name not in adj[dep]:
                adj[dep].add(template.name)
                indeg[template.name] += 1

    order = {n: i for i, n in enumerate(names)}
    level: Dict[str, int] = {}
    q = deque(n for n in names if indeg[n] == 0)
    for n in q:
        level[n] = 0

    while q:
        node = q.popleft()
        for child in sorted(adj[node], key=order.__getitem__):
            indeg[child] -= 1
            level[child] = max(level.get(child, 0), level[node] + 1)
            if indeg[child] == 0:
                q.append(child)

    remaining = [n for n, d in indeg.items() if d > 0]
    if remaining:
        raise CycleError(remaining)

    return level


def build_graph(definition: WorkflowDefinition) -> JobGraph:
    """
    Build the instance-level DAG for one run.

    Every instance of a job depends on every instance of each job it needs,
    so a dependent waits for the whole matrix of its dependency.
    Configuration errors surface here, before anything runs.
    """
    levels = _job_levels(definition)

    graph = JobGraph()
    index = 0
    for name, template in definition.jobs.items():
        ids: List[str] = []
        for inst in expand(template):
            if inst.id in graph.instances:
                raise DuplicateInstanceError(inst.id, [graph.instances[inst.id].name, name])
            graph.instances[inst.id] = inst
            graph.deps[inst.id] = set()
            graph.dependents[inst.id] = set()
            graph.priority[inst.id] = (levels[name], index)
            ids.append(inst.id)
            index += 1
        graph.by_job[name] = ids

    for name, template in definition.jobs.items():
        for dep in template.needs:
            for iid in graph.by_job[name]:
                for did in graph.by_job[dep]:
                    graph.deps[iid].add(did)
                    graph.dependents[did].add(iid)

    return graph
