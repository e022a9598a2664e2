# dag.py
from __future__ import annotations

from typing import Dict, List, Mapping, Set, Tuple

from .errors import CycleDetectedError, DefinitionError, UnknownDependencyError
from .model import JobDefinition


def build_graph(
    jobs: Mapping[str, JobDefinition],
    workflow: str | None = None,
) -> Tuple[Dict[str, Set[str]], Dict[str, int]]:
    """
    Build the job dependency graph.

    Returns:
      adj:   job_id -> ids of the jobs that need it (dependents)
      indeg: job_id -> number of distinct prerequisites

    Raises UnknownDependencyError for a `needs` entry naming a job that does
    not exist in the same workflow.
    """
    adj: Dict[str, Set[str]] = {job_id: set() for job_id in jobs}
    indeg: Dict[str, int] = {job_id: 0 for job_id in jobs}

    for job_id, job in jobs.items():
        for need in job.needs:
            if need == job_id:
                raise CycleDetectedError(workflow, f"job '{job_id}' needs itself")
            if need not in jobs:
                raise UnknownDependencyError(
                    workflow,
                    f"job '{job_id}' needs missing job '{need}'. Known jobs: {sorted(jobs)}",
                )
            # edge need -> job_id (need must finish before job_id)
            if job_id not in adj[need]:
                adj[need].add(job_id)
                indeg[job_id] += 1

    return adj, indeg


def stages(jobs: Mapping[str, JobDefinition], workflow: str | None = None) -> List[List[str]]:
    """
    Group jobs into stages by depth: a job with no `needs` is in stage 0,
    every other job sits one stage after its deepest prerequisite.

    Expects every `needs` entry to resolve (see `build_graph`). Raises
    CycleDetectedError naming the jobs around the first cycle found, in
    `needs` order ("a -> c -> b -> a": a needs c, c needs b, b needs a).
    """
    depth: Dict[str, int] = {}
    path: List[str] = []
    on_path: Set[str] = set()

    def visit(job_id: str) -> int:
        if job_id in depth:
            return depth[job_id]
        if job_id in on_path:
            cycle = path[path.index(job_id):] + [job_id]
            raise CycleDetectedError(workflow, f"'needs' graph has a cycle: {' -> '.join(cycle)}")

        path.append(job_id)
        on_path.add(job_id)
        needs = sorted(set(jobs[job_id].needs))
        depth[job_id] = 1 + max((visit(n) for n in needs), default=-1)
        on_path.discard(path.pop())
        return depth[job_id]

    for job_id in sorted(jobs):
        visit(job_id)

    levels: List[List[str]] = [[] for _ in range(max(depth.values(), default=-1) + 1)]
    for job_id in sorted(depth):
        levels[depth[job_id]].append(job_id)
    return levels


def validate_graph(jobs: Mapping[str, JobDefinition], workflow: str | None = None) -> List[List[str]]:
    """Registration-time check: references resolve and the graph is acyclic. Returns the stages."""
    if not jobs:
        raise DefinitionError(workflow, "workflow has no jobs")
    build_graph(jobs, workflow)
    return stages(jobs, workflow)
