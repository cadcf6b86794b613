# dag.py
from __future__ import annotations

from collections import deque
from typing import Dict, Iterable, Iterator, List, Set

from .errors import CycleError, DuplicateJob, UnknownDependency
from .model import Job


class JobGraph:
    """
    Directed acyclic graph of job names.

    Edges point from a dependency to its dependents (needs -> job), so a
    job's in-degree is the number of jobs that must finish before it.
    The graph is validated on every insertion: it is never observable in a
    cyclic or dangling state.
    """

    def __init__(self) -> None:
        self._needs: Dict[str, Set[str]] = {}
        self._adj: Dict[str, Set[str]] = {}     # dep -> dependents

    @classmethod
    def from_jobs(cls, jobs: Iterable[Job]) -> "JobGraph":
        """
        Build a graph from Job objects declared in any order.

        Jobs are inserted as soon as their needs are present; whatever is
        left when no progress can be made is either dangling or cyclic.
        """
        jobs = list(jobs)
        names = [j.name for j in jobs]
        if len(set(names)) != len(names):
            raise DuplicateJob(sorted({n for n in names if names.count(n) > 1}))

        graph = cls()
        pending = {j.name: list(j.needs) for j in jobs}
        while pending:
            ready = [n for n, needs in pending.items() if all(d in graph for d in needs)]
            if not ready:
                break
            for name in ready:
                graph.add_job(name, pending.pop(name))

        for name, needs in pending.items():
            for d in needs:
                if d not in pending and d not in graph:
                    raise UnknownDependency(name, d, names)

        if pending:
            # Everything left only waits on other leftovers: a cycle.
            start = sorted(pending)[0]
            raise CycleError(start, _find_cycle(start, pending))

        return graph

    def __contains__(self, name: object) -> bool:
        return name in self._needs

    def __len__(self) -> int:
        return len(self._needs)

    def jobs(self) -> List[str]:
        return sorted(self._needs)

    def needs_of(self, name: str) -> Set[str]:
        return set(self._needs[name])

    def dependents_of(self, name: str) -> Set[str]:
        return set(self._adj[name])

    def add_job(self, name: str, needs: Iterable[str] = ()) -> None:
        """
        Add a job (or add edges to an existing one).

        Raises UnknownDependency if a need is not in the graph and CycleError
        if the new edges would close a cycle. The graph is untouched on error.
        """
        needs = list(needs)
        known = list(self._needs) + [name]
        for d in needs:
            if d != name and d not in self._needs:
                raise UnknownDependency(name, d, known)

        if name in needs:
            raise CycleError(name, [name, name])

        if name in self._needs:
            # A new edge d -> name closes a cycle iff name already reaches d.
            for d in needs:
                path = self._path(name, d)
                if path:
                    raise CycleError(name, path + [name])

        self._needs.setdefault(name, set())
        self._adj.setdefault(name, set())
        for d in needs:
            self._needs[name].add(d)
            self._adj[d].add(name)

    def topological_order(self) -> Iterator[List[str]]:
        """
        Lazily yield "ready sets": tiers of jobs whose needs are all in
        earlier tiers. Each call starts a fresh walk.
        """
        indeg = {n: len(needs) for n, needs in self._needs.items()}
        q = deque(sorted(n for n, d in indeg.items() if d == 0))

        while q:
            level = [q.popleft() for _ in range(len(q))]
            yield level
            released: List[str] = []
            for node in level:
                for child in self._adj.get(node, set()):
                    indeg[child] -= 1
                    if indeg[child] == 0:
                        released.append(child)
            q.extend(sorted(released))

    def _path(self, src: str, dst: str) -> List[str]:
        """Dependency-direction path src -> ... -> dst along dependents, or []."""
        q = deque([[src]])
        seen = {src}
        while q:
            path = q.popleft()
            if path[-1] == dst:
                return path
            for nxt in sorted(self._adj.get(path[-1], set())):
                if nxt not in seen:
                    seen.add(nxt)
                    q.append(path + [nxt])
        return []


def _find_cycle(start: str, needs: Dict[str, List[str]]) -> List[str]:
    path: List[str] = []
    node = start
    while node not in path:
        path.append(node)
        node = sorted(d for d in needs[node] if d in needs)[0]
    return path[path.index(node):] + [node]
