# dsl.py
from __future__ import annotations

from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .model import (
    DEFAULT_BRANCHES,
    CollaboratorCall,
    Job,
    NetworkConfig,
    Pipeline,
    RunRemoteTask,
    Step,
    WaitForRemoteTask,
)
from .remote import DEFAULT_MAX_WAIT, DEFAULT_POLL_INTERVAL


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def step(
    name: str,
    action: CollaboratorCall,
    *,
    when: Optional[Callable[[Mapping[str, str]], bool]] = None,
    secrets: Optional[Mapping[str, str]] = None,
    env: Optional[Mapping[str, str]] = None,
) -> Step:
    """
    Create a step that invokes one collaborator call.

    {environment}, {sha}, {branch} and other context variables in the call's
    string fields are filled in per instance; any other braces pass through.
    """
    return Step(name=name, action=action, condition=when, secrets=dict(secrets or {}), env=dict(env or {}))


def when(**expected: str) -> Callable[[Mapping[str, str]], bool]:
    """
    Condition builder: when(environment="prod") holds iff every given
    context variable equals the expected value.
    """
    def predicate(variables: Mapping[str, str]) -> bool:
        return all(variables.get(k) == v for k, v in expected.items())

    predicate.__name__ = "when(" + ", ".join(f"{k}={v!r}" for k, v in expected.items()) + ")"
    return predicate


def migrate(
    name: str,
    *,
    cluster: str,
    task_definition: str,
    network: NetworkConfig,
    command: Sequence[str],
    container: str = "app",
    secrets: Optional[Mapping[str, str]] = None,
    when: Optional[Callable[[Mapping[str, str]], bool]] = None,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    max_wait: float = DEFAULT_MAX_WAIT,
) -> List[Step]:
    """
    Launch a one-shot remote task and wait for it to stop: two steps, so the
    launch/await split stays visible in results.
    """
    launch_name = f"{name} (launch)"
    return [
        step(
            launch_name,
            RunRemoteTask(
                cluster=cluster,
                task_definition=task_definition,
                network=network,
                command=tuple(command),
                container=container,
            ),
            when=when,
            secrets=secrets,
        ),
        step(
            f"{name} (wait)",
            WaitForRemoteTask(launched_by=launch_name, poll_interval=poll_interval, max_wait=max_wait),
            when=when,
        ),
    ]


# ---------------------------------------------------------------------
# Job / pipeline helpers
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step | Sequence[Step],  # allow: job("x", step(...), migrate(...))
    needs: Optional[List[str]] = None,
    matrix: Optional[Iterable[str]] = None,
    env: Optional[Dict[str, str]] = None,
) -> Job:
    steps_final: List[Step] = []
    for s in steps:
        if isinstance(s, Step):
            steps_final.append(s)
        else:
            steps_final.extend(s)

    if not steps_final:
        raise ValueError(f"job({name!r}) must have at least one step")

    names = [s.name for s in steps_final]
    if len(set(names)) != len(names):
        raise ValueError(f"job({name!r}) has duplicate step names")

    return Job(
        name=name,
        steps=steps_final,
        needs=list(needs or []),
        matrix=list(matrix) if matrix is not None else None,
        env={k: str(v) for k, v in (env or {}).items()},
    )


class Matrix:
    """
    Environment axis shared by several jobs.

    Example:
        envs = matrix("dev", "uat", "prod")
        job("deploy", ..., matrix=envs)
    """

    def __init__(self, *values: str):
        self.values = list(values)

    def __iter__(self):
        return iter(self.values)

    def __len__(self) -> int:
        return len(self.values)


def matrix(*values: str) -> Matrix:
    return Matrix(*values)


def pipeline(
    name: str,
    *jobs: Job,
    branches: Tuple[str, ...] | List[str] = DEFAULT_BRANCHES,
) -> Pipeline:
    return Pipeline(name=name, jobs=list(jobs), allowed_branches=tuple(branches))
