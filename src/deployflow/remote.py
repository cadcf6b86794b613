# remote.py
from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Mapping, Optional, Protocol, Sequence

from .errors import LaunchError, RemoteTaskTimeout
from .model import NetworkConfig, RemoteTask, TaskStatus

# Same cadence as `aws ecs wait tasks-stopped` (6s delay, 100 attempts).
DEFAULT_POLL_INTERVAL = 6.0
DEFAULT_MAX_WAIT = 600.0


@dataclass(frozen=True)
class TaskState:
    status: TaskStatus
    exit_code: int | None = None
    stopped_reason: str | None = None


class ContainerService(Protocol):
    """What the engine needs from a container-orchestration API."""

    def run_task(
        self,
        cluster: str,
        task_definition: str,
        network: NetworkConfig,
        container: str,
        command: Sequence[str],
        environment: Mapping[str, str],
    ) -> str:
        """Start a one-shot task and return its ARN. Raise LaunchError on rejection."""
        ...

    def describe_task(self, cluster: str, arn: str, container: str) -> TaskState:
        ...

    def update_service(self, cluster: str, service: str) -> None:
        """Force a new deployment of `service`."""
        ...


class RemoteTaskLauncher:
    """
    Two-phase remote task primitive: launch() returns a handle right away,
    await_terminal() blocks the calling thread (one job instance) until the
    task stops or the wait budget runs out.

    The launcher keeps no per-task state; each RemoteTask handle belongs to
    the instance that launched it.
    """

    def __init__(
        self,
        service: ContainerService,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.service = service
        self._clock = clock
        self._sleep = sleep

    def launch(
        self,
        cluster: str,
        task_definition: str,
        network: NetworkConfig,
        command: Sequence[str],
        container: str = "app",
        environment: Optional[Mapping[str, str]] = None,
    ) -> RemoteTask:
        arn = self.service.run_task(
            cluster, task_definition, network, container, list(command), dict(environment or {}),
        )
        if not arn:
            raise LaunchError(task_definition, "no task ARN returned")
        return RemoteTask(
            arn=arn,
            cluster=cluster,
            container=container,
            launched_at=datetime.now(timezone.utc),
        )

    def await_terminal(
        self,
        task: RemoteTask,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_wait: float = DEFAULT_MAX_WAIT,
        on_poll: Optional[Callable[[RemoteTask], None]] = None,
    ) -> int:
        """
        Poll until the task is STOPPED and return its exit code.

        Raises RemoteTaskTimeout if it is still not stopped after `max_wait`
        seconds (the task is not stopped for you), and LaunchError if it
        stopped without ever producing an exit code.
        """
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")

        deadline = self._clock() + max_wait
        while True:
            state = self.service.describe_task(task.cluster, task.arn, task.container)
            task.status = state.status
            if on_poll is not None:
                on_poll(task)

            if state.status is TaskStatus.STOPPED:
                task.exit_code = state.exit_code
                task.stopped_reason = state.stopped_reason
                if state.exit_code is None:
                    raise LaunchError(
                        task.arn,
                        f"stopped without an exit code ({state.stopped_reason or 'no reason given'})",
                    )
                return state.exit_code

            remaining = deadline - self._clock()
            if remaining <= 0:
                raise RemoteTaskTimeout(task.arn, max_wait)
            self._sleep(min(poll_interval, remaining))
