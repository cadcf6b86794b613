"""Shared fakes for the collaborator and container-service boundaries."""

from __future__ import annotations

import os
import tempfile
import threading
from collections import defaultdict
from typing import Dict, List

import pytest

from deployflow.collaborators import Collaborators
from deployflow.context import ContextProvider, StaticSecretStore
from deployflow.model import (
    BuildImage,
    CallOutcome,
    DeployService,
    PushImage,
    RunTests,
    ScanCode,
    ScanDependencies,
    ScanImage,
    ScanInfra,
    TaskStatus,
)
from deployflow.remote import RemoteTaskLauncher, TaskState
from deployflow.ui.console import Console, set_console

# The control plane reads its settings at import time.
_DB_DIR = tempfile.mkdtemp(prefix="deployflow-test-")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_DB_DIR}/control.db")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self._lock = threading.Lock()

    def __call__(self) -> float:
        with self._lock:
            return self.now

    def sleep(self, seconds: float) -> None:
        with self._lock:
            self.now += seconds


class FakeContainerService:
    """
    Scripted ContainerService. `script[task_definition]` is the sequence of
    states describe_task walks through; the last one repeats forever.
    """

    def __init__(self, script: Dict[str, List[TaskState]] | None = None,
                 reject: Dict[str, str] | None = None) -> None:
        self.script = dict(script or {})
        self.reject = dict(reject or {})
        self.launched: List[dict] = []
        self.deployed: List[tuple] = []
        self._polls: Dict[str, int] = defaultdict(int)
        self._arns: Dict[str, str] = {}
        self._lock = threading.Lock()

    def run_task(self, cluster, task_definition, network, container, command, environment):
        from deployflow.errors import LaunchError

        if task_definition in self.reject:
            raise LaunchError(task_definition, self.reject[task_definition])
        with self._lock:
            arn = f"arn:aws:ecs:us-east-1:123456789012:task/{cluster}/{len(self.launched) + 1}"
            self.launched.append({
                "cluster": cluster,
                "task_definition": task_definition,
                "network": network,
                "container": container,
                "command": list(command),
                "environment": dict(environment),
                "arn": arn,
            })
            self._arns[arn] = task_definition
        return arn

    def describe_task(self, cluster, arn, container):
        with self._lock:
            states = self.script.get(self._arns[arn], [TaskState(TaskStatus.STOPPED, exit_code=0)])
            idx = min(self._polls[arn], len(states) - 1)
            self._polls[arn] += 1
        return states[idx]

    def update_service(self, cluster, service):
        with self._lock:
            self.deployed.append((cluster, service))

    def polls(self, arn: str) -> int:
        return self._polls[arn]


class RecordingCollaborators(Collaborators):
    """Every shell-style call succeeds unless listed in `fail`."""

    CALLS = (ScanCode, ScanDependencies, ScanInfra, ScanImage, RunTests, BuildImage, PushImage, DeployService)

    def __init__(self, fail: Dict[type, str] | None = None) -> None:
        super().__init__()
        self.fail = dict(fail or {})
        self.calls: List[tuple] = []
        self._lock = threading.Lock()
        for call_type in self.CALLS:
            self.register(call_type, self._handle)

    def _handle(self, call, ctx) -> CallOutcome:
        with self._lock:
            self.calls.append((call, ctx))
        if type(call) in self.fail:
            return CallOutcome(False, b"", self.fail[type(call)])
        return CallOutcome(True, b"ok")

    def made(self, call_type: type) -> list:
        return [(c, ctx) for c, ctx in self.calls if isinstance(c, call_type)]


ALL_SECRETS = {
    "SNYK_TOKEN": "snyk-token",
    "DOCKERHUB_USERNAME": "deployer",
    "DOCKERHUB_TOKEN": "hub-token",
    "DJANGO_SECRET_KEY": "django-secret",
    **{
        f"{key}_{env}": f"{key.lower()}-{env.lower()}"
        for env in ("DEV", "UAT", "PROD")
        for key in ("RDS_DB_NAME", "RDS_USERNAME", "RDS_PASSWORD", "RDS_HOST", "RDS_PORT")
    },
}


@pytest.fixture(autouse=True)
def quiet_console():
    set_console(Console(debug=False))
    yield


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def secrets():
    return StaticSecretStore(ALL_SECRETS)


@pytest.fixture
def contexts(secrets):
    return ContextProvider(secrets)


@pytest.fixture
def service():
    return FakeContainerService()


@pytest.fixture
def launcher(service, clock):
    return RemoteTaskLauncher(service, clock=clock, sleep=clock.sleep)


@pytest.fixture
def collaborators():
    return RecordingCollaborators()
