# model.py
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Mapping, Optional, Tuple


class EventKind(str, enum.Enum):
    PUSH = "push"
    PULL_REQUEST = "pull_request"


class Status(str, enum.Enum):
    """Lifecycle of a job instance, a step, or a whole run."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in (Status.SUCCEEDED, Status.FAILED, Status.SKIPPED)


class TaskStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    STOPPED = "stopped"


DEFAULT_BRANCHES: Tuple[str, ...] = ("main", "dev", "uat")


@dataclass(frozen=True)
class Trigger:
    """The source-control event that asks for a run."""
    branch: str
    event_kind: EventKind = EventKind.PUSH
    sha: str | None = None

    def eligible(self, allowed_branches: Tuple[str, ...] | List[str] = DEFAULT_BRANCHES) -> bool:
        return self.branch in allowed_branches


# ---------------------------------------------------------------------
# Collaborator calls (one dataclass per kind)
# ---------------------------------------------------------------------
# String fields may carry {environment}, {sha} or {branch}; the executor
# fills them in from the job context before the call is dispatched.

@dataclass(frozen=True)
class ScanCode:
    tool: str = "snyk"                   # "snyk" | "bandit"
    target: str = "."
    report: str | None = None


@dataclass(frozen=True)
class ScanDependencies:
    all_projects: bool = True


@dataclass(frozen=True)
class ScanInfra:
    report: bool = True


@dataclass(frozen=True)
class ScanImage:
    image: str
    dockerfile: str = "Dockerfile"


@dataclass(frozen=True)
class RunTests:
    command: str
    requirements: str | None = None


@dataclass(frozen=True)
class BuildImage:
    context: str
    tags: Tuple[str, ...]


@dataclass(frozen=True)
class PushImage:
    tags: Tuple[str, ...]
    username_secret: str = "DOCKERHUB_USERNAME"
    token_secret: str = "DOCKERHUB_TOKEN"


@dataclass(frozen=True)
class DeployService:
    cluster: str
    service: str


@dataclass(frozen=True)
class NetworkConfig:
    subnets: Tuple[str, ...]
    security_groups: Tuple[str, ...]
    assign_public_ip: bool = True

    def to_awsvpc(self) -> dict:
        return {
            "awsvpcConfiguration": {
                "subnets": list(self.subnets),
                "securityGroups": list(self.security_groups),
                "assignPublicIp": "ENABLED" if self.assign_public_ip else "DISABLED",
            }
        }


@dataclass(frozen=True)
class RunRemoteTask:
    cluster: str
    task_definition: str
    network: NetworkConfig
    command: Tuple[str, ...]
    container: str = "app"


@dataclass(frozen=True)
class WaitForRemoteTask:
    launched_by: str | None = None       # step name; None means the latest launch
    poll_interval: float = 6.0
    max_wait: float = 600.0


CollaboratorCall = (
    ScanCode | ScanDependencies | ScanInfra | ScanImage | RunTests
    | BuildImage | PushImage | DeployService | RunRemoteTask | WaitForRemoteTask
)


@dataclass(frozen=True)
class CallOutcome:
    success: bool
    output: bytes = b""
    diagnostics: str = ""


# ---------------------------------------------------------------------
# Pipeline definition
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class Step:
    """A single collaborator call inside a job, optionally guarded."""
    name: str
    action: CollaboratorCall
    condition: Optional[Callable[[Mapping[str, str]], bool]] = None
    # env var -> secret name template, e.g. {"RDS_HOST": "RDS_HOST_{ENVIRONMENT}"}
    secrets: Mapping[str, str] = field(default_factory=dict)
    env: Mapping[str, str] = field(default_factory=dict)


@dataclass
class Job:
    """A named unit of work: ordered steps + upstream dependencies."""
    name: str
    steps: list[Step]
    needs: list[str] = field(default_factory=list)
    matrix: Optional[List[str]] = None   # environment axis
    env: Dict[str, str] = field(default_factory=dict)


@dataclass
class Pipeline:
    name: str
    jobs: list[Job]
    allowed_branches: Tuple[str, ...] = DEFAULT_BRANCHES

    def job(self, name: str) -> Job:
        for j in self.jobs:
            if j.name == name:
                return j
        raise KeyError(name)


# ---------------------------------------------------------------------
# Run state
# ---------------------------------------------------------------------

@dataclass
class StepResult:
    name: str
    status: Status
    output: bytes = b""
    diagnostics: str = ""
    exit_code: int | None = None


@dataclass
class JobInstance:
    """One concrete execution of a Job (one matrix cell, or the only one)."""
    job: Job
    environment: str | None = None
    status: Status = Status.PENDING
    started_at: datetime | None = None
    ended_at: datetime | None = None
    step_results: list[StepResult] = field(default_factory=list)
    diagnostics: str = ""

    @property
    def label(self) -> str:
        if self.environment is None:
            return self.job.name
        return f"{self.job.name}[{self.environment}]"

    @property
    def failed_step(self) -> StepResult | None:
        for r in self.step_results:
            if r.status is Status.FAILED:
                return r
        return None


@dataclass
class RemoteTask:
    arn: str
    cluster: str
    container: str
    launched_at: datetime
    status: TaskStatus = TaskStatus.PENDING
    exit_code: int | None = None
    stopped_reason: str | None = None


@dataclass
class RunReport:
    trigger: Trigger
    status: Status
    instances: list[JobInstance] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return 0 if self.status is Status.SUCCEEDED else 1

    def failures(self) -> list[JobInstance]:
        return [i for i in self.instances if i.status is Status.FAILED]

    def instance(self, label: str) -> JobInstance:
        for i in self.instances:
            if i.label == label:
                return i
        raise KeyError(label)

    def statuses(self) -> Dict[str, str]:
        return {i.label: i.status.value for i in self.instances}
