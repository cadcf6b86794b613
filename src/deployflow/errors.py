# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List


class DeployflowError(Exception):
    """Base class for everything the engine raises on purpose."""


# ----------------------------------------------------------------------
# Graph construction (fatal at definition time)
# ----------------------------------------------------------------------

@dataclass
class CycleError(DeployflowError):
    job: str
    path: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        loop = " -> ".join(self.path) if self.path else self.job
        return f"Adding job '{self.job}' would create a cycle: {loop}"


@dataclass
class UnknownDependency(DeployflowError):
    job: str
    dependency: str
    known: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        return (
            f"Job '{self.job}' needs missing job '{self.dependency}'. "
            f"Known jobs: {sorted(self.known)}"
        )


@dataclass
class DuplicateJob(DeployflowError):
    names: List[str]

    def __str__(self) -> str:
        return f"Duplicate job names found: {sorted(self.names)}"


# ----------------------------------------------------------------------
# Execution
# ----------------------------------------------------------------------

@dataclass
class CollaboratorFailure(DeployflowError):
    """A scan/test/build/push/deploy call reported failure."""
    call: str
    message: str
    exit_code: int | None = None

    def __str__(self) -> str:
        suffix = f" (exit={self.exit_code})" if self.exit_code is not None else ""
        return f"{self.call} failed{suffix}: {self.message}"


@dataclass
class SecretResolutionError(DeployflowError):
    secret: str
    reason: str = "not found"

    def __str__(self) -> str:
        # never include a value here, only the name
        return f"Secret '{self.secret}' could not be resolved: {self.reason}"


@dataclass
class LaunchError(DeployflowError):
    task_definition: str
    reason: str

    def __str__(self) -> str:
        return f"Remote task '{self.task_definition}' could not run: {self.reason}"


@dataclass
class RemoteTaskTimeout(DeployflowError, TimeoutError):
    arn: str
    max_wait: float

    def __str__(self) -> str:
        return f"Remote task {self.arn} did not stop within {self.max_wait:g}s (left running)"


@dataclass
class PipelineLoadError(DeployflowError):
    path: str
    message: str

    def __str__(self) -> str:
        return f"{self.path}: {self.message}"
