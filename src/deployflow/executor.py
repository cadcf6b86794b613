# executor.py
from __future__ import annotations

import dataclasses
import re
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from .collaborators import Collaborators, StepContext
from .context import ContextProvider, JobContext
from .errors import CollaboratorFailure, DeployflowError, SecretResolutionError
from .model import (
    CallOutcome,
    JobInstance,
    RemoteTask,
    RunRemoteTask,
    Status,
    Step,
    StepResult,
    Trigger,
    WaitForRemoteTask,
)
from .remote import RemoteTaskLauncher
from .ui.console import get_console


# {name} where name is a known context variable; any other braces are literal
_PLACEHOLDER = re.compile(r"\{(\w+)\}")


def fill_placeholders(value: Any, variables: Mapping[str, str]) -> Any:
    """Fill {environment}/{sha}/{branch} in str fields, tuples and nested dataclasses."""
    if isinstance(value, str):
        return _PLACEHOLDER.sub(lambda m: str(variables.get(m.group(1), m.group(0))), value)
    if isinstance(value, tuple):
        return tuple(fill_placeholders(v, variables) for v in value)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        changes = {
            f.name: fill_placeholders(getattr(value, f.name), variables)
            for f in dataclasses.fields(value)
        }
        return dataclasses.replace(value, **changes)
    return value


class StepExecutor:
    """
    Runs one job instance's steps in order, fail-fast.

    The executor never sets the instance's terminal status: it returns it,
    and the runner records it (one writer for run state).
    """

    def __init__(
        self,
        collaborators: Collaborators,
        contexts: ContextProvider,
        launcher: Optional[RemoteTaskLauncher] = None,
        *,
        repo_root: str | Path = ".",
    ):
        self.collaborators = collaborators
        self.contexts = contexts
        self.launcher = launcher
        self.repo_root = Path(repo_root)

    def run(self, instance: JobInstance, trigger: Trigger) -> Status:
        console = get_console()
        steps = instance.job.steps
        variables = self.contexts.variables_for(instance, trigger)

        try:
            applies = [s.condition is None or bool(s.condition(variables)) for s in steps]
        except Exception as e:
            instance.step_results = [StepResult(s.name, Status.SKIPPED) for s in steps]
            instance.diagnostics = f"step condition raised: {e}"
            return Status.FAILED

        # Secrets for every step that will run are resolved before any side effect.
        templates = [t for s, ok in zip(steps, applies) if ok for t in s.secrets.values()]
        try:
            ctx = self.contexts.context_for(instance, trigger, templates)
        except SecretResolutionError as e:
            instance.step_results = [StepResult(s.name, Status.SKIPPED) for s in steps]
            instance.diagnostics = str(e)
            console.print_failure(instance.label, str(e), is_job=True)
            return Status.FAILED

        launched: Dict[str, RemoteTask] = {}
        results: List[StepResult] = []
        instance.step_results = results

        for idx, step in enumerate(steps):
            if not applies[idx]:
                console.print_step_skipped(instance.label, step.name, "condition not met")
                results.append(StepResult(step.name, Status.SKIPPED, diagnostics="condition not met"))
                continue

            console.print_step(instance.label, step.name)
            result = self._run_step(step, ctx, launched, instance.job.env)
            results.append(result)

            if result.status is Status.FAILED:
                for rest in steps[idx + 1:]:
                    results.append(StepResult(rest.name, Status.SKIPPED, diagnostics="previous step failed"))
                instance.diagnostics = f"step '{step.name}' failed: {result.diagnostics}"
                console.print_failure(
                    f"{instance.label} / {step.name}",
                    result.diagnostics,
                    exit_code=result.exit_code,
                )
                return Status.FAILED

        return Status.SUCCEEDED

    # ------------------------------------------------------------------

    def _run_step(
        self, step: Step, ctx: JobContext, launched: Dict[str, RemoteTask], job_env: Mapping[str, str],
    ) -> StepResult:
        try:
            call = fill_placeholders(step.action, ctx.variables)
            if isinstance(call, RunRemoteTask):
                task = self._launcher().launch(
                    call.cluster, call.task_definition, call.network, call.command, call.container,
                    environment=ctx.secret_env(step.secrets),
                )
                launched[step.name] = task
                return StepResult(step.name, Status.SUCCEEDED, output=task.arn.encode())

            if isinstance(call, WaitForRemoteTask):
                return self._wait(step, call, launched)

            outcome: CallOutcome = self.collaborators.invoke(call, self._step_context(step, ctx, job_env))
            if not outcome.success:
                return StepResult(
                    step.name, Status.FAILED, output=outcome.output,
                    diagnostics=outcome.diagnostics or f"{type(call).__name__} reported failure",
                )
            return StepResult(step.name, Status.SUCCEEDED, output=outcome.output, diagnostics=outcome.diagnostics)

        except CollaboratorFailure as e:
            return StepResult(step.name, Status.FAILED, diagnostics=str(e), exit_code=e.exit_code)
        except DeployflowError as e:
            return StepResult(step.name, Status.FAILED, diagnostics=str(e))
        except Exception as e:
            # adapter bugs and SDK errors fail the step, not the run loop
            return StepResult(step.name, Status.FAILED, diagnostics=f"{type(e).__name__}: {e}")

    def _wait(self, step: Step, call: WaitForRemoteTask, launched: Dict[str, RemoteTask]) -> StepResult:
        if call.launched_by is not None:
            task = launched.get(call.launched_by)
        else:
            task = list(launched.values())[-1] if launched else None
        if task is None:
            return StepResult(
                step.name, Status.FAILED,
                diagnostics=f"no remote task launched by {call.launched_by or 'an earlier step'}",
            )

        exit_code = self._launcher().await_terminal(task, call.poll_interval, call.max_wait)
        if exit_code != 0:
            return StepResult(
                step.name, Status.FAILED, exit_code=exit_code,
                diagnostics=f"remote task {task.arn} exited with code {exit_code}",
            )
        return StepResult(step.name, Status.SUCCEEDED, exit_code=0)

    def _launcher(self) -> RemoteTaskLauncher:
        if self.launcher is None:
            raise CollaboratorFailure("RunRemoteTask", "no remote task launcher configured")
        return self.launcher

    def _step_context(self, step: Step, ctx: JobContext, job_env: Mapping[str, str]) -> StepContext:
        env: Dict[str, str] = dict(job_env)
        env.update(step.env)
        if ctx.environment is not None:
            env["ENVIRONMENT"] = ctx.environment
        env.update(ctx.secret_env(step.secrets))
        return StepContext(
            job=ctx.job,
            step=step.name,
            environment=ctx.environment,
            env=env,
            repo_root=self.repo_root,
        )
