# runner.py
from __future__ import annotations

import os
import runpy
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from .collaborators import Collaborators
from .config import Settings
from .context import ContextProvider, EnvSecretStore, SecretStore
from .dag import JobGraph
from .errors import PipelineLoadError
from .executor import StepExecutor
from .matrix import expand
from .model import JobInstance, Pipeline, RunReport, Status, Trigger
from .remote import RemoteTaskLauncher
from .ui.console import get_console


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ----------------------------------------------------------------------
# Pipeline loading (local file)
# ----------------------------------------------------------------------

def load_pipeline(path: str | Path) -> Pipeline:
    """
    Load a pipeline from a python file path.

    The file must define either:
      - pipeline() -> Pipeline
      - PIPELINE = Pipeline(...)
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise PipelineLoadError(str(wf_path), "file not found")
    if wf_path.suffix != ".py":
        raise PipelineLoadError(str(wf_path), f"pipeline must be a .py file, got: {wf_path.name}")

    module_name = f"deployflow_pipeline_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    result = None
    if "pipeline" in globals_dict and callable(globals_dict["pipeline"]):
        result = globals_dict["pipeline"]()
    elif "PIPELINE" in globals_dict:
        result = globals_dict["PIPELINE"]

    if not isinstance(result, Pipeline):
        raise PipelineLoadError(
            str(wf_path),
            "define pipeline() -> Pipeline or PIPELINE = Pipeline(...)",
        )
    return result


# ----------------------------------------------------------------------
# Runner
# ----------------------------------------------------------------------

class PipelineRunner:
    """
    Walks the job graph tier by tier.

    Instances of one tier (matrix siblings included) run concurrently on a
    thread pool; the next tier starts only once every instance of the
    current tier is terminal. Only this object's calling thread writes
    instance status, once per terminal transition.
    """

    def __init__(
        self,
        collaborators: Collaborators,
        contexts: ContextProvider,
        launcher: Optional[RemoteTaskLauncher] = None,
        *,
        repo_root: str | Path = ".",
        max_workers: int | None = None,
    ):
        self.executor = StepExecutor(collaborators, contexts, launcher, repo_root=repo_root)
        if max_workers is None:
            c = os.cpu_count() or 2
            max_workers = max(4, c)
        self.max_workers = max_workers

    def run(self, pipeline: Pipeline, trigger: Trigger) -> RunReport:
        console = get_console()

        if not trigger.eligible(pipeline.allowed_branches):
            console.print_run_skipped(trigger, pipeline.allowed_branches)
            return RunReport(trigger=trigger, status=Status.SKIPPED)

        graph = JobGraph.from_jobs(pipeline.jobs)
        by_name = {j.name: j for j in pipeline.jobs}
        console.print_run_started(pipeline.name, trigger, job_count=len(graph))

        report = RunReport(trigger=trigger, status=Status.RUNNING)
        instances_of: Dict[str, List[JobInstance]] = {}

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            for tier_idx, tier in enumerate(graph.topological_order()):
                runnable: List[JobInstance] = []

                for name in tier:
                    job = by_name[name]
                    instances = expand(job)
                    instances_of[name] = instances
                    report.instances.extend(instances)

                    blocker = self._blocking_dependency(graph.needs_of(name), instances_of)
                    if blocker is not None:
                        for inst in instances:
                            self._finish(inst, Status.SKIPPED, f"dependency '{blocker}' did not succeed")
                            console.print_job_skipped(inst.label, inst.diagnostics)
                        continue
                    runnable.extend(instances)

                if not runnable:
                    continue

                console.print_tier(tier_idx, [i.label for i in runnable])
                futures: Dict[Future, JobInstance] = {}
                for inst in runnable:
                    futures[pool.submit(self._start, inst, trigger)] = inst

                # Siblings are never cancelled; wait for all of them.
                for fut in as_completed(futures):
                    inst = futures[fut]
                    try:
                        status = fut.result()
                    except Exception as e:
                        status = Status.FAILED
                        inst.diagnostics = inst.diagnostics or f"{type(e).__name__}: {e}"
                    self._finish(inst, status)
                    if status is Status.SUCCEEDED:
                        console.print_success(inst.label)
                    else:
                        console.print_failure(inst.label, inst.diagnostics, is_job=True)

        ok = all(i.status is Status.SUCCEEDED for i in report.instances)
        report.status = Status.SUCCEEDED if ok else Status.FAILED
        return report

    def _start(self, inst: JobInstance, trigger: Trigger) -> Status:
        # runs on the pool thread, so queued instances stay Pending until a worker picks them up
        inst.status = Status.RUNNING
        inst.started_at = _now()
        get_console().print_job_start(inst.label)
        return self.executor.run(inst, trigger)

    @staticmethod
    def _blocking_dependency(needs, instances_of: Dict[str, List[JobInstance]]) -> str | None:
        for dep in sorted(needs):
            for inst in instances_of.get(dep, []):
                if inst.status is not Status.SUCCEEDED:
                    return inst.label
        return None

    @staticmethod
    def _finish(inst: JobInstance, status: Status, diagnostics: str | None = None) -> None:
        if inst.status.terminal:
            return
        inst.status = status
        inst.ended_at = _now()
        if diagnostics is not None:
            inst.diagnostics = diagnostics


def run_pipeline(
    pipeline: Pipeline,
    trigger: Trigger,
    collaborators: Collaborators,
    contexts: ContextProvider,
    launcher: Optional[RemoteTaskLauncher] = None,
    *,
    repo_root: str | Path = ".",
    max_workers: int | None = None,
) -> RunReport:
    runner = PipelineRunner(
        collaborators, contexts, launcher, repo_root=repo_root, max_workers=max_workers,
    )
    return runner.run(pipeline, trigger)


def build_runner(
    settings: Settings,
    *,
    secrets: Optional[SecretStore] = None,
    repo_root: str | Path = ".",
    max_workers: int | None = None,
) -> PipelineRunner:
    """Runner wired to the default adapters: local CLIs and ECS via boto3."""
    from .collaborators.ecs import EcsService, ecs_handlers
    from .collaborators.shell import shell_handlers

    service = EcsService(region=settings.region)
    collaborators = Collaborators(shell_handlers()).update(ecs_handlers(service))
    contexts = ContextProvider(secrets or EnvSecretStore())
    return PipelineRunner(
        collaborators,
        contexts,
        RemoteTaskLauncher(service),
        repo_root=repo_root,
        max_workers=max_workers,
    )
