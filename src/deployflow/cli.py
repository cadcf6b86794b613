# cli.py
from __future__ import annotations

import socket
import sys
from pathlib import Path

import click

from deployflow.agent.api_client import APIClient, APIError
from deployflow.config import Settings
from deployflow.dag import JobGraph
from deployflow.errors import DeployflowError
from deployflow.git_facts.git import trigger_defaults
from deployflow.matrix import expand
from deployflow.model import EventKind, Pipeline, Trigger
from deployflow.pipelines.django_ecs import build_pipeline
from deployflow.runner import build_runner, load_pipeline
from deployflow.ui.console import Console, get_console, set_console

DEFAULT_PIPELINE_FILE = "deployflow_pipeline.py"


def find_pipeline_files() -> list[Path]:
    """Pipeline files in the current directory: deployflow_pipeline.py, then *_pipeline.py."""
    current_dir = Path(".")
    default = current_dir / DEFAULT_PIPELINE_FILE
    files = [default] if default.exists() else []
    for path in current_dir.glob("*_pipeline.py"):
        if path != default:
            files.append(path)
    return sorted(files)


def discover_pipeline(pipeline_arg: str | None, settings: Settings) -> Pipeline:
    """
    Load the pipeline named on the command line, or the single pipeline file
    in the current directory, or fall back to the built-in Django/ECS one.
    """
    console = get_console()

    if pipeline_arg:
        path = Path(pipeline_arg)
        if not path.exists() and path.suffix != ".py":
            path = Path(str(path) + ".py")
        if not path.exists():
            console.print_error(
                "Pipeline file not found",
                f"Could not find pipeline file: {pipeline_arg}",
                suggestion="Create a pipeline file or specify a different path:\n  deployflow run --pipeline my_pipeline.py",
            )
            sys.exit(1)
        return load_pipeline(path)

    files = find_pipeline_files()
    if len(files) > 1:
        console.print_error(
            "Multiple pipeline files found",
            "Found multiple pipeline files. Please specify which one to use:",
            details=[str(f) for f in files],
            suggestion=f"Specify a pipeline explicitly:\n  deployflow run --pipeline {DEFAULT_PIPELINE_FILE}",
        )
        sys.exit(1)
    if files:
        return load_pipeline(files[0])

    console.print_debug("No pipeline file found; using the built-in Django/ECS pipeline")
    return build_pipeline(settings)


def _trigger(branch: str | None, event: str, sha: str | None) -> Trigger:
    git_branch, git_sha = trigger_defaults()
    branch = branch or git_branch
    if not branch:
        get_console().print_error(
            "Could not determine branch",
            "No --branch given and the current directory is not a git checkout.",
            suggestion="Specify the branch explicitly:\n  deployflow run --branch dev",
        )
        sys.exit(1)
    return Trigger(branch=branch, event_kind=EventKind(event), sha=sha or git_sha)


def _fail(e: Exception) -> None:
    get_console().print_exception(e)
    sys.exit(1)


pipeline_option = click.option(
    "--pipeline",
    "pipeline_file",
    default=None,
    help=f"Pipeline file path (defaults to {DEFAULT_PIPELINE_FILE} if present, else the built-in pipeline)",
)
trigger_options = [
    click.option("--branch", default=None, help="Branch that triggered the run (defaults to the git branch)"),
    click.option(
        "--event",
        type=click.Choice([e.value for e in EventKind]),
        default=EventKind.PUSH.value,
        show_default=True,
        help="Event kind",
    ),
    click.option("--sha", default=None, help="Commit SHA used in image tags (defaults to git HEAD)"),
]


def with_trigger_options(fn):
    for option in reversed(trigger_options):
        fn = option(fn)
    return fn


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """deployflow: dependency-gated CD pipelines with matrix rollouts."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["settings"] = Settings.from_env()


@cli.command()
@pipeline_option
@with_trigger_options
@click.option("--workers", default=None, type=int, help="Number of parallel job instances")
@click.option("--repo-root", default=".", show_default=True, help="Directory collaborators run in")
@click.pass_context
def run(ctx, pipeline_file, branch, event, sha, workers, repo_root):
    """Run a pipeline for one trigger."""
    console = get_console()
    settings: Settings = ctx.obj["settings"]

    try:
        pipeline = discover_pipeline(pipeline_file, settings)
        trigger = _trigger(branch, event, sha)
        runner = build_runner(settings, repo_root=repo_root, max_workers=workers)
        report = runner.run(pipeline, trigger)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except DeployflowError as e:
        console.print_error("Pipeline error", str(e))
        sys.exit(1)
    except Exception as e:
        _fail(e)

    if report.instances:
        console.print_results(report)
    sys.exit(report.exit_code)


@cli.command()
@pipeline_option
@click.pass_context
def plan(ctx, pipeline_file):
    """Print the tiers a run would walk, with matrix fan-out."""
    console = get_console()
    try:
        pipeline = discover_pipeline(pipeline_file, ctx.obj["settings"])
        graph = JobGraph.from_jobs(pipeline.jobs)
    except DeployflowError as e:
        console.print_error("Invalid pipeline", str(e))
        sys.exit(1)
    except Exception as e:
        _fail(e)

    by_name = {j.name: j for j in pipeline.jobs}
    tiers = [
        [inst.label for name in tier for inst in expand(by_name[name])]
        for tier in graph.topological_order()
    ]
    console.print_info(f"Pipeline: {pipeline.name}")
    console.print_info(f"Branches: {', '.join(pipeline.allowed_branches)}")
    console.print_plan(tiers)


@cli.command()
@click.option("--api", required=True, help="API base URL (e.g., http://localhost:8000)")
@with_trigger_options
@click.pass_context
def submit(ctx, api, branch, event, sha):
    """Send a trigger to the control plane."""
    console = get_console()
    trigger = _trigger(branch, event, sha)
    try:
        result = APIClient(api).submit_trigger(trigger)
    except APIError as e:
        console.print_error(
            "API request failed",
            str(e),
            suggestion=f"Check the API at {api} and verify your request.",
        )
        sys.exit(1)

    console.print_info(f"\nRun ID: {result.get('run_id')}")
    console.print_info(f"Status: {result.get('status')}")


@cli.command()
@click.option("--api", required=True, help="API base URL (e.g., http://localhost:8000)")
@pipeline_option
@click.option("--worker-id", default=None, help="Unique worker identifier (defaults to hostname)")
@click.option("--poll-interval", default=5, type=int, help="Polling interval in seconds when no runs are queued")
@click.option("--workers", default=None, type=int, help="Number of parallel job instances")
@click.pass_context
def worker(ctx, api, pipeline_file, worker_id, poll_interval, workers):
    """Claim queued runs from the control plane and execute them."""
    from deployflow.agent.worker import Worker

    settings: Settings = ctx.obj["settings"]
    try:
        pipeline = discover_pipeline(pipeline_file, settings)
        runner = build_runner(settings, max_workers=workers)
    except DeployflowError as e:
        get_console().print_error("Invalid pipeline", str(e))
        sys.exit(1)
    except Exception as e:
        _fail(e)
    w = Worker(APIClient(api, worker_id or socket.gethostname()), pipeline, runner.run, poll_interval)
    w.install_signal_handlers()
    try:
        w.run()
    except KeyboardInterrupt:
        get_console().print_info("\nWorker stopped by user")
    except Exception as e:
        _fail(e)


if __name__ == "__main__":
    cli()
