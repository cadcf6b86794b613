# collaborators/shell.py
from __future__ import annotations

import os
import shlex
import subprocess
import sys
from pathlib import Path
from typing import Dict, List, Optional, Type

from ..errors import CollaboratorFailure
from ..model import (
    BuildImage,
    CallOutcome,
    PushImage,
    RunTests,
    ScanCode,
    ScanDependencies,
    ScanImage,
    ScanInfra,
)
from . import Handler, StepContext

TOOL_HINTS = {
    "snyk": "Install the Snyk CLI (npm install -g snyk) and set SNYK_TOKEN.",
    "bandit": "Install bandit (e.g., pip install bandit).",
    "docker": "Install Docker and ensure the daemon is running.",
    "python3": "Install Python 3 or fix PATH (python3).",
}

# keep the tail of tool output; scanners can be very chatty
OUTPUT_LIMIT = 4000


# ---------------------------------------------------------------------
# Execution primitive
# ---------------------------------------------------------------------

def _run(
    call: str,
    cmd: List[str],
    ctx: StepContext,
    *,
    stdin: Optional[bytes] = None,
    stdout_path: Optional[Path] = None,
    display: Optional[str] = None,
) -> CallOutcome:
    env = os.environ.copy()
    env.update(ctx.env)

    try:
        proc = subprocess.run(
            cmd,
            shell=False,
            cwd=str(ctx.repo_root),
            env=env,
            input=stdin,
            capture_output=True,
        )
    except FileNotFoundError:
        tool = cmd[0]
        raise CollaboratorFailure(
            call=call,
            message=f"{tool} is not available. {TOOL_HINTS.get(tool, f'Install {tool} or fix PATH.')}",
        ) from None

    if stdout_path is not None:
        stdout_path.write_bytes(proc.stdout)

    if proc.returncode != 0:
        stderr = proc.stderr.decode(errors="replace").strip()
        return CallOutcome(
            success=False,
            output=proc.stdout[-OUTPUT_LIMIT:],
            diagnostics=f"`{display or shlex.join(cmd)}` exited with {proc.returncode}"
            + (f": {stderr[-OUTPUT_LIMIT:]}" if stderr else ""),
        )
    return CallOutcome(success=True, output=proc.stdout[-OUTPUT_LIMIT:])


def _chain(*outcomes) -> CallOutcome:
    """Run outcome thunks in order, stopping at the first failure."""
    output = b""
    for thunk in outcomes:
        outcome = thunk()
        output += outcome.output
        if not outcome.success:
            return CallOutcome(False, output[-OUTPUT_LIMIT:], outcome.diagnostics)
    return CallOutcome(True, output[-OUTPUT_LIMIT:])


# ---------------------------------------------------------------------
# Scanners
# ---------------------------------------------------------------------

def scan_code(call: ScanCode, ctx: StepContext) -> CallOutcome:
    if call.tool == "snyk":
        report = ctx.repo_root / call.report if call.report else None
        return _run("ScanCode", ["snyk", "code", "test", "--sarif"], ctx, stdout_path=report)
    if call.tool == "bandit":
        cmd = ["bandit", "-r", call.target]
        if call.report:
            fmt = "html" if call.report.endswith(".html") else "txt"
            cmd += ["-f", fmt, "-o", call.report]
        return _run("ScanCode", cmd, ctx)
    raise CollaboratorFailure("ScanCode", f"unknown code scanner: {call.tool!r}")


def scan_dependencies(call: ScanDependencies, ctx: StepContext) -> CallOutcome:
    cmd = ["snyk", "monitor"]
    if call.all_projects:
        cmd.append("--all-projects")
    return _run("ScanDependencies", cmd, ctx)


def scan_infra(call: ScanInfra, ctx: StepContext) -> CallOutcome:
    cmd = ["snyk", "iac", "test"]
    if call.report:
        cmd.append("--report")
    return _run("ScanInfra", cmd, ctx)


def scan_image(call: ScanImage, ctx: StepContext) -> CallOutcome:
    return _run("ScanImage", ["snyk", "container", "monitor", call.image, f"--file={call.dockerfile}"], ctx)


# ---------------------------------------------------------------------
# Tests / images
# ---------------------------------------------------------------------

def run_tests(call: RunTests, ctx: StepContext) -> CallOutcome:
    steps = []
    if call.requirements:
        steps.append(lambda: _run(
            "RunTests", [sys.executable, "-m", "pip", "install", "-r", call.requirements], ctx,
        ))
    steps.append(lambda: _run("RunTests", shlex.split(call.command), ctx))
    return _chain(*steps)


def build_image(call: BuildImage, ctx: StepContext) -> CallOutcome:
    cmd = ["docker", "build"]
    for tag in call.tags:
        cmd += ["-t", tag]
    cmd.append(call.context)
    return _run("BuildImage", cmd, ctx)


def push_image(call: PushImage, ctx: StepContext) -> CallOutcome:
    username = ctx.env.get(call.username_secret)
    token = ctx.env.get(call.token_secret)
    if not username or not token:
        raise CollaboratorFailure(
            "PushImage",
            f"registry credentials missing; declare {call.username_secret} and {call.token_secret} as step secrets",
        )

    steps = [lambda: _run(
        "PushImage",
        ["docker", "login", "-u", username, "--password-stdin"],
        ctx,
        stdin=token.encode(),
        display="docker login",
    )]
    for tag in call.tags:
        steps.append(lambda tag=tag: _run("PushImage", ["docker", "push", tag], ctx))
    return _chain(*steps)


def shell_handlers() -> Dict[Type, Handler]:
    return {
        ScanCode: scan_code,
        ScanDependencies: scan_dependencies,
        ScanInfra: scan_infra,
        ScanImage: scan_image,
        RunTests: run_tests,
        BuildImage: build_image,
        PushImage: push_image,
    }
