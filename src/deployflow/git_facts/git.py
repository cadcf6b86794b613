# git.py
# Small, focused wrapper around the Git CLI.
# Used to fill in trigger defaults (branch, commit) for local runs.

from __future__ import annotations

import subprocess
from typing import Optional


def _git(args: list[str], cwd: Optional[str] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Args:
        args: List of git arguments (e.g. ["rev-parse", "HEAD"])
        cwd: Optional working directory in which to run the git command.

    Returns:
        Stdout from the git command with surrounding whitespace removed.

    Raises:
        subprocess.CalledProcessError: git exited non-zero.
        FileNotFoundError: git is not installed.
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=cwd,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def head_sha(cwd: Optional[str] = None) -> str:
    """Full SHA of HEAD; used for `<env>-<sha>` image tags."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def current_branch(cwd: Optional[str] = None) -> str:
    """
    Name of the checked-out branch.

    On a detached HEAD git answers "HEAD"; CI systems usually export the
    branch name instead, so callers should prefer that when they have it.
    """
    return _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)


def trigger_defaults(cwd: Optional[str] = None) -> tuple[Optional[str], Optional[str]]:
    """(branch, sha) for the working copy, or (None, None) outside a repo."""
    try:
        return current_branch(cwd), head_sha(cwd)
    except (subprocess.CalledProcessError, FileNotFoundError):
        return None, None
