# config.py
from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional, Tuple

from .model import DEFAULT_BRANCHES, NetworkConfig
from .remote import DEFAULT_MAX_WAIT, DEFAULT_POLL_INTERVAL


def _csv(value: str) -> Tuple[str, ...]:
    return tuple(v.strip() for v in value.split(",") if v.strip())


def _flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on", "enabled")


@dataclass(frozen=True)
class Settings:
    """Deployment settings, read from DEPLOYFLOW_* environment variables."""
    allowed_branches: Tuple[str, ...] = DEFAULT_BRANCHES
    environments: Tuple[str, ...] = ("dev", "uat", "prod")
    image: str = "mansikanwar2001/django-on-docker"
    cluster: str = "my-cluster"
    service_prefix: str = "my-service"
    task_prefix: str = "my-task"
    container: str = "my-container"
    subnets: Tuple[str, ...] = ("subnet-xxxxxxx",)
    security_groups: Tuple[str, ...] = ("sg-xxxxxxx",)
    assign_public_ip: bool = True
    region: str = "us-east-1"
    poll_interval: float = DEFAULT_POLL_INTERVAL
    max_wait: float = DEFAULT_MAX_WAIT
    app_dir: str = "app"

    @property
    def network(self) -> NetworkConfig:
        return NetworkConfig(
            subnets=self.subnets,
            security_groups=self.security_groups,
            assign_public_ip=self.assign_public_ip,
        )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        s = cls()
        changes: dict = {}

        if "DEPLOYFLOW_ALLOWED_BRANCHES" in env:
            changes["allowed_branches"] = _csv(env["DEPLOYFLOW_ALLOWED_BRANCHES"])
        if "DEPLOYFLOW_ENVIRONMENTS" in env:
            changes["environments"] = _csv(env["DEPLOYFLOW_ENVIRONMENTS"])
        if "DEPLOYFLOW_SUBNETS" in env:
            changes["subnets"] = _csv(env["DEPLOYFLOW_SUBNETS"])
        if "DEPLOYFLOW_SECURITY_GROUPS" in env:
            changes["security_groups"] = _csv(env["DEPLOYFLOW_SECURITY_GROUPS"])
        if "DEPLOYFLOW_ASSIGN_PUBLIC_IP" in env:
            changes["assign_public_ip"] = _flag(env["DEPLOYFLOW_ASSIGN_PUBLIC_IP"])

        for key, attr in (
            ("DEPLOYFLOW_IMAGE", "image"),
            ("DEPLOYFLOW_CLUSTER", "cluster"),
            ("DEPLOYFLOW_SERVICE_PREFIX", "service_prefix"),
            ("DEPLOYFLOW_TASK_PREFIX", "task_prefix"),
            ("DEPLOYFLOW_CONTAINER", "container"),
            ("DEPLOYFLOW_APP_DIR", "app_dir"),
            ("AWS_REGION", "region"),
        ):
            if key in env:
                changes[attr] = env[key]

        for key, attr in (
            ("DEPLOYFLOW_POLL_INTERVAL", "poll_interval"),
            ("DEPLOYFLOW_MAX_WAIT", "max_wait"),
        ):
            if key in env:
                changes[attr] = float(env[key])

        return replace(s, **changes)
