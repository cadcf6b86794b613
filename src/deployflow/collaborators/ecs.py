"""AWS ECS adapter for the container-service boundary."""

from __future__ import annotations

from typing import Dict, Mapping, Sequence, Type

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import CollaboratorFailure, LaunchError
from ..model import CallOutcome, DeployService, NetworkConfig, TaskStatus
from ..remote import ContainerService, TaskState
from . import Handler, StepContext

_STOPPED = {"STOPPED", "DELETED"}
_RUNNING = {"RUNNING", "DEACTIVATING", "STOPPING", "DEPROVISIONING"}


class EcsService:
    """ContainerService backed by ECS (Fargate launch type by default)."""

    def __init__(self, region: str = "us-east-1", launch_type: str = "FARGATE",
                 client=None) -> None:
        self._launch_type = launch_type
        self._client = client or boto3.client("ecs", region_name=region)

    def run_task(
        self,
        cluster: str,
        task_definition: str,
        network: NetworkConfig,
        container: str,
        command: Sequence[str],
        environment: Mapping[str, str],
    ) -> str:
        override = {"name": container, "command": list(command)}
        if environment:
            override["environment"] = [{"name": k, "value": v} for k, v in sorted(environment.items())]
        try:
            resp = self._client.run_task(
                cluster=cluster,
                launchType=self._launch_type,
                taskDefinition=task_definition,
                count=1,
                networkConfiguration=network.to_awsvpc(),
                overrides={"containerOverrides": [override]},
            )
        except (ClientError, BotoCoreError) as exc:
            raise LaunchError(task_definition, str(exc)) from exc

        failures = resp.get("failures") or []
        tasks = resp.get("tasks") or []
        if failures or not tasks:
            reasons = "; ".join(
                f"{f.get('arn', task_definition)}: {f.get('reason', 'unknown')}" for f in failures
            )
            raise LaunchError(task_definition, reasons or "no task started")
        return tasks[0]["taskArn"]

    def describe_task(self, cluster: str, arn: str, container: str) -> TaskState:
        try:
            resp = self._client.describe_tasks(cluster=cluster, tasks=[arn])
        except (ClientError, BotoCoreError) as exc:
            raise CollaboratorFailure("WaitForRemoteTask", f"describe_tasks failed for {arn}: {exc}") from exc

        tasks = resp.get("tasks") or []
        if not tasks:
            failures = resp.get("failures") or []
            reason = failures[0].get("reason", "MISSING") if failures else "MISSING"
            raise CollaboratorFailure("WaitForRemoteTask", f"task {arn} not found ({reason})")

        task = tasks[0]
        last = task.get("lastStatus", "PENDING")
        if last in _STOPPED:
            return TaskState(
                status=TaskStatus.STOPPED,
                exit_code=_exit_code(task, container),
                stopped_reason=task.get("stoppedReason"),
            )
        if last in _RUNNING:
            return TaskState(status=TaskStatus.RUNNING)
        return TaskState(status=TaskStatus.PENDING)

    def update_service(self, cluster: str, service: str) -> None:
        try:
            self._client.update_service(cluster=cluster, service=service, forceNewDeployment=True)
        except (ClientError, BotoCoreError) as exc:
            raise CollaboratorFailure("DeployService", f"update_service {service} failed: {exc}") from exc


def _exit_code(task: dict, container: str) -> int | None:
    containers = task.get("containers") or []
    for c in containers:
        if c.get("name") == container:
            return c.get("exitCode")
    # a single-container task: the override name may differ from the definition's
    if len(containers) == 1:
        return containers[0].get("exitCode")
    return None


def ecs_handlers(service: ContainerService) -> Dict[Type, Handler]:
    def deploy_service(call: DeployService, ctx: StepContext) -> CallOutcome:
        service.update_service(call.cluster, call.service)
        return CallOutcome(success=True, output=f"{call.cluster}/{call.service}: new deployment".encode())

    return {DeployService: deploy_service}
