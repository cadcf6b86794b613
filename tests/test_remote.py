from __future__ import annotations

import pytest
from botocore.exceptions import ClientError

from deployflow.collaborators import StepContext
from deployflow.collaborators.ecs import EcsService, ecs_handlers
from deployflow.errors import CollaboratorFailure, LaunchError, RemoteTaskTimeout
from deployflow.model import DeployService, NetworkConfig, TaskStatus
from deployflow.remote import RemoteTaskLauncher, TaskState

from tests.conftest import FakeContainerService

NETWORK = NetworkConfig(subnets=("subnet-1",), security_groups=("sg-1",), assign_public_ip=False)


def _launcher(service, clock):
    return RemoteTaskLauncher(service, clock=clock, sleep=clock.sleep)


class TestRemoteTaskLauncher:
    def test_exit_zero(self, clock):
        service = FakeContainerService({"migrate": [
            TaskState(TaskStatus.PENDING),
            TaskState(TaskStatus.RUNNING),
            TaskState(TaskStatus.STOPPED, exit_code=0, stopped_reason="Essential container exited"),
        ]})
        launcher = _launcher(service, clock)
        task = launcher.launch("c", "migrate", NETWORK, ["python", "manage.py", "migrate"])
        seen = []

        assert launcher.await_terminal(task, poll_interval=6, max_wait=600, on_poll=lambda t: seen.append(t.status)) == 0
        assert seen == [TaskStatus.PENDING, TaskStatus.RUNNING, TaskStatus.STOPPED]
        assert task.status is TaskStatus.STOPPED
        assert task.stopped_reason == "Essential container exited"
        assert clock.now == 12

    def test_exit_code_returned_not_raised(self, clock):
        service = FakeContainerService({"migrate": [TaskState(TaskStatus.STOPPED, exit_code=137)]})
        launcher = _launcher(service, clock)
        task = launcher.launch("c", "migrate", NETWORK, ["migrate"])
        assert launcher.await_terminal(task) == 137
        assert task.exit_code == 137

    def test_timeout_leaves_task_running(self, clock):
        service = FakeContainerService({"migrate": [TaskState(TaskStatus.RUNNING)]})
        launcher = _launcher(service, clock)
        task = launcher.launch("c", "migrate", NETWORK, ["migrate"])

        with pytest.raises(RemoteTaskTimeout) as err:
            launcher.await_terminal(task, poll_interval=4, max_wait=10)

        assert isinstance(err.value, TimeoutError)
        assert err.value.arn == task.arn
        # sleeps are clipped to the remaining budget: 4 + 4 + 2
        assert clock.now == 10
        assert service.polls(task.arn) == 4
        assert task.status is TaskStatus.RUNNING

    def test_stopped_without_exit_code(self, clock):
        service = FakeContainerService({"migrate": [
            TaskState(TaskStatus.STOPPED, stopped_reason="CannotPullContainerError"),
        ]})
        launcher = _launcher(service, clock)
        task = launcher.launch("c", "migrate", NETWORK, ["migrate"])
        with pytest.raises(LaunchError, match="CannotPullContainerError"):
            launcher.await_terminal(task)

    def test_launch_passes_environment(self, clock):
        service = FakeContainerService()
        task = _launcher(service, clock).launch(
            "c", "migrate", NETWORK, ("migrate",), container="web", environment={"RDS_HOST": "db"},
        )
        [launched] = service.launched
        assert launched["environment"] == {"RDS_HOST": "db"}
        assert launched["container"] == "web"
        assert task.arn == launched["arn"]
        assert task.status is TaskStatus.PENDING

    def test_launch_without_arn(self, clock):
        class NoArn(FakeContainerService):
            def run_task(self, *args, **kwargs):
                return ""

        with pytest.raises(LaunchError):
            _launcher(NoArn(), clock).launch("c", "migrate", NETWORK, ["migrate"])

    def test_poll_interval_must_be_positive(self, clock):
        launcher = _launcher(FakeContainerService(), clock)
        task = launcher.launch("c", "migrate", NETWORK, ["migrate"])
        with pytest.raises(ValueError):
            launcher.await_terminal(task, poll_interval=0)


class FakeEcsClient:
    def __init__(self, run_response=None, describe_responses=None, error=None):
        self.run_response = run_response or {
            "tasks": [{"taskArn": "arn:aws:ecs:us-east-1:1:task/c/abc"}], "failures": [],
        }
        self.describe_responses = list(describe_responses or [])
        self.error = error
        self.requests = []

    def run_task(self, **kwargs):
        self.requests.append(("run_task", kwargs))
        if self.error:
            raise self.error
        return self.run_response

    def describe_tasks(self, **kwargs):
        self.requests.append(("describe_tasks", kwargs))
        return self.describe_responses.pop(0)

    def update_service(self, **kwargs):
        self.requests.append(("update_service", kwargs))
        return {"service": {"serviceName": kwargs["service"]}}


def _stopped(exit_code=None, containers=None, reason="Essential container in task exited"):
    return {"tasks": [{
        "lastStatus": "STOPPED",
        "stoppedReason": reason,
        "containers": containers if containers is not None else [{"name": "app", "exitCode": exit_code}],
    }]}


class TestEcsService:
    def test_run_task_request(self):
        client = FakeEcsClient()
        arn = EcsService(client=client).run_task(
            "my-cluster", "my-task-uat", NETWORK, "my-container",
            ["python", "manage.py", "migrate"], {"RDS_HOST": "db", "RDS_PORT": "5432"},
        )
        assert arn == "arn:aws:ecs:us-east-1:1:task/c/abc"
        [(_, kwargs)] = client.requests
        assert kwargs["cluster"] == "my-cluster"
        assert kwargs["launchType"] == "FARGATE"
        assert kwargs["taskDefinition"] == "my-task-uat"
        assert kwargs["networkConfiguration"] == {"awsvpcConfiguration": {
            "subnets": ["subnet-1"], "securityGroups": ["sg-1"], "assignPublicIp": "DISABLED",
        }}
        [override] = kwargs["overrides"]["containerOverrides"]
        assert override["name"] == "my-container"
        assert override["command"] == ["python", "manage.py", "migrate"]
        assert override["environment"] == [
            {"name": "RDS_HOST", "value": "db"}, {"name": "RDS_PORT", "value": "5432"},
        ]

    def test_run_task_failures(self):
        client = FakeEcsClient(run_response={"tasks": [], "failures": [{"arn": "x", "reason": "RESOURCE:CPU"}]})
        with pytest.raises(LaunchError, match="RESOURCE:CPU"):
            EcsService(client=client).run_task("c", "t", NETWORK, "app", ["migrate"], {})

    def test_run_task_client_error(self):
        error = ClientError({"Error": {"Code": "ClusterNotFoundException", "Message": "Cluster not found."}}, "RunTask")
        with pytest.raises(LaunchError, match="ClusterNotFoundException"):
            EcsService(client=FakeEcsClient(error=error)).run_task("c", "t", NETWORK, "app", ["migrate"], {})

    def test_describe_maps_status(self):
        client = FakeEcsClient(describe_responses=[
            {"tasks": [{"lastStatus": "PROVISIONING"}]},
            {"tasks": [{"lastStatus": "RUNNING"}]},
            _stopped(exit_code=0),
        ])
        service = EcsService(client=client)
        states = [service.describe_task("c", "arn", "app") for _ in range(3)]
        assert [s.status for s in states] == [TaskStatus.PENDING, TaskStatus.RUNNING, TaskStatus.STOPPED]
        assert states[-1].exit_code == 0

    def test_exit_code_of_named_container(self):
        client = FakeEcsClient(describe_responses=[_stopped(containers=[
            {"name": "sidecar", "exitCode": 0},
            {"name": "my-container", "exitCode": 3},
        ])])
        state = EcsService(client=client).describe_task("c", "arn", "my-container")
        assert state.exit_code == 3

    def test_missing_task(self):
        client = FakeEcsClient(describe_responses=[{"tasks": [], "failures": [{"reason": "MISSING"}]}])
        with pytest.raises(CollaboratorFailure, match="MISSING"):
            EcsService(client=client).describe_task("c", "arn", "app")

    def test_deploy_handler_forces_new_deployment(self):
        client = FakeEcsClient()
        handler = ecs_handlers(EcsService(client=client))[DeployService]
        ctx = StepContext(job="deploy", step="Deploy to AWS ECS", environment="dev", env={})

        outcome = handler(DeployService(cluster="my-cluster", service="my-service-dev"), ctx)

        assert outcome.success
        [(name, kwargs)] = client.requests
        assert name == "update_service"
        assert kwargs == {"cluster": "my-cluster", "service": "my-service-dev", "forceNewDeployment": True}
