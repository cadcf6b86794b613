from __future__ import annotations

import pytest

from deployflow.config import Settings
from deployflow.dsl import job, matrix, migrate, pipeline, step, when
from deployflow.model import (
    DEFAULT_BRANCHES,
    EventKind,
    NetworkConfig,
    RunRemoteTask,
    RunTests,
    Trigger,
    WaitForRemoteTask,
)
from deployflow.pipelines.django_ecs import DB_SECRETS, build_pipeline

NETWORK = NetworkConfig(subnets=("subnet-1",), security_groups=("sg-1",))


class TestDsl:
    def test_when(self):
        prod_push = when(environment="prod", event="push")
        assert prod_push({"environment": "prod", "event": "push"})
        assert not prod_push({"environment": "prod", "event": "pull_request"})
        assert not prod_push({})
        assert "environment='prod'" in prod_push.__name__

    def test_migrate_expands_to_launch_and_wait(self):
        launch, wait = migrate(
            "Migrate", cluster="c", task_definition="t", network=NETWORK,
            command=["python", "manage.py", "migrate"], secrets={"RDS_HOST": "RDS_HOST_{ENVIRONMENT}"},
        )
        assert isinstance(launch.action, RunRemoteTask)
        assert launch.action.command == ("python", "manage.py", "migrate")
        assert launch.secrets == {"RDS_HOST": "RDS_HOST_{ENVIRONMENT}"}
        assert isinstance(wait.action, WaitForRemoteTask)
        assert wait.action.launched_by == launch.name
        assert wait.secrets == {}

    def test_job_flattens_step_lists(self):
        j = job("deploy", step("a", RunTests(command="x")),
                migrate("m", cluster="c", task_definition="t", network=NETWORK, command=["m"]))
        assert [s.name for s in j.steps] == ["a", "m (launch)", "m (wait)"]

    def test_job_requires_steps(self):
        with pytest.raises(ValueError):
            job("empty")

    def test_job_rejects_duplicate_step_names(self):
        with pytest.raises(ValueError):
            job("j", step("a", RunTests(command="x")), step("a", RunTests(command="y")))

    def test_matrix_and_env(self):
        j = job("j", step("a", RunTests(command="x")), matrix=matrix("dev", "uat"), env={"DEBUG": 0})
        assert j.matrix == ["dev", "uat"]
        assert j.env == {"DEBUG": "0"}

    def test_pipeline_default_branches(self):
        p = pipeline("p", job("j", step("a", RunTests(command="x"))))
        assert p.allowed_branches == DEFAULT_BRANCHES == ("main", "dev", "uat")
        assert p.job("j").name == "j"
        with pytest.raises(KeyError):
            p.job("missing")


class TestTrigger:
    @pytest.mark.parametrize("branch", ["main", "dev", "uat"])
    def test_allowed(self, branch):
        assert Trigger(branch).eligible()
        assert Trigger(branch, EventKind.PULL_REQUEST).eligible()

    @pytest.mark.parametrize("branch", ["prod", "feature/x", "Main", ""])
    def test_not_allowed(self, branch):
        assert not Trigger(branch).eligible()


class TestSettings:
    def test_defaults(self):
        s = Settings.from_env({})
        assert s.environments == ("dev", "uat", "prod")
        assert s.network.to_awsvpc()["awsvpcConfiguration"]["assignPublicIp"] == "ENABLED"

    def test_from_env(self):
        s = Settings.from_env({
            "DEPLOYFLOW_ALLOWED_BRANCHES": "main, release",
            "DEPLOYFLOW_SUBNETS": "subnet-a,subnet-b",
            "DEPLOYFLOW_ASSIGN_PUBLIC_IP": "false",
            "DEPLOYFLOW_CLUSTER": "prod-cluster",
            "DEPLOYFLOW_MAX_WAIT": "900",
            "AWS_REGION": "eu-west-1",
        })
        assert s.allowed_branches == ("main", "release")
        assert s.subnets == ("subnet-a", "subnet-b")
        assert s.assign_public_ip is False
        assert s.cluster == "prod-cluster"
        assert s.max_wait == 900.0
        assert s.region == "eu-west-1"


class TestDjangoPipeline:
    def test_shape(self):
        p = build_pipeline(Settings())
        assert p.name == "Deploy Django Project"
        assert [j.name for j in p.jobs] == ["snyk", "security", "deploy"]
        assert p.job("security").needs == ["snyk"]
        assert sorted(p.job("deploy").needs) == ["security", "snyk"]
        assert p.job("deploy").matrix == ["dev", "uat", "prod"]

    def test_migration_step(self):
        deploy = build_pipeline(Settings(task_prefix="web-task")).job("deploy")
        launch = next(s for s in deploy.steps if isinstance(s.action, RunRemoteTask))
        assert launch.action.task_definition == "web-task-{environment}"
        assert launch.action.command == ("python", "manage.py", "migrate")
        assert launch.secrets == DB_SECRETS
        assert deploy.steps[-1].action.launched_by == launch.name


class TestPackageExports:
    def test_submodules_keep_their_names(self):
        import deployflow
        import deployflow.matrix as matrix_module

        assert matrix_module.expand is deployflow.expand
        assert deployflow.matrix is matrix_module
        assert callable(deployflow.job) and callable(deployflow.pipeline)
