# pipelines/django_ecs.py
# Scan -> security -> deploy (dev/uat/prod) for a Django app on ECS.
from __future__ import annotations

from typing import Optional

from ..config import Settings
from ..dsl import job, matrix, migrate, pipeline, step
from ..model import (
    BuildImage,
    DeployService,
    Pipeline,
    PushImage,
    RunTests,
    ScanCode,
    ScanDependencies,
    ScanImage,
    ScanInfra,
)

DB_SECRETS = {
    "DJANGO_SECRET_KEY": "DJANGO_SECRET_KEY",
    "RDS_DB_NAME": "RDS_DB_NAME_{ENVIRONMENT}",
    "RDS_USERNAME": "RDS_USERNAME_{ENVIRONMENT}",
    "RDS_PASSWORD": "RDS_PASSWORD_{ENVIRONMENT}",
    "RDS_HOST": "RDS_HOST_{ENVIRONMENT}",
    "RDS_PORT": "RDS_PORT_{ENVIRONMENT}",
}

REGISTRY_SECRETS = {
    "DOCKERHUB_USERNAME": "DOCKERHUB_USERNAME",
    "DOCKERHUB_TOKEN": "DOCKERHUB_TOKEN",
}


def build_pipeline(settings: Optional[Settings] = None) -> Pipeline:
    s = settings or Settings()
    latest = f"{s.image}:latest"
    requirements = f"{s.app_dir}/requirements.txt"

    snyk = job(
        "snyk",
        step("Snyk Code test", ScanCode(tool="snyk", report="snyk-code.sarif"),
             secrets={"SNYK_TOKEN": "SNYK_TOKEN"}),
        step("Snyk Open Source monitor", ScanDependencies(all_projects=True),
             secrets={"SNYK_TOKEN": "SNYK_TOKEN"}),
        step("Snyk IaC test and report", ScanInfra(report=True),
             secrets={"SNYK_TOKEN": "SNYK_TOKEN"}),
        step("Build a Docker image", BuildImage(context=".", tags=(latest,))),
        step("Snyk Container monitor", ScanImage(image=latest, dockerfile="Dockerfile"),
             secrets={"SNYK_TOKEN": "SNYK_TOKEN"}),
    )

    security = job(
        "security",
        step("Run Bandit", ScanCode(tool="bandit", target=s.app_dir, report="bandit-report.html")),
        needs=["snyk"],
    )

    deploy = job(
        "deploy",
        step("Run Tests", RunTests(command=f"python {s.app_dir}/manage.py test", requirements=requirements)),
        step(
            "Build Docker image",
            BuildImage(
                context=f"{s.app_dir}/",
                tags=(f"{s.image}:{{environment}}", f"{s.image}:{{environment}}-{{sha}}"),
            ),
        ),
        step(
            "Push Docker image",
            PushImage(tags=(f"{s.image}:{{environment}}", f"{s.image}:{{environment}}-{{sha}}")),
            secrets=REGISTRY_SECRETS,
        ),
        step("Deploy to AWS ECS", DeployService(cluster=s.cluster, service=f"{s.service_prefix}-{{environment}}")),
        migrate(
            "Apply database migrations",
            cluster=s.cluster,
            task_definition=f"{s.task_prefix}-{{environment}}",
            network=s.network,
            command=("python", "manage.py", "migrate"),
            container=s.container,
            secrets=DB_SECRETS,
            poll_interval=s.poll_interval,
            max_wait=s.max_wait,
        ),
        needs=["security", "snyk"],
        matrix=matrix(*s.environments),
    )

    return pipeline("Deploy Django Project", snyk, security, deploy, branches=s.allowed_branches)
