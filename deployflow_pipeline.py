# deployflow_pipeline.py
# Pipeline for the Django-on-Docker project: Snyk scans, Bandit, then a
# dev/uat/prod rollout on ECS with a migration task per environment.
from __future__ import annotations

from deployflow.config import Settings
from deployflow.pipelines.django_ecs import build_pipeline


def pipeline():
    return build_pipeline(Settings.from_env())
