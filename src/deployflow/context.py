# context.py
"""
Secret and per-job context resolution.

A JobContext is built once per job instance, when the instance starts, and is
read-only afterwards. Secrets are resolved by name through a SecretStore and
are kept out of every repr so they cannot leak into console output.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional, Protocol

from .errors import SecretResolutionError
from .model import JobInstance, Trigger


@dataclass(frozen=True)
class Secret:
    name: str
    value: str = field(repr=False)


class SecretStore(Protocol):
    def get(self, name: str) -> str:
        """Return the secret value or raise SecretResolutionError."""
        ...


class EnvSecretStore:
    """Secrets exposed as process environment variables (CI style)."""

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self._environ = environ if environ is not None else os.environ

    def get(self, name: str) -> str:
        try:
            return self._environ[name]
        except KeyError:
            raise SecretResolutionError(name) from None


class StaticSecretStore:
    def __init__(self, values: Mapping[str, str]):
        self._values = dict(values)

    def __repr__(self) -> str:
        return f"StaticSecretStore(names={sorted(self._values)})"

    def get(self, name: str) -> str:
        if name not in self._values:
            raise SecretResolutionError(name)
        return self._values[name]


def secret_name(template: str, environment: str | None) -> str:
    """Expand RDS_HOST_{ENVIRONMENT} style names for a matrix cell."""
    env = environment or ""
    return template.format(environment=env, ENVIRONMENT=env.upper())


@dataclass(frozen=True)
class JobContext:
    """
    Immutable view handed to step conditions and collaborators.

    `variables` is what conditions see (environment, branch, event, sha and
    the job's static env); `secrets` maps resolved secret names to Secrets.
    """
    job: str
    environment: str | None
    variables: Mapping[str, str]
    secrets: Mapping[str, Secret] = field(default_factory=dict, repr=False)

    def secret_env(self, refs: Mapping[str, str]) -> Dict[str, str]:
        """Map a step's {env var: secret template} onto resolved values."""
        return {
            env_var: self.secrets[secret_name(template, self.environment)].value
            for env_var, template in refs.items()
        }


class ContextProvider:
    """
    Resolves per-instance variables and secrets.

    Shared by every instance of a run; it holds no per-instance state, so
    concurrent matrix siblings can use it safely.
    """

    def __init__(
        self,
        secrets: SecretStore,
        variables: Optional[Mapping[str, str]] = None,
        per_environment: Optional[Mapping[str, Mapping[str, str]]] = None,
    ):
        self._secrets = secrets
        self._variables = dict(variables or {})
        self._per_environment = {k: dict(v) for k, v in (per_environment or {}).items()}

    def variables_for(self, instance: JobInstance, trigger: Trigger) -> Mapping[str, str]:
        values: Dict[str, str] = dict(self._variables)
        values.update(instance.job.env)
        values.update({
            "job": instance.job.name,
            "branch": trigger.branch,
            "event": trigger.event_kind.value,
            "sha": trigger.sha or "local",
        })
        if instance.environment is not None:
            values.update(self._per_environment.get(instance.environment, {}))
            values["environment"] = instance.environment
        return MappingProxyType(values)

    def resolve(self, template: str, environment: str | None) -> Secret:
        name = secret_name(template, environment)
        return Secret(name=name, value=self._secrets.get(name))

    def context_for(
        self,
        instance: JobInstance,
        trigger: Trigger,
        secret_templates: Iterable[str] = (),
    ) -> JobContext:
        """
        Build the instance context, resolving every referenced secret up front.
        Raises SecretResolutionError on the first missing one.
        """
        variables = self.variables_for(instance, trigger)
        resolved: Dict[str, Secret] = {}
        for template in secret_templates:
            secret = self.resolve(template, instance.environment)
            resolved[secret.name] = secret
        return JobContext(
            job=instance.job.name,
            environment=instance.environment,
            variables=variables,
            secrets=MappingProxyType(resolved),
        )
