# collaborators/__init__.py
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Mapping, Optional, Type

from ..errors import CollaboratorFailure
from ..model import CallOutcome


@dataclass(frozen=True)
class StepContext:
    """Resolved inputs for one collaborator invocation."""
    job: str
    step: str
    environment: str | None
    env: Mapping[str, str] = field(repr=False)   # job env + step env + secrets
    repo_root: Path = Path(".")


Handler = Callable[[object, StepContext], CallOutcome]


class Collaborators:
    """
    Registry: collaborator call type -> adapter.

    The engine only ever talks to this registry; scanners, builders and
    cloud APIs live behind whatever adapters are registered here.
    """

    def __init__(self, handlers: Optional[Mapping[Type, Handler]] = None):
        self._handlers: Dict[Type, Handler] = dict(handlers or {})

    def register(self, call_type: Type, handler: Handler) -> "Collaborators":
        self._handlers[call_type] = handler
        return self

    def update(self, handlers: Mapping[Type, Handler]) -> "Collaborators":
        self._handlers.update(handlers)
        return self

    def invoke(self, call: object, ctx: StepContext) -> CallOutcome:
        handler = self._handlers.get(type(call))
        if handler is None:
            raise CollaboratorFailure(
                call=type(call).__name__,
                message="no collaborator registered for this call",
            )
        return handler(call, ctx)
