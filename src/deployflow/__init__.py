from .dsl import job, step, when, migrate, pipeline
from .dag import JobGraph
from .matrix import expand
from .model import Job, Step, Pipeline, Trigger, EventKind, Status, RunReport
from .runner import PipelineRunner, run_pipeline, load_pipeline

__all__ = [
    "job", "step", "when", "migrate", "pipeline",
    "JobGraph", "expand",
    "Job", "Step", "Pipeline", "Trigger", "EventKind", "Status", "RunReport",
    "PipelineRunner", "run_pipeline", "load_pipeline",
]
