from .runner import run_workflow, load_workflow
from .model import WorkflowDefinition, JobTemplate, CommandStep, CacheStep, RunContext
from .triggers import Event, should_run
# Imported last: loading the submodules above binds relayci.cache/relayci.matrix
# as modules, which would otherwise shadow the DSL functions of the same name.
from .dsl import job, sh, cache, matrix, wf, on_push, on_pull_request, JobBuilder

__all__ = [
    "job", "sh", "cache", "matrix", "wf", "on_push", "on_pull_request", "JobBuilder",
    "run_workflow", "load_workflow",
    "WorkflowDefinition", "JobTemplate", "CommandStep", "CacheStep", "RunContext",
    "Event", "should_run",
]
