# runner.py
from __future__ import annotations

import runpy
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

import yaml

from .cache import CacheResolver, LocalCacheBackend
from .dag import JobGraph, build_graph
from .errors import WorkflowLoadError
from .executor import CommandRunner
from .model import RunContext, RunResult, WorkflowDefinition
from .report import ReportDocument, summarize
from .scheduler import Scheduler
from .schema import parse_workflow
from .triggers import Event, should_run
from .ui.console import get_console


# ----------------------------------------------------------------------
# Workflow loading (local file)
# ----------------------------------------------------------------------

def _load_python(wf_path: Path) -> WorkflowDefinition:
    """
    The file must define either:
      - workflow() -> WorkflowDefinition
      - WORKFLOW = WorkflowDefinition(...)
    """
    module_name = f"relayci_workflow_{wf_path.stem}"
    try:
        globals_dict = runpy.run_path(str(wf_path), run_name=module_name)
    except ValueError as e:
        # the DSL raises ValueError for malformed jobs
        raise WorkflowLoadError(f"invalid workflow {wf_path.name}: {e}") from e

    definition = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        definition = globals_dict["workflow"]()
    elif "WORKFLOW" in globals_dict:
        definition = globals_dict["WORKFLOW"]

    if not isinstance(definition, WorkflowDefinition):
        raise WorkflowLoadError(
            "Workflow must return/define a WorkflowDefinition. "
            "Define workflow() -> wf(...) or WORKFLOW = wf(...).",
            path=str(wf_path),
        )
    return definition


def _load_yaml(wf_path: Path) -> WorkflowDefinition:
    try:
        with wf_path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise WorkflowLoadError(f"cannot parse {wf_path.name}: {e}") from e
    return parse_workflow(data, source=wf_path.name)


def load_workflow(path: str | Path) -> WorkflowDefinition:
    """Load a workflow from a .yml/.yaml document or a .py DSL file."""
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise WorkflowLoadError(f"Workflow file not found: {wf_path}")
    if wf_path.suffix in (".yml", ".yaml"):
        return _load_yaml(wf_path)
    if wf_path.suffix == ".py":
        return _load_python(wf_path)
    raise WorkflowLoadError(f"Workflow must be a .yml, .yaml or .py file, got: {wf_path.name}")


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

@dataclass
class RunOutcome:
    triggered: bool
    graph: Optional[JobGraph] = None
    result: Optional[RunResult] = None
    report: Optional[ReportDocument] = None

    @property
    def exit_code(self) -> int:
        return self.report.exit_code if self.report is not None else 0


def run_workflow(
    definition: WorkflowDefinition,
    event: Event,
    ctx: RunContext,
    *,
    runner: CommandRunner | None = None,
    cache: CacheResolver | None = None,
    cache_root: str | Path = ".relayci/cache",
    max_parallel: int | None = None,
    runners: Mapping[str, int] | None = None,
    abort_on_failure: bool = False,
    print_plan: bool = True,
) -> RunOutcome:
    """
    event -> trigger check -> graph -> scheduler -> report.

    Configuration errors propagate before anything runs; job and
    infrastructure failures end up in the report.
    """
    console = ctx.console or get_console()

    if not should_run(event, definition):
        console.print_not_triggered(definition.name, event.kind.value, event.branch)
        return RunOutcome(triggered=False)

    graph = build_graph(definition)

    if cache is None:
        cache = CacheResolver(LocalCacheBackend(cache_root), ctx.namespace, console=console)

    console.print_run_started(
        workflow=definition.name,
        event=event.kind.value,
        branch=event.branch,
        instance_count=len(graph),
        run_id=ctx.run_id,
    )
    if print_plan:
        console.print_plan(graph.levels())

    scheduler = Scheduler(
        ctx,
        runner=runner,
        cache=cache,
        max_parallel=max_parallel,
        runners=runners,
        abort_on_failure=abort_on_failure,
    )
    result = scheduler.run(graph, workflow=definition.name, event=event)
    report = summarize(result)
    return RunOutcome(triggered=True, graph=graph, result=result, report=report)
