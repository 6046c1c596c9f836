# cli.py
from __future__ import annotations

import subprocess
import sys
from pathlib import Path

import click

from relayci.dag import build_graph
from relayci.errors import ConfigurationError
from relayci.git_facts.git import changes_since, current_branch
from relayci.model import RunContext
from relayci.runner import load_workflow, run_workflow
from relayci.settings import Settings, load_settings, parse_runners
from relayci.triggers import Event, parse_event_kind
from relayci.ui.console import Console, get_console, set_console

EXIT_FAILED = 1
EXIT_CONFIG = 2
EXIT_INTERRUPTED = 130


def find_workflow_files(root: Path = Path(".")) -> list[Path]:
    """
    Find all workflow files: .relayci/*.yml|*.yaml, then
    relayci_workflow.py / *_workflow.py in the current directory.
    """
    workflow_files: list[Path] = []
    wf_dir = root / ".relayci"
    if wf_dir.is_dir():
        workflow_files.extend(sorted(wf_dir.glob("*.yml")))
        workflow_files.extend(sorted(wf_dir.glob("*.yaml")))

    default_workflow = root / "relayci_workflow.py"
    if default_workflow.exists():
        workflow_files.append(default_workflow)
    for path in sorted(root.glob("*_workflow.py")):
        if path != default_workflow:
            workflow_files.append(path)

    return workflow_files


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Discover workflow file from argument or default.

    Raises:
        SystemExit: If workflow cannot be found or multiple workflows exist
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  relayci run --workflow .relayci/test.yml",
            )
            sys.exit(EXIT_CONFIG)
        return workflow_path

    workflow_files = find_workflow_files()

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=[
                "Looked for:",
                "  .relayci/*.yml, .relayci/*.yaml",
                "  relayci_workflow.py",
                "  *_workflow.py",
            ],
            suggestion="Create a workflow file or specify one explicitly:\n  relayci run --workflow my_workflow.yml",
        )
        sys.exit(EXIT_CONFIG)

    if len(workflow_files) > 1:
        file_list = "\n".join(f"  {f}" for f in workflow_files)
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[file_list],
            suggestion="Specify a workflow explicitly:\n  relayci run --workflow .relayci/test.yml",
        )
        sys.exit(EXIT_CONFIG)

    return workflow_files[0]


def _config_error(e: ConfigurationError) -> None:
    console = get_console()
    details = [f"{k}: {v}" for k, v in e.details.items()]
    if e.job:
        details.insert(0, f"job: {e.job}")
    console.print_error("Configuration error", f"{e.kind}: {e.message}", details=details or None)
    sys.exit(EXIT_CONFIG)


def _resolve_branch(branch: str | None) -> str | None:
    if branch:
        return branch
    try:
        return current_branch()
    except (subprocess.CalledProcessError, FileNotFoundError):
        get_console().print_debug("could not read current branch from git")
        return None


def _resolve_changes(changed_files: tuple[str, ...], git_diff: bool, compare_ref: str) -> tuple[str, ...] | None:
    if changed_files:
        return tuple(changed_files)
    if not git_diff:
        return None
    try:
        return tuple(changes_since(compare_ref))
    except (subprocess.CalledProcessError, FileNotFoundError) as e:
        get_console().print_warning(f"git diff unavailable, running every job: {e}")
        return None


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.option("--quiet", is_flag=True, default=False, help="Only print the final summary")
@click.pass_context
def cli(ctx, debug, quiet):
    """RelayCI: matrix-aware, cache-aware CI pipeline runner."""
    console = Console(debug=debug, quiet=quiet)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    try:
        ctx.obj["settings"] = load_settings()
    except ConfigurationError as e:
        _config_error(e)


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (.yml/.yaml/.py)")
@click.option("--event", "event_kind", default="push", show_default=True, help="push or pull_request")
@click.option("--branch", default=None, help="Branch (push) or base branch (pull_request); defaults to the current git branch")
@click.option("--changed-file", "changed_files", multiple=True, help="Changed path for job path filters (repeatable)")
@click.option("--git-diff/--no-git-diff", default=False, help="Compute changed files from git for job path filters")
@click.option("--compare-ref", default="origin/main", show_default=True, help="Git ref to diff against")
@click.option("--workers", default=None, type=click.IntRange(min=1), help="Max jobs running at once")
@click.option("--runner", "runner_specs", multiple=True, help="Runner pool as label=count (repeatable)")
@click.option("--cache-dir", default=None, help="Cache directory")
@click.option("--log-dir", default=None, help="Write each job's output under this directory")
@click.option("--namespace", default=None, help="Cache namespace")
@click.option("--report", "report_path", default=None, type=click.Path(dir_okay=False), help="Write the JSON report here")
@click.option("--abort-on-failure/--no-abort-on-failure", default=False, help="Cancel unstarted jobs after the first required failure")
@click.option("--print-plan/--no-print-plan", default=True, show_default=True, help="Print the stages before running")
@click.pass_context
def run(
    ctx,
    workflow,
    event_kind,
    branch,
    changed_files,
    git_diff,
    compare_ref,
    workers,
    runner_specs,
    cache_dir,
    log_dir,
    namespace,
    report_path,
    abort_on_failure,
    print_plan,
):
    """Run a RelayCI workflow for one repository event."""
    console = get_console()
    settings: Settings = ctx.obj["settings"]
    workflow_path = discover_workflow(workflow)

    try:
        definition = load_workflow(workflow_path)
        event = Event(
            kind=parse_event_kind(event_kind),
            branch=_resolve_branch(branch),
            changed_files=_resolve_changes(changed_files, git_diff, compare_ref),
        )
        runners = parse_runners(",".join(runner_specs)) if runner_specs else settings.runners

        run_ctx = RunContext(
            workspace=Path(".").resolve(),
            namespace=namespace or settings.namespace,
            log_dir=Path(log_dir or settings.log_dir) if (log_dir or settings.log_dir) else None,
            console=console,
        )
        outcome = run_workflow(
            definition,
            event,
            run_ctx,
            cache_root=cache_dir or settings.cache_dir,
            max_parallel=workers or settings.max_parallel,
            runners=runners,
            abort_on_failure=abort_on_failure,
            print_plan=print_plan,
        )
    except ConfigurationError as e:
        _config_error(e)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(EXIT_INTERRUPTED)

    if not outcome.triggered:
        return

    console.print_results(outcome.report)
    if report_path:
        Path(report_path).write_text(outcome.report.model_dump_json(indent=2), encoding="utf-8")
        console.print_info(f"Report written to {report_path}")

    if outcome.result.interrupted:
        sys.exit(EXIT_INTERRUPTED)
    sys.exit(0 if outcome.exit_code == 0 else EXIT_FAILED)


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (.yml/.yaml/.py)")
def plan(workflow):
    """Print the job instances and the stages they would run in."""
    console = get_console()
    workflow_path = discover_workflow(workflow)
    try:
        definition = load_workflow(workflow_path)
        graph = build_graph(definition)
    except ConfigurationError as e:
        _config_error(e)

    console.print_info(f"Workflow: {definition.name}")
    for rule in definition.triggers:
        branches = ", ".join(rule.branches) if rule.branches else "any branch"
        console.print_info(f"  on {rule.event.value}: {branches}")
    console.print_plan(graph.levels())


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (.yml/.yaml/.py)")
def validate(workflow):
    """Check a workflow for configuration errors without running it."""
    console = get_console()
    workflow_path = discover_workflow(workflow)
    try:
        definition = load_workflow(workflow_path)
        graph = build_graph(definition)
    except ConfigurationError as e:
        _config_error(e)
    console.print_info(f"OK: {definition.name} ({len(definition.jobs)} jobs, {len(graph)} instances)")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
