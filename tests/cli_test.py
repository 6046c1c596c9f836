from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest
from click.testing import CliRunner

from relayci.cli import EXIT_CONFIG, EXIT_FAILED, EXIT_INTERRUPTED, cli, find_workflow_files
from relayci.model import InstanceResult, JobState, RunResult
from relayci.report import summarize
from relayci.runner import RunOutcome

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell commands")

PASSING = """
name: ci
on:
  push:
    branches: [main]
jobs:
  build:
    steps:
      - run: "true"
  test:
    needs: build
    steps:
      - run: "true"
"""

FAILING = """
name: ci
on: push
jobs:
  build:
    steps:
      - run: "false"
  test:
    needs: build
    steps:
      - run: "true"
"""

CYCLIC = """
name: ci
on: push
jobs:
  a:
    needs: b
    steps:
      - run: "true"
  b:
    needs: a
    steps:
      - run: "true"
"""


@pytest.fixture
def runner():
    return CliRunner()


def _write(text, name=".relayci/ci.yml"):
    path = Path(name)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def test_run_succeeds(runner, tmp_path):
    with runner.isolated_filesystem(temp_dir=tmp_path):
        _write(PASSING)
        result = runner.invoke(cli, ["run", "--branch", "main", "--report", "report.json"])
        assert result.exit_code == 0, result.output
        assert "RUN SUCCEEDED" in result.output
        report = json.loads(Path("report.json").read_text(encoding="utf-8"))
        assert report["status"] == "succeeded"
        assert [i["id"] for i in report["instances"]] == ["build", "test"]


def test_run_fails_and_skips_dependents(runner, tmp_path):
    with runner.isolated_filesystem(temp_dir=tmp_path):
        _write(FAILING)
        result = runner.invoke(cli, ["run", "--branch", "feature", "--report", "report.json"])
        assert result.exit_code == EXIT_FAILED, result.output
        report = json.loads(Path("report.json").read_text(encoding="utf-8"))
        states = {i["id"]: i["state"] for i in report["instances"]}
        assert states == {"build": "failed", "test": "skipped"}


def test_run_not_triggered(runner, tmp_path):
    with runner.isolated_filesystem(temp_dir=tmp_path):
        _write(PASSING)
        result = runner.invoke(cli, ["run", "--branch", "feature/x"])
        assert result.exit_code == 0
        assert "NOT TRIGGERED" in result.output


def test_cycle_is_a_configuration_error(runner, tmp_path):
    with runner.isolated_filesystem(temp_dir=tmp_path):
        _write(CYCLIC)
        result = runner.invoke(cli, ["run", "--branch", "main"])
        assert result.exit_code == EXIT_CONFIG
        assert "cycle_detected" in result.output


def test_bad_event_kind(runner, tmp_path):
    with runner.isolated_filesystem(temp_dir=tmp_path):
        _write(PASSING)
        result = runner.invoke(cli, ["run", "--event", "tag", "--branch", "main"])
        assert result.exit_code == EXIT_CONFIG
        assert "malformed_event" in result.output


def test_plan_prints_stages(runner, tmp_path):
    with runner.isolated_filesystem(temp_dir=tmp_path):
        path = _write(PASSING, "ci.yml")
        result = runner.invoke(cli, ["plan", "--workflow", str(path)])
        assert result.exit_code == 0, result.output
        assert "Stage 1:" in result.output
        assert "Stage 2:" in result.output
        assert "on push: main" in result.output


def test_validate(runner, tmp_path):
    with runner.isolated_filesystem(temp_dir=tmp_path):
        _write(PASSING)
        result = runner.invoke(cli, ["validate"])
        assert result.exit_code == 0, result.output
        assert "OK: ci (2 jobs, 2 instances)" in result.output


def test_missing_workflow(runner, tmp_path):
    with runner.isolated_filesystem(temp_dir=tmp_path):
        result = runner.invoke(cli, ["validate"])
        assert result.exit_code == EXIT_CONFIG
        assert "No workflow file found" in result.output


def test_find_workflow_files(tmp_path):
    (tmp_path / ".relayci").mkdir()
    (tmp_path / ".relayci" / "ci.yml").write_text("", encoding="utf-8")
    (tmp_path / "relayci_workflow.py").write_text("", encoding="utf-8")
    (tmp_path / "docs_workflow.py").write_text("", encoding="utf-8")
    found = [p.relative_to(tmp_path).as_posix() for p in find_workflow_files(tmp_path)]
    assert found == [".relayci/ci.yml", "relayci_workflow.py", "docs_workflow.py"]


def test_workers_below_one_is_a_usage_error(runner, tmp_path):
    with runner.isolated_filesystem(temp_dir=tmp_path):
        _write(PASSING)
        result = runner.invoke(cli, ["run", "--branch", "main", "--workers=-1"])
        assert result.exit_code == EXIT_CONFIG
        assert not isinstance(result.exception, ValueError)


def test_bad_max_parallel_setting_is_a_configuration_error(runner, tmp_path):
    with runner.isolated_filesystem(temp_dir=tmp_path):
        _write(PASSING)
        result = runner.invoke(cli, ["run", "--branch", "main"], env={"RELAYCI_MAX_PARALLEL": "0"})
        assert result.exit_code == EXIT_CONFIG
        assert "RELAYCI_MAX_PARALLEL" in result.output


def test_interrupt_exits_130_even_when_every_job_finished(runner, tmp_path, monkeypatch):
    def interrupted_run(definition, event, ctx, **kwargs):
        result = RunResult(
            workflow=definition.name,
            run_id=ctx.run_id,
            results={
                "build": InstanceResult(instance_id="build", job="build", matrix=(), state=JobState.SUCCEEDED)
            },
            aborted=True,
            interrupted=True,
        )
        return RunOutcome(triggered=True, result=result, report=summarize(result))

    monkeypatch.setattr("relayci.cli.run_workflow", interrupted_run)
    with runner.isolated_filesystem(temp_dir=tmp_path):
        _write(PASSING)
        result = runner.invoke(cli, ["run", "--branch", "main"])
        assert result.exit_code == EXIT_INTERRUPTED
