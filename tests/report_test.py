from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

from relayci.model import FailureClass, InstanceResult, JobState, RunResult, RunStatus
from relayci.report import render_text, summarize

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _result(iid, state, *, failure_class=None, reason=None, required=True, matrix=()):
    return InstanceResult(
        instance_id=iid,
        job=iid.split(" ")[0],
        matrix=matrix,
        state=state,
        failure_class=failure_class,
        reason=reason,
        started_at=T0,
        finished_at=T0 + timedelta(seconds=3),
        required=required,
    )


def _run(*results, aborted=False):
    return RunResult(
        workflow="ci",
        run_id="abc123",
        results={r.instance_id: r for r in results},
        aborted=aborted,
    )


def test_all_succeeded():
    report = summarize(_run(_result("build", JobState.SUCCEEDED), _result("lint", JobState.SUCCEEDED)))
    assert report.status is RunStatus.SUCCEEDED
    assert report.exit_code == 0
    assert report.counts["succeeded"] == 2
    assert report.counts["failed"] == 0
    assert report.instances[0].duration_seconds == 3.0


def test_failure_classes_are_reported():
    report = summarize(
        _run(
            _result("build", JobState.FAILED, failure_class=FailureClass.JOB, reason="exit=1"),
            _result(
                "test (os=macos-latest)",
                JobState.SKIPPED,
                failure_class=FailureClass.JOB,
                reason="dependency 'build' failed",
                matrix=(("os", "macos-latest"),),
            ),
            _result("deploy", JobState.FAILED, failure_class=FailureClass.INFRASTRUCTURE),
        )
    )
    assert report.status is RunStatus.FAILED
    assert report.exit_code == 1
    by_id = {i.id: i for i in report.instances}
    assert by_id["build"].failure_class == "job"
    assert by_id["deploy"].failure_class == "infrastructure"
    assert by_id["test (os=macos-latest)"].matrix == {"os": "macos-latest"}


def test_optional_failures_do_not_fail_the_run():
    report = summarize(
        _run(
            _result("build", JobState.SUCCEEDED),
            _result("bench", JobState.FAILED, failure_class=FailureClass.JOB, required=False),
        )
    )
    assert report.status is RunStatus.SUCCEEDED
    assert report.exit_code == 0


def test_aborted_run_is_cancelled():
    report = summarize(
        _run(
            _result("build", JobState.SUCCEEDED),
            _result("test", JobState.CANCELLED, reason="interrupted"),
            aborted=True,
        )
    )
    assert report.status is RunStatus.CANCELLED
    assert report.exit_code == 1
    assert report.aborted


def test_report_serializes_to_json():
    report = summarize(_run(_result("build", JobState.FAILED, failure_class=FailureClass.JOB)))
    doc = json.loads(report.model_dump_json())
    assert doc["status"] == "failed"
    assert doc["instances"][0]["state"] == "failed"


def test_render_text():
    report = summarize(
        _run(
            _result("build", JobState.FAILED, failure_class=FailureClass.JOB, reason="exit=2"),
            _result("bench", JobState.SUCCEEDED, required=False),
        )
    )
    text = render_text(report)
    assert "build: FAILED [job] - exit=2" in text
    assert "bench: SUCCEEDED (optional)" in text
    assert "RUN FAILED (succeeded=1, failed=1)" in text
