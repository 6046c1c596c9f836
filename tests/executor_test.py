from __future__ import annotations

import sys

import pytest

from relayci.cache import CacheResolver, LocalCacheBackend
from relayci.dsl import cache, job, matrix, sh
from relayci.errors import CacheBackendError
from relayci.executor import TIMEOUT_EXIT_CODE, CommandResult, SubprocessCommandRunner, run_instance
from relayci.matrix import expand
from relayci.model import FailureClass, JobState


def _one(template):
    return expand(template)[0]


def test_steps_run_in_order_and_succeed(ctx, fake_runner, memory_cache):
    runner = fake_runner()
    inst = _one(job("build", sh("setup", "tools/setup.sh"), sh("build", "cargo build")))
    result = run_instance(inst, ctx, runner, memory_cache)
    assert result.state is JobState.SUCCEEDED
    assert runner.calls == ["tools/setup.sh", "cargo build"]
    assert result.failure_class is None
    assert result.duration is not None


def test_first_fatal_failure_stops_the_instance(ctx, fake_runner, memory_cache):
    runner = fake_runner({"cargo build": 101})
    inst = _one(job("build", sh("build", "cargo build"), sh("after", "echo never")))
    result = run_instance(inst, ctx, runner, memory_cache)
    assert result.state is JobState.FAILED
    assert result.failure_class is FailureClass.JOB
    assert runner.calls == ["cargo build"]
    assert "exit=101" in result.reason
    assert [s.status for s in result.steps] == ["failed"]


def test_non_fatal_failure_is_recorded_and_skipped_over(ctx, fake_runner, memory_cache):
    runner = fake_runner({"flaky": 1})
    inst = _one(job("j", sh("flaky", "flaky", fatal=False), sh("after", "after")))
    result = run_instance(inst, ctx, runner, memory_cache)
    assert result.state is JobState.SUCCEEDED
    assert runner.calls == ["flaky", "after"]
    assert result.steps[0].status == "ignored"
    assert result.steps[0].exit_code == 1


def test_missing_cwd_is_an_infrastructure_failure(ctx, fake_runner, memory_cache):
    inst = _one(job("j", sh("s", "true", cwd="nowhere")))
    result = run_instance(inst, ctx, fake_runner(), memory_cache)
    assert result.state is JobState.FAILED
    assert result.failure_class is FailureClass.INFRASTRUCTURE


def test_step_env_carries_job_and_matrix(ctx, fake_runner, memory_cache):
    runner = fake_runner()
    template = job(
        "test",
        sh("t", "cargo test", env={"STEP": "1"}),
        env={"JOB": "1"},
        runs_on="${{ matrix.os }}",
        strategy=matrix(os=["ubuntu-latest"]),
    )
    run_instance(_one(template), ctx, runner, memory_cache)
    env = runner.envs["cargo test"]
    assert env["STEP"] == "1"
    assert env["JOB"] == "1"
    assert env["RELAYCI_MATRIX_OS"] == "ubuntu-latest"
    assert env["RELAYCI_RUNNER"] == "ubuntu-latest"
    assert env["RELAYCI_RUN_ID"] == ctx.run_id


def test_cache_saved_after_success_and_restored_next_run(ctx, fake_runner, tmp_path):
    resolver = CacheResolver(LocalCacheBackend(tmp_path / "cache-store"), "test", console=ctx.console)

    def build(cwd, env):
        (cwd / "target").mkdir(exist_ok=True)
        (cwd / "target" / "artifact").write_text("built")
        return 0

    template = job("build", cache("target", "target"), sh("build", "cargo build"))
    first = run_instance(_one(template), ctx, fake_runner({"cargo build": build}), resolver)
    assert [s.status for s in first.steps] == ["saved", "ok"]

    (tmp_path / "target" / "artifact").unlink()
    second = run_instance(_one(template), ctx, fake_runner(), resolver)
    assert second.steps[0].status == "restored"
    assert (tmp_path / "target" / "artifact").read_text() == "built"


def test_cache_not_saved_when_job_fails(ctx, fake_runner, memory_cache, tmp_path):
    (tmp_path / "target").mkdir()
    (tmp_path / "target" / "x").write_text("x")
    template = job("build", cache("target", "target"), sh("build", "cargo build"))
    result = run_instance(_one(template), ctx, fake_runner({"cargo build": 1}), memory_cache)
    assert result.state is JobState.FAILED
    assert result.steps[0].status == "miss"


def test_cache_save_failure_does_not_fail_the_job(ctx, fake_runner, tmp_path):
    class SaveFails:
        def get(self, key):
            return None

        def put(self, key, blob):
            raise CacheBackendError("disk full")

    (tmp_path / "target").mkdir()
    (tmp_path / "target" / "x").write_text("x")
    resolver = CacheResolver(SaveFails(), "test", console=ctx.console)
    template = job("build", cache("target", "target"), sh("build", "cargo build"))
    result = run_instance(_one(template), ctx, fake_runner(), resolver)
    assert result.state is JobState.SUCCEEDED
    assert result.steps[0].status == "save-failed"


def test_output_written_to_log_dir(ctx, fake_runner, memory_cache, tmp_path):
    ctx.log_dir = tmp_path / "logs"
    runner = fake_runner({"cargo test": CommandResult(exit_code=0, stdout="test result: ok")})
    result = run_instance(_one(job("test", sh("t", "cargo test"))), ctx, runner, memory_cache)
    assert result.output_ref is not None
    assert "test result: ok" in open(result.output_ref, encoding="utf-8").read()
    assert "test result: ok" in result.output


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell commands")
class TestSubprocessCommandRunner:
    def test_captures_output_and_exit_code(self, tmp_path):
        result = SubprocessCommandRunner().run("echo hello; exit 3", cwd=tmp_path, env={"PATH": "/usr/bin:/bin"})
        assert result.exit_code == 3
        assert result.stdout.strip() == "hello"

    def test_timeout_is_an_ordinary_failure(self, tmp_path):
        result = SubprocessCommandRunner().run(
            "sleep 5", cwd=tmp_path, env={"PATH": "/usr/bin:/bin"}, timeout=0.2
        )
        assert result.exit_code == TIMEOUT_EXIT_CODE
        assert "timed out" in result.stderr


def test_unreadable_key_file_is_a_miss_without_save(ctx, fake_runner, tmp_path, monkeypatch):
    puts = []

    class Recording:
        def get(self, key):
            return None

        def put(self, key, blob):
            puts.append(key)

    def unreadable(root, patterns, **kwargs):
        raise PermissionError("Cargo.lock: permission denied")

    monkeypatch.setattr("relayci.cache.hash_files", unreadable)
    (tmp_path / "target").mkdir()
    (tmp_path / "target" / "x").write_text("x")
    resolver = CacheResolver(Recording(), "test", console=ctx.console)
    template = job("build", cache("deps", "target", key_files=["Cargo.lock"]), sh("build", "cargo build"))
    result = run_instance(_one(template), ctx, fake_runner(), resolver)

    assert result.state is JobState.SUCCEEDED
    assert result.steps[0].status == "miss"
    assert puts == []
