# executor.py
from __future__ import annotations

import os
import subprocess
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Mapping, Protocol, Tuple

from .cache import CacheResolver, pack_paths, unpack_blob
from .errors import CacheBackendError, InfrastructureError, StepFailure
from .model import (
    CacheStep,
    CommandStep,
    FailureClass,
    InstanceResult,
    JobInstance,
    JobState,
    RunContext,
    StepRecord,
)
from .ui.console import get_console

TIMEOUT_EXIT_CODE = 124
OUTPUT_TAIL = 4000


# ----------------------------------------------------------------------
# External command interface
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class CommandResult:
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0


class CommandRunner(Protocol):
    def run(
        self,
        command: str,
        *,
        cwd: Path,
        env: Mapping[str, str],
        timeout: float | None = None,
    ) -> CommandResult: ...


class SubprocessCommandRunner:
    """Runs each command through the shell, capturing its output."""

    def run(
        self,
        command: str,
        *,
        cwd: Path,
        env: Mapping[str, str],
        timeout: float | None = None,
    ) -> CommandResult:
        start = time.monotonic()
        try:
            proc = subprocess.run(
                command,
                shell=True,
                cwd=str(cwd),
                env=dict(env),
                text=True,
                capture_output=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            return CommandResult(
                exit_code=TIMEOUT_EXIT_CODE,
                stdout=_decode(e.stdout),
                stderr=_decode(e.stderr) + f"\ntimed out after {timeout}s",
                duration=time.monotonic() - start,
            )
        except OSError as e:
            raise InfrastructureError(f"could not start process: {e}", command=command) from e

        return CommandResult(
            exit_code=proc.returncode,
            stdout=proc.stdout,
            stderr=proc.stderr,
            duration=time.monotonic() - start,
        )


def _decode(data) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


# ----------------------------------------------------------------------
# Execution primitives
# ----------------------------------------------------------------------

def _step_env(ctx: RunContext, instance: JobInstance, step: CommandStep) -> Dict[str, str]:
    env = os.environ.copy()
    env.update(ctx.env)
    env.update(instance.template.env)
    env.update(step.env)
    env["RELAYCI"] = "true"
    env["RELAYCI_RUN_ID"] = ctx.run_id
    env["RELAYCI_JOB"] = instance.name
    if instance.runs_on:
        env["RELAYCI_RUNNER"] = instance.runs_on
    for axis, value in instance.matrix:
        env[f"RELAYCI_MATRIX_{axis.upper().replace('-', '_')}"] = value
    return env


def _run_command(
    instance: JobInstance,
    step: CommandStep,
    ctx: RunContext,
    runner: CommandRunner,
    log: List[str],
) -> int:
    cwd = (ctx.workspace / (step.cwd or ".")).resolve()
    if not cwd.exists():
        raise InfrastructureError(f"cwd not found: {cwd}", job=instance.id, step=step.name)

    result = runner.run(
        step.run,
        cwd=cwd,
        env=_step_env(ctx, instance, step),
        timeout=step.timeout,
    )
    log.append(f"$ {step.run}")
    if result.stdout:
        log.append(result.stdout.rstrip("\n"))
    if result.stderr:
        log.append(result.stderr.rstrip("\n"))
    log.append(f"[exit {result.exit_code}]")
    return result.exit_code


def _restore_cache(
    instance: JobInstance,
    step: CacheStep,
    ctx: RunContext,
    cache: CacheResolver,
    record: StepRecord,
) -> str | None:
    console = ctx.console or get_console()
    try:
        key = cache.key(cache.inputs_for(step, instance, ctx.workspace))
    except OSError as e:
        # no key, no restore and no save
        console.print_warning(f"[{instance.id}] cannot compute cache key for '{step.name}': {e}")
        record.status = "miss"
        return None
    if not step.restore:
        record.status = "skipped"
        return key

    blob = cache.restore(key)
    if blob is None:
        console.print_cache_miss(instance.id, key)
        record.status = "miss"
        return key

    try:
        unpack_blob(ctx.workspace, blob)
    except (CacheBackendError, OSError, EOFError, ValueError) as e:
        # a corrupt entry is just a miss
        console.print_warning(f"[{instance.id}] cache entry unusable, ignoring: {e}")
        record.status = "miss"
        return key

    console.print_cache_hit(instance.id, key)
    record.status = "restored"
    return key


def _save_cache(
    instance: JobInstance,
    step: CacheStep,
    key: str,
    ctx: RunContext,
    cache: CacheResolver,
    record: StepRecord,
) -> None:
    console = ctx.console or get_console()
    try:
        blob = pack_paths(ctx.workspace, step.paths)
    except OSError as e:
        console.print_warning(f"[{instance.id}] could not pack cache paths: {e}")
        record.status = "save-failed"
        return
    if blob is None:
        console.print_debug(f"[{instance.id}] nothing to cache for '{step.name}'")
        return
    if cache.save(key, blob):
        console.print_cache_saved(instance.id, key)
        record.status = "saved"
    else:
        record.status = "save-failed"


def _write_log(ctx: RunContext, instance: JobInstance, text: str) -> str | None:
    if ctx.log_dir is None:
        return None
    safe = "".join(c if c.isalnum() or c in "-_." else "_" for c in instance.id)
    path = Path(ctx.log_dir) / ctx.run_id / f"{safe}.log"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return str(path)


def run_instance(
    instance: JobInstance,
    ctx: RunContext,
    runner: CommandRunner,
    cache: CacheResolver,
) -> InstanceResult:
    """
    Run every step of one job instance, strictly in order.

    Never raises for job or infrastructure trouble: the outcome is
    reported in the returned InstanceResult.
    """
    console = ctx.console or get_console()
    result = InstanceResult(
        instance_id=instance.id,
        job=instance.name,
        matrix=instance.matrix,
        state=JobState.RUNNING,
        started_at=datetime.now(timezone.utc),
        required=instance.template.required,
    )
    log: List[str] = []
    pending_saves: List[Tuple[CacheStep, str, StepRecord]] = []

    console.print_job_start(instance.id, instance.runs_on)
    try:
        for step in instance.steps:
            console.print_step(instance.id, step.name)
            record = StepRecord(name=step.name, kind=step.kind)
            result.steps.append(record)

            if isinstance(step, CacheStep):
                key = _restore_cache(instance, step, ctx, cache, record)
                # an exact hit already holds what a save would write
                if key is not None and step.save and record.status != "restored":
                    pending_saves.append((step, key, record))
            elif isinstance(step, CommandStep):
                code = _run_command(instance, step, ctx, runner, log)
                record.exit_code = code
                if code != 0:
                    if step.fatal:
                        record.status = "failed"
                        raise StepFailure(job=instance.id, step=step.name, cmd=step.run, exit_code=code)
                    record.status = "ignored"
                    log.append(f"[{step.name}] failure ignored (fatal: false)")
            else:
                raise TypeError(f"unknown step type: {type(step).__name__}")

        for step, key, record in pending_saves:
            _save_cache(instance, step, key, ctx, cache, record)

        result.state = JobState.SUCCEEDED

    except StepFailure as e:
        result.state = JobState.FAILED
        result.failure_class = FailureClass.JOB
        result.reason = str(e)
        console.print_failure(instance.id, str(e), exit_code=e.exit_code, output="\n".join(log[-20:]))
    except InfrastructureError as e:
        result.state = JobState.FAILED
        result.failure_class = FailureClass.INFRASTRUCTURE
        result.reason = e.message
        console.print_failure(instance.id, e.message)

    result.finished_at = datetime.now(timezone.utc)
    text = "\n".join(log)
    result.output = text[-OUTPUT_TAIL:]
    try:
        result.output_ref = _write_log(ctx, instance, text)
    except OSError as e:
        console.print_warning(f"[{instance.id}] could not write log: {e}")
    return result
