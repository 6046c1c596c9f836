# dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .model import (
    CacheStep,
    CommandStep,
    EventKind,
    JobTemplate,
    MatrixSpec,
    Step,
    TriggerRule,
    WorkflowDefinition,
)


def sh(
    name: str,
    cmd: str,
    *,
    cwd: str | None = None,
    env: Optional[Dict[str, str]] = None,
    fatal: bool = True,
    timeout: float | None = None,
) -> CommandStep:
    return CommandStep(name=name, run=cmd, cwd=cwd, env=env or {}, fatal=fatal, timeout=timeout)


def cache(
    name: str,
    *paths: str,
    key_files: Sequence[str] = (),
    key_extra: Optional[Dict[str, str]] = None,
    restore: bool = True,
    save: bool = True,
) -> CacheStep:
    if not paths:
        raise ValueError(f"cache({name!r}) needs at least one path")
    return CacheStep(
        name=name,
        paths=tuple(paths),
        key_files=tuple(key_files),
        key_extra=key_extra or {},
        restore=restore,
        save=save,
    )


def matrix(fail_fast: bool = True, **axes: Iterable[Any]) -> MatrixSpec:
    """
    matrix(os=["ubuntu-latest", "macos-latest"], fail_fast=False)

    Axis order is keyword order.
    """
    return MatrixSpec(
        axes=tuple((k, tuple(str(v) for v in values)) for k, values in axes.items()),
        fail_fast=fail_fast,
    )


def job(
    name: str,
    *steps: Step,  # allow job("x", sh(...), sh(...))
    needs: Optional[List[str]] = None,
    runs_on: str | None = None,
    strategy: Optional[MatrixSpec] = None,
    env: Optional[Dict[str, str]] = None,
    required: bool = True,
    paths: Optional[List[str]] = None,
    # convenience
    cwd: str | None = None,  # default cwd for command steps
) -> JobTemplate:
    if not steps:
        raise ValueError(f"job({name!r}) must have at least one step")

    steps_final = list(steps)
    if cwd is not None:
        steps_final = [
            replace(s, cwd=cwd) if isinstance(s, CommandStep) and s.cwd is None else s
            for s in steps_final
        ]

    return JobTemplate(
        name=name,
        steps=tuple(steps_final),
        matrix=strategy,
        needs=tuple(needs or []),
        runs_on=runs_on,
        env=env or {},
        required=required,
        paths=tuple(paths) if paths is not None else None,
    )


def on_push(*branches: str) -> TriggerRule:
    return TriggerRule(event=EventKind.PUSH, branches=tuple(branches))


def on_pull_request(*branches: str) -> TriggerRule:
    return TriggerRule(event=EventKind.PULL_REQUEST, branches=tuple(branches))


# ---------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------

class JobBuilder:
    """
    Fluent alternative to job():

        JobBuilder("test").runs_on("${{ matrix.os }}")
            .matrix(os=["ubuntu-latest", "macos-latest"], fail_fast=False)
            .step("cargo test", "cargo test --all-features")
            .build()
    """

    def __init__(self, name: str):
        self.name = name
        self._steps: List[Step] = []
        self._needs: List[str] = []
        self._env: Dict[str, str] = {}
        self._runs_on: str | None = None
        self._matrix: Optional[MatrixSpec] = None
        self._required = True
        self._paths: Optional[List[str]] = None

    def depends_on(self, *job_names: str):
        self._needs.extend(job_names)
        return self

    def step(self, name: str, run: str, cwd: str | None = None, *, fatal: bool = True):
        self._steps.append(sh(name, run, cwd=cwd, fatal=fatal))
        return self

    def cache(self, name: str, *paths: str, key_files: Sequence[str] = ()):
        self._steps.append(cache(name, *paths, key_files=key_files))
        return self

    def runs_on(self, label: str):
        self._runs_on = label
        return self

    def matrix(self, fail_fast: bool = True, **axes: Iterable[Any]):
        self._matrix = matrix(fail_fast=fail_fast, **axes)
        return self

    def with_env(self, **env):
        # force values to str for stable hashing + env compatibility
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def with_paths(self, *patterns: str):
        self._paths = list(patterns)
        return self

    def optional(self, optional: bool = True):
        self._required = not optional
        return self

    def build(self) -> JobTemplate:
        return job(
            self.name,
            *self._steps,
            needs=self._needs,
            runs_on=self._runs_on,
            strategy=self._matrix,
            env=self._env,
            required=self._required,
            paths=self._paths,
        )


# ---------------------------------------------------------------------
# Workflow helper (single-file story)
# ---------------------------------------------------------------------

def wf(name: str, *jobs: JobTemplate, on: Sequence[TriggerRule] = ()) -> WorkflowDefinition:
    """
    Workflow definition helper:

        from relayci import wf, job, sh, on_push, on_pull_request

        def workflow():
            return wf(
                "test",
                job("build", sh("Build", "cargo build")),
                on=[on_push("main"), on_pull_request()],
            )
    """
    seen: Dict[str, JobTemplate] = {}
    for j in jobs:
        if j.name in seen:
            raise ValueError(f"Duplicate job name: {j.name}")
        seen[j.name] = j
    return WorkflowDefinition(name=name, triggers=tuple(on), jobs=seen)
