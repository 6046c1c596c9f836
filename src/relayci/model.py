# model.py
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Literal, Mapping, Optional, Tuple, Union

if TYPE_CHECKING:
    from .ui.console import Console


class EventKind(str, Enum):
    PUSH = "push"
    PULL_REQUEST = "pull_request"


class JobState(str, Enum):
    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset(
    {JobState.SUCCEEDED, JobState.FAILED, JobState.CANCELLED, JobState.SKIPPED}
)


class FailureClass(str, Enum):
    """Which part of the error taxonomy caused a non-success terminal state."""
    CONFIGURATION = "configuration"
    JOB = "job"
    INFRASTRUCTURE = "infrastructure"


class RunStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


# ----------------------------------------------------------------------
# Steps: a tagged union, dispatched exhaustively by the executor
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class CommandStep:
    """An opaque external command inside a CI job."""
    name: str
    run: str
    cwd: str | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    fatal: bool = True              # non-zero exit fails the job
    timeout: float | None = None    # seconds; expiry is an ordinary failure
    kind: Literal["command"] = "command"


@dataclass(frozen=True)
class CacheStep:
    """
    Restore declared paths from the cache at this position in the job and,
    once every other step has succeeded, save them back.
    """
    name: str
    paths: Tuple[str, ...]
    key_files: Tuple[str, ...] = ()          # lockfiles etc., hashed by content
    key_extra: Mapping[str, str] = field(default_factory=dict)
    restore: bool = True
    save: bool = True
    kind: Literal["cache"] = "cache"


Step = Union[CommandStep, CacheStep]


# ----------------------------------------------------------------------
# Workflow definition
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class TriggerRule:
    event: EventKind
    branches: Tuple[str, ...] = ()   # glob patterns; empty means any branch


@dataclass(frozen=True)
class MatrixSpec:
    axes: Tuple[Tuple[str, Tuple[str, ...]], ...]
    fail_fast: bool = True

    @property
    def axis_names(self) -> List[str]:
        return [name for name, _ in self.axes]


@dataclass(frozen=True)
class JobTemplate:
    """
    A CI job: steps + dependencies + metadata for placement/caching.

    `needs` names jobs that must finish successfully first; an empty tuple
    means the job is independent of every other job.
    """
    name: str
    steps: Tuple[Step, ...]
    matrix: Optional[MatrixSpec] = None
    needs: Tuple[str, ...] = ()
    runs_on: str | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    required: bool = True
    paths: Optional[Tuple[str, ...]] = None   # change filter, e.g. ("src/**",)


@dataclass(frozen=True)
class WorkflowDefinition:
    name: str
    triggers: Tuple[TriggerRule, ...]
    jobs: Mapping[str, JobTemplate]


# ----------------------------------------------------------------------
# Runtime
# ----------------------------------------------------------------------

MatrixTuple = Tuple[Tuple[str, str], ...]


@dataclass(frozen=True)
class JobInstance:
    """A job template bound to one concrete matrix value tuple."""
    template: JobTemplate
    matrix: MatrixTuple = ()
    runs_on: str | None = None
    steps: Tuple[Step, ...] = ()

    @property
    def name(self) -> str:
        return self.template.name

    @property
    def identity(self) -> Tuple[str, MatrixTuple]:
        return (self.template.name, self.matrix)

    @property
    def id(self) -> str:
        if not self.matrix:
            return self.template.name
        values = ", ".join(f"{axis}={value}" for axis, value in self.matrix)
        return f"{self.template.name} ({values})"


@dataclass
class RunContext:
    """Everything process-wide a run needs, passed explicitly."""
    workspace: Path = field(default_factory=lambda: Path(".").resolve())
    namespace: str = "default"
    env: Dict[str, str] = field(default_factory=dict)
    log_dir: Path | None = None
    console: Optional["Console"] = None
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])


@dataclass
class StepRecord:
    name: str
    kind: str
    exit_code: int | None = None
    status: str = "ok"      # ok | failed | ignored | restored | miss | saved | save-failed


@dataclass
class InstanceResult:
    instance_id: str
    job: str
    matrix: MatrixTuple
    state: JobState
    failure_class: FailureClass | None = None
    reason: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    output: str = ""
    output_ref: str | None = None
    steps: List[StepRecord] = field(default_factory=list)
    required: bool = True

    @property
    def duration(self) -> float | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()


@dataclass
class RunResult:
    workflow: str
    run_id: str
    results: Dict[str, InstanceResult] = field(default_factory=dict)
    aborted: bool = False
    interrupted: bool = False

    @property
    def status(self) -> RunStatus:
        required = [r for r in self.results.values() if r.required]
        if any(r.state is JobState.FAILED for r in required):
            return RunStatus.FAILED
        if self.aborted or any(r.state is JobState.CANCELLED for r in required):
            return RunStatus.CANCELLED
        return RunStatus.SUCCEEDED
