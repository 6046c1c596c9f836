# scheduler.py
from __future__ import annotations

import os
import queue
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from fnmatch import fnmatch
from typing import Dict, List, Mapping, Optional, Union

from .cache import CacheResolver, MemoryCacheBackend
from .dag import JobGraph
from .executor import CommandRunner, SubprocessCommandRunner, run_instance
from .model import (
    FailureClass,
    InstanceResult,
    JobInstance,
    JobState,
    RunContext,
    RunResult,
)
from .triggers import Event
from .ui.console import get_console


# ----------------------------------------------------------------------
# Messages into the decision loop
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class Completed:
    instance_id: str
    result: Optional[InstanceResult] = None
    error: Optional[BaseException] = None


@dataclass(frozen=True)
class Abort:
    reason: str = "run aborted"


Message = Union[Completed, Abort]


def default_max_parallel() -> int:
    c = os.cpu_count() or 2
    return max(1, c - 1)


def _matches_any(path: str, patterns) -> bool:
    return any(fnmatch(path, p) for p in patterns)


class Scheduler:
    """
    Walks a JobGraph to completion.

    Worker threads only run instances and post Completed messages; every
    state transition happens in run()'s single loop, so the ready set is
    never recomputed concurrently.
    """

    def __init__(
        self,
        ctx: RunContext,
        *,
        runner: CommandRunner | None = None,
        cache: CacheResolver | None = None,
        max_parallel: int | None = None,
        runners: Mapping[str, int] | None = None,
        abort_on_failure: bool = False,
    ):
        self.ctx = ctx
        self.console = ctx.console or get_console()
        self.runner = runner or SubprocessCommandRunner()
        self.cache = cache or CacheResolver(MemoryCacheBackend(), ctx.namespace, console=self.console)
        self.max_parallel = max_parallel or default_max_parallel()
        self.runners = dict(runners) if runners is not None else None
        self.abort_on_failure = abort_on_failure

        self._inbox: "queue.Queue[Message]" = queue.Queue()
        self._graph: JobGraph | None = None
        self._states: Dict[str, JobState] = {}
        self._results: Dict[str, InstanceResult] = {}
        self._running: Dict[str, Optional[str]] = {}   # id -> runner label
        self._labels_busy: Counter = Counter()
        self._interrupted = False

    # ---- public ----

    def abort(self, reason: str = "run aborted") -> None:
        """Cancel every not-yet-started instance. Safe to call from any thread."""
        self._inbox.put(Abort(reason))

    def run(self, graph: JobGraph, *, workflow: str = "workflow", event: Event | None = None) -> RunResult:
        self._graph = graph
        self._states = {iid: JobState.PENDING for iid in graph.instances}
        self._results = {}
        self._running = {}
        self._labels_busy = Counter()
        self._aborted = False
        self._interrupted = False

        self._apply_path_filters(event)

        with ThreadPoolExecutor(max_workers=self.max_parallel) as pool:
            while True:
                self._drain()
                self._dispatch(pool)
                if not self._running:
                    break
                try:
                    msg = self._inbox.get()
                except KeyboardInterrupt:
                    # running instances finish on their own
                    self._interrupted = True
                    msg = Abort("interrupted")
                self._handle(msg)

        # anything left can no longer run
        for iid, state in self._states.items():
            if not state.terminal:
                self._finish_without_running(iid, JobState.SKIPPED, "never became ready")

        ordered = {iid: self._results[iid] for iid in graph.instances}
        return RunResult(
            workflow=workflow,
            run_id=self.ctx.run_id,
            results=ordered,
            aborted=self._aborted,
            interrupted=self._interrupted,
        )

    # ---- decision loop ----

    def _drain(self) -> None:
        while True:
            try:
                msg = self._inbox.get_nowait()
            except queue.Empty:
                return
            self._handle(msg)

    def _handle(self, msg: Message) -> None:
        if isinstance(msg, Completed):
            self._on_completed(msg)
        elif isinstance(msg, Abort):
            self._on_abort(msg.reason)
        else:
            raise TypeError(f"unknown message: {msg!r}")

    def _ready(self) -> List[str]:
        graph = self._graph
        for iid, state in self._states.items():
            if state is JobState.PENDING and all(
                self._states[d] is JobState.SUCCEEDED for d in graph.deps[iid]
            ):
                self._states[iid] = JobState.READY
        ready = [iid for iid, s in self._states.items() if s is JobState.READY]
        return sorted(ready, key=graph.priority.__getitem__)

    def _dispatch(self, pool: ThreadPoolExecutor) -> None:
        if self._aborted:
            return
        for iid in self._ready():
            if self._aborted:
                return
            if self._states[iid] is not JobState.READY:
                continue
            if len(self._running) >= self.max_parallel:
                return
            instance = self._graph.instances[iid]
            label = instance.runs_on

            if self.runners is not None and label is not None:
                if label not in self.runners or self.runners[label] <= 0:
                    self._runner_unavailable(iid, label)
                    continue
                if self._labels_busy[label] >= self.runners[label]:
                    continue
                self._labels_busy[label] += 1

            self._states[iid] = JobState.RUNNING
            self._running[iid] = label
            pool.submit(self._work, instance)

    def _work(self, instance: JobInstance) -> None:
        # runs on a worker thread: no scheduler state touched here
        try:
            result = run_instance(instance, self.ctx, self.runner, self.cache)
        except Exception as e:
            self._inbox.put(Completed(instance.id, error=e))
        else:
            self._inbox.put(Completed(instance.id, result=result))

    def _on_completed(self, msg: Completed) -> None:
        iid = msg.instance_id
        label = self._running.pop(iid, None)
        if label is not None and self.runners is not None:
            self._labels_busy[label] -= 1

        result = msg.result
        if result is None:
            instance = self._graph.instances[iid]
            result = InstanceResult(
                instance_id=iid,
                job=instance.name,
                matrix=instance.matrix,
                state=JobState.FAILED,
                failure_class=FailureClass.INFRASTRUCTURE,
                reason=f"executor crashed: {msg.error}",
                required=instance.template.required,
            )
            if msg.error is not None:
                self.console.print_exception(msg.error)

        self._record(result)
        if result.state is JobState.FAILED:
            self._on_failed(iid, result.failure_class or FailureClass.JOB)

    def _on_failed(self, iid: str, cause: FailureClass) -> None:
        instance = self._graph.instances[iid]
        spec = instance.template.matrix

        if spec is not None and spec.fail_fast:
            for sib in self._graph.siblings(iid):
                if self._states[sib] in (JobState.PENDING, JobState.READY):
                    self._finish_without_running(
                        sib, JobState.CANCELLED, f"'{iid}' failed (fail-fast)", cause
                    )
                    self._skip_downstream(sib, cause)

        self._skip_downstream(iid, cause)

        if self.abort_on_failure and instance.template.required:
            self._on_abort(f"'{iid}' failed")

    def _on_abort(self, reason: str) -> None:
        if not self._aborted:
            self.console.print_info(f"ABORT: {reason}")
        self._aborted = True
        for iid, state in self._states.items():
            if state in (JobState.PENDING, JobState.READY):
                self._finish_without_running(iid, JobState.CANCELLED, reason)

    def _skip_downstream(self, iid: str, cause: FailureClass | None) -> None:
        state = self._states[iid].value
        for child in self._graph.downstream(iid):
            if self._states[child] in (JobState.PENDING, JobState.READY):
                self._finish_without_running(
                    child, JobState.SKIPPED, f"dependency '{iid}' {state}", cause
                )

    # ---- bookkeeping ----

    def _apply_path_filters(self, event: Event | None) -> None:
        if event is None or event.changed_files is None:
            return
        for iid, instance in self._graph.instances.items():
            patterns = instance.template.paths
            if not patterns or self._states[iid] is not JobState.PENDING:
                continue
            if not any(_matches_any(f, patterns) for f in event.changed_files):
                self._finish_without_running(iid, JobState.SKIPPED, f"no changes matched {list(patterns)}")
                self._skip_downstream(iid, None)

    def _runner_unavailable(self, iid: str, label: str) -> None:
        self._finish_without_running(
            iid,
            JobState.FAILED,
            f"no runner available for '{label}'",
            FailureClass.INFRASTRUCTURE,
        )
        self._on_failed(iid, FailureClass.INFRASTRUCTURE)

    def _finish_without_running(
        self,
        iid: str,
        state: JobState,
        reason: str,
        cause: FailureClass | None = None,
    ) -> None:
        instance = self._graph.instances[iid]
        self._record(
            InstanceResult(
                instance_id=iid,
                job=instance.name,
                matrix=instance.matrix,
                state=state,
                failure_class=cause,
                reason=reason,
                required=instance.template.required,
            )
        )

    def _record(self, result: InstanceResult) -> None:
        self._states[result.instance_id] = result.state
        self._results[result.instance_id] = result
        self.console.print_job_finished(
            result.instance_id,
            result.state.value,
            reason=result.reason,
            duration=result.duration,
        )
