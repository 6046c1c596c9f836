# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass
class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - the run report
      - debugging without full tracebacks
    """
    kind: str
    message: str
    job: str | None = None
    step: str | None = None
    details: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.job:
            lines.append(f"job={self.job}")
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


# ----------------------------------------------------------------------
# Configuration errors: detected before anything runs, abort the run
# ----------------------------------------------------------------------

class ConfigurationError(CIError):
    pass


class MalformedEventError(ConfigurationError):
    def __init__(self, message: str, **details: Any):
        super().__init__(kind="malformed_event", message=message, details=details)


class WorkflowLoadError(ConfigurationError):
    def __init__(self, message: str, **details: Any):
        super().__init__(kind="invalid_workflow", message=message, details=details)


class EmptyMatrixAxisError(ConfigurationError):
    def __init__(self, job: str, axis: str):
        super().__init__(
            kind="empty_matrix_axis",
            message=f"matrix axis '{axis}' has no values",
            job=job,
            details={"axis": axis},
        )


class UnknownDependencyError(ConfigurationError):
    def __init__(self, job: str, dependency: str, known: List[str]):
        super().__init__(
            kind="unknown_dependency",
            message=f"job '{job}' needs missing job '{dependency}'",
            job=job,
            details={"dependency": dependency, "known": sorted(known)},
        )


class DuplicateInstanceError(ConfigurationError):
    def __init__(self, instance_id: str, jobs: List[str]):
        super().__init__(
            kind="duplicate_instance",
            message=f"more than one job expands to instance '{instance_id}'",
            job=jobs[-1],
            details={"jobs": jobs},
        )


class CycleError(ConfigurationError):
    def __init__(self, stuck: List[str]):
        super().__init__(
            kind="cycle_detected",
            message="job dependencies form a cycle",
            details={"stuck": sorted(stuck)},
        )


# ----------------------------------------------------------------------
# Runtime errors: contained to one job instance
# ----------------------------------------------------------------------

@dataclass
class StepFailure(Exception):
    job: str
    step: str
    cmd: str
    exit_code: int

    def __str__(self) -> str:
        return f"[{self.job}] step '{self.step}' failed (exit={self.exit_code}): {self.cmd}"


class InfrastructureError(CIError):
    """Runner or process-level trouble, never a verdict on the code under test."""

    def __init__(self, message: str, *, job: str | None = None, step: str | None = None, **details: Any):
        super().__init__(kind="infrastructure", message=message, job=job, step=step, details=details)


class CacheBackendError(Exception):
    """Raised by cache backends; the resolver turns it into a miss or a failed save."""
