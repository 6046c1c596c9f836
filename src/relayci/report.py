# report.py
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .model import JobState, RunResult, RunStatus

# -------------------- Schemas --------------------


class InstanceReport(BaseModel):
    id: str
    job: str
    matrix: Dict[str, str] = Field(default_factory=dict)
    state: JobState
    required: bool = True
    failure_class: Optional[str] = None
    reason: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    output_ref: Optional[str] = None


class ReportDocument(BaseModel):
    workflow: str
    run_id: str
    status: RunStatus
    exit_code: int
    aborted: bool = False
    interrupted: bool = False
    counts: Dict[str, int] = Field(default_factory=dict)
    instances: List[InstanceReport] = Field(default_factory=list)


# -------------------- Aggregation --------------------


def summarize(result: RunResult) -> ReportDocument:
    """Fold per-instance outcomes into one document. No I/O."""
    status = result.status
    counts = {state.value: 0 for state in JobState if state.terminal}
    instances: List[InstanceReport] = []

    for r in result.results.values():
        counts[r.state.value] = counts.get(r.state.value, 0) + 1
        instances.append(
            InstanceReport(
                id=r.instance_id,
                job=r.job,
                matrix=dict(r.matrix),
                state=r.state,
                required=r.required,
                failure_class=r.failure_class.value if r.failure_class else None,
                reason=r.reason,
                started_at=r.started_at,
                finished_at=r.finished_at,
                duration_seconds=r.duration,
                output_ref=r.output_ref,
            )
        )

    return ReportDocument(
        workflow=result.workflow,
        run_id=result.run_id,
        status=status,
        exit_code=0 if status is RunStatus.SUCCEEDED else 1,
        aborted=result.aborted,
        interrupted=result.interrupted,
        counts=counts,
        instances=instances,
    )


def render_text(report: ReportDocument) -> str:
    lines = ["=" * 40, "RESULTS", "=" * 40]
    for inst in report.instances:
        line = f"  {inst.id}: {inst.state.value.upper()}"
        if inst.failure_class:
            line += f" [{inst.failure_class}]"
        if not inst.required:
            line += " (optional)"
        if inst.reason:
            line += f" - {inst.reason}"
        lines.append(line)
    lines.append("-" * 40)
    totals = ", ".join(f"{k}={v}" for k, v in report.counts.items() if v)
    lines.append(f"RUN {report.status.value.upper()} ({totals})")
    return "\n".join(lines)
