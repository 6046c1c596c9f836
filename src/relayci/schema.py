# schema.py
from __future__ import annotations

from typing import Annotated, Any, Dict, List, Optional, Union

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from .errors import MalformedEventError, WorkflowLoadError
from .model import (
    CacheStep,
    CommandStep,
    JobTemplate,
    MatrixSpec,
    Step,
    TriggerRule,
    WorkflowDefinition,
)
from .triggers import parse_event_kind

# -------------------- Document schemas --------------------
# The on-disk shape of a workflow file, close to what GitHub Actions users
# already write. Validated here, then converted into the frozen model.


class _Doc(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")


def _as_list(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return value


StrList = Annotated[List[str], BeforeValidator(_as_list)]


def _scalar_str(v: Any) -> Any:
    if isinstance(v, bool):
        return "true" if v else "false"
    if v is None:
        return ""
    if isinstance(v, (int, float)):
        return str(v)
    return v


def _as_str_map(value: Any) -> Any:
    # env: {RUST_BACKTRACE: 1} is a string in the environment
    if isinstance(value, dict):
        return {k: _scalar_str(v) for k, v in value.items()}
    return value


StrMap = Annotated[Dict[str, str], BeforeValidator(_as_str_map)]


class TriggerDoc(_Doc):
    branches: StrList = Field(default_factory=list)


class CacheDoc(_Doc):
    paths: StrList
    key_files: StrList = Field(default_factory=list, alias="key-files")
    key: StrMap = Field(default_factory=dict)
    restore: bool = True
    save: bool = True


class StepDoc(_Doc):
    name: Optional[str] = None
    run: Optional[str] = None
    cache: Optional[CacheDoc] = None
    working_directory: Optional[str] = Field(default=None, alias="working-directory")
    env: StrMap = Field(default_factory=dict)
    continue_on_error: bool = Field(default=False, alias="continue-on-error")
    timeout: Optional[float] = None

    @model_validator(mode="before")
    @classmethod
    def _reject_actions(cls, data: Any) -> Any:
        if isinstance(data, dict) and "uses" in data:
            raise ValueError(
                f"'uses: {data['uses']}' is not supported; write the step as 'run' or 'cache'"
            )
        return data

    @model_validator(mode="after")
    def _one_kind(self) -> "StepDoc":
        if (self.run is None) == (self.cache is None):
            raise ValueError("a step needs exactly one of 'run' or 'cache'")
        return self


class StrategyDoc(_Doc):
    fail_fast: bool = Field(default=True, alias="fail-fast")
    matrix: Dict[str, List[Union[str, int, float, bool]]] = Field(default_factory=dict)


class JobDoc(_Doc):
    runs_on: Optional[str] = Field(default=None, alias="runs-on")
    needs: StrList = Field(default_factory=list)
    env: StrMap = Field(default_factory=dict)
    strategy: Optional[StrategyDoc] = None
    steps: List[StepDoc]
    continue_on_error: bool = Field(default=False, alias="continue-on-error")
    paths: Optional[List[str]] = None

    @field_validator("steps")
    @classmethod
    def _has_steps(cls, v: List[StepDoc]) -> List[StepDoc]:
        if not v:
            raise ValueError("a job needs at least one step")
        return v


class WorkflowDoc(_Doc):
    name: str
    on: Dict[str, Optional[TriggerDoc]]
    jobs: Dict[str, JobDoc]

    @model_validator(mode="before")
    @classmethod
    def _normalize_on(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        # YAML 1.1 reads a bare `on:` key as boolean True
        if True in data:
            data["on"] = data.pop(True)
        on = data.get("on")
        if isinstance(on, str):
            data["on"] = {on: None}
        elif isinstance(on, list):
            data["on"] = {kind: None for kind in on}
        return data

    @field_validator("jobs")
    @classmethod
    def _has_jobs(cls, v: Dict[str, JobDoc]) -> Dict[str, JobDoc]:
        if not v:
            raise ValueError("a workflow needs at least one job")
        return v


# -------------------- Conversion --------------------


def _matrix_value(v: Union[str, int, float, bool]) -> str:
    return str(_scalar_str(v))


def _step(doc: StepDoc, index: int) -> Step:
    if doc.cache is not None:
        return CacheStep(
            name=doc.name or f"cache {', '.join(doc.cache.paths)}",
            paths=tuple(doc.cache.paths),
            key_files=tuple(doc.cache.key_files),
            key_extra=dict(doc.cache.key),
            restore=doc.cache.restore,
            save=doc.cache.save,
        )
    return CommandStep(
        name=doc.name or (doc.run.strip().splitlines() or [f"step {index + 1}"])[0],
        run=doc.run,
        cwd=doc.working_directory,
        env=dict(doc.env),
        fatal=not doc.continue_on_error,
        timeout=doc.timeout,
    )


def _job(name: str, doc: JobDoc) -> JobTemplate:
    matrix = None
    if doc.strategy is not None and doc.strategy.matrix:
        matrix = MatrixSpec(
            axes=tuple(
                (axis, tuple(_matrix_value(v) for v in values))
                for axis, values in doc.strategy.matrix.items()
            ),
            fail_fast=doc.strategy.fail_fast,
        )
    return JobTemplate(
        name=name,
        steps=tuple(_step(s, i) for i, s in enumerate(doc.steps)),
        matrix=matrix,
        needs=tuple(doc.needs),
        runs_on=doc.runs_on,
        env=dict(doc.env),
        required=not doc.continue_on_error,
        paths=tuple(doc.paths) if doc.paths is not None else None,
    )


def to_definition(doc: WorkflowDoc) -> WorkflowDefinition:
    triggers = tuple(
        TriggerRule(
            event=parse_event_kind(kind),
            branches=tuple(rule.branches) if rule is not None else (),
        )
        for kind, rule in doc.on.items()
    )
    jobs = {name: _job(name, jd) for name, jd in doc.jobs.items()}
    return WorkflowDefinition(name=doc.name, triggers=triggers, jobs=jobs)


def parse_workflow(data: Any, *, source: str = "<workflow>") -> WorkflowDefinition:
    """Validate a decoded workflow document and build the definition."""
    try:
        doc = WorkflowDoc.model_validate(data)
    except ValidationError as e:
        details = [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        ]
        raise WorkflowLoadError(f"invalid workflow {source}", errors=details) from e
    try:
        return to_definition(doc)
    except MalformedEventError as e:
        raise WorkflowLoadError(f"invalid trigger in {source}: {e.message}") from e
