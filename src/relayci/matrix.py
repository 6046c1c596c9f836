# matrix.py
from __future__ import annotations

import itertools
import re
from dataclasses import replace
from typing import Dict, List

from .errors import ConfigurationError, EmptyMatrixAxisError
from .model import CacheStep, CommandStep, JobInstance, JobTemplate, MatrixTuple, Step

# ${{ matrix.os }} style references, whitespace inside the braces optional
_MATRIX_REF = re.compile(r"\$\{\{\s*matrix\.([A-Za-z0-9_-]+)\s*\}\}")


def interpolate(text: str | None, bound: Dict[str, str], *, job: str) -> str | None:
    if text is None:
        return None

    def _sub(m: re.Match) -> str:
        axis = m.group(1)
        if axis not in bound:
            raise ConfigurationError(
                kind="unknown_matrix_axis",
                message=f"reference to undeclared matrix axis '{axis}'",
                job=job,
                details={"declared": sorted(bound)},
            )
        return bound[axis]

    return _MATRIX_REF.sub(_sub, text)


def _bind_step(step: Step, bound: Dict[str, str], job: str) -> Step:
    if isinstance(step, CommandStep):
        return replace(
            step,
            name=interpolate(step.name, bound, job=job),
            run=interpolate(step.run, bound, job=job),
            cwd=interpolate(step.cwd, bound, job=job),
        )
    if isinstance(step, CacheStep):
        return replace(step, name=interpolate(step.name, bound, job=job))
    raise TypeError(f"unknown step type: {type(step).__name__}")


def matrix_tuples(template: JobTemplate) -> List[MatrixTuple]:
    """
    Cartesian product of the matrix axes: axis declaration order first,
    then value order. Same template, same sequence.
    """
    spec = template.matrix
    if spec is None:
        return [()]

    for axis, values in spec.axes:
        if len(values) == 0:
            raise EmptyMatrixAxisError(template.name, axis)

    names = spec.axis_names
    return [
        tuple(zip(names, combo))
        for combo in itertools.product(*(values for _, values in spec.axes))
    ]


def expand(template: JobTemplate) -> List[JobInstance]:
    """Turn one job template into its concrete instances."""
    instances: List[JobInstance] = []
    for combo in matrix_tuples(template):
        bound = dict(combo)
        instances.append(
            JobInstance(
                template=template,
                matrix=combo,
                runs_on=interpolate(template.runs_on, bound, job=template.name),
                steps=tuple(_bind_step(s, bound, template.name) for s in template.steps),
            )
        )
    return instances
