# triggers.py
from __future__ import annotations

from dataclasses import dataclass
from fnmatch import fnmatch
from typing import Any, Dict, Optional

from .errors import MalformedEventError
from .model import EventKind, TriggerRule, WorkflowDefinition

_KIND_ALIASES = {
    "push": EventKind.PUSH,
    "pull_request": EventKind.PULL_REQUEST,
    "pull-request": EventKind.PULL_REQUEST,
    "pr": EventKind.PULL_REQUEST,
}


def parse_event_kind(value: Any) -> EventKind:
    if isinstance(value, EventKind):
        return value
    if not value:
        raise MalformedEventError("event has no kind")
    kind = _KIND_ALIASES.get(str(value).strip().lower())
    if kind is None:
        raise MalformedEventError(
            f"unknown event kind {value!r}",
            expected=sorted(_KIND_ALIASES),
        )
    return kind


@dataclass(frozen=True)
class Event:
    """
    A repository event from source control.

    For pull requests `branch` is the base branch the PR targets.
    `changed_files` is None when the caller did not compute a diff.
    """
    kind: EventKind
    branch: str | None = None
    changed_files: Optional[tuple[str, ...]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Event:
        if not isinstance(data, dict) or not data.get("kind"):
            raise MalformedEventError("event has no kind", event=data)
        changed = data.get("changed_files")
        return cls(
            kind=parse_event_kind(data["kind"]),
            branch=data.get("branch"),
            changed_files=tuple(changed) if changed is not None else None,
        )


def _branch_matches(branch: str | None, patterns: tuple[str, ...]) -> bool:
    if not patterns:
        return True
    if branch is None:
        return False
    return any(fnmatch(branch, p) for p in patterns)


def rule_matches(rule: TriggerRule, event: Event) -> bool:
    return rule.event is event.kind and _branch_matches(event.branch, rule.branches)


def should_run(event: Event, definition: WorkflowDefinition) -> bool:
    """True iff at least one trigger rule of the workflow accepts the event."""
    if event is None or getattr(event, "kind", None) is None:
        raise MalformedEventError("event has no kind")
    return any(rule_matches(rule, event) for rule in definition.triggers)
