from __future__ import annotations

import pytest

from relayci.dsl import job, on_pull_request, on_push, sh, wf
from relayci.errors import ConfigurationError, MalformedEventError
from relayci.model import EventKind
from relayci.triggers import Event, should_run


@pytest.fixture
def definition():
    return wf(
        "test",
        job("build", sh("Build", "cargo build")),
        on=[on_push("main", "release/*"), on_pull_request()],
    )


def test_push_to_filtered_branch_runs(definition):
    assert should_run(Event(EventKind.PUSH, "main"), definition)
    assert should_run(Event(EventKind.PUSH, "release/1.2"), definition)


def test_push_to_other_branch_does_not_run(definition):
    assert not should_run(Event(EventKind.PUSH, "feature/x"), definition)


def test_pull_request_without_branch_filter_runs_for_any_branch(definition):
    assert should_run(Event(EventKind.PULL_REQUEST, "feature/x"), definition)
    assert should_run(Event(EventKind.PULL_REQUEST, None), definition)


def test_push_without_branch_never_matches_a_branch_filter(definition):
    assert not should_run(Event(EventKind.PUSH, None), definition)


def test_no_rule_for_event_kind():
    only_push = wf("w", job("a", sh("a", "true")), on=[on_push()])
    assert not should_run(Event(EventKind.PULL_REQUEST, "main"), only_push)


def test_event_from_dict_accepts_aliases():
    assert Event.from_dict({"kind": "pull-request", "branch": "main"}).kind is EventKind.PULL_REQUEST
    ev = Event.from_dict({"kind": "push", "branch": "main", "changed_files": ["a.py"]})
    assert ev.changed_files == ("a.py",)


@pytest.mark.parametrize("data", [{}, {"branch": "main"}, {"kind": ""}, {"kind": None}])
def test_event_without_kind_is_a_configuration_error(data):
    with pytest.raises(MalformedEventError) as exc:
        Event.from_dict(data)
    assert isinstance(exc.value, ConfigurationError)


def test_unknown_event_kind_is_rejected():
    with pytest.raises(MalformedEventError):
        Event.from_dict({"kind": "tag"})


def test_should_run_rejects_event_without_kind(definition):
    with pytest.raises(MalformedEventError):
        should_run(Event(kind=None, branch="main"), definition)
