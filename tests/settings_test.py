from __future__ import annotations

import pytest

from relayci.errors import ConfigurationError
from relayci.settings import Settings, load_settings, parse_runners


def test_defaults():
    assert load_settings({}) == Settings()


def test_from_environment():
    settings = load_settings(
        {
            "RELAYCI_CACHE_DIR": "/tmp/cache",
            "RELAYCI_LOG_DIR": "/tmp/logs",
            "RELAYCI_MAX_PARALLEL": "3",
            "RELAYCI_RUNNERS": "ubuntu-latest=2, macos-latest=1",
            "RELAYCI_NAMESPACE": "pr-42",
        }
    )
    assert settings.cache_dir == "/tmp/cache"
    assert settings.log_dir == "/tmp/logs"
    assert settings.max_parallel == 3
    assert settings.runners == {"ubuntu-latest": 2, "macos-latest": 1}
    assert settings.namespace == "pr-42"


def test_bad_max_parallel():
    with pytest.raises(ConfigurationError):
        load_settings({"RELAYCI_MAX_PARALLEL": "lots"})


@pytest.mark.parametrize(
    "spec, expected",
    [
        (None, None),
        ("", None),
        ("linux", {"linux": 1}),
        ("linux=0,mac=2,", {"linux": 0, "mac": 2}),
    ],
)
def test_parse_runners(spec, expected):
    assert parse_runners(spec) == expected


@pytest.mark.parametrize("spec", ["linux=two", "linux=-1"])
def test_parse_runners_rejects_bad_counts(spec):
    with pytest.raises(ConfigurationError):
        parse_runners(spec)


@pytest.mark.parametrize("value", ["0", "-1"])
def test_max_parallel_must_be_positive(value):
    with pytest.raises(ConfigurationError):
        load_settings({"RELAYCI_MAX_PARALLEL": value})
