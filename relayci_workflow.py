# relayci_workflow.py
# Workflow for relayci itself: lint, format, test on two Pythons, docs
from __future__ import annotations
from relayci import JobBuilder, cache, job, matrix, on_pull_request, on_push, sh, wf


def workflow():
    return wf(
        "relayci",
        # Lint job - runs ruff on the codebase
        job(
            "lint",
            cache("pip cache", ".cache/pip", key_files=["pyproject.toml"]),
            sh("Install ruff", "pip install --cache-dir .cache/pip ruff"),
            sh("Ruff check", "ruff check src tests"),
            paths=["src/**", "tests/**", "pyproject.toml", "*.py"],
        ),

        job(
            "format-check",
            sh("Ruff format check", "ruff format --check src tests"),
            needs=["lint"],
            paths=["src/**", "tests/**", "*.py"],
        ),

        # Test job - one instance per interpreter
        job(
            "test",
            cache("venv", ".venv", key_files=["pyproject.toml"]),
            sh("Create venv", "python${{ matrix.python }} -m venv .venv"),
            sh("Install package", ".venv/bin/pip install -e '.[test]'"),
            sh("Run pytest", ".venv/bin/pytest -q", timeout=900),
            needs=["lint"],
            strategy=matrix(python=["3.11", "3.12"], fail_fast=False),
            env={"PYTHONDONTWRITEBYTECODE": "1"},
        ),

        # Type check is advisory
        JobBuilder("type-check")
        .step("Type check", "python -m mypy src/relayci --ignore-missing-imports")
        .with_paths("src/**", "pyproject.toml")
        .optional()
        .build(),

        job(
            "docs-check",
            sh("Validate example", "relayci validate --workflow examples/rust_bindings.yml"),
            paths=["examples/**", "src/relayci/schema.py"],
        ),
        on=[on_push("main", "release/*"), on_pull_request("main")],
    )
