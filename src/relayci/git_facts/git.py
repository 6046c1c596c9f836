# git.py
# Small, focused wrapper around the Git CLI.
# The CLI uses it to build a local event: which branch we are on and
# which files changed, so nothing else calls subprocess("git ...").

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import List, Optional


def _git(args: list[str], cwd: Optional[str | Path] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Raises:
        subprocess.CalledProcessError: git exited non-zero
        FileNotFoundError: git is not installed
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=str(cwd) if cwd is not None else None,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def current_branch(cwd: Optional[str | Path] = None) -> Optional[str]:
    """
    Name of the checked-out branch, or None on a detached HEAD.
    """
    name = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)
    return None if name == "HEAD" else name


def merge_base(with_ref: str = "origin/main", cwd: Optional[str | Path] = None) -> str:
    """Commit SHA of the common ancestor of HEAD and with_ref."""
    return _git(["merge-base", "HEAD", with_ref], cwd=cwd)


def changed_files(base: str, head: str = "HEAD", cwd: Optional[str | Path] = None) -> List[str]:
    """Files changed between two refs, relative to the repo root."""
    out = _git(["diff", "--name-only", f"{base}..{head}"], cwd=cwd)
    if not out:
        return []
    return out.splitlines()


def uncommitted_files(cwd: Optional[str | Path] = None) -> List[str]:
    """Staged, unstaged and untracked files."""
    files = set()
    for args in (
        ["diff", "--name-only"],
        ["diff", "--name-only", "--cached"],
        ["ls-files", "--others", "--exclude-standard"],
    ):
        out = _git(args, cwd=cwd)
        if out:
            files.update(out.splitlines())
    return sorted(files)


def changes_since(compare_ref: str = "origin/main", cwd: Optional[str | Path] = None) -> List[str]:
    """
    Everything that differs from the merge-base with compare_ref, plus
    local uncommitted work. Falls back to HEAD~1 when compare_ref is
    unknown (no remote, shallow clone).
    """
    try:
        base = merge_base(compare_ref, cwd=cwd)
    except subprocess.CalledProcessError:
        base = "HEAD~1"

    try:
        committed = changed_files(base, "HEAD", cwd=cwd)
    except subprocess.CalledProcessError:
        # first commit: treat every tracked file as changed
        tracked = _git(["ls-files"], cwd=cwd)
        committed = tracked.splitlines() if tracked else []

    return sorted(set(committed) | set(uncommitted_files(cwd=cwd)))
