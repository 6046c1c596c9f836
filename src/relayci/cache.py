# cache.py
from __future__ import annotations

import hashlib
import io
import json
import os
import tarfile
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol

from .errors import CacheBackendError
from .model import CacheStep, JobInstance

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# cache_key = hash(
#     namespace,
#     job name + platform label + matrix tuple,
#     contents of declared key files (lockfiles, globs),
#     optional extra salt
# )
#
# The blob stored under a key is a tar.gz of the cache step's paths.
# Keys are content-derived, so two writers racing on one key write the
# same thing and last-write-wins is fine.
# ---------------------------------------------------------------------

DEFAULT_CACHE_DIR = ".relayci/cache"
DEFAULT_CACHE_EXCLUDES = [
    ".git/**",
    ".relayci/**",
    "**/__pycache__/**",
    "**/*.pyc",
    "**/.DS_Store",
]


def _sha256_bytes(data: bytes) -> str:
    h = hashlib.sha256()
    h.update(data)
    return h.hexdigest()


def _sha256_str(s: str) -> str:
    return _sha256_bytes(s.encode("utf-8"))


def _json_dumps_stable(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _relpath(p: Path, root: Path) -> str:
    return str(p.resolve().relative_to(root.resolve())).replace("\\", "/")


def _iter_files_under(root: Path) -> Iterable[Path]:
    # deterministic traversal
    for p in sorted(root.rglob("*")):
        if p.is_file():
            yield p


def _matches_any_glob(rel: str, globs: List[str]) -> bool:
    rel_path = Path(rel)
    return any(rel_path.match(g) for g in globs)


def _hash_file_contents(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        while True:
            chunk = f.read(1024 * 1024)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()


def _resolve_globs(root: Path, patterns: Iterable[str]) -> List[Path]:
    """
    Expand patterns into concrete paths relative to root.
    Supports:
      - file path: "Cargo.lock"
      - dir path:  "target/"
      - glob:      "**/Cargo.toml"
    """
    out: List[Path] = []
    for pat in patterns:
        pat = pat.strip()
        if not pat:
            continue
        p = root / pat
        if p.exists():
            out.append(p)
            continue
        out.extend(m for m in sorted(root.glob(pat)) if m.exists())

    # De-dupe while preserving order
    seen = set()
    uniq: List[Path] = []
    for p in out:
        rp = str(p.resolve())
        if rp not in seen:
            seen.add(rp)
            uniq.append(p)
    return uniq


def hash_files(root: Path, patterns: Iterable[str], *, excludes: Optional[List[str]] = None) -> str:
    """Content fingerprint of every file the patterns resolve to, by relpath."""
    exclude_globs = list(DEFAULT_CACHE_EXCLUDES) + list(excludes or [])
    fps: List[tuple] = []
    for p in _resolve_globs(root, patterns):
        files = [p] if p.is_file() else list(_iter_files_under(p))
        for f in files:
            rel = _relpath(f, root)
            if _matches_any_glob(rel, exclude_globs):
                continue
            fps.append((rel, _hash_file_contents(f)))
    fps.sort(key=lambda t: t[0])  # stable ordering by relpath
    return _sha256_str(_json_dumps_stable(fps))


# ---------------------------------------------------------------------
# Blob packing
# ---------------------------------------------------------------------

def pack_paths(root: Path, paths: Iterable[str]) -> Optional[bytes]:
    """tar.gz of the given workspace paths, or None if none of them exist."""
    buf = io.BytesIO()
    added = 0
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for p in _resolve_globs(root, paths):
            files = [p] if p.is_file() else list(_iter_files_under(p))
            for f in files:
                rel = _relpath(f, root)
                if _matches_any_glob(rel, DEFAULT_CACHE_EXCLUDES):
                    continue
                tar.add(str(f), arcname=rel, recursive=False)
                added += 1
    if not added:
        return None
    return buf.getvalue()


def _inside(root: Path, target: Path) -> bool:
    return root == target or root in target.parents


def _link_target(root: Path, m: tarfile.TarInfo) -> Path:
    if m.issym():
        # symlinks resolve relative to the directory holding them
        return ((root / m.name).parent / m.linkname).resolve()
    return (root / m.linkname).resolve()


def unpack_blob(root: Path, blob: bytes) -> int:
    """Extract a packed blob into root; returns the number of files restored."""
    count = 0
    root = root.resolve()
    try:
        with tarfile.open(fileobj=io.BytesIO(blob), mode="r:gz") as tar:
            members = []
            for m in tar.getmembers():
                if not _inside(root, (root / m.name).resolve()):
                    raise CacheBackendError(f"refusing to extract outside workspace: {m.name}")
                if (m.issym() or m.islnk()) and not _inside(root, _link_target(root, m)):
                    raise CacheBackendError(f"refusing link outside workspace: {m.name} -> {m.linkname}")
                if not (m.isfile() or m.isdir() or m.issym() or m.islnk()):
                    raise CacheBackendError(f"refusing special file in cache entry: {m.name}")
                members.append(m)
                if m.isfile():
                    count += 1
            if hasattr(tarfile, "data_filter"):
                tar.extractall(path=str(root), members=members, filter="data")
            else:
                tar.extractall(path=str(root), members=members)
    except tarfile.TarError as e:
        raise CacheBackendError(f"unusable cache entry: {e}") from e
    return count


# ---------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------

class CacheBackend(Protocol):
    def get(self, key: str) -> Optional[bytes]: ...

    def put(self, key: str, blob: bytes) -> None: ...


class LocalCacheBackend:
    """
    File-based cache store:
      root/
        <key[:2]>/
          <key>.tar.gz
    """

    def __init__(self, root: str | Path = DEFAULT_CACHE_DIR):
        self.root = Path(root).resolve()

    def artifact_path(self, key: str) -> Path:
        return self.root / key[:2] / f"{key}.tar.gz"

    def get(self, key: str) -> Optional[bytes]:
        art = self.artifact_path(key)
        if not art.exists():
            return None
        try:
            return art.read_bytes()
        except OSError as e:
            raise CacheBackendError(f"cannot read {art}: {e}") from e

    def put(self, key: str, blob: bytes) -> None:
        art = self.artifact_path(key)
        tmp = art.with_name(f"{art.name}.{os.getpid()}.{threading.get_ident()}.tmp")
        try:
            art.parent.mkdir(parents=True, exist_ok=True)
            # write then atomic rename
            tmp.write_bytes(blob)
            tmp.replace(art)
        except OSError as e:
            raise CacheBackendError(f"cannot write {art}: {e}") from e
        finally:
            if tmp.exists():
                tmp.unlink(missing_ok=True)

    def prune(self, keep: int = 50) -> int:
        """
        Keep only the newest N artifacts.
        Uses file mtime as "newest".
        """
        if not self.root.exists():
            return 0
        arts = sorted(self.root.glob("*/*.tar.gz"), key=lambda p: p.stat().st_mtime, reverse=True)
        for p in arts[keep:]:
            p.unlink(missing_ok=True)
        return max(0, len(arts) - keep)


class MemoryCacheBackend:
    def __init__(self) -> None:
        self._data: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            return self._data.get(key)

    def put(self, key: str, blob: bytes) -> None:
        with self._lock:
            self._data[key] = blob


# ---------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------

class CacheResolver:
    """
    Content-addressed keys plus best-effort restore/save over a backend.
    Nothing here ever raises for backend trouble: restore degrades to a
    miss and save reports False.
    """

    def __init__(self, backend: CacheBackend, namespace: str = "default", console=None):
        self.backend = backend
        self.namespace = namespace
        self.console = console

    def key(self, inputs: Mapping[str, Any]) -> str:
        payload = {"v": 1, "namespace": self.namespace, "inputs": inputs}
        return _sha256_str(_json_dumps_stable(payload))

    def inputs_for(self, step: CacheStep, instance: JobInstance, workspace: Path) -> Dict[str, Any]:
        return {
            "job": instance.name,
            "step": step.name,
            "platform": instance.runs_on,
            "matrix": [list(pair) for pair in instance.matrix],
            "paths": list(step.paths),
            "key_files": hash_files(workspace, step.key_files) if step.key_files else None,
            "extra": dict(step.key_extra),
        }

    def restore(self, key: str) -> Optional[bytes]:
        try:
            return self.backend.get(key)
        except Exception as e:  # backend unavailable -> miss
            self._warn(f"cache restore failed, treating as miss ({key[:12]}...): {e}")
            return None

    def save(self, key: str, blob: bytes) -> bool:
        try:
            self.backend.put(key, blob)
        except Exception as e:
            self._warn(f"cache save failed ({key[:12]}...): {e}")
            return False
        return True

    def _warn(self, message: str) -> None:
        if self.console is not None:
            self.console.print_warning(message)
