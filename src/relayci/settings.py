from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from .errors import ConfigurationError


def parse_runners(spec: str | None) -> Optional[Dict[str, int]]:
    """
    "ubuntu-latest=2,macos-latest=1" -> {"ubuntu-latest": 2, "macos-latest": 1}
    Empty or None means runner labels are not constrained.
    """
    if not spec or not spec.strip():
        return None
    out: Dict[str, int] = {}
    for part in spec.split(","):
        part = part.strip()
        if not part:
            continue
        label, sep, count = part.partition("=")
        try:
            n = int(count) if sep else 1
        except ValueError:
            raise ConfigurationError(
                kind="invalid_setting",
                message=f"runner count for '{label}' is not a number: {count!r}",
            )
        if n < 0:
            raise ConfigurationError(kind="invalid_setting", message=f"negative runner count for '{label}'")
        out[label.strip()] = n
    return out


@dataclass(frozen=True)
class Settings:
    cache_dir: str = ".relayci/cache"
    log_dir: Optional[str] = None
    max_parallel: Optional[int] = None
    runners: Optional[Dict[str, int]] = field(default=None)
    namespace: str = "default"


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    env = os.environ if environ is None else environ
    max_parallel = env.get("RELAYCI_MAX_PARALLEL")
    try:
        workers = int(max_parallel) if max_parallel else None
    except ValueError:
        raise ConfigurationError(
            kind="invalid_setting",
            message=f"RELAYCI_MAX_PARALLEL is not a number: {max_parallel!r}",
        )
    if workers is not None and workers < 1:
        raise ConfigurationError(
            kind="invalid_setting",
            message=f"RELAYCI_MAX_PARALLEL must be at least 1, got {workers}",
        )
    return Settings(
        cache_dir=env.get("RELAYCI_CACHE_DIR", ".relayci/cache"),
        log_dir=env.get("RELAYCI_LOG_DIR") or None,
        max_parallel=workers,
        runners=parse_runners(env.get("RELAYCI_RUNNERS")),
        namespace=env.get("RELAYCI_NAMESPACE", "default"),
    )
