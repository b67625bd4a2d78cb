"""Environment file loading for local development and containers."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

ENV_FILE_VARIABLE = "OBE_ENV_FILE"


def load_env(path: Path | None = None) -> list[Path]:
    """
    Load KEY=VALUE pairs into os.environ and return the files that were read.

    Without ``path`` the project ``.env`` is read (or the file named by
    ``OBE_ENV_FILE``), then ``.env.local`` next to it. ``.env.local`` may
    override ``.env``; variables already set in the shell always win.
    """
    shell_keys = frozenset(os.environ)
    loaded: list[Path] = []

    base = path or _default_env_path()
    if _apply_env_file(base, override=False, protected=shell_keys):
        loaded.append(base)

    if path is None:
        local = base.with_name(".env.local")
        if _apply_env_file(local, override=True, protected=shell_keys):
            loaded.append(local)
    return loaded


def _parse_line(raw_line: str) -> Optional[tuple[str, str]]:
    line = raw_line.strip()
    if not line or line.startswith("#"):
        return None
    if line.startswith("export "):
        line = line[len("export "):].lstrip()
    key, sep, value = line.partition("=")
    key = key.strip()
    if not sep or not key:
        return None

    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
        return key, value[1:-1]
    # Unquoted values may carry a trailing comment.
    return key, value.split(" #", 1)[0].rstrip()


def _apply_env_file(env_path: Path, *, override: bool, protected: frozenset[str]) -> bool:
    if not env_path.is_file():
        return False
    for raw_line in env_path.read_text(encoding="utf-8").splitlines():
        parsed = _parse_line(raw_line)
        if parsed is None:
            continue
        key, value = parsed
        if key in protected or (not override and key in os.environ):
            continue
        os.environ[key] = value
    return True


def _default_env_path() -> Path:
    explicit = os.getenv(ENV_FILE_VARIABLE)
    if explicit:
        return Path(explicit).expanduser()
    return Path(__file__).resolve().parents[2] / ".env"


__all__ = ["ENV_FILE_VARIABLE", "load_env"]
