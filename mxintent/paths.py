from __future__ import annotations

import os
from pathlib import Path


def default_mxintent_dir() -> Path:
    override = os.environ.get("MXINTENT_HOME")
    if override:
        return Path(override)
    return Path.home() / ".mxintent"


def default_config_path() -> Path:
    return default_mxintent_dir() / "mxintent.toml"


def default_registry_path() -> Path:
    return default_mxintent_dir() / "registered.toml"


def ensure_private_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)
    try:
        # Best-effort tightening; may fail on some filesystems.
        os.chmod(path, 0o700)
    except OSError:
        pass
