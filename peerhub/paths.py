from __future__ import annotations

import os
from pathlib import Path


def default_config_path() -> Path:
    """``$PEERHUB_HOME/peerhub.toml``, falling back to ``~/.peerhub``."""
    home = os.environ.get("PEERHUB_HOME")
    base = Path(home) if home else Path.home() / ".peerhub"
    return base / "peerhub.toml"


def ensure_private_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)
    try:
        os.chmod(path, 0o700)
    except OSError:
        # Some filesystems ignore permission bits.
        pass
