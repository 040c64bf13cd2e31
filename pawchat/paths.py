from __future__ import annotations

import os
from pathlib import Path

from .util import expand_path

HOME_ENV = "PAWCHAT_HOME"
CONFIG_FILENAME = "pawchat.toml"


def default_pawchat_dir() -> Path:
    """``$PAWCHAT_HOME`` (``~`` and ``$VARS`` expanded) or ``~/.pawchat``."""
    override = os.environ.get(HOME_ENV, "").strip()
    if override:
        return Path(expand_path(override))
    return Path.home() / ".pawchat"


def default_config_path() -> Path:
    return default_pawchat_dir() / CONFIG_FILENAME


def ensure_private_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)
    try:
        os.chmod(path, 0o700)
    except OSError:
        pass
