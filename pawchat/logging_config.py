from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Any

from .config import HubRuntimeConfig

WIDGET_LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"


def _parse_level(value: Any, default: int) -> int:
    """Accept a level name ("warn", "INFO"), a number, or a numeric string."""
    if value is None:
        return default
    if isinstance(value, int):
        return value
    text = str(value).strip().upper()
    if not text:
        return default
    if text == "WARN":
        text = "WARNING"

    level = logging.getLevelNamesMapping().get(text)
    if level is not None:
        return level
    try:
        return int(text)
    except ValueError:
        return default


def _blank_to_none(value: Any) -> str | None:
    if value is None:
        return None
    s = str(value)
    return s if s.strip() else None


def _file_handler(log_file: str) -> logging.FileHandler:
    p = Path(os.path.expanduser(log_file))
    p.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(p, encoding="utf-8")
    try:
        # Chat logs carry usernames and message metadata.
        os.chmod(p, 0o600)
    except OSError:
        pass
    return handler


def _install(handlers: list[logging.Handler], formatter: logging.Formatter, level: int) -> None:
    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
        if isinstance(h, logging.FileHandler):
            h.close()

    for h in handlers:
        h.setFormatter(formatter)
        root.addHandler(h)
    root.setLevel(level)
    logging.captureWarnings(True)


def configure_logging(
    cfg: HubRuntimeConfig,
    *,
    override_level: str | None = None,
    override_file: str | None = None,
) -> None:
    """Configure logging for the chat hub from its runtime config.

    Replaces any handlers installed by an earlier call, so SIGHUP reloads
    can run it again. An empty ``override_file`` disables file logging.
    """

    level = _parse_level(override_level or cfg.log_level, logging.INFO)

    log_file = cfg.log_file if override_file is None else override_file
    log_file = _blank_to_none(log_file)

    handlers: list[logging.Handler] = []
    if cfg.log_console:
        handlers.append(logging.StreamHandler())
    if log_file:
        handlers.append(_file_handler(log_file))

    fmt = _blank_to_none(cfg.log_format) or "%(asctime)s %(levelname)s %(name)s: %(message)s"
    _install(handlers, logging.Formatter(fmt=fmt, datefmt=_blank_to_none(cfg.log_datefmt)), level)

    # Handshake failures and keepalive timeouts are reported by the library.
    logging.getLogger("websockets").setLevel(_parse_level(cfg.log_ws_level, logging.WARNING))


def configure_widget_logging(level: str | None) -> None:
    """Terse stderr logging for the terminal widget.

    Transcript lines go to stdout, so log records must stay on stderr. The
    websockets logger never drops below WARNING here; its frame-level DEBUG
    output would drown the conversation.
    """

    parsed = _parse_level(level, logging.WARNING)
    _install(
        [logging.StreamHandler(sys.stderr)],
        logging.Formatter(fmt=WIDGET_LOG_FORMAT),
        parsed,
    )
    logging.getLogger("websockets").setLevel(max(parsed, logging.WARNING))
