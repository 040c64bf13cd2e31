from __future__ import annotations

from dataclasses import asdict, dataclass, replace

from .constants import DEFAULT_GREETING, DEFAULT_WS_PATH


@dataclass(frozen=True)
class HubRuntimeConfig:
    config_path: str | None = None
    host: str = "0.0.0.0"
    port: int = 5000
    ws_path: str = DEFAULT_WS_PATH
    hub_name: str = "PawPal"
    greeting: str = DEFAULT_GREETING
    max_message_bytes: int = 1024 * 1024  # 1 MiB, same as the websockets default
    ping_interval_s: float = 0.0
    ping_timeout_s: float = 0.0
    log_level: str = "INFO"
    log_ws_level: str = "WARNING"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
    log_datefmt: str | None = None


def load_toml(path: str) -> dict:
    import tomllib

    with open(path, "rb") as f:
        data = tomllib.load(f)
    return data if isinstance(data, dict) else {}


def apply_config_data(base: HubRuntimeConfig, data: dict) -> HubRuntimeConfig:
    """Overlay a parsed TOML document onto ``base``.

    Keys may sit at the top level or in a ``[hub]`` table; the ``[logging]``
    table maps its short names (``level``, ``file``...) onto the ``log_*``
    fields. Unknown keys are ignored.
    """

    hub = data.get("hub") if isinstance(data, dict) else None
    if isinstance(hub, dict):
        data = {**data, **hub}

    log_table = data.get("logging") if isinstance(data, dict) else None
    if isinstance(log_table, dict):
        mapped: dict[str, object] = {}
        for short, field in (
            ("level", "log_level"),
            ("ws_level", "log_ws_level"),
            ("console", "log_console"),
            ("file", "log_file"),
            ("format", "log_format"),
            ("datefmt", "log_datefmt"),
        ):
            if short in log_table:
                mapped[field] = log_table.get(short)
        data = {**data, **mapped}

    allowed = set(asdict(base).keys())
    # This identifies where to reload from; do not let the file override it.
    allowed.discard("config_path")
    updates = {k: v for k, v in data.items() if k in allowed}

    if "port" in updates:
        updates["port"] = int(updates["port"])
    if "max_message_bytes" in updates:
        updates["max_message_bytes"] = int(updates["max_message_bytes"])
    for key in ("ping_interval_s", "ping_timeout_s"):
        if key in updates:
            updates[key] = float(updates[key])

    if "ws_path" in updates:
        p = str(updates["ws_path"]).strip()
        if not p:
            raise ValueError("ws_path must not be empty")
        updates["ws_path"] = p if p.startswith("/") else "/" + p

    # An empty greeting falls back to the stock welcome; the welcome message
    # itself is always sent.
    if "greeting" in updates and updates["greeting"] == "":
        updates["greeting"] = DEFAULT_GREETING
    if "log_file" in updates and updates["log_file"] == "":
        updates["log_file"] = None
    if "log_datefmt" in updates and updates["log_datefmt"] == "":
        updates["log_datefmt"] = None

    return replace(base, **updates) if updates else base


def diff_config_summary(old: HubRuntimeConfig, new: HubRuntimeConfig) -> list[str]:
    old_d = asdict(old)
    new_d = asdict(new)
    old_d.pop("config_path", None)
    new_d.pop("config_path", None)

    changed: list[str] = []
    for k in sorted(new_d.keys()):
        if old_d.get(k) == new_d.get(k):
            continue
        changed.append(
            f"{k}: {_format_value(old_d.get(k))} -> {_format_value(new_d.get(k))}"
        )
    return changed


def _format_value(v) -> str:
    if v is None:
        return "(none)"
    if isinstance(v, (bool, int, float)):
        return str(v)
    s = " ".join(str(v).split())
    if len(s) > 80:
        s = s[:77] + "..."
    return s
