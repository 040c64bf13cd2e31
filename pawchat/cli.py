from __future__ import annotations

import argparse
import os
import sys
import threading
from dataclasses import replace
from pathlib import Path

import tomlkit

from .client import ChatWidget, LocalUser, Notification, TranscriptEntry
from .config import HubRuntimeConfig, apply_config_data, load_toml
from .logging_config import configure_logging, configure_widget_logging
from .paths import default_config_path, ensure_private_dir
from .service import HubService


def _default_config_document() -> tomlkit.TOMLDocument:
    defaults = HubRuntimeConfig()
    doc = tomlkit.document()
    doc.add(tomlkit.comment("pawchat configuration (TOML)"))
    doc.add(tomlkit.comment(""))
    doc.add(tomlkit.comment("This file was created on first run."))
    doc.add(tomlkit.comment("Edit it, then start pawchatd again."))
    doc.add(tomlkit.nl())

    hub = tomlkit.table()
    hub.add(tomlkit.comment("Listen address. The chat endpoint shares host/port with the HTTP API"))
    hub.add(tomlkit.comment("when fronted by the same reverse proxy."))
    hub.add("host", defaults.host)
    hub.add("port", defaults.port)
    hub.add(tomlkit.nl())
    hub.add(tomlkit.comment("Only this path is upgraded to a WebSocket; other paths get 404."))
    hub.add("ws_path", defaults.ws_path)
    hub.add(tomlkit.nl())
    hub.add("hub_name", defaults.hub_name)
    hub.add(tomlkit.comment("Welcome text sent to every new connection (empty = stock text)."))
    hub.add("greeting", "")
    hub.add(tomlkit.nl())
    hub.add(tomlkit.comment("Largest accepted frame in bytes."))
    hub.add("max_message_bytes", defaults.max_message_bytes)
    hub.add(tomlkit.nl())
    hub.add(tomlkit.comment("Transport keepalive handled by websockets; 0 (the default) disables it"))
    hub.add(tomlkit.comment("and peers that vanish are noticed on the next send or read."))
    hub.add("ping_interval_s", defaults.ping_interval_s)
    hub.add("ping_timeout_s", defaults.ping_timeout_s)
    doc.add("hub", hub)

    log_table = tomlkit.table()
    log_table.add(tomlkit.comment("Log level for pawchat itself."))
    log_table.add("level", defaults.log_level)
    log_table.add(tomlkit.comment("Log level for the websockets library."))
    log_table.add("ws_level", defaults.log_ws_level)
    log_table.add(tomlkit.comment("Log to stderr (systemd/journald friendly)."))
    log_table.add("console", defaults.log_console)
    log_table.add(tomlkit.comment("Optional file path for logs (leave empty to disable)."))
    log_table.add("file", "")
    log_table.add("format", defaults.log_format)
    log_table.add("datefmt", "")
    doc.add("logging", log_table)
    return doc


def _write_default_config(config_path: str) -> None:
    cfg_dir = os.path.dirname(config_path)
    if cfg_dir:
        ensure_private_dir(Path(cfg_dir))

    with open(config_path, "w", encoding="utf-8") as f:
        f.write(tomlkit.dumps(_default_config_document()))
    try:
        os.chmod(config_path, 0o600)
    except Exception:
        pass


def _ensure_first_run_files(config_path: str) -> bool:
    if os.path.exists(config_path):
        return False
    _write_default_config(config_path)
    return True


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="pawchatd", description="Run the PawPal chat hub")

    p.add_argument(
        "--config",
        default=str(default_config_path()),
        help="Path to a TOML config file (created on first run)",
    )
    p.add_argument("--host", default=None, help="Listen address")
    p.add_argument("--port", type=int, default=None, help="Listen port")
    p.add_argument("--path", default=None, help="Chat endpoint path (default: /ws)")
    p.add_argument("--hub-name", default=None, help="Hub name used in logs")
    p.add_argument(
        "--greeting",
        default=None,
        help="Welcome text sent to each new connection",
    )
    p.add_argument(
        "--max-message-bytes",
        type=int,
        default=None,
        help="Largest accepted frame in bytes",
    )
    p.add_argument(
        "--ping-interval",
        type=float,
        default=None,
        help="Transport keepalive interval seconds (0 disables)",
    )
    p.add_argument(
        "--ping-timeout",
        type=float,
        default=None,
        help="Close connection if keepalive is not answered within this many seconds (0 disables)",
    )
    p.add_argument(
        "--log-level",
        default=None,
        help="Logging level override (DEBUG, INFO, WARNING, ERROR). Default comes from config.",
    )
    p.add_argument(
        "--log-file",
        default=None,
        help="Log file path override (empty disables file logging). Default comes from config.",
    )

    return p


def _apply_args(cfg: HubRuntimeConfig, args: argparse.Namespace) -> HubRuntimeConfig:
    if args.host is not None:
        cfg = replace(cfg, host=str(args.host))
    if args.port is not None:
        cfg = replace(cfg, port=int(args.port))
    if args.path is not None:
        cfg = apply_config_data(cfg, {"ws_path": args.path})
    if args.hub_name is not None:
        cfg = replace(cfg, hub_name=args.hub_name)
    if args.greeting is not None:
        cfg = apply_config_data(cfg, {"greeting": args.greeting})
    if args.max_message_bytes is not None:
        cfg = replace(cfg, max_message_bytes=int(args.max_message_bytes))
    if args.ping_interval is not None:
        cfg = replace(cfg, ping_interval_s=float(args.ping_interval))
    if args.ping_timeout is not None:
        cfg = replace(cfg, ping_timeout_s=float(args.ping_timeout))
    if args.log_level is not None:
        cfg = replace(cfg, log_level=str(args.log_level))
    if args.log_file is not None:
        cfg = replace(cfg, log_file=str(args.log_file) if str(args.log_file) else None)
    return cfg


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    config_path = str(args.config)
    if _ensure_first_run_files(config_path):
        print(
            "Created default pawchat config. Edit it before starting:\n"
            f"- Config: {config_path}\n"
            "\nThen re-run pawchatd.",
            file=sys.stderr,
        )
        raise SystemExit(0)

    cfg = HubRuntimeConfig(config_path=config_path)
    cfg = apply_config_data(cfg, load_toml(config_path))
    cfg = _apply_args(cfg, args)

    configure_logging(cfg, override_level=args.log_level, override_file=args.log_file)

    svc = HubService(cfg)
    svc.start()
    svc.run_forever()


def _print_entry(entry: TranscriptEntry) -> None:
    who = "you" if entry.origin == "user" else "pawpal"
    if entry.sender:
        who = str(entry.sender.get("username") or who)
    print(f"[{who}] {entry.text}", flush=True)


def _print_notification(note: Notification) -> None:
    print(f"!! {note.title}: {note.description}", file=sys.stderr, flush=True)


def _build_widget_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="pawchat-widget", description="Terminal PawPal support chat"
    )
    p.add_argument("url", help="Page URL of the PawPal site, e.g. http://localhost:5000/")
    p.add_argument("--path", default=None, help="Chat endpoint path (default: /ws)")
    p.add_argument("--user-id", default=None, help="Logged-in user id")
    p.add_argument("--username", default=None, help="Logged-in username")
    p.add_argument("--name", default=None, help="Display name")
    p.add_argument("--admin", action="store_true", help="User has the admin role")
    p.add_argument("--log-level", default="WARNING", help="Logging level")
    return p


def widget_main(argv: list[str] | None = None) -> None:
    args = _build_widget_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    configure_widget_logging(args.log_level)

    user = None
    if args.user_id is not None:
        user_id: object = int(args.user_id) if str(args.user_id).isdigit() else args.user_id
        user = LocalUser(
            id=user_id,
            username=args.username or str(args.user_id),
            name=args.name,
            role="admin" if args.admin else "user",
        )

    printed = 0
    last_banner: str | None = None
    print_lock = threading.Lock()

    def on_change(widget: ChatWidget) -> None:
        nonlocal printed, last_banner
        with print_lock:
            entries = widget.transcript
            for entry in entries[printed:]:
                _print_entry(entry)
            printed = len(entries)
            banner = widget.banner
            if banner != last_banner:
                last_banner = banner
                if banner:
                    print(f"-- {banner}", file=sys.stderr, flush=True)

    kwargs = {"user": user, "notify": _print_notification, "on_change": on_change}
    if args.path:
        kwargs["path"] = args.path
    widget = ChatWidget(args.url, **kwargs)
    widget.open()
    try:
        for line in sys.stdin:
            text = line.rstrip("\n")
            if text == "/retry":
                widget.retry()
            elif text.startswith("/to "):
                parts = text.split(" ", 2)
                if len(parts) == 3:
                    rid: object = int(parts[1]) if parts[1].isdigit() else parts[1]
                    widget.send(parts[2], recipient_id=rid)
            else:
                widget.send(text)
    except KeyboardInterrupt:
        pass
    finally:
        widget.close()


if __name__ == "__main__":
    main()
