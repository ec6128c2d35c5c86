from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

from dotenv import load_dotenv

from chatbox.config import (
    ConfigError,
    apply_env_overrides,
    apply_preset,
    data_dir_from_env,
    describe_config,
    list_presets,
    update_config,
)
from chatbox.runtime.repl import ChatREPL
from chatbox.runtime.runtime import ChatRuntime
from chatbox.sessions import SessionManager, SnapshotError
from chatbox.store import StoreError


def main() -> int:
    load_dotenv()
    return _main(sys.argv[1:])


TEXT_LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(threadName)s] %(name)s: %(message)s"
HTTP_LOGGERS = ("httpx", "httpcore")


class JsonFormatter(logging.Formatter):
    """One JSON object per line, tagged with the emitting thread.

    Replies stream on a worker thread, so the thread name tells request logs
    apart from REPL logs.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


def _log_level(verbose: bool, quiet: bool) -> int:
    if quiet:
        return logging.ERROR
    return logging.DEBUG if verbose else logging.WARNING


def setup_logging(verbose: bool = False, quiet: bool = False, log_format: str = "text") -> None:
    # stdout belongs to the chat transcript
    handler = logging.StreamHandler(sys.stderr)
    if log_format == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_LOG_FORMAT, datefmt="%H:%M:%S"))
    logging.basicConfig(level=_log_level(verbose, quiet), handlers=[handler])

    http_level = logging.DEBUG if verbose else logging.WARNING
    for name in HTTP_LOGGERS:
        logging.getLogger(name).setLevel(http_level)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chatbox", description="Chatbox - chat with OpenAI-compatible endpoints"
    )
    parser.add_argument("--data-dir", default=None, help="Storage directory (default: $CHATBOX_DATA_DIR or .chatbox)")
    parser.add_argument("-v", "--verbose", action="store_true")
    parser.add_argument("-q", "--quiet", action="store_true")
    parser.add_argument("--log-format", default="text", choices=["text", "json"])
    subparsers = parser.add_subparsers(dest="command", required=False)

    repl = subparsers.add_parser("repl", help="Start an interactive chat")
    repl.add_argument("--session", default=None, help="Session id to continue")
    repl.add_argument("--no-stream", action="store_true", help="Disable streaming")
    repl.add_argument("--message", "-m", help="Send this prompt first")

    subparsers.add_parser("sessions", help="List saved sessions")

    export = subparsers.add_parser("export", help="Export sessions as JSON")
    export.add_argument("--output", "-o", default=None, help="Write to this path instead of stdout")

    imp = subparsers.add_parser("import", help="Replace sessions with an export file")
    imp.add_argument("path")

    config = subparsers.add_parser("config", help="Show or update the API config")
    config.add_argument("--preset", choices=list_presets())
    config.add_argument("--endpoint")
    config.add_argument("--api-key")
    config.add_argument("--model")
    config.add_argument("--temperature", type=float)
    config.add_argument("--max-tokens", type=int)
    config.add_argument("--system-prompt")

    return parser


def _main(argv: list[str]) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose, args.quiet, args.log_format)

    manager = SessionManager(args.data_dir or data_dir_from_env())

    cmd = args.command or "repl"
    if cmd == "repl":
        return _cmd_repl(
            manager,
            session_id=getattr(args, "session", None),
            message=getattr(args, "message", None),
            no_stream=bool(getattr(args, "no_stream", False)),
        )
    if cmd == "sessions":
        return _cmd_sessions(manager)
    if cmd == "export":
        return _cmd_export(manager, args)
    if cmd == "import":
        return _cmd_import(manager, args)
    if cmd == "config":
        return _cmd_config(manager, args)

    parser.print_help(sys.stderr)
    return 2


def _cmd_repl(
    manager: SessionManager,
    *,
    session_id: str | None,
    message: str | None,
    no_stream: bool,
) -> int:
    if session_id:
        if manager.get_session(session_id) is None:
            print(f"Error: session {session_id} not found", file=sys.stderr)
            return 1
        manager.set_current_session(session_id)

    try:
        apply_env_overrides(manager.get_api_config())
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    runtime = ChatRuntime(
        manager,
        stream=not no_stream,
        on_chunk=lambda text: print(text, end="", flush=True),
        overlay=apply_env_overrides,
    )
    if not runtime.config.api_key:
        print("⚠️  No API key configured. Run `chatbox config --api-key ...` or set CHATBOX_API_KEY.")
    try:
        ChatREPL(runtime).run(initial_message=message)
    finally:
        runtime.shutdown()
    return 0


def _cmd_sessions(manager: SessionManager) -> int:
    sessions = manager.get_all_sessions()
    if not sessions:
        print("No saved sessions")
        return 0
    for session in sessions:
        updated = datetime.fromtimestamp(session.updated_at / 1000).strftime("%Y-%m-%d %H:%M")
        print(f"{session.id}  {updated}  {len(session.messages):>4} msgs  {session.title}")
    return 0


def _cmd_export(manager: SessionManager, args: argparse.Namespace) -> int:
    payload = manager.export_data()
    if not args.output:
        print(payload)
        return 0
    path = Path(args.output).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(payload + "\n", encoding="utf-8")
    print(f"Exported {len(manager.get_all_sessions())} session(s) to {path}")
    return 0


def _cmd_import(manager: SessionManager, args: argparse.Namespace) -> int:
    try:
        text = Path(args.path).expanduser().read_text(encoding="utf-8")
        manager.import_data(text)
    except (OSError, SnapshotError, StoreError) as e:
        print(f"Error: import failed: {e}", file=sys.stderr)
        return 1
    print(f"Imported {len(manager.get_all_sessions())} session(s)")
    return 0


def _cmd_config(manager: SessionManager, args: argparse.Namespace) -> int:
    changes = {
        "endpoint": args.endpoint,
        "api_key": args.api_key,
        "model": args.model,
        "temperature": args.temperature,
        "max_tokens": args.max_tokens,
        "system_prompt": args.system_prompt,
    }
    config = manager.get_api_config()
    if args.preset is None and all(v is None for v in changes.values()):
        for line in describe_config(config):
            print(line)
        return 0

    try:
        if args.preset:
            config = apply_preset(config, args.preset)
        config = update_config(config, **changes)
        manager.set_api_config(config)
    except (ConfigError, StoreError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    for line in describe_config(config):
        print(line)
    return 0
