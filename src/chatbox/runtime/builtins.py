from pathlib import Path

from chatbox.config import ConfigError, describe_config, update_config
from chatbox.sessions import SnapshotError
from chatbox.store import StoreError


class BuiltinCommands:
    def __init__(self, runtime):
        self.runtime = runtime
        self._handlers = {
            "quit": self.cmd_quit,
            "exit": self.cmd_quit,
            "new": self.cmd_new,
            "sessions": self.cmd_sessions,
            "switch": self.cmd_switch,
            "delete": self.cmd_delete,
            "clear": self.cmd_clear,
            "history": self.cmd_history,
            "export": self.cmd_export,
            "import": self.cmd_import,
            "model": self.cmd_model,
            "system": self.cmd_system,
            "config": self.cmd_config,
            "help": self.cmd_help,
        }

    @property
    def manager(self):
        return self.runtime.manager

    def list_commands(self) -> list[str]:
        return sorted(self._handlers.keys())

    def has_command(self, name: str) -> bool:
        return name in self._handlers

    def handle(self, name: str, args: str) -> bool:
        handler = self._handlers.get(name)
        if not handler:
            return True
        return handler(args)

    def cmd_quit(self, args: str) -> bool:
        print("👋 Goodbye!")
        return False

    def cmd_new(self, args: str) -> bool:
        session = self.manager.create_new_session()
        print(f"✅ New chat {session.id}")
        return True

    def cmd_sessions(self, args: str) -> bool:
        sessions = self.manager.get_all_sessions()
        if not sessions:
            print("No saved sessions")
            return True
        current = self.manager.get_current_session()
        print("Sessions:")
        for session in sessions:
            marker = "*" if current is not None and session.id == current.id else " "
            print(f" {marker} {session.id} - {session.title} ({len(session.messages)} messages)")
        return True

    def cmd_switch(self, args: str) -> bool:
        if not args:
            print("Usage: /switch <id>")
            return True
        if self.manager.get_session(args) is None:
            print(f"❌ Session {args} not found")
            return True
        self.manager.set_current_session(args)
        print(f"✅ Switched to {args}")
        return True

    def cmd_delete(self, args: str) -> bool:
        if not args:
            print("Usage: /delete <id>")
            return True
        if self.manager.get_session(args) is None:
            print(f"❌ Session {args} not found")
            return True
        self.manager.delete_session(args)
        print(f"✅ Deleted {args}")
        return True

    def cmd_clear(self, args: str) -> bool:
        self.manager.clear_current_session()
        print("✅ Cleared current chat")
        return True

    def cmd_history(self, args: str) -> bool:
        session = self.manager.get_current_session()
        if session is None or not session.messages:
            print("No messages")
            return True
        for message in session.messages:
            print(f"[{message.role}] {message.content}")
        return True

    def cmd_export(self, args: str) -> bool:
        payload = self.manager.export_data()
        if not args:
            print(payload)
            return True
        path = Path(args).expanduser()
        try:
            path.write_text(payload + "\n", encoding="utf-8")
        except OSError as e:
            print(f"❌ Export failed: {e}")
            return True
        print(f"✅ Exported to {path}")
        return True

    def cmd_import(self, args: str) -> bool:
        if not args:
            print("Usage: /import <path>")
            return True
        try:
            text = Path(args).expanduser().read_text(encoding="utf-8")
            self.manager.import_data(text)
        except (OSError, SnapshotError, StoreError) as e:
            print(f"❌ Import failed: {e}")
            return True
        print(f"✅ Imported {len(self.manager.get_all_sessions())} session(s)")
        return True

    def cmd_model(self, args: str) -> bool:
        if not args:
            print(f"Current model: {self.runtime.config.model}")
            return True
        return self._update(model=args.strip())

    def cmd_system(self, args: str) -> bool:
        if not args:
            prompt = self.runtime.config.system_prompt
            print(f"System prompt: {prompt or '(none)'}")
            return True
        return self._update(system_prompt=args.strip())

    def cmd_config(self, args: str) -> bool:
        for line in describe_config(self.runtime.config):
            print(f"  {line}")
        return True

    def cmd_help(self, args: str) -> bool:
        print("\nCommands:")
        for name in self.list_commands():
            print(f"  /{name}")
        print()
        return True

    def _update(self, **changes) -> bool:
        try:
            config = update_config(self.manager.get_api_config(), **changes)
        except ConfigError as e:
            print(f"❌ {e}")
            return True
        self.runtime.update_config(config)
        print("✅ Config updated")
        return True
