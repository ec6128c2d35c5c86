import logging

from chatbox.runtime.builtins import BuiltinCommands
from chatbox.runtime.router import InputRouter

logger = logging.getLogger(__name__)


class ChatREPL:
    def __init__(self, runtime):
        self.runtime = runtime
        self.builtins = BuiltinCommands(runtime)
        self.router = InputRouter(self.builtins)

    def run(self, initial_message: str | None = None):
        print(f"🤖 Chatbox started (model: {self.runtime.config.model})")
        print("Commands: /help for all commands, Ctrl-C stops a reply")
        print()

        for problem in self.runtime.manager.load_errors:
            print(f"⚠️  Started with defaults, {problem}")

        pending = initial_message
        while True:
            try:
                if pending:
                    user_input, pending = pending.strip(), None
                else:
                    user_input = input("\n> ").strip()

                if not user_input:
                    continue

                route = self.router.route(user_input)
                if route.kind == "builtin":
                    if not self.builtins.handle(route.name, route.args):
                        break
                    continue
                if route.kind == "unknown":
                    print(
                        f"Unknown command: /{route.name}. Type /help for available commands."
                    )
                    continue

                self.send(route.args)

            except KeyboardInterrupt:
                print("\n\n⚠️  Interrupted")
                break
            except EOFError:
                break
            except Exception as e:
                print(f"\n❌ Error: {e}")
                logger.debug("REPL input failed", exc_info=True)

    def send(self, prompt: str) -> None:
        print("\n🤖 Assistant:", end=" ", flush=True)
        result = self.runtime.process_user_message(prompt)
        print()
        if result is None:
            return
        if result.ok and not self.runtime.stream:
            print(result.content)
        elif result.aborted:
            print("⏹️  Stopped")
        elif not result.ok:
            print(f"❌ {result.error}")
