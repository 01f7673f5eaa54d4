from pathlib import Path

from localchat.config import CONTEXT_SIZES, resolve_model_alias
from localchat.settings import SettingsError

HELP_TEXT = """Commands:
  /new                 Start a new chat session
  /sessions            List chat sessions
  /select <id>         Switch to a chat session (id prefix is enough)
  /delete <id>         Delete a chat session
  /title <text>        Rename the current session
  /history             Show the messages of the current session
  /search <query>      Search the web and answer from the results
  /attach <path>       Attach a file to the next message
  /files               List attached files
  /detach              Drop all attached files
  /model [name]        Show or switch the model
  /models              List installed models and refresh their context limits
  /context [size]      Show or set the context size
  /tokens              Estimate context usage
  /help                Show this help
  /quit                Exit"""


class BuiltinCommands:
    def __init__(self, repl):
        self.repl = repl
        self._handlers = {
            "quit": self.cmd_quit,
            "exit": self.cmd_quit,
            "help": self.cmd_help,
            "new": self.cmd_new,
            "sessions": self.cmd_sessions,
            "select": self.cmd_select,
            "delete": self.cmd_delete,
            "title": self.cmd_title,
            "history": self.cmd_history,
            "search": self.cmd_search,
            "attach": self.cmd_attach,
            "files": self.cmd_files,
            "detach": self.cmd_detach,
            "model": self.cmd_model,
            "models": self.cmd_models,
            "context": self.cmd_context,
            "tokens": self.cmd_tokens,
        }

    @property
    def store(self):
        return self.repl.service.store

    @property
    def settings(self):
        return self.repl.service.settings

    def list_commands(self) -> list[str]:
        return sorted(self._handlers.keys())

    def has_command(self, name: str) -> bool:
        return name in self._handlers

    def handle(self, name: str, args: str) -> bool:
        handler = self._handlers.get(name)
        if not handler:
            return True
        return handler(args)

    def _resolve_session_id(self, prefix: str) -> str | None:
        matches = [s.id for s in self.store.list_sessions() if s.id.startswith(prefix)]
        if len(matches) == 1:
            return matches[0]
        if not matches:
            print(f"❌ No session matches {prefix!r}")
        else:
            print(f"❌ {prefix!r} is ambiguous ({len(matches)} sessions)")
        return None

    def cmd_quit(self, args: str) -> bool:
        print("👋 Goodbye!")
        return False

    def cmd_help(self, args: str) -> bool:
        print(HELP_TEXT)
        return True

    def cmd_new(self, args: str) -> bool:
        session_id = self.store.create_session(title=args) if args else self.store.create_session()
        print(f"✅ Started session {session_id[:8]}")
        return True

    def cmd_sessions(self, args: str) -> bool:
        sessions = self.store.list_sessions()
        if not sessions:
            print("No chat sessions")
            return True
        for session in sessions:
            marker = "*" if session.id == self.store.current_session_id else " "
            updated = session.updated_at.strftime("%Y-%m-%d %H:%M")
            print(f" {marker} {session.id[:8]}  {updated}  {len(session.messages):>3} msgs  {session.title}")
        return True

    def cmd_select(self, args: str) -> bool:
        if not args:
            print("Usage: /select <session id>")
            return True
        session_id = self._resolve_session_id(args)
        if session_id:
            self.store.select_session(session_id)
            print(f"✅ Switched to {self.store.current_session().title}")
        return True

    def cmd_delete(self, args: str) -> bool:
        if not args:
            print("Usage: /delete <session id>")
            return True
        session_id = self._resolve_session_id(args)
        if session_id:
            self.store.delete_session(session_id)
            print(f"✅ Deleted session {session_id[:8]}")
            if self.store.current_session_id is None:
                print("No session selected. Use /new or /select <id>.")
        return True

    def cmd_title(self, args: str) -> bool:
        session = self.store.current_session()
        if session is None:
            print("❌ No session selected")
        elif not args:
            print(f"Title: {session.title}")
        else:
            self.store.update_title(session.id, args)
            print(f"✅ Renamed to {args}")
        return True

    def cmd_history(self, args: str) -> bool:
        session = self.store.current_session()
        if session is None:
            print("❌ No session selected")
            return True
        for message in session.messages:
            label = "you" if message.role == "user" else "assistant"
            print(f"\n[{label}] {message.content}")
        return True

    def cmd_search(self, args: str) -> bool:
        if not args:
            print("Usage: /search <query>")
            return True
        self.repl.run_search(args)
        return True

    def cmd_attach(self, args: str) -> bool:
        if not args:
            print("Usage: /attach <path>")
            return True
        path = Path(args).expanduser()
        if not path.is_file():
            print(f"❌ Not a file: {path}")
            return True
        self.repl.attachments.append(path)
        print(f"✅ Attached {path.name}")
        return True

    def cmd_files(self, args: str) -> bool:
        if not self.repl.attachments:
            print("No files attached")
        else:
            print("Attached files:")
            for path in self.repl.attachments:
                print(f"  • {path}")
        return True

    def cmd_detach(self, args: str) -> bool:
        self.repl.attachments.clear()
        print("✅ Cleared attached files")
        return True

    def cmd_model(self, args: str) -> bool:
        if not args:
            print(f"Current model: {self.settings.selected_model or '(none)'}")
            return True
        model = resolve_model_alias(args)
        self.settings.set_selected_model(model)
        print(f"✅ Switched to model: {model}")
        return True

    def cmd_models(self, args: str) -> bool:
        self.repl.refresh_models()
        return True

    def cmd_context(self, args: str) -> bool:
        model = self.settings.selected_model
        if not args:
            sizes = ", ".join(str(s) for s in self.settings.available_context_sizes(model))
            print(f"Context size: {self.settings.selected_context_size} (available: {sizes})")
            return True
        try:
            self.settings.set_selected_context_size(int(args))
        except (ValueError, SettingsError) as e:
            print(f"❌ Invalid context size: {e}")
            return True
        if int(args) not in CONTEXT_SIZES:
            print(f"⚠️  {args} is not one of the standard sizes {CONTEXT_SIZES}")
        print(f"✅ Context size set to {self.settings.selected_context_size}")
        return True

    def cmd_tokens(self, args: str) -> bool:
        extra = self.repl.attachment_tokens()
        usage = self.repl.service.context_usage(args, extra)
        print(f"Context usage: {usage.describe()}")
        return True
