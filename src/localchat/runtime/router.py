from dataclasses import dataclass
from typing import Literal

COMMAND_PREFIX = "/"

RouteKind = Literal["prompt", "builtin", "unknown"]


@dataclass(frozen=True, slots=True)
class Route:
    kind: RouteKind
    text: str
    command: str | None = None


class InputRouter:
    """Splits a REPL line into a chat prompt or a slash command.

    ``//text`` sends ``/text`` to the model as a prompt, and a lone ``/``
    opens the help.
    """

    def __init__(self, builtins):
        self.builtins = builtins

    def route(self, line: str) -> Route:
        if not line.startswith(COMMAND_PREFIX):
            return Route("prompt", line)
        if line.startswith(COMMAND_PREFIX * 2):
            return Route("prompt", line[1:])

        command, _, rest = line[1:].partition(" ")
        command = command.lower() or "help"
        kind: RouteKind = "builtin" if self.builtins.has_command(command) else "unknown"
        return Route(kind, rest.strip(), command)
