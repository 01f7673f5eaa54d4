from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, TypeAlias


@dataclass(frozen=True, slots=True)
class GenerationStartedEvent:
    session_id: str
    model: str


@dataclass(frozen=True, slots=True)
class FragmentEvent:
    session_id: str
    text: str


@dataclass(frozen=True, slots=True)
class GenerationFinishedEvent:
    session_id: str
    state: str
    content: str


@dataclass(frozen=True, slots=True)
class StatusEvent:
    session_id: str
    message: str


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    message: str
    source: str | None = None


Event: TypeAlias = (
    GenerationStartedEvent
    | FragmentEvent
    | GenerationFinishedEvent
    | StatusEvent
    | ErrorEvent
)
EventCallback: TypeAlias = Callable[[Event], None] | None


class EventEmitter:
    def __init__(self, callback: EventCallback = None):
        self._callback = callback

    def emit(self, event: Event) -> None:
        if self._callback is not None:
            self._callback(event)
