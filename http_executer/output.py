"""Output writer - receives one OutputEvent per matched/extracted outcome.

Formatting belongs to the writer. The stream writer emits JSON lines when
json_output is set, otherwise one plain line per event:
    [template-id] [matcher] url [value1,value2]
"""

from __future__ import annotations

import sys
from threading import Lock
from typing import Protocol, TextIO

from http_executer.models import OutputEvent

_BOLD = "\033[1m"
_GREEN = "\033[32m"
_RESET = "\033[0m"


class OutputWriter(Protocol):
    def write(self, event: OutputEvent) -> None: ...


class StreamOutputWriter:
    """Writes events to a text stream. Safe to call from many threads."""

    def __init__(
        self,
        stream: TextIO | None = None,
        json_output: bool = False,
        colored: bool = False,
    ) -> None:
        self._stream = stream if stream is not None else sys.stdout
        self._json_output = json_output
        self._colored = colored
        self._lock = Lock()

    def format(self, event: OutputEvent) -> str:
        if self._json_output:
            return event.model_dump_json(exclude_none=True)

        parts = [self._paint(f"[{event.template_id}]", _BOLD)]
        if event.matcher_name:
            parts.append(self._paint(f"[{event.matcher_name}]", _GREEN))
        parts.append(event.matched)
        if event.extracted_values:
            parts.append(f"[{','.join(event.extracted_values)}]")
        return " ".join(parts)

    def _paint(self, text: str, color: str) -> str:
        if not self._colored:
            return text
        return f"{color}{text}{_RESET}"

    def write(self, event: OutputEvent) -> None:
        line = self.format(event)
        with self._lock:
            self._stream.write(line + "\n")
            self._stream.flush()
