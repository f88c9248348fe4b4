"""Rich console collaborators used by the CLI replay."""

from __future__ import annotations

import itertools
from threading import Lock

from rich.console import Console
from rich.status import Status
from rich.text import Text

from acprelay.projection.dedup import DeliveryHandle

CONSOLE_CHANNEL = "console"


def _style_for(content: str) -> str | None:
    if not content.startswith("🛠️ Tool["):
        return None
    status = content[len("🛠️ Tool[") :].split("]", 1)[0].lower()
    if status == "completed":
        return "green"
    if status in {"in_progress", "start", "pending"}:
        return "yellow"
    return "red"


class ConsoleSender:
    """Print each message; edits are shown as a re-print tagged with the message id."""

    def __init__(self, console: Console | None = None, *, supports_edit: bool = True) -> None:
        self._console = console or Console(markup=False, highlight=False)
        self._supports_edit = supports_edit
        self._ids = itertools.count(1)

    async def send(self, content: str) -> DeliveryHandle:
        message_id = str(next(self._ids))
        self._console.print(Text(content, style=_style_for(content) or ""))
        return DeliveryHandle(channel=CONSOLE_CHANNEL, destination="stdout", message_id=message_id)

    async def edit(self, handle: DeliveryHandle, content: str) -> bool:
        self._console.print(Text(f"(edit #{handle.message_id}) {content}", style=_style_for(content) or "dim"))
        return True

    def supports_edit(self, handle: DeliveryHandle) -> bool:
        return self._supports_edit and handle.channel == CONSOLE_CHANNEL


class ConsoleTypingIndicator:
    """Spinner standing in for a channel typing indicator."""

    def __init__(self, console: Console | None = None, text: str = "Typing...") -> None:
        self._console = console or Console(markup=False, highlight=False)
        self._text = text
        self._lock = Lock()
        self._status: Status | None = None

    async def start(self) -> None:
        with self._lock:
            if self._status is not None:
                return
            self._status = self._console.status(Text(self._text, style="cyan"))
            self._status.start()

    async def refresh(self) -> None:
        with self._lock:
            if self._status is not None:
                self._status.update(Text(self._text, style="cyan"))

    async def stop(self) -> None:
        with self._lock:
            if self._status is None:
                return
            self._status.stop()
            self._status = None
