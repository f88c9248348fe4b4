"""ACP client adapter that projects agent session updates through a hub."""

from __future__ import annotations

import logging
from typing import Any

from acp import Client, PromptResponse, RequestError, RequestPermissionResponse, SessionNotification
from acp.schema import AllowedOutcome, DeniedOutcome

from acprelay.log_utils import log_context, log_event
from acprelay.projection.hub import ProjectionHub
from acprelay.projection.interfaces import CancelOperation

logger = logging.getLogger(__name__)


class ProjectingClient(Client):
    """ACP client whose ``session/update`` handler feeds a :class:`ProjectionHub`.

    File-system and terminal requests are not offered by a relay and are
    rejected as unknown methods.
    """

    def __init__(self, hub: ProjectionHub) -> None:
        self._hub = hub

    async def session_update(self, session_id: str, update: SessionNotification | Any, **_: Any) -> None:
        await self._hub.feed(session_id, update)

    async def request_permission(
        self,
        options,
        session_id: str,
        tool_call: Any,
        **_: Any,
    ) -> RequestPermissionResponse:
        """Deny while the turn is being cancelled, otherwise take the first option."""
        if self._hub.is_cancelling(session_id) or not options:
            return RequestPermissionResponse(outcome=DeniedOutcome(outcome="cancelled"))
        selection = options[0].option_id
        with log_context(session_id=session_id):
            log_event(
                logger,
                "permission.auto_selected",
                tool=getattr(tool_call, "title", None) or getattr(tool_call, "tool_call_id", None),
                selection=selection,
            )
        return RequestPermissionResponse(outcome=AllowedOutcome(option_id=selection, outcome="selected"))

    async def ext_method(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        raise RequestError.method_not_found(method)

    async def ext_notification(self, method: str, params: dict[str, Any]) -> None:
        return None

    def on_connect(self, *_: Any, **__: Any) -> None:
        return None

    async def write_text_file(self, *args: Any, **kwargs: Any):  # type: ignore[override]
        raise RequestError.method_not_found("fs/write_text_file")

    async def read_text_file(self, *args: Any, **kwargs: Any):  # type: ignore[override]
        raise RequestError.method_not_found("fs/read_text_file")

    async def create_terminal(self, *args: Any, **kwargs: Any):  # type: ignore[override]
        raise RequestError.method_not_found("terminal/create")

    async def terminal_output(self, *args: Any, **kwargs: Any):  # type: ignore[override]
        raise RequestError.method_not_found("terminal/output")

    async def release_terminal(self, *args: Any, **kwargs: Any):  # type: ignore[override]
        raise RequestError.method_not_found("terminal/release")

    async def wait_for_terminal_exit(self, *args: Any, **kwargs: Any):  # type: ignore[override]
        raise RequestError.method_not_found("terminal/wait_for_exit")

    async def kill_terminal(self, *args: Any, **kwargs: Any):  # type: ignore[override]
        raise RequestError.method_not_found("terminal/kill")


async def run_prompt(conn: Any, hub: ProjectionHub, session_key: str, prompt: list[Any]) -> PromptResponse | None:
    """Send a prompt and feed its outcome to the hub as the turn's terminal event."""
    try:
        response = await conn.prompt(prompt=prompt, session_id=session_key)
    except Exception as exc:
        logger.warning("Prompt failed for session %s", session_key, exc_info=True)
        await hub.feed(session_key, exc)
        return None
    await hub.feed(session_key, response)
    return response


def acp_cancel_operation(conn: Any) -> CancelOperation:
    """Cancel operation backed by the ACP ``session/cancel`` notification."""

    async def _cancel(session_key: str, reason: str) -> bool:
        with log_context(session_id=session_key):
            log_event(logger, "acp.cancel.send", reason=reason)
        try:
            await conn.cancel(session_id=session_key)
        except Exception:
            logger.warning("session/cancel failed for %s", session_key, exc_info=True)
            return False
        return True

    return _cancel
