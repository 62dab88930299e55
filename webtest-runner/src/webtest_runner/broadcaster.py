"""Client channel fan-out for webtest-runner.

Connected dashboard clients talk to the backend over a persistent WebSocket.
Each message in either direction is a JSON object ``{"event": ..., "data": ...}``.

Inbound commands:
    run:tests   {testIds: [...], options: {workers, project, headed, ui}}
    stop:tests  {}

Run events go back to the channel that issued ``run:tests`` only. A client
disconnecting never affects a run in flight; its events are simply dropped.
"""

from __future__ import annotations

import itertools
import logging
from typing import Any, Protocol

from pydantic import ValidationError

from webtest_runner.errors import AlreadyRunningError, CommandError
from webtest_runner.executor import EventCallback, RunCoordinator
from webtest_runner.models import EventType, RunCommand, RunOptions

logger = logging.getLogger(__name__)

STOPPED_MESSAGE = "Tests stopped"


class JsonSocket(Protocol):
    """The part of a WebSocket the broadcaster needs."""

    async def send_json(self, data: Any) -> None:
        """Send one JSON message."""


class ClientChannel:
    """A connected client.

    Sending never raises: once a send fails the channel is marked closed and
    further events for it are discarded.

    Args:
        socket: Underlying WebSocket (anything with ``send_json``).
        channel_id: Identifier used in log messages.
    """

    def __init__(self, socket: JsonSocket, channel_id: str) -> None:
        self._socket = socket
        self.channel_id = channel_id
        self.closed = False

    async def send(self, event: str, payload: dict[str, Any]) -> None:
        """Send one event to the client."""
        if self.closed:
            return
        try:
            await self._socket.send_json({"event": event, "data": payload})
        except Exception as exc:  # pylint: disable=broad-except
            logger.info("Dropping channel %s: %s", self.channel_id, exc)
            self.closed = True

    def __repr__(self) -> str:
        return f"ClientChannel({self.channel_id!r})"


class EventBroadcaster:
    """Routes client commands to the coordinator and run events to clients.

    Args:
        coordinator: The run coordinator driving the runner subprocess.
    """

    def __init__(self, coordinator: RunCoordinator) -> None:
        self._coordinator = coordinator
        self._channels: dict[str, ClientChannel] = {}
        self._run_emit: EventCallback | None = None
        self._ids = itertools.count(1)

    @property
    def channels(self) -> list[ClientChannel]:
        """Return the currently connected channels."""
        return list(self._channels.values())

    def connect(self, socket: JsonSocket) -> ClientChannel:
        """Register a newly accepted socket."""
        channel = ClientChannel(socket, f"client-{next(self._ids)}")
        self._channels[channel.channel_id] = channel
        logger.info("Client connected: %s", channel.channel_id)
        return channel

    def disconnect(self, channel: ClientChannel) -> None:
        """Forget a channel. A run it started keeps going."""
        channel.closed = True
        self._channels.pop(channel.channel_id, None)
        logger.info("Client disconnected: %s", channel.channel_id)

    async def broadcast(self, event: str, payload: dict[str, Any]) -> None:
        """Send an event to every connected channel."""
        for channel in self.channels:
            await channel.send(event, payload)

    async def start_run(
        self, test_ids: list[str], options: RunOptions, emit: EventCallback
    ) -> bool:
        """Start a run whose events go to ``emit``.

        Returns:
            True if a run was started, False if ``test_ids`` was empty.

        Raises:
            AlreadyRunningError: If a run is already active.
        """
        if not test_ids:
            logger.debug("Ignoring run request without test ids")
            return False
        if self._coordinator.is_running:
            raise AlreadyRunningError()
        logger.info("Running tests: %s", test_ids)
        self._run_emit = emit
        await self._coordinator.start(test_ids, options, emit)
        return True

    async def stop_run(self, requester: EventCallback | None = None) -> bool:
        """Stop the active run and acknowledge it.

        The acknowledgement goes to the run's owner and, if different, to the
        requester. Nothing is sent when no run is active.

        Returns:
            True if a run was stopped.
        """
        if self._coordinator.stop() is None:
            return False

        ack = {"message": STOPPED_MESSAGE}
        owner = self._run_emit
        if owner is not None:
            await owner(EventType.STOPPED.value, ack)
        if requester is not None and requester != owner:
            await requester(EventType.STOPPED.value, ack)
        return True

    async def handle_message(self, channel: ClientChannel, message: Any) -> None:
        """Dispatch one inbound message from a channel.

        Problems are reported back to the sender as ``test:error``.
        """
        try:
            await self._dispatch(channel, message)
        except (AlreadyRunningError, CommandError) as exc:
            logger.warning("Rejected command from %s: %s", channel.channel_id, exc)
            await channel.send(EventType.ERROR.value, {"error": str(exc)})

    async def _dispatch(self, channel: ClientChannel, message: Any) -> None:
        if not isinstance(message, dict):
            raise CommandError("Message must be a JSON object")
        event = message.get("event")
        data = message.get("data") or {}

        if event == EventType.RUN.value:
            try:
                command = RunCommand.model_validate(data)
            except ValidationError as exc:
                raise CommandError(f"Invalid run:tests payload: {exc}") from exc
            await self.start_run(command.test_ids, command.options, channel.send)
        elif event == EventType.STOP.value:
            await self.stop_run(channel.send)
        else:
            raise CommandError(f"Unknown event: {event}")
