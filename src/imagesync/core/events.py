"""Progress push channel: an in-process hub fanning messages out to subscribers."""

import asyncio
import json
from dataclasses import dataclass, asdict
from typing import Dict, Any, Set

import structlog

from ..utils.logging import get_logger


MESSAGE_LOG = "log"
MESSAGE_STATUS = "syncStatus"
MESSAGE_RESULT = "syncResult"


@dataclass(frozen=True)
class Message:
    """One message on the push channel."""

    type: str
    content: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


class EventHub:
    """Broadcasts messages to every subscribed queue.

    A subscriber that falls behind loses its oldest messages instead of
    blocking the run.
    """

    def __init__(self, queue_size: int = 256):
        self.queue_size = queue_size
        self.logger = get_logger(self.__class__.__name__)
        self._subscribers: Set[asyncio.Queue] = set()

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers.add(queue)
        self.logger.debug("Subscriber registered", subscribers=len(self._subscribers))
        return queue

    def unsubscribe(self, queue: asyncio.Queue):
        self._subscribers.discard(queue)
        self.logger.debug("Subscriber unregistered", subscribers=len(self._subscribers))

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, message: Message):
        """Deliver ``message`` to all subscribers without waiting."""
        for queue in list(self._subscribers):
            if queue.full():
                try:
                    queue.get_nowait()
                except asyncio.QueueEmpty:
                    pass
            queue.put_nowait(message)


class RunReporter:
    """Logs progress lines through structlog and mirrors them onto the hub."""

    def __init__(self, hub: EventHub, logger: structlog.stdlib.BoundLogger):
        self.hub = hub
        self.logger = logger

    def _emit(self, level: str, line: str, **fields):
        getattr(self.logger, level)(line, **fields)
        if fields:
            details = ", ".join(f"{key}={value}" for key, value in fields.items())
            line = f"{line} ({details})"
        self.hub.publish(Message(type=MESSAGE_LOG, content=f"[{level.upper()}] {line}"))

    def info(self, line: str, **fields):
        self._emit("info", line, **fields)

    def warning(self, line: str, **fields):
        self._emit("warning", line, **fields)

    def error(self, line: str, **fields):
        self._emit("error", line, **fields)

    def status(self, state: str):
        self.hub.publish(Message(type=MESSAGE_STATUS, content=state))

    def result(self, payload: Dict[str, Any]):
        self.hub.publish(Message(type=MESSAGE_RESULT, content=json.dumps(payload, ensure_ascii=False)))
