import logging
from collections import defaultdict
from typing import Any, Callable, DefaultDict, List

logger = logging.getLogger(__name__)

Handler = Callable[[Any], None]

PHASE_CHANGED = 'phase.changed'
CONNECTION_STATUS = 'connection.status'
SESSION_ERROR = 'session.error'
TURN_STARTED = 'turn.started'
TURN_TICK = 'turn.tick'
TURN_ENDED = 'turn.ended'
BOARD_MARKED = 'board.marked'
BOARD_LINES = 'board.lines'
PREGAME_UPDATED = 'pregame.updated'
PREGAME_ALL_READY = 'pregame.all_ready'
WORD_SELECTED = 'game.word_selected'
GAME_FINISHED = 'game.finished'


class EventBus:
    """In-process publish/subscribe for state changes consumed by the UI.

    Dispatch is synchronous and in subscription order. A failing handler is
    logged and does not stop delivery to the remaining handlers.
    """

    def __init__(self) -> None:
        self._handlers: DefaultDict[str, List[Handler]] = defaultdict(list)

    def subscribe(self, topic: str, handler: Handler) -> Handler:
        if handler not in self._handlers[topic]:
            self._handlers[topic].append(handler)
        return handler

    def unsubscribe(self, topic: str, handler: Handler) -> None:
        handlers = self._handlers.get(topic)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def publish(self, topic: str, payload: Any = None) -> None:
        for handler in list(self._handlers.get(topic, ())):
            try:
                handler(payload)
            except Exception:
                logger.exception(f"[bus-error] topic={topic} handler={getattr(handler, '__name__', handler)}")

    def clear(self) -> None:
        self._handlers.clear()
