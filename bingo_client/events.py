import logging
from datetime import datetime
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

# Outbound
JOIN_CHANNEL = 'room:join_channel'
LEAVE_ROOM = 'room:leave'
SUBMIT_VOTE = 'voting:submit_vote'
BOARD_UPDATE = 'pregame:board_update'
SET_READY = 'pregame:set_ready'
REQUEST_STATUS = 'pregame:request_status'
REQUEST_GAME_START = 'pregame:request_game_start'
SUBMIT_WORD = 'game:submit_word'
SELECT_WORD = 'game:select_word'

# Inbound
ROOM_UPDATED = 'room-updated'
GAME_STARTED = 'game-started'
VOTING_COMPLETED = 'voting:completed'
BOARD_PHASE_STARTED = 'board-phase-started'
PLAYER_BOARD_UPDATED = 'pregame:player_board_updated'
PLAYER_READY_UPDATED = 'pregame:player_ready_updated'
PLAYER_BOARD_COMPLETED = 'pregame:player_board_completed'
GAME_PHASE_STARTED = 'game-phase-started'
TURN_STARTED = 'game:turn_started'
WORD_SUBMITTED = 'game:word_submitted'
WORD_SELECTED = 'game:word_selected'
LINE_COUNTS = 'game:line_counts'
GAME_FINISHED = 'game:finished'
SERVER_ERROR = 'error'

# Older server builds still emit these names
LEGACY_ALIASES = {
    'voting-complete': VOTING_COMPLETED,
    'turn-changed': TURN_STARTED,
    'word-called': WORD_SUBMITTED,
    'game-ended': GAME_FINISHED,
}


def parse_timestamp(value: Any, clock: Callable[[], float]) -> float:
    """Epoch milliseconds from a number or an ISO 8601 string; the local clock otherwise."""
    if isinstance(value, bool):
        return clock()
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            return float(text)
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(text.replace('Z', '+00:00')).timestamp() * 1000.0
        except ValueError:
            logger.debug(f"[recv-timestamp] unparseable value={value!r}")
    return clock()


def payload_dict(data: Any) -> dict:
    return data if isinstance(data, dict) else {}


def first_of(data: dict, *keys: str, default: Optional[Any] = None) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return default


def register_event_handlers(engine, connection=None) -> None:
    """Bind the engine's inbound handlers on the connection.

    Safe to call more than once: the connection ignores a handler that is
    already registered for an event.
    """
    connection = connection or engine.connection
    connection.on(ROOM_UPDATED, engine.handle_room_updated)
    connection.on(GAME_STARTED, engine.handle_game_started)
    connection.on(VOTING_COMPLETED, engine.handle_voting_completed)
    connection.on(BOARD_PHASE_STARTED, engine.handle_board_phase_started)
    connection.on(PLAYER_BOARD_UPDATED, engine.handle_player_board_updated)
    connection.on(PLAYER_READY_UPDATED, engine.handle_player_ready_updated)
    connection.on(PLAYER_BOARD_COMPLETED, engine.handle_player_board_completed)
    connection.on(GAME_PHASE_STARTED, engine.handle_game_phase_started)
    connection.on(TURN_STARTED, engine.handle_turn_started)
    connection.on(WORD_SUBMITTED, engine.handle_word_submitted)
    connection.on(WORD_SELECTED, engine.handle_word_selected)
    connection.on(LINE_COUNTS, engine.handle_line_counts)
    connection.on(GAME_FINISHED, engine.handle_game_finished)
    connection.on(SERVER_ERROR, engine.handle_server_error)

    if engine.config.get('ACCEPT_LEGACY_EVENTS', True):
        handlers = {
            VOTING_COMPLETED: engine.handle_voting_completed,
            TURN_STARTED: engine.handle_turn_started,
            WORD_SUBMITTED: engine.handle_word_submitted,
            GAME_FINISHED: engine.handle_game_finished,
        }
        for legacy, current in LEGACY_ALIASES.items():
            connection.on(legacy, handlers[current])
    logger.debug("[events-registered] inbound handlers bound")
