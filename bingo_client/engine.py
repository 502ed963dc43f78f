import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Set

from bingo_client import bus as topics
from bingo_client import events
from bingo_client.bus import EventBus
from bingo_client.errors import ConnectionLostError
from bingo_client.events import first_of, parse_timestamp, payload_dict, register_event_handlers
from bingo_client.models import (
    Ack, BOARD_SIZE, ConnectionStatus, GamePhase, Session, TOTAL_CELLS, Tracked, cell_id_for,
)
from bingo_client.services.board import BoardModel
from bingo_client.services.phases import GamePhaseMachine
from bingo_client.services.pregame import PregameReconciler, ProgressReporter, now_ms
from bingo_client.services.scoring import final_standings, result_summary
from bingo_client.services.timers import TimerRegistry
from bingo_client.services.turns import TurnScheduler
from bingo_client.transport import ConnectionManager

logger = logging.getLogger(__name__)

SETUP_TIMER_KEY = 'setup-countdown'


def _loop_call_later(delay: float, callback: Callable[[], None]):
    return asyncio.get_running_loop().call_later(delay, callback)


def connection_from_config(config: Mapping[str, Any], **kwargs: Any) -> ConnectionManager:
    return ConnectionManager(
        config['SERVER_URL'],
        socketio_path=config.get('SOCKETIO_PATH', 'socket.io'),
        transports=config.get('TRANSPORTS') or None,
        connect_timeout=config.get('CONNECT_TIMEOUT_SEC', 10),
        ack_timeout=config.get('ACK_TIMEOUT_SEC', 10),
        base_delay=config.get('RECONNECT_BASE_DELAY_SEC', 1),
        max_attempts=config.get('MAX_RECONNECT_ATTEMPTS', 5),
        **kwargs,
    )


class GameEngine:
    """One player's view of one word-bingo game, kept in sync with the server.

    User operations return an ``Ack``; invalid requests are rejected locally
    without touching the network. Inbound server events arrive through the
    ``handle_*`` methods, which ignore events meant for another phase.
    """

    def __init__(self, player_id: str, config: Mapping[str, Any], connection: Optional[ConnectionManager] = None,
                 call_later: Callable[..., Any] = _loop_call_later, clock: Callable[[], float] = now_ms,
                 token: Optional[str] = None) -> None:
        self.config = config
        self.token = token
        self.clock = clock
        self.session = Session(local_player_id=player_id)
        self.bus = EventBus()
        self.timers = TimerRegistry(call_later)
        self.phases = GamePhaseMachine(self.session, self.bus)
        self.turns = TurnScheduler(self.bus, self.timers, int(config.get('TURN_DURATION_SEC', 30)))
        self.boards = BoardModel(self.bus)
        self.pregame = PregameReconciler(self.bus, clock)
        self.reporter = ProgressReporter(self.timers, self._send_progress, clock,
                                         int(config.get('PROGRESS_DEBOUNCE_MS', 2000)))
        self.connection = connection or connection_from_config(config)
        self.connection.add_status_listener(self._on_connection_status)

        self.roster: List[Any] = []
        self.letter_pairs: List[Any] = []
        self.selected_pair: Any = None
        self.final_result: Optional[Dict[str, Any]] = None
        self._standings: List[str] = []
        self._ready = Tracked(False)
        self._start_requested_epoch: Optional[int] = None
        self._tasks: Set[asyncio.Future] = set()

    @property
    def player_id(self) -> str:
        return self.session.local_player_id

    @property
    def room_id(self) -> Optional[str]:
        return self.session.room_id

    @property
    def phase(self) -> GamePhase:
        return self.session.phase

    @property
    def is_ready(self) -> bool:
        return self._ready.local

    # ---- task plumbing ----

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Future:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Future) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"[engine-task] failed error={exc!r}", exc_info=exc)

    async def drain(self) -> None:
        """Wait for every outbound request the engine has started."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _is_current(self, room_id: Optional[str], epoch: int) -> bool:
        return self.session.room_id == room_id and self.session.epoch == epoch

    async def _emit(self, event: str, payload: Any) -> Ack:
        sent = await self.connection.send(event, payload)
        return Ack(True) if sent else Ack.rejected('Socket not connected')

    # ---- connection ----

    async def connect(self) -> None:
        register_event_handlers(self)
        identity = {'userId': self.player_id}
        if self.token:
            identity['token'] = self.token
        try:
            await self.connection.connect(identity)
        except ConnectionLostError as exc:
            if self.session.terminal_error is None:
                self.phases.fail(exc)
            raise

    async def disconnect(self) -> None:
        if self.session.in_room:
            await self.leave_room()
        await self.connection.disconnect()
        await self.drain()

    def _on_connection_status(self, status: ConnectionStatus, error: Optional[Exception]) -> None:
        previous = self.session.connection_status
        self.session.connection_status = status
        self.bus.publish(topics.CONNECTION_STATUS, {'status': status, 'previous': previous})
        if status == ConnectionStatus.FAILED and error is not None:
            self.phases.fail(error)
        elif status == ConnectionStatus.CONNECTED:
            self.session.terminal_error = None
            if previous == ConnectionStatus.RECONNECTING and self.session.in_room:
                logger.info(f"[room-rejoin] room={self.session.room_id}")
                self._spawn(self._join_channel(self.session.room_id))

    # ---- room ----

    async def _join_channel(self, room_id: str) -> Ack:
        ack = await self.connection.request(events.JOIN_CHANNEL, room_id)
        if not ack.success:
            logger.warning(f"[room-join-rejected] room={room_id} message={ack.message}")
            return ack
        await self.connection.send(events.REQUEST_STATUS, room_id)
        return ack

    async def join_room(self, room_id: str, roster: Optional[Iterable[Any]] = None) -> Ack:
        if not room_id:
            return Ack.rejected('Room id is required')
        if not self.connection.is_connected():
            await self.connect()
        if self.session.in_room and self.session.room_id != room_id:
            await self.leave_room()
        if roster is not None:
            self.roster = list(roster)
        self.session.room_id = room_id
        logger.info(f"[room-join] room={room_id} player={self.player_id}")
        ack = await self._join_channel(room_id)
        if not ack.success and self.session.room_id == room_id:
            self.session.room_id = None
        return ack

    def _reset_round_state(self) -> None:
        self.session.epoch = self.timers.bump_epoch()
        self.turns.reset()
        self.boards.reset()
        self.pregame.clear()
        self.reporter.reset()
        self._ready = Tracked(False)
        self._start_requested_epoch = None
        self._standings = []
        self.final_result = None
        self.selected_pair = None
        self.letter_pairs = []
        self.turns.default_time_limit = int(self.config.get('TURN_DURATION_SEC', 30))

    async def leave_room(self) -> Ack:
        if not self.session.in_room:
            return Ack.rejected('Not in a room')
        room_id = self.session.room_id
        self._reset_round_state()
        self.session.room_id = None
        self.roster = []
        self.phases.reset()
        logger.info(f"[room-leave] room={room_id} epoch={self.session.epoch}")
        return await self._emit(events.LEAVE_ROOM, room_id)

    # ---- voting ----

    async def vote(self, pair_id: str) -> Ack:
        if not self.phases.is_live('voting'):
            return Ack.rejected('Voting is not open')
        payload = {'roomId': self.session.room_id, 'pairId': pair_id, 'playerId': self.player_id}
        return await self._emit(events.SUBMIT_VOTE, payload)

    # ---- pre-round setup ----

    def edit_cell(self, row: int, col: int, word: str) -> Ack:
        if not self.phases.is_live('editing'):
            return Ack.rejected('Boards can only be edited during setup')
        if not (0 <= row < BOARD_SIZE and 0 <= col < BOARD_SIZE):
            return Ack.rejected(f'No cell at ({row}, {col})')
        self.boards.create_board(self.player_id)
        ack = self.boards.update_cell(cell_id_for(self.player_id, row, col), word)
        if not ack.success:
            return ack
        self._report_own_progress()
        self._maybe_request_start()
        return ack

    def _report_own_progress(self, force: bool = False) -> None:
        filled = self.boards.filled_count(self.player_id)
        complete = self.boards.is_board_ready(self.player_id)
        self.pregame.record_progress(self.player_id, filled, complete)
        self.reporter.report(filled, complete, force)

    def _send_progress(self, cells_completed: int, is_complete: bool, on_ack: Callable[[Ack], None]) -> None:
        room_id, epoch = self.session.room_id, self.session.epoch
        payload = {
            'roomId': room_id,
            'playerId': self.player_id,
            'cellsCompleted': cells_completed,
            'totalCells': TOTAL_CELLS,
            'isComplete': is_complete,
        }

        def guarded(ack: Ack) -> None:
            if self._is_current(room_id, epoch):
                on_ack(ack)

        self._spawn(self.connection.send(events.BOARD_UPDATE, payload, callback=guarded))

    async def set_ready(self, is_ready: bool) -> Ack:
        """Optimistically flip readiness; a rejected ack reverts just that flag."""
        if not self.phases.is_live('editing'):
            return Ack.rejected('Readiness can only change during setup')
        room_id, epoch = self.session.room_id, self.session.epoch
        self._ready.set_local(bool(is_ready))
        self.pregame.record_readiness(self.player_id, bool(is_ready))
        payload = {
            'roomId': room_id,
            'isReady': bool(is_ready),
            'boardSnapshot': self.boards.board_as_grid(self.player_id),
        }
        ack = await self.connection.request(events.SET_READY, payload)
        if not self._is_current(room_id, epoch):
            logger.debug(f"[ready-stale] room={room_id} epoch={epoch}")
            return ack
        if ack.success:
            self._ready.confirm()
            self._maybe_request_start()
        else:
            restored = self._ready.rollback()
            self.pregame.record_readiness(self.player_id, restored)
            logger.warning(f"[ready-rejected] message={ack.message} restored={restored}")
        return ack

    def start_setup_countdown(self, seconds: Optional[float] = None) -> Ack:
        if not self.phases.is_live('editing'):
            return Ack.rejected('No setup phase in progress')
        delay = float(seconds if seconds is not None else self.config.get('BOARD_CREATION_SEC', 180))
        self.timers.schedule(SETUP_TIMER_KEY, delay, self._on_setup_expired, self.session.room_id, self.session.epoch)
        logger.info(f"[setup-countdown] room={self.session.room_id} seconds={delay}")
        return Ack(True)

    def _on_setup_expired(self, room_id: Optional[str], epoch: int) -> None:
        if not self._is_current(room_id, epoch) or not self.phases.is_live('editing'):
            logger.debug(f"[setup-expired-abort] room={room_id} epoch={epoch}")
            return
        logger.info(f"[setup-expired] room={room_id}")
        self._report_own_progress(force=True)
        self._spawn(self._finish_setup(room_id, epoch))

    async def _finish_setup(self, room_id: Optional[str], epoch: int) -> None:
        await self.set_ready(True)
        if self._is_current(room_id, epoch):
            await self._request_game_start('timer_expired')

    async def _request_game_start(self, reason: str) -> Ack:
        payload = {
            'roomId': self.session.room_id,
            'reason': reason,
            'confirmedOrder': self.pregame.confirmed_order(),
        }
        logger.info(f"[start-request] room={self.session.room_id} reason={reason} order={payload['confirmedOrder']}")
        return await self._emit(events.REQUEST_GAME_START, payload)

    def _maybe_request_start(self) -> None:
        if not self.phases.is_live('reconciler') or not self.pregame.all_ready():
            return
        if self._start_requested_epoch == self.session.epoch:
            return
        self._start_requested_epoch = self.session.epoch
        order = self.pregame.confirmed_order()
        self.bus.publish(topics.PREGAME_ALL_READY, {'room_id': self.session.room_id, 'confirmed_order': order})
        self._spawn(self._request_game_start('all_ready'))

    # ---- active turns ----

    def _check_word_call(self, word: str) -> Optional[Ack]:
        if not self.phases.is_live('marking'):
            return Ack.rejected('No game in progress')
        if self.turns.active_player_id != self.player_id:
            return Ack.rejected('Not your turn')
        if not (word or '').strip():
            return Ack.rejected('Word is required')
        if self.boards.find_unmarked_cell(self.player_id, word) is None:
            return Ack.rejected('Word is not on your board or already marked')
        return None

    async def submit_word(self, word: str) -> Ack:
        rejected = self._check_word_call(word)
        if rejected is not None:
            return rejected
        cell = self.boards.find_unmarked_cell(self.player_id, word)
        payload = {'roomId': self.session.room_id, 'playerId': self.player_id, 'word': cell.word, 'cellId': cell.id}
        return await self.connection.request(events.SUBMIT_WORD, payload)

    async def select_word(self, word: str) -> Ack:
        rejected = self._check_word_call(word)
        if rejected is not None:
            return rejected
        self.boards.highlight_word(word)
        payload = {'roomId': self.session.room_id, 'playerId': self.player_id, 'word': word.strip()}
        return await self._emit(events.SELECT_WORD, payload)

    def skip_turn(self) -> Ack:
        if not self.phases.is_live('turns'):
            return Ack.rejected('No game in progress')
        if not self.turns.skip(self.player_id):
            return Ack.rejected('Not your turn')
        return Ack(True)

    def standings(self) -> List[str]:
        return list(self._standings)

    # ---- inbound ----

    def handle_room_updated(self, data: Any) -> None:
        data = payload_dict(data)
        players = data.get('players')
        if players is None:
            return
        self.roster = list(players)
        if self.phases.is_live('reconciler'):
            self.pregame.sync_roster(self.roster)

    def handle_game_started(self, data: Any) -> None:
        data = payload_dict(data)
        if self.phases.round_started():
            self.letter_pairs = list(first_of(data, 'choseongPairs', 'letterPairs', 'pairs', default=[]))

    def handle_voting_completed(self, data: Any) -> None:
        data = payload_dict(data)
        if not self.phases.letter_pair_selected():
            return
        self.selected_pair = data.get('selectedPair')
        self.pregame.begin(self.session.room_id, self.roster)
        self.boards.reset()
        self.boards.create_board(self.player_id)
        self.reporter.reset()
        self._ready = Tracked(False)

    def handle_board_phase_started(self, data: Any) -> None:
        data = payload_dict(data)
        if self.phases.is_live('editing'):
            self.start_setup_countdown(first_of(data, 'timeLimit', 'duration'))

    def handle_player_board_updated(self, data: Any) -> None:
        data = payload_dict(data)
        pid = data.get('playerId')
        if not pid or not self.phases.is_live('reconciler'):
            logger.debug(f"[pregame-ignore] event=board_updated player={pid} phase={self.phase.value}")
            return
        ts = parse_timestamp(data.get('timestamp'), self.clock)
        self.pregame.record_progress(pid, data.get('cellsCompleted', 0), bool(data.get('isComplete')), ts)
        self._maybe_request_start()

    def handle_player_ready_updated(self, data: Any) -> None:
        data = payload_dict(data)
        pid = data.get('playerId')
        if not pid or not self.phases.is_live('reconciler'):
            logger.debug(f"[pregame-ignore] event=ready_updated player={pid} phase={self.phase.value}")
            return
        ts = parse_timestamp(data.get('timestamp'), self.clock)
        self.pregame.record_readiness(pid, bool(data.get('isReady')), ts)
        self._maybe_request_start()

    def handle_player_board_completed(self, data: Any) -> None:
        data = payload_dict(data)
        pid = data.get('playerId')
        if not pid or not self.phases.is_live('reconciler'):
            logger.debug(f"[pregame-ignore] event=board_completed player={pid} phase={self.phase.value}")
            return
        ts = parse_timestamp(data.get('timestamp'), self.clock)
        cells = first_of(data, 'completedCells', 'cellsCompleted', default=TOTAL_CELLS)
        self.pregame.record_progress(pid, cells, True, ts)
        self.pregame.record_readiness(pid, True, ts)
        self._maybe_request_start()

    def handle_game_phase_started(self, data: Any) -> None:
        data = payload_dict(data)
        if not self.phases.turns_started():
            return
        self.timers.cancel(SETUP_TIMER_KEY)
        self.reporter.reset()
        grids = data.get('boardsByPlayerId')
        if grids:
            self.boards.snapshot_from_frozen_grids(grids)
        else:
            self.boards.frozen = True
        duration = data.get('turnDuration')
        if duration:
            self.turns.default_time_limit = int(duration)
        order = data.get('turnOrder') or self.pregame.confirmed_order()
        if self.turns.initialize(order) and self.turns.current_turn is None:
            self.turns.start_turn(self.turns.order[0])

    def handle_turn_started(self, data: Any) -> None:
        data = payload_dict(data)
        if not self.phases.is_live('turns'):
            return
        pid = first_of(data, 'playerId', 'currentPlayerId')
        remaining = first_of(data, 'remainingTime', 'timeRemaining')
        if pid is not None:
            self.turns.start_turn(pid, remaining)

    def handle_word_submitted(self, data: Any) -> None:
        data = payload_dict(data)
        word = data.get('word')
        if not word or not self.phases.is_live('marking'):
            return
        self.boards.mark_word_across_all_boards(word)

    def handle_word_selected(self, data: Any) -> None:
        data = payload_dict(data)
        word = data.get('word')
        if not word or not self.phases.is_live('marking'):
            return
        self.boards.highlight_word(word)
        self.bus.publish(topics.WORD_SELECTED, {'word': self.boards.current_word, 'player_id': data.get('playerId')})

    def handle_line_counts(self, data: Any) -> None:
        data = payload_dict(data)
        if self.phases.is_live('marking'):
            self.boards.apply_server_line_counts(data.get('counts') or {})

    def handle_game_finished(self, data: Any) -> None:
        data = payload_dict(data)
        if not self.phases.game_finished():
            return
        self.turns.stop()
        finish_order = data.get('finishOrder') or [
            entry.get('id') for entry in data.get('rankings') or () if isinstance(entry, dict)
        ]
        counts = self.boards.line_counts()
        players = list(self.turns.order) + [pid for pid in counts if pid not in self.turns.order]
        self._standings = final_standings(players, counts, self.turns.order, finish_order)
        self.final_result = result_summary(data.get('winnerId'), self._standings, counts, data.get('finalScores'))
        logger.info(f"[game-finished] winner={self.final_result['winner_id']} standings={self._standings}")
        self.bus.publish(topics.GAME_FINISHED, self.final_result)

    def handle_server_error(self, data: Any) -> None:
        message = payload_dict(data).get('message') or (data if isinstance(data, str) else 'Unknown server error')
        logger.warning(f"[server-error] room={self.session.room_id} message={message}")
        self.bus.publish(topics.SESSION_ERROR, {'error': message, 'phase': self.session.phase, 'fatal': False})
