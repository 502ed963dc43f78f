import logging
from typing import List, Optional, Sequence

from bingo_client import bus as topics
from bingo_client.bus import EventBus
from bingo_client.models import Turn
from .timers import TimerRegistry

logger = logging.getLogger(__name__)

COUNTDOWN_KEY = 'turn-countdown'
TICK_SECONDS = 1


class TurnScheduler:
    """Round-robin turn order with a per-second countdown.

    The server's ``game:turn_started`` is authoritative and simply replaces
    the current turn; the local countdown only advances on its own when the
    time budget runs out before the server says otherwise.
    """

    def __init__(self, bus: EventBus, timers: TimerRegistry, default_time_limit: int = 30) -> None:
        self.bus = bus
        self.timers = timers
        self.default_time_limit = int(default_time_limit)
        self._order: List[str] = []
        self._turn: Optional[Turn] = None
        self._history: List[str] = []
        # Where to resume when the active player dropped out of the order
        self._resume_index: Optional[int] = None

    @property
    def order(self) -> List[str]:
        return list(self._order)

    @property
    def current_turn(self) -> Optional[Turn]:
        return self._turn

    @property
    def active_player_id(self) -> Optional[str]:
        return self._turn.active_player_id if self._turn and self._turn.is_active else None

    @property
    def history(self) -> List[str]:
        return list(self._history)

    def initialize(self, ordered_player_ids: Sequence[str]) -> bool:
        """Set the turn order; returns False when the call was a no-op.

        Same membership (ignoring order) keeps the established order so an
        in-progress turn is not clobbered. Changed membership keeps survivors
        in place and splices newcomers in just before the active player.
        """
        incoming = _dedupe(ordered_player_ids)
        if not incoming:
            logger.warning("[turn-init] empty order ignored")
            return False
        if self._order and set(self._order) == set(incoming):
            logger.debug(f"[turn-init-skip] order={self._order}")
            return False
        if not self._order or self._turn is None:
            self._order = incoming
            self._resume_index = None
            logger.info(f"[turn-init] order={self._order}")
            return True

        active = self._turn.active_player_id
        members = set(incoming)
        survivors = [pid for pid in self._order if pid in members]
        newcomers = [pid for pid in incoming if pid not in self._order]
        if active in survivors:
            pos = survivors.index(active)
            self._resume_index = None
        else:
            # The active player left; the survivor now at their old slot goes next
            old_index = self._order.index(active) if active in self._order else 0
            pos = sum(1 for pid in self._order[:old_index] if pid in members)
            self._resume_index = pos + len(newcomers)
        self._order = survivors[:pos] + newcomers + survivors[pos:]
        logger.info(f"[turn-splice] active={active} added={newcomers} order={self._order}")
        return True

    def start_turn(self, player_id: str, time_limit: Optional[int] = None) -> bool:
        if player_id not in self._order:
            logger.warning(f"[turn-reject] player={player_id} not in order={self._order}")
            return False
        limit = int(time_limit if time_limit is not None else self.default_time_limit)
        if self._turn is not None and self._turn.is_active and self._turn.active_player_id != player_id:
            self._history.append(self._turn.active_player_id)
        self._turn = Turn(active_player_id=player_id, remaining_time=limit, max_time=limit)
        self._resume_index = None
        logger.info(f"[turn-start] player={player_id} remaining={limit}s")
        self.bus.publish(topics.TURN_STARTED, self._turn)
        self._schedule_tick()
        return True

    def advance_to_next(self) -> Optional[str]:
        if self._turn is None or not self._order:
            return None
        current = self._turn.active_player_id
        if current in self._order:
            next_index = (self._order.index(current) + 1) % len(self._order)
        else:
            next_index = (self._resume_index or 0) % len(self._order)
        next_player = self._order[next_index]
        self._history.append(current)
        self._turn = self._turn.ended()
        self.start_turn(next_player, self._turn.max_time)
        return next_player

    def skip(self, requesting_player_id: str) -> bool:
        if self.active_player_id != requesting_player_id:
            logger.info(f"[turn-skip-reject] requester={requesting_player_id} active={self.active_player_id}")
            return False
        logger.info(f"[turn-skip] player={requesting_player_id}")
        self.advance_to_next()
        return True

    def stop(self) -> None:
        self.timers.cancel(COUNTDOWN_KEY)
        if self._turn is not None and self._turn.is_active:
            self._turn = self._turn.ended()
            self.bus.publish(topics.TURN_ENDED, self._turn)

    def reset(self) -> None:
        self.timers.cancel(COUNTDOWN_KEY)
        self._order = []
        self._turn = None
        self._history = []
        self._resume_index = None

    def _schedule_tick(self) -> None:
        turn = self._turn
        self.timers.schedule(COUNTDOWN_KEY, TICK_SECONDS, self._on_tick, turn)

    def _on_tick(self, expected: Turn) -> None:
        # A newer turn replaced the one this tick was counting down
        if self._turn is not expected:
            logger.debug(f"[turn-tick-abort] expected={expected.active_player_id}")
            return
        self._turn = expected.tick()
        self.bus.publish(topics.TURN_TICK, self._turn)
        if self._turn.remaining_time > 0:
            self._schedule_tick()
            return
        logger.info(f"[turn-timeout] player={self._turn.active_player_id}")
        self.bus.publish(topics.TURN_ENDED, self._turn)
        self.advance_to_next()


def _dedupe(ids: Sequence[str]) -> List[str]:
    seen = set()
    out = []
    for pid in ids or ():
        if pid is None or pid in seen:
            continue
        seen.add(pid)
        out.append(pid)
    return out
