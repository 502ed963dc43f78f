"""Pre-round progress reconciliation and outbound progress rate limiting."""

import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from bingo_client import bus as topics
from bingo_client.bus import EventBus
from bingo_client.models import Ack, Participant, Tracked, clamp_cells, placeholder_name
from .timers import TimerRegistry

logger = logging.getLogger(__name__)

REPORT_TIMER_KEY = 'progress-report'


def now_ms() -> float:
    return time.time() * 1000.0


def _roster_identity(entry: Any) -> Tuple[str, str, bool]:
    if isinstance(entry, Participant):
        return entry.id, entry.display_name, entry.is_host
    pid = str(entry.get('id'))
    name = entry.get('display_name') or entry.get('displayName') or entry.get('username') or ''
    is_host = bool(entry.get('is_host', entry.get('isHost', False)))
    return pid, name, is_host


class PregameReconciler:
    """Merges this client's and peers' pre-round progress.

    Every mutation carries a timestamp. A report older than what is stored
    for that participant is discarded, except that ``cells_completed``
    always keeps the maximum seen. ``confirmed_order`` records the order in
    which participants first became ready and is never shortened within a
    phase.
    """

    def __init__(self, bus: EventBus, clock: Callable[[], float] = now_ms) -> None:
        self.bus = bus
        self.clock = clock
        self.room_id: Optional[str] = None
        self._participants: Dict[str, Participant] = {}
        self._confirmed_order: List[str] = []

    def begin(self, room_id: str, roster: Iterable[Any] = ()) -> None:
        """Start a fresh pre-round phase; everyone starts with clean progress."""
        self.clear()
        self.room_id = room_id
        for entry in roster or ():
            pid, name, is_host = _roster_identity(entry)
            self._participants[pid] = Participant(pid, name, is_host, last_updated_at=0)
        logger.info(f"[pregame-begin] room={room_id} players={sorted(self._participants)}")

    def clear(self) -> None:
        self.room_id = None
        self._participants = {}
        self._confirmed_order = []

    def participant(self, participant_id: str) -> Optional[Participant]:
        return self._participants.get(participant_id)

    @property
    def participants(self) -> List[Participant]:
        return list(self._participants.values())

    def sync_roster(self, roster: Iterable[Any]) -> None:
        """Refresh identities from the room roster without touching progress."""
        for entry in roster or ():
            pid, name, is_host = _roster_identity(entry)
            existing = self._participants.get(pid)
            if existing is None:
                self._participants[pid] = Participant(pid, name, is_host)
                continue
            if name:
                existing.display_name = name
            existing.is_host = is_host
            existing.is_ghost = False
        self._publish()

    def _get_or_create(self, participant_id: str, ts: float) -> Tuple[Participant, bool]:
        existing = self._participants.get(participant_id)
        if existing is not None:
            return existing, False
        ghost = Participant(participant_id, placeholder_name(participant_id), last_updated_at=ts, is_ghost=True)
        self._participants[participant_id] = ghost
        logger.info(f"[pregame-ghost] player={participant_id} room={self.room_id}")
        return ghost, True

    def _confirm(self, participant_id: str) -> None:
        if participant_id not in self._confirmed_order:
            self._confirmed_order.append(participant_id)
            logger.info(f"[pregame-confirmed] player={participant_id} order={self._confirmed_order}")

    def upsert_participant(self, report: Participant) -> Participant:
        ts = report.last_updated_at or self.clock()
        prev = self._participants.get(report.id)
        if prev is None:
            created = Participant(
                report.id, report.display_name, report.is_host, report.is_ready, report.board_complete,
                report.cells_completed, ts, report.is_ghost,
            )
            self._participants[report.id] = created
            if created.is_ready:
                self._confirm(created.id)
            self._publish()
            return created

        newer = ts >= prev.last_updated_at
        if not report.is_ghost:
            prev.display_name = report.display_name or prev.display_name
            prev.is_host = report.is_host
            prev.is_ghost = False
        prev.cells_completed = max(prev.cells_completed, report.cells_completed)
        if newer:
            if report.is_ready and not prev.is_ready:
                self._confirm(prev.id)
            prev.is_ready = report.is_ready
            prev.board_complete = report.board_complete
        prev.last_updated_at = max(prev.last_updated_at, ts)
        self._publish()
        return prev

    def record_progress(self, participant_id: str, cells_completed: int, is_complete: bool,
                        timestamp: Optional[float] = None) -> bool:
        """Merge a progress report; returns False when it was stale."""
        ts = timestamp if timestamp is not None else self.clock()
        cells = clamp_cells(cells_completed)
        participant, created = self._get_or_create(participant_id, ts)
        if created:
            participant.cells_completed = cells
            participant.board_complete = bool(is_complete)
            self._publish()
            return True

        participant.cells_completed = max(participant.cells_completed, cells)
        if participant.last_updated_at > ts:
            logger.debug(
                f"[pregame-stale] kind=progress player={participant_id} ts={ts} stored={participant.last_updated_at}"
            )
            self._publish()
            return False
        participant.board_complete = participant.board_complete or bool(is_complete)
        participant.last_updated_at = ts
        self._publish()
        return True

    def record_readiness(self, participant_id: str, is_ready: bool, timestamp: Optional[float] = None) -> bool:
        """Merge a readiness report; returns False when it was stale."""
        ts = timestamp if timestamp is not None else self.clock()
        participant, created = self._get_or_create(participant_id, ts)
        if not created and participant.last_updated_at > ts:
            logger.debug(
                f"[pregame-stale] kind=ready player={participant_id} ts={ts} stored={participant.last_updated_at}"
            )
            return False
        if is_ready and (created or not participant.is_ready):
            self._confirm(participant_id)
        participant.is_ready = bool(is_ready)
        participant.last_updated_at = max(participant.last_updated_at, ts)
        self._publish()
        return True

    def all_ready(self) -> bool:
        if not self._participants:
            return False
        return all(p.counts_as_ready for p in self._participants.values())

    def confirmed_order(self) -> List[str]:
        return list(self._confirmed_order)

    def ready_count(self) -> int:
        return sum(1 for p in self._participants.values() if p.counts_as_ready)

    def completed_count(self) -> int:
        return sum(1 for p in self._participants.values() if p.cells_completed >= 25)

    def _publish(self) -> None:
        self.bus.publish(topics.PREGAME_UPDATED, {
            'room_id': self.room_id,
            'participants': [p.to_dict() for p in self._participants.values()],
            'confirmed_order': list(self._confirmed_order),
            'all_ready': self.all_ready(),
            'ready_count': self.ready_count(),
            'completed_count': self.completed_count(),
        })


SendProgress = Callable[[int, bool, Callable[[Ack], None]], None]


class ProgressReporter:
    """Rate-limits this client's outbound board progress reports.

    - Unchanged counts are never re-sent unless forced, and returning to the
      last-sent count drops any pending report
    - A changed count goes out at once if the last report is at least one
      debounce window old; otherwise one trailing report is scheduled for
      the end of the window, replacing any report already pending
    - A rejected ack restores the last-sent marker so the count is retried
    """

    def __init__(self, timers: TimerRegistry, send: SendProgress, clock: Callable[[], float] = now_ms,
                 debounce_ms: int = 2000) -> None:
        self.timers = timers
        self.send = send
        self.clock = clock
        self.debounce_ms = debounce_ms
        # (cells, sent_at_ms) of the last report
        self._last = Tracked((0, None))

    @property
    def last_sent_cells(self) -> int:
        return self._last.local[0]

    @property
    def has_pending(self) -> bool:
        return self.timers.is_pending(REPORT_TIMER_KEY)

    def report(self, cells_completed: int, is_complete: bool = False, force: bool = False) -> bool:
        """Returns True if a report was sent immediately."""
        now = self.clock()
        last_cells, last_time = self._last.local
        if not force and cells_completed == last_cells:
            self.timers.cancel(REPORT_TIMER_KEY)
            return False
        if not force and last_time is not None and (now - last_time) < self.debounce_ms:
            remaining = self.debounce_ms - (now - last_time)
            self.timers.schedule(REPORT_TIMER_KEY, remaining / 1000.0, self.report, cells_completed, is_complete, True)
            logger.debug(f"[progress-defer] cells={cells_completed} in={remaining:.0f}ms")
            return False
        self.timers.cancel(REPORT_TIMER_KEY)
        self._last.set_local((cells_completed, now))
        logger.debug(f"[progress-send] cells={cells_completed} complete={is_complete} forced={force}")
        self.send(cells_completed, is_complete, self._on_ack)
        return True

    def _on_ack(self, ack: Ack) -> None:
        if ack.success:
            self._last.confirm()
            return
        restored = self._last.rollback()
        logger.warning(f"[progress-rejected] message={ack.message} restored_cells={restored[0]}")

    def reset(self) -> None:
        self.timers.cancel(REPORT_TIMER_KEY)
        self._last = Tracked((0, None))
