import logging
from typing import Optional

from bingo_client import bus as topics
from bingo_client.bus import EventBus
from bingo_client.models import GamePhase, PHASE_SEQUENCE, Session

logger = logging.getLogger(__name__)

# Components and the phases in which they accept input
LIVE_PHASES = {
    'voting': {GamePhase.VOTING},
    'editing': {GamePhase.PRE_ROUND_SETUP},
    'reconciler': {GamePhase.PRE_ROUND_SETUP},
    'turns': {GamePhase.ACTIVE_TURNS},
    'marking': {GamePhase.ACTIVE_TURNS},
}


class GamePhaseMachine:
    """Coarse game lifecycle driven only by server-echoed events.

    Transitions move exactly one step forward. Anything else is a late or
    duplicate notification and is ignored; there are no timeout-driven
    transitions here.
    """

    def __init__(self, session: Session, bus: EventBus) -> None:
        self.session = session
        self.bus = bus

    @property
    def phase(self) -> GamePhase:
        return self.session.phase

    @property
    def terminal_error(self) -> Optional[str]:
        return self.session.terminal_error

    def can_advance_to(self, target: GamePhase) -> bool:
        current = PHASE_SEQUENCE.index(self.session.phase)
        return PHASE_SEQUENCE.index(target) == current + 1

    def advance(self, target: GamePhase, reason: str = '') -> bool:
        """Apply a server-driven transition; returns True if the phase changed."""
        current = self.session.phase
        if target == current:
            # finished -> finished and repeated phase events are no-ops
            logger.debug(f"[phase-dup] phase={current.value} reason={reason}")
            return False
        if not self.can_advance_to(target):
            logger.info(f"[phase-ignore] current={current.value} requested={target.value} reason={reason}")
            return False
        self.session.phase = target
        logger.info(f"[phase-set] {current.value} -> {target.value} reason={reason}")
        self.bus.publish(topics.PHASE_CHANGED, {'previous': current, 'phase': target, 'reason': reason})
        return True

    def round_started(self) -> bool:
        return self.advance(GamePhase.VOTING, 'round started')

    def letter_pair_selected(self) -> bool:
        return self.advance(GamePhase.PRE_ROUND_SETUP, 'letter-pair selected')

    def turns_started(self) -> bool:
        return self.advance(GamePhase.ACTIVE_TURNS, 'turns phase started')

    def game_finished(self) -> bool:
        return self.advance(GamePhase.FINISHED, 'game finished')

    def is_live(self, component: str) -> bool:
        return self.session.phase in LIVE_PHASES.get(component, ())

    def fail(self, error: Exception) -> None:
        """Record a terminal connectivity error; the phase itself is left as is."""
        self.session.terminal_error = str(error)
        logger.error(f"[phase-fatal] phase={self.session.phase.value} error={error}")
        self.bus.publish(topics.SESSION_ERROR, {'error': error, 'phase': self.session.phase})

    def reset(self) -> None:
        """Return to the lobby for a new room or round."""
        previous = self.session.phase
        self.session.phase = GamePhase.LOBBY
        self.session.terminal_error = None
        if previous != GamePhase.LOBBY:
            logger.info(f"[phase-reset] {previous.value} -> lobby")
            self.bus.publish(topics.PHASE_CHANGED, {'previous': previous, 'phase': GamePhase.LOBBY, 'reason': 'reset'})
