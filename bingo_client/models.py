from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, Tuple, TypeVar

BOARD_SIZE = 5
TOTAL_CELLS = BOARD_SIZE * BOARD_SIZE

T = TypeVar('T')


class GamePhase(str, Enum):
    LOBBY = 'lobby'
    VOTING = 'voting'
    PRE_ROUND_SETUP = 'pre_round_setup'
    ACTIVE_TURNS = 'active_turns'
    FINISHED = 'finished'


# Sole legal forward order of phases
PHASE_SEQUENCE = (
    GamePhase.LOBBY,
    GamePhase.VOTING,
    GamePhase.PRE_ROUND_SETUP,
    GamePhase.ACTIVE_TURNS,
    GamePhase.FINISHED,
)


class ConnectionStatus(str, Enum):
    DISCONNECTED = 'disconnected'
    CONNECTING = 'connecting'
    CONNECTED = 'connected'
    RECONNECTING = 'reconnecting'
    FAILED = 'failed'


class LineType(str, Enum):
    ROW = 'row'
    COLUMN = 'column'
    DIAGONAL = 'diagonal'
    ANTI_DIAGONAL = 'anti_diagonal'


@dataclass(frozen=True)
class Ack:
    """Outcome of an operation: a server acknowledgement or a local rejection."""
    success: bool
    message: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Any) -> 'Ack':
        # Servers that ack without a body are treated as success
        if isinstance(payload, tuple):
            payload = payload[0] if payload else None
        if payload is None:
            return cls(True)
        if isinstance(payload, dict):
            return cls(bool(payload.get('success', True)), payload.get('message'))
        return cls(bool(payload))

    @classmethod
    def rejected(cls, message: str) -> 'Ack':
        return cls(False, message)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'success': self.success}
        if self.message is not None:
            data['message'] = self.message
        return data


class Tracked(Generic[T]):
    """Two-phase value: readers see ``local``; a rejection restores ``confirmed``."""

    def __init__(self, value: T) -> None:
        self.local = value
        self.confirmed = value

    def set_local(self, value: T) -> None:
        self.local = value

    def confirm(self, value: Optional[T] = None) -> None:
        if value is not None:
            self.local = value
        self.confirmed = self.local

    def rollback(self) -> T:
        self.local = self.confirmed
        return self.local

    @property
    def pending(self) -> bool:
        return self.local != self.confirmed

    def __repr__(self) -> str:
        return f"Tracked(local={self.local!r}, confirmed={self.confirmed!r})"


@dataclass
class Session:
    """The local client's view of one game."""
    room_id: Optional[str] = None
    local_player_id: Optional[str] = None
    phase: GamePhase = GamePhase.LOBBY
    connection_status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    terminal_error: Optional[str] = None
    # Bumped on every room/phase reset; timers stamped with an older epoch are stale
    epoch: int = 0

    @property
    def in_room(self) -> bool:
        return self.room_id is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'room_id': self.room_id,
            'local_player_id': self.local_player_id,
            'phase': self.phase.value,
            'connection_status': self.connection_status.value,
            'terminal_error': self.terminal_error,
        }


def placeholder_name(player_id: str) -> str:
    return f"Player_{str(player_id)[-6:]}"


@dataclass
class Participant:
    id: str
    display_name: str = ''
    is_host: bool = False
    is_ready: bool = False
    board_complete: bool = False
    cells_completed: int = 0
    last_updated_at: float = 0
    # Seen in progress reports before (or without) appearing in the room roster
    is_ghost: bool = False

    def __post_init__(self):
        if not self.display_name:
            self.display_name = placeholder_name(self.id)
        self.cells_completed = clamp_cells(self.cells_completed)

    @property
    def counts_as_ready(self) -> bool:
        return self.is_ready or self.board_complete

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'display_name': self.display_name,
            'is_host': self.is_host,
            'is_ready': self.is_ready,
            'board_complete': self.board_complete,
            'cells_completed': self.cells_completed,
            'last_updated_at': self.last_updated_at,
            'is_ghost': self.is_ghost,
        }


def clamp_cells(value: Any) -> int:
    try:
        count = int(value or 0)
    except (TypeError, ValueError):
        count = 0
    return max(0, min(TOTAL_CELLS, count))


def normalize_cell_text(word: Any) -> str:
    """Cell text as stored: None is empty, anything else is stringified and trimmed."""
    return '' if word is None else str(word).strip()


def normalize_word(word: Any) -> str:
    """Comparison key for words: surrounding whitespace trimmed, case folded."""
    return normalize_cell_text(word).casefold()


@dataclass
class Cell:
    id: str
    row: int
    col: int
    word: str = ''
    is_marked: bool = False

    @property
    def coordinates(self) -> Tuple[int, int]:
        return (self.row, self.col)

    @property
    def is_filled(self) -> bool:
        return bool(self.word.strip())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'word': self.word,
            'is_marked': self.is_marked,
            'coordinates': [self.row, self.col],
        }


def board_id_for(player_id: str) -> str:
    return f"board-{player_id}"


def cell_id_for(player_id: str, row: int, col: int) -> str:
    return f"{player_id}-{row}-{col}"


@dataclass
class Board:
    player_id: str
    cells: List[List[Cell]] = field(default_factory=list)

    def __post_init__(self):
        if not self.cells:
            self.cells = [
                [Cell(cell_id_for(self.player_id, r, c), r, c) for c in range(BOARD_SIZE)]
                for r in range(BOARD_SIZE)
            ]

    @property
    def id(self) -> str:
        return board_id_for(self.player_id)

    @classmethod
    def from_grid(cls, player_id: str, grid: List[List[str]]) -> 'Board':
        if len(grid) != BOARD_SIZE or any(len(row) != BOARD_SIZE for row in grid):
            raise ValueError(f"board for {player_id} must be {BOARD_SIZE}x{BOARD_SIZE}")
        cells = [
            [Cell(cell_id_for(player_id, r, c), r, c, word=normalize_cell_text(word)) for c, word in enumerate(row)]
            for r, row in enumerate(grid)
        ]
        return cls(player_id, cells)

    def iter_cells(self):
        for row in self.cells:
            for cell in row:
                yield cell

    def cell_at(self, row: int, col: int) -> Cell:
        return self.cells[row][col]

    @property
    def filled_count(self) -> int:
        return sum(1 for cell in self.iter_cells() if cell.is_filled)

    def to_grid(self) -> List[List[str]]:
        return [[cell.word for cell in row] for row in self.cells]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'player_id': self.player_id,
            'cells': [[cell.to_dict() for cell in row] for row in self.cells],
        }


@dataclass(frozen=True)
class CompletedLine:
    type: LineType
    index: int
    cells: Tuple[Tuple[int, int], ...]

    def to_dict(self) -> Dict[str, Any]:
        return {'type': self.type.value, 'index': self.index, 'cells': [list(c) for c in self.cells]}


@dataclass(frozen=True)
class Turn:
    active_player_id: str
    remaining_time: int
    max_time: int
    is_active: bool = True

    def tick(self) -> 'Turn':
        remaining = max(0, self.remaining_time - 1)
        return replace(self, remaining_time=remaining, is_active=remaining > 0)

    def ended(self) -> 'Turn':
        return replace(self, is_active=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'active_player_id': self.active_player_id,
            'remaining_time': self.remaining_time,
            'max_time': self.max_time,
            'is_active': self.is_active,
        }
