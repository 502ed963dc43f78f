import logging
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from bingo_client import bus as topics
from bingo_client.bus import EventBus
from bingo_client.models import (
    Ack, BOARD_SIZE, Board, Cell, CompletedLine, LineType, TOTAL_CELLS, board_id_for, normalize_word,
)

logger = logging.getLogger(__name__)


def _line_specs() -> Iterable[Tuple[LineType, int, List[Tuple[int, int]]]]:
    for r in range(BOARD_SIZE):
        yield LineType.ROW, r, [(r, c) for c in range(BOARD_SIZE)]
    for c in range(BOARD_SIZE):
        yield LineType.COLUMN, c, [(r, c) for r in range(BOARD_SIZE)]
    yield LineType.DIAGONAL, 0, [(i, i) for i in range(BOARD_SIZE)]
    yield LineType.ANTI_DIAGONAL, 0, [(i, BOARD_SIZE - 1 - i) for i in range(BOARD_SIZE)]


# 5 rows + 5 columns + 2 diagonals
LINE_SPECS = tuple(_line_specs())


def completed_lines(board: Board) -> List[CompletedLine]:
    lines = []
    for line_type, index, coords in LINE_SPECS:
        if all(board.cell_at(r, c).is_marked for r, c in coords):
            lines.append(CompletedLine(line_type, index, tuple(coords)))
    return lines


class BoardModel:
    """All players' boards as seen by this client.

    Boards are editable during pre-round setup. The authoritative snapshot
    at the start of the turns phase replaces every board and freezes them;
    from then on only confirmed word calls mutate cells.
    """

    def __init__(self, bus: EventBus) -> None:
        self.bus = bus
        self._boards: Dict[str, Board] = {}
        self._cells: Dict[str, Tuple[Board, Cell]] = {}
        self._server_line_counts: Dict[str, int] = {}
        self.frozen = False
        self.current_word = ''

    @property
    def boards(self) -> List[Board]:
        return list(self._boards.values())

    def board_for(self, player_id: str) -> Optional[Board]:
        return self._boards.get(player_id)

    def get_board(self, board_id: str) -> Optional[Board]:
        for board in self._boards.values():
            if board.id == board_id:
                return board
        return None

    def create_board(self, participant_id: str) -> Board:
        existing = self._boards.get(participant_id)
        if existing is not None:
            return existing
        board = Board(participant_id)
        self._register(board)
        logger.info(f"[board-create] player={participant_id}")
        return board

    def _register(self, board: Board) -> None:
        self._boards[board.player_id] = board
        for cell in board.iter_cells():
            self._cells[cell.id] = (board, cell)

    def is_duplicate_word(self, board: Board, word: str, cell_id: Optional[str] = None) -> bool:
        key = normalize_word(word)
        if not key:
            return False
        return any(
            cell.id != cell_id and normalize_word(cell.word) == key
            for cell in board.iter_cells()
        )

    def update_cell(self, cell_id: str, word: str) -> Ack:
        """Write a word into a cell during editing. Duplicates are rejected."""
        if self.frozen:
            return Ack.rejected('Boards are locked for the turns phase')
        entry = self._cells.get(cell_id)
        if entry is None:
            logger.warning(f"[board-reject] unknown cell={cell_id}")
            return Ack.rejected(f'Unknown cell {cell_id}')
        board, cell = entry
        text = (word or '').strip()
        if self.is_duplicate_word(board, text, cell_id):
            logger.info(f"[board-duplicate] cell={cell_id} word={text!r}")
            return Ack.rejected('This word is already used on the board')
        cell.word = text
        logger.debug(f"[board-edit] cell={cell_id} word={text!r} filled={board.filled_count}")
        return Ack(True)

    def filled_count(self, player_id: str) -> int:
        board = self._boards.get(player_id)
        return board.filled_count if board else 0

    def has_duplicates(self, player_id: str) -> bool:
        board = self._boards.get(player_id)
        if board is None:
            return False
        words = [normalize_word(c.word) for c in board.iter_cells() if c.is_filled]
        return len(words) != len(set(words))

    def is_board_ready(self, player_id: str) -> bool:
        return self.filled_count(player_id) == TOTAL_CELLS and not self.has_duplicates(player_id)

    def board_as_grid(self, player_id: str) -> Optional[List[List[str]]]:
        board = self._boards.get(player_id)
        return board.to_grid() if board else None

    def find_unmarked_cell(self, player_id: str, word: str) -> Optional[Cell]:
        board = self._boards.get(player_id)
        target = normalize_word(word)
        if board is None or not target:
            return None
        for cell in board.iter_cells():
            if not cell.is_marked and normalize_word(cell.word) == target:
                return cell
        return None

    def highlight_word(self, word: str) -> str:
        # Pre-submit highlight only; no cell is touched
        self.current_word = (word or '').strip()
        return self.current_word

    def mark_word_across_all_boards(self, word: str) -> Dict[str, List[str]]:
        """Mark every cell on every board whose word matches.

        Returns marked cell ids per player for boards that changed.
        """
        target = normalize_word(word)
        marked: Dict[str, List[str]] = {}
        if not target:
            return marked
        for player_id, board in self._boards.items():
            for cell in board.iter_cells():
                if not cell.is_marked and normalize_word(cell.word) == target:
                    cell.is_marked = True
                    marked.setdefault(player_id, []).append(cell.id)
        self.current_word = (word or '').strip()
        if marked:
            logger.info(f"[board-mark] word={self.current_word!r} boards={sorted(marked)}")
            self.bus.publish(topics.BOARD_MARKED, {'word': self.current_word, 'cells': marked})
            self.bus.publish(topics.BOARD_LINES, self.line_counts())
        else:
            logger.debug(f"[board-mark] word={self.current_word!r} matched nothing")
        return marked

    def detect_completed_lines(self, board_id: str) -> List[CompletedLine]:
        board = self.get_board(board_id) or self._boards.get(board_id)
        if board is None:
            return []
        return completed_lines(board)

    def line_count(self, player_id: str) -> int:
        local = len(self.detect_completed_lines(board_id_for(player_id)))
        return max(local, self._server_line_counts.get(player_id, 0))

    def line_counts(self) -> Dict[str, int]:
        # Lines never un-complete, so the larger of local and server counts wins
        counts = {pid: len(completed_lines(board)) for pid, board in self._boards.items()}
        for pid, value in self._server_line_counts.items():
            counts[pid] = max(counts.get(pid, 0), value)
        return counts

    def apply_server_line_counts(self, counts: Mapping[str, int]) -> None:
        for player_id, value in (counts or {}).items():
            try:
                self._server_line_counts[str(player_id)] = int(value)
            except (TypeError, ValueError):
                logger.warning(f"[board-lines-bad] player={player_id} value={value!r}")
        self.bus.publish(topics.BOARD_LINES, self.line_counts())

    def snapshot_from_frozen_grids(self, grids: Mapping[str, List[List[str]]]) -> None:
        """Replace every board with the server's frozen grids; local edits are dropped."""
        boards = []
        for player_id, grid in (grids or {}).items():
            try:
                boards.append(Board.from_grid(str(player_id), grid))
            except (AttributeError, TypeError, ValueError) as exc:
                logger.warning(f"[board-snapshot-skip] player={player_id} error={exc}")
        self._boards = {}
        self._cells = {}
        self._server_line_counts = {}
        for board in boards:
            self._register(board)
        self.frozen = True
        self.current_word = ''
        logger.info(f"[board-snapshot] players={sorted(self._boards)}")

    def reset(self) -> None:
        self._boards = {}
        self._cells = {}
        self._server_line_counts = {}
        self.frozen = False
        self.current_word = ''
