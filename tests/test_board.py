from bingo_client import bus as topics
from bingo_client.models import Board, LineType
from bingo_client.services.board import BoardModel, completed_lines


def word_grid(prefix):
    return [[f"{prefix}{r}{c}" for c in range(5)] for r in range(5)]


def test_full_board_has_twelve_lines():
    board = Board.from_grid('p1', word_grid('w'))
    for cell in board.iter_cells():
        cell.is_marked = True
    lines = completed_lines(board)
    assert len(lines) == 12
    types = [line.type for line in lines]
    assert types.count(LineType.ROW) == 5
    assert types.count(LineType.COLUMN) == 5
    assert LineType.DIAGONAL in types and LineType.ANTI_DIAGONAL in types


def test_empty_board_has_no_lines():
    assert completed_lines(Board('p1')) == []


def test_anti_diagonal_detected_alone(bus):
    model = BoardModel(bus)
    model.snapshot_from_frozen_grids({'p1': word_grid('w')})
    for i in range(5):
        model.mark_word_across_all_boards(f"w{i}{4 - i}")
    lines = model.detect_completed_lines('board-p1')
    assert [(line.type, line.index) for line in lines] == [(LineType.ANTI_DIAGONAL, 0)]
    assert model.line_count('p1') == 1


def test_marking_scans_every_board(bus):
    model = BoardModel(bus)
    model.create_board('p1').cell_at(0, 0).word = 'Apple '
    model.create_board('p2').cell_at(2, 3).word = 'APPLE'
    model.create_board('p3').cell_at(1, 1).word = 'pear'
    published = []
    bus.subscribe(topics.BOARD_MARKED, published.append)

    marked = model.mark_word_across_all_boards('apple')

    assert marked == {'p1': ['p1-0-0'], 'p2': ['p2-2-3']}
    assert model.board_for('p1').cell_at(0, 0).is_marked
    assert model.board_for('p2').cell_at(2, 3).is_marked
    assert not model.board_for('p3').cell_at(1, 1).is_marked
    assert published[0]['word'] == 'apple'
    # A second call finds nothing left to mark
    assert model.mark_word_across_all_boards(' Apple') == {}


def test_duplicate_word_rejected_while_editing(bus):
    model = BoardModel(bus)
    model.create_board('p1')
    assert model.update_cell('p1-0-0', 'Tiger').success
    ack = model.update_cell('p1-0-1', ' tiger ')
    assert not ack.success
    assert ack.message == 'This word is already used on the board'
    assert model.board_for('p1').cell_at(0, 1).word == ''
    # Rewriting the same cell is not a duplicate
    assert model.update_cell('p1-0-0', 'TIGER').success
    assert not model.update_cell('nobody-0-0', 'lion').success


def test_board_ready_needs_full_unique_grid(bus):
    model = BoardModel(bus)
    model.create_board('p1')
    for r, row in enumerate(word_grid('x')):
        for c, word in enumerate(row):
            model.update_cell(f"p1-{r}-{c}", word)
    assert model.filled_count('p1') == 25
    assert model.is_board_ready('p1')
    assert model.board_as_grid('p1')[4][4] == 'x44'


def test_snapshot_replaces_and_freezes_boards(bus):
    model = BoardModel(bus)
    model.create_board('p1')
    model.update_cell('p1-0-0', 'draft')
    model.snapshot_from_frozen_grids({'p1': word_grid('a'), 'p2': word_grid('b'), 'p3': [['too', 'small']]})

    assert model.frozen
    assert sorted(b.player_id for b in model.boards) == ['p1', 'p2']
    assert model.board_for('p1').cell_at(0, 0).word == 'a00'
    assert not model.update_cell('p1-0-0', 'late edit').success


def test_snapshot_accepts_non_string_cells(bus):
    model = BoardModel(bus)
    numeric = word_grid('n')
    numeric[0][0] = 7
    numeric[0][1] = None
    model.snapshot_from_frozen_grids({'p1': numeric, 'p2': [1, 2, 3, 4, 5], 'p3': None})

    assert [b.player_id for b in model.boards] == ['p1']
    assert model.board_for('p1').cell_at(0, 0).word == '7'
    assert model.board_for('p1').cell_at(0, 1).word == ''
    assert model.frozen


def test_server_line_counts_never_lower_local_count(bus):
    model = BoardModel(bus)
    model.snapshot_from_frozen_grids({'p1': word_grid('a'), 'p2': word_grid('b')})
    for c in range(5):
        model.mark_word_across_all_boards(f"a0{c}")
    lines = []
    bus.subscribe(topics.BOARD_LINES, lines.append)

    model.apply_server_line_counts({'p1': 0, 'p2': 3})

    assert model.line_counts() == {'p1': 1, 'p2': 3}
    assert lines[-1] == {'p1': 1, 'p2': 3}
