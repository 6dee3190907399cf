"""Win predicates evaluated against a board and the set of called numbers."""

from typing import Callable, Dict, Iterable, Sequence

from bingo.errors import InvalidActionError
from .board import BOARD_SIZE, Board, Cell

LINES = 'lines'
LINE = 'line'
FULL = 'full'
CORNERS = 'corners'
DIAGONAL = 'diagonal'

WIN_PATTERNS = (LINES, LINE, FULL, CORNERS, DIAGONAL)

# Rows, columns and the two diagonals
MAX_REQUIRED_LINES = 2 * BOARD_SIZE + 2


def _all_marked(cells: Sequence[Cell], called: set) -> bool:
    return all(c.is_satisfied(called) for c in cells)


def completed_lines(board: Board, called: Iterable[int]) -> int:
    """Count fully marked rows, columns and both diagonals (0..12)."""
    called = set(called)
    lines = list(board.rows) + board.columns() + [board.main_diagonal(), board.anti_diagonal()]
    return sum(1 for line in lines if _all_marked(line, called))


def line_win(board: Board, called: set) -> bool:
    return any(_all_marked(r, called) for r in board.rows) or any(
        _all_marked(c, called) for c in board.columns()
    )


def full_win(board: Board, called: set) -> bool:
    return _all_marked(board.cells(), called)


def corners_win(board: Board, called: set) -> bool:
    return _all_marked(board.corners(), called)


def diagonal_win(board: Board, called: set) -> bool:
    return _all_marked(board.main_diagonal(), called) or _all_marked(board.anti_diagonal(), called)


_PREDICATES: Dict[str, Callable[[Board, set], bool]] = {
    LINE: line_win,
    FULL: full_win,
    CORNERS: corners_win,
    DIAGONAL: diagonal_win,
}


def validate_pattern(pattern: str, required_lines: int) -> None:
    if pattern not in WIN_PATTERNS:
        raise InvalidActionError(f"Unknown win pattern '{pattern}'", allowed=list(WIN_PATTERNS))
    if pattern == LINES and not (1 <= int(required_lines) <= MAX_REQUIRED_LINES):
        raise InvalidActionError(f'required_lines must be between 1 and {MAX_REQUIRED_LINES}')


def is_winning(board: Board, called: Iterable[int], pattern: str = LINES, required_lines: int = 5) -> bool:
    called = set(called)
    if pattern == LINES:
        return completed_lines(board, called) >= required_lines
    predicate = _PREDICATES.get(pattern)
    if predicate is None:
        raise InvalidActionError(f"Unknown win pattern '{pattern}'")
    return predicate(board, called)
