"""Bingo board: a 5x5 grid of cells, each a number or the FREE sentinel."""

import random
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from bingo.errors import InvalidActionError

BOARD_SIZE = 5
FREE_TOKEN = 'FREE'
MIN_NUMBER = 1
# Widest number range a session may use
MAX_NUMBER_LIMIT = 75

JsonCell = Union[int, str]


@dataclass(frozen=True)
class Cell:
    """Either ``Cell(number=n)`` or the free square ``FREE`` (number is None)."""

    number: Optional[int] = None

    @property
    def is_free(self) -> bool:
        return self.number is None

    def is_satisfied(self, called: Iterable[int]) -> bool:
        # The free square counts as marked whatever has been called
        if self.is_free:
            return True
        return self.number in called

    def to_json(self) -> JsonCell:
        return FREE_TOKEN if self.is_free else self.number

    @classmethod
    def from_json(cls, value: JsonCell) -> 'Cell':
        if value == FREE_TOKEN:
            return FREE
        # bool is an int subclass; reject it explicitly
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidActionError(f'Invalid board cell: {value!r}')
        return cls(number=value)


FREE = Cell()


@dataclass(frozen=True)
class Board:
    rows: Tuple[Tuple[Cell, ...], ...]

    def cell(self, row: int, col: int) -> Cell:
        return self.rows[row][col]

    def columns(self) -> List[Tuple[Cell, ...]]:
        return [tuple(r[c] for r in self.rows) for c in range(BOARD_SIZE)]

    def main_diagonal(self) -> Tuple[Cell, ...]:
        return tuple(self.rows[i][i] for i in range(BOARD_SIZE))

    def anti_diagonal(self) -> Tuple[Cell, ...]:
        return tuple(self.rows[i][BOARD_SIZE - 1 - i] for i in range(BOARD_SIZE))

    def corners(self) -> Tuple[Cell, ...]:
        last = BOARD_SIZE - 1
        return (self.rows[0][0], self.rows[0][last], self.rows[last][0], self.rows[last][last])

    def cells(self) -> List[Cell]:
        return [c for r in self.rows for c in r]

    def numbers(self) -> List[int]:
        return [c.number for c in self.cells() if not c.is_free]

    def to_json(self) -> List[List[JsonCell]]:
        return [[c.to_json() for c in r] for r in self.rows]

    @classmethod
    def from_json(cls, grid: Sequence[Sequence[JsonCell]], max_number: Optional[int] = None) -> 'Board':
        if not isinstance(grid, (list, tuple)) or len(grid) != BOARD_SIZE:
            raise InvalidActionError(f'Board must have {BOARD_SIZE} rows')
        rows = []
        for r in grid:
            if not isinstance(r, (list, tuple)) or len(r) != BOARD_SIZE:
                raise InvalidActionError(f'Board rows must have {BOARD_SIZE} cells')
            rows.append(tuple(Cell.from_json(v) for v in r))
        board = cls(rows=tuple(rows))
        board.validate(max_number)
        return board

    def validate(self, max_number: Optional[int] = None) -> None:
        free_count = sum(1 for c in self.cells() if c.is_free)
        if free_count != 1:
            raise InvalidActionError('Board must contain exactly one FREE cell')
        numbers = self.numbers()
        if len(set(numbers)) != len(numbers):
            raise InvalidActionError('Board contains duplicate numbers')
        upper = max_number if max_number is not None else max(numbers)
        if any(n < MIN_NUMBER or n > upper for n in numbers):
            raise InvalidActionError(f'Board numbers must be between {MIN_NUMBER} and {upper}')


def generate_board(max_number: int = 25, rng: Optional[random.Random] = None) -> Board:
    """Random board with the FREE square in the centre."""
    needed = BOARD_SIZE * BOARD_SIZE - 1
    if max_number < needed or max_number > MAX_NUMBER_LIMIT:
        raise InvalidActionError(f'max_number must be between {needed} and {MAX_NUMBER_LIMIT}')
    rng = rng or random
    numbers = rng.sample(range(MIN_NUMBER, max_number + 1), needed)
    centre = BOARD_SIZE // 2
    rows = []
    it = iter(numbers)
    for i in range(BOARD_SIZE):
        row = []
        for j in range(BOARD_SIZE):
            row.append(FREE if (i == centre and j == centre) else Cell(number=next(it)))
        rows.append(tuple(row))
    return Board(rows=tuple(rows))
