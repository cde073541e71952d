from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Tuple
import random


class Phase(str, Enum):
    NOT_STARTED = "not_started"
    ACTIVE = "active"
    WON = "won"
    LOST = "lost"


DIFFICULTIES: Dict[str, Tuple[int, int, int]] = {
    "easy": (8, 8, 10),
    "medium": (12, 12, 25),
    "hard": (16, 16, 40),
}

@dataclass
class Cell:
    is_mine: bool = False
    is_revealed: bool = False
    is_flagged: bool = False
    neighbor_mines: int = 0


@dataclass
class GameSession:
    """One game: the grid plus the session-level counters.

    ``game_over``, ``game_won``, ``is_running`` and ``mines_placed`` are
    views of ``phase`` rather than independent fields.
    """

    rows: int
    cols: int
    mine_count: int
    grid: List[List[Cell]]
    phase: Phase = Phase.NOT_STARTED
    flag_count: int = 0
    elapsed_seconds: int = 0
    rng: random.Random = field(default_factory=random.Random, repr=False, compare=False)

    @property
    def mines_placed(self) -> bool:
        return self.phase is not Phase.NOT_STARTED

    @property
    def is_running(self) -> bool:
        return self.phase is Phase.ACTIVE

    @property
    def game_over(self) -> bool:
        return self.phase is Phase.LOST

    @property
    def game_won(self) -> bool:
        return self.phase is Phase.WON

    @property
    def is_terminal(self) -> bool:
        return self.phase in (Phase.WON, Phase.LOST)

    def in_bounds(self, row: int, col: int) -> bool:
        return 0 <= row < self.rows and 0 <= col < self.cols

    def cell(self, row: int, col: int) -> Cell:
        return self.grid[row][col]


def _neighbors(r: int, c: int, rows: int, cols: int) -> Iterator[Tuple[int, int]]:
    for nr in range(max(0, r - 1), min(rows, r + 2)):
        for nc in range(max(0, c - 1), min(cols, c + 2)):
            if nr == r and nc == c:
                continue
            yield nr, nc


def _in_exclusion_zone(row: int, col: int, exclude_row: int, exclude_col: int) -> bool:
    return abs(row - exclude_row) <= 1 and abs(col - exclude_col) <= 1


def max_exclusion_zone(rows: int, cols: int) -> int:
    """Largest 3x3 block around a first reveal, clamped to the grid."""
    return min(rows, 3) * min(cols, 3)


def initialize(rows: int, cols: int, mine_count: int, rng_seed: int | None = None) -> GameSession:
    if rows < 1 or cols < 1 or mine_count < 0:
        raise ValueError("invalid_board")
    if mine_count > rows * cols - max_exclusion_zone(rows, cols):
        raise ValueError("too_many_mines_for_board")
    grid = [[Cell() for _ in range(cols)] for _ in range(rows)]
    return GameSession(rows, cols, mine_count, grid, rng=random.Random(rng_seed))


def initialize_difficulty(difficulty: str, rng_seed: int | None = None) -> GameSession:
    try:
        rows, cols, mine_count = DIFFICULTIES[difficulty]
    except KeyError:
        raise ValueError("unknown_difficulty") from None
    return initialize(rows, cols, mine_count, rng_seed=rng_seed)


def count_neighbor_mines(s: GameSession, row: int, col: int) -> int:
    return sum(1 for nr, nc in _neighbors(row, col, s.rows, s.cols) if s.grid[nr][nc].is_mine)


def place_mines(s: GameSession, exclude_row: int, exclude_col: int) -> None:
    free = sum(
        1
        for r in range(s.rows)
        for c in range(s.cols)
        if not _in_exclusion_zone(r, c, exclude_row, exclude_col)
    )
    if s.mine_count > free:
        raise ValueError("insufficient_space_for_mines")
    placed = 0
    while placed < s.mine_count:
        r = s.rng.randrange(s.rows)
        c = s.rng.randrange(s.cols)
        if s.grid[r][c].is_mine or _in_exclusion_zone(r, c, exclude_row, exclude_col):
            continue
        s.grid[r][c].is_mine = True
        placed += 1
    for r in range(s.rows):
        for c in range(s.cols):
            cell = s.grid[r][c]
            if not cell.is_mine:
                cell.neighbor_mines = count_neighbor_mines(s, r, c)


def _reveal_all_mines(s: GameSession) -> None:
    for row in s.grid:
        for cell in row:
            if cell.is_mine:
                cell.is_revealed = True


def _flood_reveal(s: GameSession, row: int, col: int) -> None:
    stack = [(row, col)]
    while stack:
        r, c = stack.pop()
        if not s.in_bounds(r, c):
            continue
        cell = s.grid[r][c]
        if cell.is_revealed or cell.is_flagged:
            continue
        cell.is_revealed = True
        if cell.neighbor_mines == 0:
            stack.extend(_neighbors(r, c, s.rows, s.cols))


def check_win(s: GameSession) -> bool:
    for row in s.grid:
        for cell in row:
            if not cell.is_mine and not cell.is_revealed:
                return False
    s.phase = Phase.WON
    return True


def reveal(s: GameSession, row: int, col: int) -> GameSession:
    if s.is_terminal or not s.in_bounds(row, col):
        return s
    target = s.grid[row][col]
    if target.is_flagged or target.is_revealed:
        return s
    if s.phase is Phase.NOT_STARTED:
        place_mines(s, row, col)
        s.phase = Phase.ACTIVE
    if target.is_mine:
        _reveal_all_mines(s)
        s.phase = Phase.LOST
        return s
    _flood_reveal(s, row, col)
    check_win(s)
    return s


def toggle_flag(s: GameSession, row: int, col: int) -> GameSession:
    if s.is_terminal or not s.in_bounds(row, col):
        return s
    cell = s.grid[row][col]
    if cell.is_revealed:
        return s
    cell.is_flagged = not cell.is_flagged
    s.flag_count += 1 if cell.is_flagged else -1
    return s


def tick(s: GameSession) -> GameSession:
    if s.is_running:
        s.elapsed_seconds += 1
    return s


def count_revealed(s: GameSession) -> int:
    return sum(1 for row in s.grid for cell in row if cell.is_revealed)


def result(s: GameSession) -> str:
    if s.phase is Phase.WON:
        return "won"
    if s.phase is Phase.LOST:
        return "lost"
    return "none"


def to_client_view(s: GameSession) -> List[List[str]]:
    board: List[List[str]] = []
    for r in range(s.rows):
        row: List[str] = []
        for c in range(s.cols):
            cell = s.grid[r][c]
            if cell.is_revealed:
                view = "M" if cell.is_mine else str(cell.neighbor_mines)
            else:
                view = "F" if cell.is_flagged else "H"
            row.append(view)
        board.append(row)
    return board
