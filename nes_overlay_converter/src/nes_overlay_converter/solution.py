"""Parsing of CMPL CSV solution files.

The solver writes a semicolon separated export. The lines this module cares
about are the objective status and the decision variables::

    Objective status;optimal
    bgPal[0,3];B;1;0;1;-
    cellBg[2,5,0];B;1;0;1;-

Lines for other variables or other report sections are ignored. A line for a
known variable that does not parse is an error: the export format is assumed
stable, so a mismatch means the solver speaks another version of it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .errors import SolutionParseError
from .layer import Cell
from .palettes import Palette, fill_missing_palette_groups, make_palette
from .problem import CmplProblem

STATUS_PREFIX = "objective status"

VARIABLE_ARITY = {
    "bgPal": 2,
    "sprPal": 2,
    "cellBg": 3,
    "cellSpr": 3,
    "ovColor": 3,
}

VARIABLE_LINE = re.compile(r"^([A-Za-z_]\w*)\[([^\]]*)\]\s*;(.*)$")


@dataclass
class CmplSolution:
    status: str
    background_palettes: List[Palette] = field(default_factory=list)
    sprite_palettes: List[Palette] = field(default_factory=list)
    cell_background: Dict[Cell, int] = field(default_factory=dict)
    cell_sprite: Dict[Cell, int] = field(default_factory=dict)
    overlay_colors: Dict[Tuple[int, int, int], int] = field(default_factory=dict)


def is_relevant_line(line: str) -> bool:
    return any(line.startswith(name + "[") for name in VARIABLE_ARITY)


def parse_solution_value(line: str) -> Tuple[str, List[int], int]:
    """Split ``name[i,j,...];type;value;...`` into its name, indices and value."""

    match = VARIABLE_LINE.match(line.strip())
    if match is None:
        raise SolutionParseError(f"Malformed solution line: {line!r}")
    name, raw_indices, rest = match.groups()
    try:
        indices = [int(part) for part in raw_indices.split(",")]
    except ValueError as exc:
        raise SolutionParseError(f"Non-integer variable index in line: {line!r}") from exc
    fields = rest.split(";")
    if len(fields) < 2:
        raise SolutionParseError(f"Missing variable value in line: {line!r}")
    try:
        value = float(fields[1])
    except ValueError as exc:
        raise SolutionParseError(f"Non-numeric variable value in line: {line!r}") from exc
    return name, indices, int(round(value))


def _check_range(name: str, value: int, upper: int, line: str) -> None:
    if not 0 <= value < upper:
        raise SolutionParseError(f"{name} index {value} out of range [0, {upper}) in line: {line!r}")


def _assign_cell(table: Dict[Cell, int], cell: Cell, palette: int, line: str) -> None:
    previous = table.get(cell)
    if previous is not None and previous != palette:
        raise SolutionParseError(
            f"Cell {cell} assigned palettes {previous} and {palette}; line: {line!r}"
        )
    table[cell] = palette


def _palette_list(found: Dict[int, Set[int]], num_palettes: int) -> List[Palette]:
    used = max(found) + 1 if found else 0
    palettes = [make_palette(found.get(index, ())) for index in range(used)]
    return fill_missing_palette_groups(palettes, num_palettes)


def parse_cmpl_solution(lines: Iterable[str], problem: CmplProblem) -> Optional[CmplSolution]:
    """Decode a solution export for ``problem``.

    Returns ``None`` when the solver did not prove an optimal solution
    (infeasible, stopped on the time limit, ...). Partial solutions are not
    trusted.
    """

    layer = problem.layer
    status: Optional[str] = None
    background: Dict[int, Set[int]] = {}
    sprite: Dict[int, Set[int]] = {}
    cell_background: Dict[Cell, int] = {}
    cell_sprite: Dict[Cell, int] = {}
    overlay_colors: Dict[Tuple[int, int, int], int] = {}

    for raw in lines:
        line = raw.strip()
        if not line:
            continue
        if line.lower().startswith(STATUS_PREFIX):
            status = line.split(";", 1)[1].strip() if ";" in line else ""
            continue
        if not is_relevant_line(line):
            continue

        name, indices, value = parse_solution_value(line)
        if len(indices) != VARIABLE_ARITY[name]:
            raise SolutionParseError(
                f"{name} expects {VARIABLE_ARITY[name]} indices, got {len(indices)}: {line!r}"
            )
        if value not in (0, 1):
            raise SolutionParseError(f"Binary variable {name} has value {value}: {line!r}")

        if name in ("bgPal", "sprPal"):
            palette, color = indices
            limit = problem.num_background_palettes if name == "bgPal" else problem.num_sprite_palettes
            _check_range(name, palette, limit, line)
            _check_range(name, color, 256, line)
            target = background if name == "bgPal" else sprite
            colors = target.setdefault(palette, set())
            if value:
                colors.add(color)
        elif name == "ovColor":
            row, col, color = indices
            _check_range(name, row, layer.rows, line)
            _check_range(name, col, layer.cols, line)
            _check_range(name, color, 256, line)
            overlay_colors[(row, col, color)] = value
        else:
            row, col, palette = indices
            _check_range(name, row, layer.rows, line)
            _check_range(name, col, layer.cols, line)
            limit = problem.num_background_palettes if name == "cellBg" else problem.num_sprite_palettes
            _check_range(name, palette, limit, line)
            if value:
                table = cell_background if name == "cellBg" else cell_sprite
                _assign_cell(table, (row, col), palette, line)

    if status is None:
        raise SolutionParseError("Solution export has no objective status line")
    if "optimal" not in status.lower():
        return None

    return CmplSolution(
        status=status,
        background_palettes=_palette_list(background, problem.num_background_palettes),
        sprite_palettes=_palette_list(sprite, problem.num_sprite_palettes),
        cell_background=cell_background,
        cell_sprite=cell_sprite,
        overlay_colors=overlay_colors,
    )


def read_cmpl_solution(csv_path: str | Path, problem: CmplProblem) -> Optional[CmplSolution]:
    path = Path(csv_path)
    if not path.is_file():
        return None
    with path.open("r", encoding="utf-8", errors="replace") as f:
        return parse_cmpl_solution(f, problem)


def format_solution_csv(
    problem_name: str,
    status: str,
    values: Iterable[Tuple[str, Tuple[int, ...], int]],
) -> str:
    """Write a solution export in the layout :func:`parse_cmpl_solution` reads."""

    lines = [
        "CMPL csv export",
        "",
        f"Problem;{problem_name}",
        "Solver;CBC",
        "Objective sense;min",
        f"Objective status;{status}",
        "Variables;",
        "Name;Type;Activity;LowerBound;UpperBound;Marginal",
    ]
    for name, indices, value in values:
        joined = ",".join(str(i) for i in indices)
        lines.append(f"{name}[{joined}];B;{value};0;1;-")
    return "\n".join(lines) + "\n"
