"""External CMPL solver invocation.

Each pass writes its data file and a program file (the pass template with the
data file name and the time limit filled in) into the work directory, runs the
solver once and reads back the CSV solution. Files left by an earlier run of
the same pass are removed first so a failed run can never pick up a stale
solution.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Tuple

from .errors import SolverConfigurationError
from .problem import FIRST_PASS, SECOND_PASS, CmplProblem, write_cmpl_data_file
from .solution import CmplSolution, read_cmpl_solution

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"
DATA_FILE_PLACEHOLDER = "@DATA_FILE@"

PROGRAM_INPUT = "program_input"
PROGRAM_OUTPUT = "program_output"
SOLUTION = "solution"
DATA = "data"

DEFAULT_FILENAMES: Dict[Tuple[str, str], str] = {
    (FIRST_PASS, PROGRAM_INPUT): "FirstPass.cmpl",
    (FIRST_PASS, PROGRAM_OUTPUT): "FirstPass_withTimeOut.cmpl",
    (FIRST_PASS, SOLUTION): "firstpass_output.csv",
    (FIRST_PASS, DATA): "firstpass_input.cdat",
    (SECOND_PASS, PROGRAM_INPUT): "SecondPass.cmpl",
    (SECOND_PASS, PROGRAM_OUTPUT): "SecondPass_withTimeOut.cmpl",
    (SECOND_PASS, SOLUTION): "secondpass_output.csv",
    (SECOND_PASS, DATA): "secondpass_input.cdat",
}


@dataclass
class SolverConfig:
    """Where the solver lives and where each pass keeps its files.

    ``executable_path`` is the directory holding the solver; when it is
    ``None`` the executable is looked up on ``PATH``.
    """

    executable_path: Optional[Path] = None
    work_path: Path = Path("overlay_work")
    executable_name: str = "cmpl"
    template_path: Path = TEMPLATE_DIR
    filenames: Dict[Tuple[str, str], str] = field(default_factory=lambda: dict(DEFAULT_FILENAMES))
    grace_seconds: float = 30.0

    def exe_path_filename(self, exe_filename: str) -> Path:
        if self.executable_path is None:
            return Path(exe_filename)
        return Path(self.executable_path) / exe_filename

    def work_path_filename(self, work_filename: str) -> Path:
        return Path(self.work_path) / work_filename

    def filename(self, pass_name: str, role: str) -> str:
        try:
            return self.filenames[(pass_name, role)]
        except KeyError as exc:
            raise SolverConfigurationError(f"No {role} filename configured for {pass_name}") from exc

    def resolve_executable(self) -> Path:
        if self.executable_path is not None:
            path = self.exe_path_filename(self.executable_name)
            if path.is_file() and os.access(path, os.X_OK):
                return path
            raise SolverConfigurationError(f"Solver executable not found or not executable: {path}")

        resolved = shutil.which(self.executable_name)
        if not resolved:
            raise SolverConfigurationError(
                f"{self.executable_name} not found in PATH. Provide --solver."
            )
        return Path(resolved)


class CmplSolver:
    """Run one pass of the palette problem through the CMPL command line."""

    def __init__(self, config: SolverConfig | None = None):
        self.config = config or SolverConfig()

    def pass_file(self, pass_name: str, role: str) -> Path:
        return self.config.work_path_filename(self.config.filename(pass_name, role))

    def prepare_work_path(self) -> Path:
        work = Path(self.config.work_path)
        try:
            work.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise SolverConfigurationError(f"Cannot create work directory {work}: {exc}") from exc
        if not os.access(work, os.W_OK):
            raise SolverConfigurationError(f"Work directory is not writable: {work}")
        return work

    def clean_pass_files(self, pass_name: str) -> None:
        for role in (PROGRAM_OUTPUT, SOLUTION, DATA):
            path = self.pass_file(pass_name, role)
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                raise SolverConfigurationError(f"Cannot remove stale work file {path}: {exc}") from exc

    def write_program_file(
        self, pass_name: str, data_file: Path, output_file: Path, time_out: int
    ) -> None:
        template_file = Path(self.config.template_path) / self.config.filename(pass_name, PROGRAM_INPUT)
        try:
            template = template_file.read_text(encoding="utf-8")
        except OSError as exc:
            raise SolverConfigurationError(f"Cannot read solver program {template_file}: {exc}") from exc

        header = ["%arg -solver cbc"]
        if time_out > 0:
            header.append(f"%opt cbc seconds {int(time_out)}")
        program = "\n".join(header) + "\n" + template.replace(DATA_FILE_PLACEHOLDER, data_file.name)
        output_file.write_text(program, encoding="utf-8")

    def run_program(
        self,
        problem: CmplProblem,
        program_file: Path,
        solution_file: Path,
        time_out: int,
    ) -> bool:
        """Run the solver; ``False`` means no usable solution within the budget."""

        executable = self.config.resolve_executable()
        cmd = [str(executable), program_file.name, "-solutionCsv", solution_file.name]
        timeout = None if time_out <= 0 else time_out + self.config.grace_seconds
        logger.debug("running %s in %s", " ".join(cmd), self.config.work_path)
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout,
                cwd=str(self.config.work_path),
            )
        except subprocess.TimeoutExpired:
            logger.warning("%s exceeded its %ss time budget", problem.name, time_out)
            return False
        except OSError as exc:
            raise SolverConfigurationError(f"Cannot run solver {executable}: {exc}") from exc

        if result.returncode != 0:
            logger.warning(
                "%s solver exited with %d\nstdout:\n%s\nstderr:\n%s",
                problem.name,
                result.returncode,
                result.stdout,
                result.stderr,
            )
            return False
        return True

    def solve(self, problem: CmplProblem, time_out: int = 0) -> Optional[CmplSolution]:
        self.prepare_work_path()
        self.clean_pass_files(problem.name)

        data_file = self.pass_file(problem.name, DATA)
        program_file = self.pass_file(problem.name, PROGRAM_OUTPUT)
        solution_file = self.pass_file(problem.name, SOLUTION)
        try:
            write_cmpl_data_file(problem, data_file)
            self.write_program_file(problem.name, data_file, program_file, time_out)
        except OSError as exc:
            raise SolverConfigurationError(f"Cannot write {problem.name} work files: {exc}") from exc
        logger.debug("%s data written to %s", problem.name, data_file)

        if not self.run_program(problem, program_file, solution_file, time_out):
            return None
        solution = read_cmpl_solution(solution_file, problem)
        if solution is None:
            logger.warning("%s reported no optimal solution", problem.name)
        return solution
