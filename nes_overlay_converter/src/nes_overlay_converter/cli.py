"""Command line interface for the NES overlay converter."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List

from .converter import ConversionResult, ConvertOptions, convert_png
from .errors import ConversionError
from .palettes import NUM_BACKGROUND_PALETTES, NUM_SPRITE_PALETTES
from .solver import SolverConfig

OUTPUT_SUFFIXES = ("background", "overlay_grid", "overlay_free", "output")

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_UNSUCCESSFUL = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description=(
            "Split an indexed PNG into an NES background layer and a sprite overlay.\n"
            "Palette assignment is solved by the CMPL command line tool (cmpl), which must be\n"
            "installed or given with --solver. Outputs background, overlay and combined PNGs\n"
            "plus a JSON report with palettes and sprites."
        ),
        formatter_class=argparse.RawTextHelpFormatter,
    )

    parser.add_argument("input", help="Indexed (palettized) PNG file")
    parser.add_argument(
        "-o",
        "--output-dir",
        required=True,
        help="Destination directory for the generated PNG and JSON files",
    )
    parser.add_argument("--prefix", default="", help="Optional prefix for output filenames")
    parser.add_argument(
        "--background",
        type=int,
        default=0,
        help="Palette index of the background (backdrop) color",
    )
    parser.add_argument("--cell-width", type=int, default=16, help="Background cell width in pixels")
    parser.add_argument("--cell-height", type=int, default=16, help="Background cell height in pixels")
    parser.add_argument(
        "--sprite-height",
        type=int,
        choices=[8, 16],
        default=8,
        help="Sprite height (8x8 or 8x16 sprites)",
    )
    parser.add_argument(
        "--cell-colors",
        type=int,
        default=3,
        help="Colors per background palette, not counting the background color",
    )
    parser.add_argument(
        "--bg-palettes",
        type=int,
        default=NUM_BACKGROUND_PALETTES,
        help=f"Background palettes to use (max {NUM_BACKGROUND_PALETTES})",
    )
    parser.add_argument(
        "--sprite-palettes",
        type=int,
        default=NUM_SPRITE_PALETTES,
        help=f"Sprite palettes to use (max {NUM_SPRITE_PALETTES})",
    )
    parser.add_argument(
        "--sprites-per-scanline",
        type=int,
        default=8,
        help="Hardware limit of sprites on one scanline",
    )
    parser.add_argument(
        "--timeout",
        type=int,
        default=0,
        help="Solver time limit per pass in seconds (0 waits indefinitely)",
    )
    parser.add_argument(
        "--solver",
        help="cmpl executable: a path, or a name to search on PATH (default: cmpl)",
    )
    parser.add_argument(
        "--work-dir",
        help="Directory for solver work files (default: <output-dir>/work)",
    )
    parser.add_argument(
        "-f",
        "--force",
        action="store_true",
        help="Overwrite existing files without prompting",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log solver details")
    return parser


def build_options(args: argparse.Namespace) -> ConvertOptions:
    options = ConvertOptions()
    options.background_color = args.background
    options.grid_cell_width = args.cell_width
    options.grid_cell_height = args.cell_height
    options.sprite_height = args.sprite_height
    options.grid_cell_color_limit = args.cell_colors
    options.max_background_palettes = args.bg_palettes
    options.max_sprite_palettes = args.sprite_palettes
    options.max_sprites_per_scanline = args.sprites_per_scanline
    options.time_out = args.timeout
    options.validate()
    return options


def build_solver_config(args: argparse.Namespace, output_dir: Path) -> SolverConfig:
    config = SolverConfig(work_path=Path(args.work_dir) if args.work_dir else output_dir / "work")
    if args.solver:
        solver = Path(args.solver)
        config.executable_name = solver.name
        # a bare name is looked up on PATH
        if solver.name != args.solver:
            config.executable_path = solver.parent
    return config


def output_names(stem: str, prefix: str) -> Dict[str, str]:
    names = {suffix: f"{prefix}{stem}_{suffix}.png" for suffix in OUTPUT_SUFFIXES}
    names["report"] = f"{prefix}{stem}_report.json"
    return names


def write_outputs(
    result: ConversionResult,
    names: Dict[str, str],
    output_dir: Path,
    force: bool,
) -> List[Path]:
    conflicts = [str(output_dir / name) for name in names.values() if (output_dir / name).exists()]
    if conflicts and not force:
        raise ConversionError(
            "Output files already exist (use --force to overwrite):\n" + "\n".join(conflicts)
        )

    output_dir.mkdir(parents=True, exist_ok=True)
    images = {
        "background": result.output_image_background,
        "overlay_grid": result.output_image_overlay_grid,
        "overlay_free": result.output_image_overlay_free,
        "output": result.output_image,
    }
    written: List[Path] = []
    for key, image in images.items():
        target = output_dir / names[key]
        image.save(target)
        written.append(target)
    report = output_dir / names["report"]
    report.write_text(json.dumps(result.to_report(), indent=2), encoding="utf-8")
    written.append(report)
    return written


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        options = build_options(args)
        source = Path(args.input)
        output_dir = Path(args.output_dir)
        names = output_names(source.stem, args.prefix)
        result = convert_png(source, options, build_solver_config(args, output_dir))
        for target in write_outputs(result, names, output_dir, args.force):
            print(f"wrote {target}")
    except ConversionError as exc:
        print(exc, file=sys.stderr)
        return EXIT_ERROR

    if not result.conversion_successful():
        print(f"conversion unsuccessful: {result.message}", file=sys.stderr)
        return EXIT_UNSUCCESSFUL
    print(result.message)
    return EXIT_OK


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
