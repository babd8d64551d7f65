import json

import pytest
from PIL import Image

from nes_overlay_converter import cli
from nes_overlay_converter.converter import OverlayOptimiser
from nes_overlay_converter.grid import PixelGrid

from conftest import GreedyCmplSolver, striped_image

GRAYS = tuple((i * 16, i * 16, i * 16) for i in range(16))


def _write_input(path):
    image = striped_image()
    PixelGrid(image.width, image.height, image.pixels, GRAYS).save(path)
    return image


def _fake_convert(infeasible=()):
    def convert_png(path, options=None, config=None):
        with Image.open(path) as img:
            image = PixelGrid.from_pil(img)
        return OverlayOptimiser(solver=GreedyCmplSolver(config, infeasible)).convert(image, options)

    return convert_png


def test_parser_defaults() -> None:
    args = cli.build_parser().parse_args(["in.png", "-o", "out"])
    options = cli.build_options(args)

    assert (options.grid_cell_width, options.grid_cell_height) == (16, 16)
    assert options.max_sprites_per_scanline == 8
    assert options.time_out == 0


def test_solver_config_from_arguments(tmp_path) -> None:
    args = cli.build_parser().parse_args(["in.png", "-o", str(tmp_path), "--solver", "/opt/cmpl/bin/cmpl"])
    config = cli.build_solver_config(args, tmp_path)

    assert str(config.executable_path) == "/opt/cmpl/bin"
    assert config.executable_name == "cmpl"
    assert config.work_path == tmp_path / "work"


def test_bare_solver_name_is_searched_on_path(tmp_path, monkeypatch) -> None:
    from nes_overlay_converter import solver as solver_module

    found = tmp_path / "cmpl-2"
    monkeypatch.setattr(solver_module.shutil, "which", lambda name: str(found) if name == "cmpl-2" else None)
    args = cli.build_parser().parse_args(["in.png", "-o", str(tmp_path), "--solver", "cmpl-2"])
    config = cli.build_solver_config(args, tmp_path)

    assert config.executable_path is None
    assert config.executable_name == "cmpl-2"
    assert config.resolve_executable() == found


def test_relative_solver_path_is_kept(tmp_path) -> None:
    args = cli.build_parser().parse_args(["in.png", "-o", str(tmp_path), "--solver", "./cmpl"])
    config = cli.build_solver_config(args, tmp_path)

    assert str(config.executable_path) == "."
    assert config.executable_name == "cmpl"


def test_output_names_use_prefix() -> None:
    names = cli.output_names("title", "nes_")

    assert names["background"] == "nes_title_background.png"
    assert names["report"] == "nes_title_report.json"


def test_non_indexed_input_is_an_error(tmp_path, capsys) -> None:
    source = tmp_path / "rgb.png"
    Image.new("RGB", (16, 16)).save(source)

    assert cli.main([str(source), "-o", str(tmp_path / "out")]) == cli.EXIT_ERROR
    assert "mode P" in capsys.readouterr().err


def test_missing_solver_is_an_error(tmp_path, capsys) -> None:
    source = tmp_path / "in.png"
    _write_input(source)

    code = cli.main([str(source), "-o", str(tmp_path / "out"), "--solver", str(tmp_path / "none" / "cmpl")])

    assert code == cli.EXIT_ERROR
    assert "not found" in capsys.readouterr().err


def test_conversion_writes_images_and_report(tmp_path, monkeypatch, capsys) -> None:
    monkeypatch.setattr(cli, "convert_png", _fake_convert())
    source = tmp_path / "stripes.png"
    image = _write_input(source)
    out = tmp_path / "out"

    assert cli.main([str(source), "-o", str(out)]) == cli.EXIT_OK

    for suffix in cli.OUTPUT_SUFFIXES:
        assert (out / f"stripes_{suffix}.png").is_file()
    with Image.open(out / "stripes_output.png") as written:
        assert written.mode == "P"
        assert written.tobytes() == image.pixels
    report = json.loads((out / "stripes_report.json").read_text())
    assert report["successful"] is True
    assert len(report["sprites"]) == 1
    assert "wrote" in capsys.readouterr().out


def test_existing_outputs_need_force(tmp_path, monkeypatch) -> None:
    monkeypatch.setattr(cli, "convert_png", _fake_convert())
    source = tmp_path / "stripes.png"
    _write_input(source)
    out = tmp_path / "out"

    assert cli.main([str(source), "-o", str(out)]) == cli.EXIT_OK
    assert cli.main([str(source), "-o", str(out)]) == cli.EXIT_ERROR
    assert cli.main([str(source), "-o", str(out), "--force"]) == cli.EXIT_OK


def test_unsuccessful_conversion_still_writes_diagnostics(tmp_path, monkeypatch) -> None:
    monkeypatch.setattr(cli, "convert_png", _fake_convert({"FirstPass", "SecondPass"}))
    source = tmp_path / "stripes.png"
    _write_input(source)
    out = tmp_path / "out"

    assert cli.main([str(source), "-o", str(out)]) == cli.EXIT_UNSUCCESSFUL
    report = json.loads((out / "stripes_report.json").read_text())
    assert report["successful"] is False
    assert report["states"][-1] == "failed"


@pytest.mark.parametrize("flag", ["--cell-colors=4", "--bg-palettes=0", "--sprites-per-scanline=0"])
def test_invalid_limits_are_rejected(tmp_path, flag) -> None:
    source = tmp_path / "in.png"
    _write_input(source)

    assert cli.main([str(source), "-o", str(tmp_path / "out"), flag]) == cli.EXIT_ERROR
