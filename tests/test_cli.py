import logging

import pytest

from autoleveler.__main__ import main
from autoleveler.utils.logging_config import APP_LOGGER_NAME

CORNERS = "0 0 0\n100 0 0\n0 100 0\n100 100 10\n"


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    for name in (APP_LOGGER_NAME, f"{APP_LOGGER_NAME}.serial"):
        log = logging.getLogger(name)
        for handler in list(log.handlers):
            log.removeHandler(handler)
            handler.close()
    logging.getLogger(APP_LOGGER_NAME).propagate = True


@pytest.fixture
def config(tmp_path):
    return str(tmp_path / "settings.json")


@pytest.fixture
def probe_file(tmp_path):
    path = tmp_path / "probe.txt"
    path.write_text(CORNERS)
    return str(path)


def test_plan_prints_program(config, capsys):
    rc = main(["--config", config, "plan", "--width", "20", "--length", "10", "--step", "10", "--margin", "0"])
    out, err = capsys.readouterr()
    assert rc == 0
    assert out.count("G38.2") == 6
    assert "G0 X0.000 Y0.000 Z2" in out
    assert "(6 probe points)" in err


def test_plan_grid_override(config, capsys):
    rc = main(["--config", config, "plan", "--command", "X30 Y30 M0", "--grid", "4"])
    out, _ = capsys.readouterr()
    assert rc == 0
    assert out.count("G38.2") == 16


def test_plan_from_program_bounds(config, tmp_path, capsys):
    gcode = tmp_path / "part.nc"
    gcode.write_text("G90\nG0 X10 Y10\nG1 X30 Y20\n")
    rc = main(["--config", config, "plan", "--gcode", str(gcode), "--margin", "0"])
    out, _ = capsys.readouterr()
    assert rc == 0
    assert "G0 X10.000 Y10.000 Z2" in out
    assert "X30.000 Y20.000" in out


def test_plan_without_area_fails(config, capsys):
    rc = main(["--config", config, "plan"])
    _, err = capsys.readouterr()
    assert rc == 1
    assert "Error: No probe area" in err


def test_level_writes_output(config, probe_file, tmp_path, capsys):
    gcode = tmp_path / "part.nc"
    gcode.write_text("G21 G90\nG1 X50 Y50 Z-1 F200\n")
    out_path = tmp_path / "leveled.nc"
    rc = main(["--config", config, "level", str(gcode), "--probe-file", probe_file, "--out", str(out_path)])
    out, _ = capsys.readouterr()
    assert rc == 0
    assert f"to {out_path}" in out
    lines = out_path.read_text().splitlines()
    assert lines[:2] == ["G21 G90", "G1 F200 X50.000 Y50.000 Z1.500 ; Z-1.000"]


def test_level_default_output_name(config, probe_file, tmp_path, capsys):
    gcode = tmp_path / "part.nc"
    gcode.write_text("G0 X10 Y10 Z1\n")
    assert main(["--config", config, "level", str(gcode), "--probe-file", probe_file]) == 0
    assert (tmp_path / "#AL:part.nc").exists()


def test_level_needs_three_points(config, tmp_path, capsys):
    probe = tmp_path / "probe.txt"
    probe.write_text("0 0 0\n1 0 0\n")
    gcode = tmp_path / "part.nc"
    gcode.write_text("G0 X1\n")
    rc = main(["--config", config, "level", str(gcode), "--probe-file", str(probe)])
    _, err = capsys.readouterr()
    assert rc == 1
    assert "Error:" in err


def test_level_missing_program(config, probe_file, tmp_path, capsys):
    rc = main(["--config", config, "level", str(tmp_path / "nope.nc"), "--probe-file", probe_file])
    _, err = capsys.readouterr()
    assert rc == 1
    assert "Cannot read G-code file" in err


def test_mesh_stats_and_query(config, probe_file, capsys):
    assert main(["--config", config, "mesh", "--probe-file", probe_file]) == 0
    out, _ = capsys.readouterr()
    assert out.strip() == "Samples: 4 rows: 2 Z(min/avg/max): 0.0000 / 2.5000 / 10.0000 (mm)"
    assert main(["--config", config, "mesh", "--probe-file", probe_file, "--x", "50", "--y", "50"]) == 0
    out, _ = capsys.readouterr()
    assert out.strip() == "2.5000"


def test_mesh_without_points(config, tmp_path, capsys):
    rc = main(["--config", config, "mesh", "--probe-file", str(tmp_path / "none.txt")])
    assert rc == 1


def test_invalid_settings_file_fails_cleanly(config, capsys):
    with open(config, "w", encoding="utf-8") as f:
        f.write('{"step": "ten"}')
    rc = main(["--config", config, "plan", "--width", "10", "--length", "10"])
    _, err = capsys.readouterr()
    assert rc == 1
    assert "Error: Invalid step: ten" in err
