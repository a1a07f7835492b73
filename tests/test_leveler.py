import math
import re

import pytest

from autoleveler.autolevel.leveler import (
    compensate,
    is_leveled_name,
    leveled_name,
    write_leveled_program,
)
from autoleveler.autolevel.mesh import HeightMesh, Point3
from autoleveler.utils.exceptions import CompensationError, InsufficientProbeData

COORD_PAT = re.compile(r"X(-?\d+\.\d+) Y(-?\d+\.\d+) Z(-?\d+\.\d+)")


def _coords(line):
    m = COORD_PAT.search(line)
    assert m, line
    return tuple(float(v) for v in m.groups())


@pytest.fixture
def tilted_mesh():
    # z = 0.01 * x
    return HeightMesh.build([Point3(x, y, 0.01 * x) for y in (0, 100) for x in (0, 100)])


def test_requires_three_points():
    mesh = HeightMesh.build([Point3(0, 0, 0), Point3(1, 0, 0)])
    with pytest.raises(InsufficientProbeData):
        compensate("G0 X1", mesh)


def test_scenario_corner_lift(corner_points):
    mesh = HeightMesh.build(corner_points)
    result = compensate("G21 G90\nG1 X50 Y50 Z-1 F200", mesh, progress_interval=0)
    assert result.lines[0] == "G21 G90"
    assert result.lines[1] == "G1 F200 X50.000 Y50.000 Z1.500 ; Z-1.000"


def test_flat_mesh_reproduces_coordinates(flat_mesh):
    program = "\n".join(
        [
            "G21",
            "G90",
            "G0 X0 Y0 Z5",
            "G1 Z-1 F100",
            "G1 X40 Y10",
            "G2 X60 Y30 I20 J0",
            "G3 X40 Y50 R20",
            "G1 X0 Y0",
        ]
    )
    result = compensate(program, flat_mesh, step=10, progress_interval=0)
    for line in result.lines:
        if "; " not in line:
            continue
        x, y, z = _coords(line)
        original_z = float(line.rsplit("Z", 1)[1])
        assert z == pytest.approx(original_z)


def test_comments_and_blank_lines_pass_through(flat_mesh):
    program = "  (header)  \n\n; note\nG0 X1 Y1 Z1 (inline)\n%"
    result = compensate(program, flat_mesh, progress_interval=0)
    assert result.lines[0] == "(header)"
    assert result.lines[1] == ""
    assert result.lines[2] == "; note"
    assert result.lines[3] == "G0 X1.000 Y1.000 Z1.000 ; Z1.000"
    assert result.lines[4] == "%"


def test_long_move_is_split_at_half_step(tilted_mesh):
    program = "G90\nG1 X0 Y0 Z0\nG1 X20 Y0 Z0"
    result = compensate(program, tilted_mesh, step=10, progress_interval=0)
    moves = result.lines[2:]
    assert len(moves) == 4
    xs = [_coords(line)[0] for line in moves]
    assert xs == pytest.approx([5, 10, 15, 20])
    for line in moves:
        x, _, z = _coords(line)
        assert z == pytest.approx(0.01 * x, abs=1e-3)
        assert line.startswith("G1 ")


def test_modal_motion_carries_over(tilted_mesh):
    result = compensate("G1 X10 Y0 Z0 F100\nX10 Y5", tilted_mesh, step=100, progress_interval=0)
    assert result.lines[1] == "X10.000 Y5.000 Z0.100 ; Z0.000"


def test_missing_axes_keep_previous_position(tilted_mesh):
    result = compensate("G1 X50 Y20 Z-2\nG1 Z-3", tilted_mesh, step=1000, progress_interval=0)
    assert _coords(result.lines[1]) == pytest.approx((50, 20, -2.5))


def test_relative_moves_pass_through(tilted_mesh):
    messages = []
    program = "G1 X10 Y0 Z0\nG91\nG1 X5\nG1 X5\nG90\nG1 X30"
    result = compensate(program, tilted_mesh, step=100, notify=messages.append, progress_interval=0)
    assert result.lines[2] == "G1 X5"
    assert result.lines[3] == "G1 X5"
    # cursor followed the relative moves
    assert _coords(result.lines[5])[0] == pytest.approx(30)
    assert len([m for m in messages if "relative" in m]) == 1
    assert len([d for d in result.diagnostics if "relative" in d]) == 2


def test_non_motion_lines_pass_through_and_sync_anchor(tilted_mesh):
    program = "G1 X0 Y0 Z0\nG92 X50 Y0\nG1 X60 Y0 Z0\nM3 S1000\nG4 P1"
    result = compensate(program, tilted_mesh, step=10, progress_interval=0)
    assert result.lines[1] == "G92 X50 Y0"
    # anchor synced to X50, so only one 5 mm hop per half step
    moves = [line for line in result.lines if line.startswith("G1 X") and ";" in line]
    assert [_coords(line)[0] for line in moves[1:]] == pytest.approx([55, 60])
    assert result.lines[-2:] == ["M3 S1000", "G4 P1"]


def test_probe_invalidates_anchor(tilted_mesh):
    program = "G1 X0 Y0 Z0\nG38.2 Z-5 F50\nG1 X40 Y0 Z0"
    result = compensate(program, tilted_mesh, step=10, progress_interval=0)
    assert result.lines[1] == "G38.2 Z-5 F50"
    # no anchor: the move is not split
    assert len(result.lines) == 3
    assert _coords(result.lines[2]) == pytest.approx((40, 0, 0.4))


def test_arc_is_linearized_and_ends_exactly(flat_mesh):
    program = "G90\nG0 X10 Y0 Z0\nG2 X0 Y-10 I-10 J0 F300"
    result = compensate(program, flat_mesh, arc_segment_mm=0.5, progress_interval=0)
    arc_lines = result.lines[2:]
    assert len(arc_lines) == math.ceil((math.pi * 10 / 2) / 0.5)
    for line in arc_lines:
        assert line.startswith("G1 F300 X")
        assert line.endswith("; G2 Z0.000")
    assert _coords(arc_lines[-1]) == pytest.approx((0, -10, 0))


def test_arc_without_anchor_passes_through(flat_mesh):
    result = compensate("G3 X10 Y10 I5 J5", flat_mesh, progress_interval=0)
    assert result.lines == ["G3 X10 Y10 I5 J5"]


def test_invalid_radius_arc_falls_back_to_line(flat_mesh):
    messages = []
    program = "G0 X0 Y0 Z0\nG2 X40 Y0 R5"
    result = compensate(program, flat_mesh, step=100, notify=messages.append, progress_interval=0)
    assert result.lines[1] == "G1 X40.000 Y0.000 Z0.000 ; G2 Z0.000"
    assert any("straight" in m for m in messages)


def test_inch_program_queries_mesh_in_mm(tilted_mesh):
    result = compensate("G20 G90\nG1 X2 Y0 Z0", tilted_mesh, step=1000, progress_interval=0)
    x, y, z = _coords(result.lines[1])
    assert x == pytest.approx(2)
    # 2 in = 50.8 mm, height 0.508 mm = 0.02 in
    assert z == pytest.approx(0.02, abs=1e-3)


def test_progress_messages(flat_mesh):
    messages = []
    program = "\n".join(["G1 X1 Y1 Z0"] * 5)
    compensate(program, flat_mesh, progress_interval=2, notify=messages.append)
    assert messages == ["progress ...  0/5", "progress ...  2/5", "progress ...  4/5"]


def test_faulty_line_is_passed_through(flat_mesh, monkeypatch):
    import autoleveler.autolevel.leveler as leveler

    def broken(*_args, **_kwargs):
        raise ValueError("boom")

    monkeypatch.setattr(leveler, "linearize_arc", broken)
    program = "G0 X0 Y0 Z0\nG2 X10 Y0 I5 J0\nG1 X1 Y1 Z0"
    result = compensate(program, flat_mesh, step=100, progress_interval=0)
    assert result.faults == 1
    assert result.lines[1] == "G2 X10 Y0 I5 J0"
    assert result.lines[2] == "G1 X1.000 Y1.000 Z0.000 ; Z0.000"


def test_strict_mode_raises(flat_mesh, monkeypatch):
    import autoleveler.autolevel.leveler as leveler

    def broken(*_args, **_kwargs):
        raise ValueError("boom")

    monkeypatch.setattr(leveler, "linearize_arc", broken)
    with pytest.raises(CompensationError) as excinfo:
        compensate("G0 X0 Y0 Z0\nG2 X10 Y0 I5 J0", flat_mesh, strict=True, progress_interval=0)
    assert excinfo.value.line_number == 2


def test_leveled_names():
    assert leveled_name("part.nc") == "#AL:part.nc"
    assert is_leveled_name("#AL:part.nc")
    assert not is_leveled_name("part.nc")
    assert not is_leveled_name(None)


def test_write_leveled_program(tmp_path):
    path = tmp_path / "out.nc"
    export = write_leveled_program(str(path), ["G0 X0", "G1 X1"])
    assert export.error is None
    assert export.lines_written == 2
    assert path.read_text(encoding="utf-8") == "G0 X0\nG1 X1\n"


def test_write_leveled_program_reports_io_error(tmp_path):
    export = write_leveled_program(str(tmp_path / "missing" / "out.nc"), ["G0 X0"])
    assert export.output_path is None
    assert export.io_error


def test_arc_keeps_modal_words(flat_mesh):
    program = "G90 G0 X0 Y0 Z0\nG91 G0 X1\nG90 G2 X11 Y0 I5 J0 F100"
    result = compensate(program, flat_mesh, step=100, progress_interval=0)
    arc_lines = result.lines[2:]
    assert arc_lines
    for line in arc_lines:
        assert line.startswith("G90 G1 F100 X")
    assert _coords(arc_lines[-1]) == pytest.approx((11, 0, 0))


def test_arc_keeps_unit_word(flat_mesh):
    result = compensate("G21 G90 G0 X0 Y0 Z0\nG20 G2 X0.4 Y0 I0.2 J0", flat_mesh, progress_interval=0)
    arc_lines = result.lines[1:]
    assert len(arc_lines) > 1
    for line in arc_lines:
        assert line.startswith("G20 G1 X")
        assert line.endswith("; G2 Z0.000")
    assert _coords(arc_lines[-1]) == pytest.approx((0.4, 0, 0))


def test_modal_arc_without_motion_word(flat_mesh):
    program = "G0 X10 Y0 Z0\nG2 X0 Y-10 I-10 J0\nX-10 Y0 I0 J10"
    result = compensate(program, flat_mesh, progress_interval=0)
    assert result.lines[-1].startswith("G1 X-10.000 Y0.000")
