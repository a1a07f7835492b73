import pytest

from autoleveler.autolevel.command import parse_autolevel_command
from autoleveler.autolevel.grid import (
    GridRequest,
    ProbeBounds,
    plan_probe_program,
    resolve_probe_area,
)
from autoleveler.gcode_parser import GcodeBounds
from autoleveler.utils.exceptions import (
    InvalidParameterError,
    ProbeAreaUndefined,
)


def _probe_count(plan):
    return sum(1 for line in plan.lines if line.startswith("G38.2"))


def test_grid_count_three_over_ten_square():
    plan = plan_probe_program(GridRequest(grid=3, margin=0, width=10, height=10))
    assert plan.xs == pytest.approx([0, 5, 10])
    assert plan.ys == pytest.approx([0, 5, 10])
    assert plan.point_count() == 9
    assert _probe_count(plan) == 9
    assert sorted(plan.points) == sorted((x, y) for x in (0, 5, 10) for y in (0, 5, 10))


def test_grid_count_wins_over_step():
    request = parse_autolevel_command("#autolevel GRID2 D2 X10 Y10 M0").to_request()
    plan = plan_probe_program(request)
    assert plan.xs == pytest.approx([0, 10])
    assert plan.point_count() == 4


def test_grid_count_below_two_is_raised_to_two():
    plan = plan_probe_program(GridRequest(grid=1, margin=0, width=10, height=10))
    assert plan.point_count() == 4


@pytest.mark.parametrize("n", [2, 4, 7])
def test_n_by_n_grid_plans_n_squared_probes(n):
    plan = plan_probe_program(GridRequest(grid=n, margin=1, width=50, height=30))
    assert plan.point_count() == n * n
    assert _probe_count(plan) == n * n


def test_step_spacing_divides_span_evenly():
    plan = plan_probe_program(GridRequest(step=10, margin=0, width=95, height=40))
    # 95 / 10 rounds to 10 intervals
    assert len(plan.xs) == 11
    assert plan.spacing_x == pytest.approx(9.5)
    assert plan.xs[-1] == pytest.approx(95)
    assert len(plan.ys) == 5
    assert plan.spacing_y == pytest.approx(10)


def test_default_margin_is_quarter_step():
    bounds = resolve_probe_area(GridRequest(step=8, width=100, height=50))
    assert bounds == ProbeBounds(2, 98, 2, 48)


def test_serpentine_order():
    plan = plan_probe_program(GridRequest(grid=3, margin=0, width=10, height=10))
    assert plan.points[:6] == [(0, 0), (5, 0), (10, 0), (10, 5), (5, 5), (0, 5)]


def test_start_corner_probed_once_and_zeroed():
    plan = plan_probe_program(GridRequest(grid=2, margin=0, width=10, height=10, travel_height=3, feed=40))
    assert plan.lines[:8] == [
        "(AL: probing initial point)",
        "G21",
        "G90",
        "G0 Z3",
        "G0 X0.000 Y0.000 Z3",
        "G38.2 Z-4 F20",
        "G10 L20 P1 Z0",
        "G0 Z3",
    ]
    assert plan.lines[8:12] == [
        "(AL: probing point 2)",
        "G90 G0 X10.000 Y0.000 Z3",
        "G38.2 Z-4 F40",
        "G0 Z3",
    ]
    assert sum(1 for line in plan.lines if "X0.000 Y0.000" in line) == 1


def test_area_falls_back_to_program_bounds():
    bounds = GcodeBounds(minx=10, maxx=60, miny=5, maxy=25)
    area = resolve_probe_area(GridRequest(margin=1), bounds)
    assert area == ProbeBounds(11, 59, 6, 24)


def test_explicit_size_wins_over_program_bounds():
    bounds = GcodeBounds(minx=10, maxx=60, miny=5, maxy=25)
    area = resolve_probe_area(GridRequest(margin=0, width=20), bounds)
    assert area == ProbeBounds(0, 20, 5, 25)


def test_area_falls_back_to_context():
    area = resolve_probe_area(GridRequest(margin=0), None, {"xmin": 0, "xmax": 30, "ymin": -5, "ymax": 5})
    assert area == ProbeBounds(0, 30, -5, 5)


def test_no_area_source_is_an_error():
    with pytest.raises(ProbeAreaUndefined):
        resolve_probe_area(GridRequest())


def test_margin_larger_than_area_is_an_error():
    with pytest.raises(ProbeAreaUndefined):
        plan_probe_program(GridRequest(margin=10, width=10, height=10))


def test_zero_width_axis_plans_a_single_column():
    plan = plan_probe_program(GridRequest(step=5, margin=0, width=0, height=10), GcodeBounds(3, 3, 0, 10))
    assert plan.xs == [3]
    assert plan.point_count() == 3


def test_invalid_step_is_rejected():
    with pytest.raises(InvalidParameterError):
        plan_probe_program(GridRequest(step=0, width=10, height=10))
