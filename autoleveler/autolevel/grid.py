#!/usr/bin/env python3
# Autoleveler (GRBL surface compensation)
# Copyright (C) 2026 Bob Kolbasowski
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.
#
# Optional (not required by the license): If you make improvements, please consider
# contributing them back upstream (e.g., via a pull request) so others can benefit.
#
# SPDX-License-Identifier: GPL-3.0-or-later

from dataclasses import dataclass, field
import logging
from typing import Any, Mapping

from autoleveler.gcode_parser import GcodeBounds, format_coord, format_number
from autoleveler.utils.constants import (
    DEFAULT_PROBE_FEED,
    DEFAULT_STEP,
    DEFAULT_TRAVEL_HEIGHT,
    GRID_POSITION_TOLERANCE,
    MESSAGE_PREFIX,
    PROBE_OVERTRAVEL,
)
from autoleveler.utils.exceptions import InvalidParameterError, ProbeAreaUndefined
from autoleveler.utils.validation import (
    validate_feed_rate,
    validate_grid_count,
    validate_positive,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProbeBounds:
    minx: float
    maxx: float
    miny: float
    maxy: float

    def width(self) -> float:
        return max(0.0, self.maxx - self.minx)

    def height(self) -> float:
        return max(0.0, self.maxy - self.miny)

    def area(self) -> float:
        return self.width() * self.height()


@dataclass(frozen=True)
class GridRequest:
    step: float = DEFAULT_STEP
    grid: int | None = None
    margin: float | None = None
    width: float | None = None
    height: float | None = None
    travel_height: float = DEFAULT_TRAVEL_HEIGHT
    feed: float = DEFAULT_PROBE_FEED

    def effective_margin(self) -> float:
        if self.margin is None:
            return self.step / 4
        return self.margin


@dataclass(frozen=True)
class ProbePlan:
    bounds: ProbeBounds
    xs: list[float]
    ys: list[float]
    points: list[tuple[float, float]]
    spacing_x: float
    spacing_y: float
    margin: float
    lines: list[str] = field(default_factory=list)

    def point_count(self) -> int:
        return len(self.points)

    def text(self) -> str:
        return "\n".join(self.lines)


def resolve_probe_area(
    request: GridRequest,
    program_bounds: GcodeBounds | None = None,
    context: Mapping[str, Any] | None = None,
) -> ProbeBounds:
    margin = request.effective_margin()

    def from_fallback(lo_key: str, hi_key: str, lo_attr: str, hi_attr: str) -> tuple[float, float]:
        if program_bounds is not None:
            return getattr(program_bounds, lo_attr) + margin, getattr(program_bounds, hi_attr) - margin
        if context is not None and context.get(lo_key) is not None and context.get(hi_key) is not None:
            logger.info("No program bounds available, using context bounds")
            return float(context[lo_key]) + margin, float(context[hi_key]) - margin
        raise ProbeAreaUndefined(
            "No probe area: give X/Y sizes or load a program with absolute XY moves."
        )

    if request.width:
        minx, maxx = margin, request.width - margin
    else:
        minx, maxx = from_fallback("xmin", "xmax", "minx", "maxx")
    if request.height:
        miny, maxy = margin, request.height - margin
    else:
        miny, maxy = from_fallback("ymin", "ymax", "miny", "maxy")

    if maxx < minx or maxy < miny:
        raise ProbeAreaUndefined(
            f"Probe area is empty after a margin of {format_number(margin)} mm."
        )
    return ProbeBounds(minx=minx, maxx=maxx, miny=miny, maxy=maxy)


def _axis_positions(minv: float, maxv: float, step: float, count: int | None) -> list[float]:
    span = maxv - minv
    if span < GRID_POSITION_TOLERANCE:
        return [minv]
    if count is not None:
        intervals = count - 1
    else:
        intervals = max(1, int(round(span / step)))
    spacing = span / intervals
    positions = [minv + spacing * i for i in range(intervals)]
    positions.append(maxv)
    return positions


def _serpentine_points(xs: list[float], ys: list[float]) -> list[tuple[float, float]]:
    points: list[tuple[float, float]] = []
    for row, y in enumerate(ys):
        if row % 2 == 0:
            for x in xs:
                points.append((x, y))
        else:
            for x in reversed(xs):
                points.append((x, y))
    return points


def _probe_lines(points: list[tuple[float, float]], request: GridRequest) -> list[str]:
    h = format_number(request.travel_height)
    depth = format_number(request.travel_height + PROBE_OVERTRAVEL)
    feed = format_number(request.feed)
    x0, y0 = points[0]
    lines = [
        f"({MESSAGE_PREFIX} probing initial point)",
        "G21",
        "G90",
        f"G0 Z{h}",
        f"G0 X{format_coord(x0)} Y{format_coord(y0)} Z{h}",
        f"G38.2 Z-{depth} F{format_number(request.feed / 2)}",
        # Work Z zero is set at the first probe contact.
        "G10 L20 P1 Z0",
        f"G0 Z{h}",
    ]
    for n, (x, y) in enumerate(points[1:], start=2):
        lines.append(f"({MESSAGE_PREFIX} probing point {n})")
        lines.append(f"G90 G0 X{format_coord(x)} Y{format_coord(y)} Z{h}")
        lines.append(f"G38.2 Z-{depth} F{feed}")
        lines.append(f"G0 Z{h}")
    return lines


def plan_probe_program(
    request: GridRequest,
    program_bounds: GcodeBounds | None = None,
    context: Mapping[str, Any] | None = None,
) -> ProbePlan:
    step = validate_positive(request.step, "step")
    validate_feed_rate(request.feed)
    if request.travel_height < 0:
        raise InvalidParameterError("height", request.travel_height, "must be >= 0")
    count = validate_grid_count(request.grid) if request.grid else None

    bounds = resolve_probe_area(request, program_bounds, context)
    xs = _axis_positions(bounds.minx, bounds.maxx, step, count)
    ys = _axis_positions(bounds.miny, bounds.maxy, step, count)
    points = _serpentine_points(xs, ys)
    lines = _probe_lines(points, request)
    spacing_x = xs[1] - xs[0] if len(xs) > 1 else 0.0
    spacing_y = ys[1] - ys[0] if len(ys) > 1 else 0.0
    logger.info(
        f"Planned {len(points)} probe points ({len(xs)} x {len(ys)}) "
        f"over X {bounds.minx:.3f}..{bounds.maxx:.3f} Y {bounds.miny:.3f}..{bounds.maxy:.3f}"
    )
    return ProbePlan(
        bounds=bounds,
        xs=xs,
        ys=ys,
        points=points,
        spacing_x=spacing_x,
        spacing_y=spacing_y,
        margin=request.effective_margin(),
        lines=lines,
    )
