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

import math

from autoleveler.autolevel.mesh import Point3
from autoleveler.utils.constants import SEGMENT_EPSILON
from autoleveler.utils.exceptions import ArcGeometryInvalid

ARC_RADIUS_TOLERANCE = 1e-6


def split_segment(start: Point3, end: Point3, max_length: float) -> list[Point3]:
    """Points along start->end, excluding start, spaced at most max_length apart.

    Returns an empty list for a move shorter than SEGMENT_EPSILON.
    """
    dx = end.x - start.x
    dy = end.y - start.y
    dz = end.z - start.z
    dist = math.sqrt(dx * dx + dy * dy + dz * dz)
    if dist < SEGMENT_EPSILON:
        return []
    steps = 1
    if max_length > 0 and dist > max_length:
        steps = int(math.ceil(dist / max_length))
    points = []
    for i in range(1, steps):
        t = i / steps
        points.append(Point3(start.x + dx * t, start.y + dy * t, start.z + dz * t))
    points.append(end)
    return points


def arc_sweep(
    u0: float, v0: float, u1: float, v1: float, cu: float, cv: float, cw: bool
) -> float:
    start_ang = math.atan2(v0 - cv, u0 - cu)
    end_ang = math.atan2(v1 - cv, u1 - cu)
    if cw:
        sweep = (start_ang - end_ang) % (2 * math.pi)
    else:
        sweep = (end_ang - start_ang) % (2 * math.pi)
    return sweep


def arc_center_from_radius(
    u0: float, v0: float, u1: float, v1: float, r: float, cw: bool
) -> tuple[float, float]:
    """Center of the arc of radius r from (u0, v0) to (u1, v1).

    Both perpendicular-bisector candidates are tried; a positive radius
    selects the one giving the shorter sweep in the requested direction and
    a negative radius the longer one.
    """
    if r == 0:
        raise ArcGeometryInvalid("Arc radius is zero.")
    r_abs = abs(r)
    dx = u1 - u0
    dy = v1 - v0
    d = math.hypot(dx, dy)
    if d == 0:
        raise ArcGeometryInvalid("Radius arc start and end points coincide.")
    if d > 2 * r_abs + ARC_RADIUS_TOLERANCE:
        raise ArcGeometryInvalid(
            f"Arc chord {d:.4f} is longer than the diameter {2 * r_abs:.4f}."
        )
    um = (u0 + u1) / 2.0
    vm = (v0 + v1) / 2.0
    h = math.sqrt(max(r_abs * r_abs - (d / 2) * (d / 2), 0.0))
    ux = -dy / d
    uy = dx / d
    c1 = (um + ux * h, vm + uy * h)
    c2 = (um - ux * h, vm - uy * h)
    sweep1 = arc_sweep(u0, v0, u1, v1, c1[0], c1[1], cw)
    sweep2 = arc_sweep(u0, v0, u1, v1, c2[0], c2[1], cw)
    if r > 0:
        return c1 if sweep1 <= sweep2 else c2
    return c1 if sweep1 >= sweep2 else c2


def arc_center(
    start: Point3,
    end: Point3,
    *,
    i: float | None = None,
    j: float | None = None,
    r: float | None = None,
    clockwise: bool,
) -> tuple[float, float, float]:
    if i is not None or j is not None:
        oi = i or 0.0
        oj = j or 0.0
        radius = math.hypot(oi, oj)
        if radius < SEGMENT_EPSILON:
            raise ArcGeometryInvalid("Arc center offset is zero.")
        return start.x + oi, start.y + oj, radius
    if r is not None:
        cx, cy = arc_center_from_radius(start.x, start.y, end.x, end.y, r, clockwise)
        return cx, cy, abs(r)
    raise ArcGeometryInvalid("Arc has neither center offsets nor a radius.")


def linearize_arc(
    start: Point3,
    end: Point3,
    *,
    i: float | None = None,
    j: float | None = None,
    r: float | None = None,
    clockwise: bool,
    max_segment: float,
) -> list[Point3]:
    """Chord points of an XY-plane arc, excluding start, ending exactly at end.

    Raises ArcGeometryInvalid when no center can be derived.
    """
    cx, cy, radius = arc_center(start, end, i=i, j=j, r=r, clockwise=clockwise)

    start_angle = math.atan2(start.y - cy, start.x - cx)
    end_angle = math.atan2(end.y - cy, end.x - cx)
    diff = end_angle - start_angle
    if clockwise:
        if diff >= 0:
            diff -= 2 * math.pi
    else:
        if diff <= 0:
            diff += 2 * math.pi

    arc_len = abs(diff * radius)
    if max_segment <= 0:
        max_segment = arc_len or 1.0
    segments = max(1, int(math.ceil(arc_len / max_segment)))

    theta_step = diff / segments
    z_step = (end.z - start.z) / segments
    points = []
    for n in range(1, segments):
        angle = start_angle + n * theta_step
        points.append(
            Point3(
                cx + radius * math.cos(angle),
                cy + radius * math.sin(angle),
                start.z + n * z_step,
            )
        )
    points.append(end)
    return points
