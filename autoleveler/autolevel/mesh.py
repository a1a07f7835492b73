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

from dataclasses import dataclass
import bisect
from typing import Iterable

from autoleveler.utils.constants import MESH_ROW_EPSILON, MESH_SPAN_EPSILON
from autoleveler.utils.exceptions import InsufficientProbeData


@dataclass(frozen=True)
class Point3:
    x: float
    y: float
    z: float

    def __iter__(self):
        return iter((self.x, self.y, self.z))


@dataclass(frozen=True)
class MeshStats:
    min_z: float
    max_z: float
    mean_z: float
    point_count: int

    def span(self) -> float:
        return self.max_z - self.min_z


class HeightMesh:
    """Row-major height field answering bilinear height queries.

    Rows are ordered by ascending Y and points inside a row by ascending X.
    Columns are assumed to line up across rows, which holds for a regular
    probing grid.
    """

    def __init__(self, rows: list[list[Point3]] | None = None):
        self._rows = [list(row) for row in rows or [] if row]
        self._row_ys = [row[0].y for row in self._rows]
        self._row_xs = [[pt.x for pt in row] for row in self._rows]

    @classmethod
    def build(cls, points: Iterable, *, epsilon: float = MESH_ROW_EPSILON) -> "HeightMesh":
        pts = [_as_point(p) for p in points]
        if not pts:
            raise InsufficientProbeData("Cannot build a height mesh from zero points.", 0)
        ordered = sorted(pts, key=lambda p: (p.y, p.x))
        rows: list[list[Point3]] = []
        current: list[Point3] = []
        anchor_y = ordered[0].y
        for pt in ordered:
            if abs(pt.y - anchor_y) > epsilon:
                if current:
                    rows.append(current)
                current = []
                anchor_y = pt.y
            current.append(pt)
        if current:
            rows.append(current)
        for row in rows:
            row.sort(key=lambda p: p.x)
        return cls(rows)

    @property
    def rows(self) -> list[list[Point3]]:
        return [list(row) for row in self._rows]

    def row_count(self) -> int:
        return len(self._rows)

    def point_count(self) -> int:
        return sum(len(row) for row in self._rows)

    def points(self) -> list[Point3]:
        return [pt for row in self._rows for pt in row]

    def stats(self) -> MeshStats | None:
        values = [pt.z for row in self._rows for pt in row]
        if not values:
            return None
        return MeshStats(min(values), max(values), sum(values) / len(values), len(values))

    def query(self, x: float, y: float) -> float:
        if not self._rows:
            return 0.0
        if len(self._rows) == 1:
            return self._rows[0][0].z

        y = _clamp(y, self._row_ys[0], self._row_ys[-1])
        r = _find_interval(self._row_ys, y)
        low = self._rows[r]
        high = self._rows[r + 1]
        low_xs = self._row_xs[r]

        x = _clamp(x, low_xs[0], low_xs[-1])
        c0 = _find_interval(low_xs, x)
        c1 = min(c0 + 1, len(low) - 1)
        if c1 >= len(high):
            # Jagged grid: the upper row has no matching column.
            return low[c0].z

        q11 = low[c0]
        q21 = low[c1]
        q12 = high[c0]
        q22 = high[c1]
        return _bilinear(q11, q21, q12, q22, x, y)


def _bilinear(q11: Point3, q21: Point3, q12: Point3, q22: Point3, x: float, y: float) -> float:
    span_x = q21.x - q11.x
    span_y = q12.y - q11.y
    flat_x = abs(span_x) < MESH_SPAN_EPSILON
    flat_y = abs(span_y) < MESH_SPAN_EPSILON
    if flat_x and flat_y:
        return q11.z
    if flat_x:
        t = (y - q11.y) / span_y
        return q11.z * (1 - t) + q12.z * t
    if flat_y:
        t = (x - q11.x) / span_x
        return q11.z * (1 - t) + q21.z * t
    u = (x - q11.x) / span_x
    v = (y - q11.y) / span_y
    z_bottom = q11.z * (1 - u) + q21.z * u
    z_top = q12.z * (1 - u) + q22.z * u
    return z_bottom * (1 - v) + z_top * v


def _find_interval(axis: list[float], value: float) -> int:
    if len(axis) < 2:
        return 0
    idx = bisect.bisect_right(axis, value) - 1
    return max(0, min(idx, len(axis) - 2))


def _clamp(value: float, lo: float, hi: float) -> float:
    if value < lo:
        return lo
    if value > hi:
        return hi
    return value


def _as_point(value) -> Point3:
    if isinstance(value, Point3):
        return value
    if isinstance(value, dict):
        return Point3(float(value["x"]), float(value["y"]), float(value["z"]))
    x, y, z = value[:3]
    return Point3(float(x), float(y), float(z))
