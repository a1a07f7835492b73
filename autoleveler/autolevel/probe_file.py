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

import logging
import os

from autoleveler.autolevel.mesh import Point3
from autoleveler.gcode_parser import format_number
from autoleveler.utils.constants import PROBE_FILE_PADDING
from autoleveler.utils.exceptions import MalformedProbeRecord, SinkUnavailable

logger = logging.getLogger(__name__)


def format_probe_line(pt: Point3) -> str:
    return f"{format_number(pt.x, 6)} {format_number(pt.y, 6)} {format_number(pt.z, 6)} {PROBE_FILE_PADDING}"


class ProbeFileSink:
    """Records accepted probe points, one ``x y z`` line each, as they arrive."""

    def __init__(self, path: str):
        self.path = path
        self._handle = None

    @property
    def is_open(self) -> bool:
        return self._handle is not None

    def open(self) -> "ProbeFileSink":
        try:
            self._handle = open(self.path, "w", encoding="utf-8", newline="")
        except OSError as exc:
            self._handle = None
            raise SinkUnavailable(f"Could not open probe file {exc}", self.path) from exc
        logger.info(f"Opened probe file {self.path}")
        return self

    def write_point(self, pt: Point3) -> None:
        if self._handle is None:
            return
        self._handle.write(format_probe_line(pt))
        self._handle.write("\n")
        self._handle.flush()

    def close(self) -> None:
        if self._handle is None:
            return
        logger.info("Closing probe file")
        self._handle.close()
        self._handle = None


def parse_probe_line(line: str) -> Point3 | None:
    parts = line.split()
    if not parts:
        return None
    if len(parts) < 3:
        raise MalformedProbeRecord("Probe file line needs x y z values", line)
    try:
        return Point3(float(parts[0]), float(parts[1]), float(parts[2]))
    except ValueError as exc:
        raise MalformedProbeRecord(f"Probe file value is not numeric: {exc}", line) from exc


def load_probe_points(path: str) -> list[Point3]:
    """Read a recorded probe file back into points.

    A missing file yields no points; a malformed line raises
    MalformedProbeRecord so a partial recovery is never used.
    """
    if not os.path.exists(path):
        logger.info(f"No probe file at {path}")
        return []
    points: list[Point3] = []
    with open(path, "r", encoding="utf-8", errors="replace") as handle:
        for line in handle:
            pt = parse_probe_line(line)
            if pt is not None:
                logger.debug(f"Recovered probe point {pt.x} {pt.y} {pt.z}")
                points.append(pt)
    logger.info(f"Read {len(points)} probe points from {path}")
    return points
