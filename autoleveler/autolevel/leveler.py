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

from dataclasses import dataclass, field, replace
from enum import Enum
import logging
import os
from typing import Callable, Iterable

from autoleveler.autolevel.geometry import linearize_arc, split_segment
from autoleveler.autolevel.mesh import HeightMesh, Point3
from autoleveler.gcode_parser import (
    GcodeLine,
    clean_gcode_line,
    format_coord,
    is_full_line_comment,
    to_mm,
    tokenize_gcode_line,
)
from autoleveler.utils.constants import (
    ARC_SEGMENT_MM,
    DEFAULT_STEP,
    LEVELED_PREFIX,
    MIN_COMPENSATION_POINTS,
    MM_PER_INCH,
    PROGRESS_INTERVAL,
)
from autoleveler.utils.exceptions import (
    ArcGeometryInvalid,
    CompensationError,
    InsufficientProbeData,
)

logger = logging.getLogger(__name__)

# Instructions that never interpolate a compensated path.
NON_MOTION_G_CODES = frozenset(
    {4.0, 10.0, 43.0, 43.1, 49.0, 53.0, 92.0, 92.1, 92.2, 92.3}
    | {float(code) for code in range(54, 60)}
    | {59.1, 59.2, 59.3}
)
# Returns through an intermediate point to a stored position.
HOMING_G_CODES = frozenset({28.0, 30.0})
NON_MOTION_WORDS = ("M", "T")
LINEAR_SKIP_WORDS = ("X", "Y", "Z")
ARC_SKIP_WORDS = ("X", "Y", "Z", "I", "J", "K", "R")


class MotionMode(Enum):
    RAPID = "G0"
    LINEAR = "G1"
    ARC_CW = "G2"
    ARC_CCW = "G3"
    PROBE = "G38"
    CANCEL = "G80"


def motion_mode_for(code: float) -> MotionMode | None:
    if code in (0.0, 1.0, 2.0, 3.0):
        return (MotionMode.RAPID, MotionMode.LINEAR, MotionMode.ARC_CW, MotionMode.ARC_CCW)[int(code)]
    if 38.0 <= code < 39.0:
        return MotionMode.PROBE
    if code == 80.0:
        return MotionMode.CANCEL
    return None


@dataclass
class ModalState:
    absolute: bool = True
    inches: bool = False
    plane: str = "G17"
    motion: MotionMode = MotionMode.RAPID
    cursor: Point3 = Point3(0.0, 0.0, 0.0)
    anchor: Point3 | None = None

    def apply_modes(self, codes: list[float]) -> None:
        if 91.0 in codes:
            self.absolute = False
        if 90.0 in codes:
            self.absolute = True
        if 20.0 in codes:
            self.inches = True
        if 21.0 in codes:
            self.inches = False
        for code, plane in ((17.0, "G17"), (18.0, "G18"), (19.0, "G19")):
            if code in codes:
                self.plane = plane
        for code in codes:
            mode = motion_mode_for(code)
            if mode is not None:
                self.motion = mode
                break

    def target_for(self, line: GcodeLine) -> Point3 | None:
        if not line.has_axis():
            return None
        values = []
        for letter, current in zip(("X", "Y", "Z"), self.cursor):
            value = line.value(letter)
            if value is None:
                values.append(current)
            elif self.absolute:
                values.append(value)
            else:
                values.append(current + value)
        return Point3(*values)


@dataclass
class CompensationResult:
    lines: list[str]
    line_count: int
    diagnostics: list[str] = field(default_factory=list)
    faults: int = 0

    def text(self) -> str:
        return "\n".join(self.lines)


@dataclass(frozen=True)
class ExportResult:
    output_path: str | None
    lines_written: int
    error: str | None
    io_error: bool = False


def leveled_name(name: str) -> str:
    return f"{LEVELED_PREFIX}{name}"


def is_leveled_name(name: str | None) -> bool:
    return bool(name) and name.startswith(LEVELED_PREFIX)


class _Compensator:
    def __init__(
        self,
        mesh: HeightMesh,
        *,
        step: float,
        arc_segment_mm: float,
        notify: Callable[[str], None],
    ):
        self.mesh = mesh
        self.step = step
        self.arc_segment_mm = arc_segment_mm
        self.notify = notify
        self.state = ModalState()
        self.diagnostics: list[str] = []
        self._warned: set[str] = set()

    def diagnose(self, kind: str, message: str) -> None:
        self.diagnostics.append(message)
        logger.warning(message)
        if kind not in self._warned:
            self._warned.add(kind)
            self.notify(message)

    def _to_program_units(self, mm: float) -> float:
        return mm / MM_PER_INCH if self.state.inches else mm

    def _split_length(self) -> float:
        return self._to_program_units(self.step / 2)

    def _compensated(self, tokens: list[str], pt: Point3, note: str = "") -> str:
        inches = self.state.inches
        height = self.mesh.query(to_mm(pt.x, inches), to_mm(pt.y, inches))
        z = pt.z + self._to_program_units(height)
        parts = tokens + [f"X{format_coord(pt.x)}", f"Y{format_coord(pt.y)}", f"Z{format_coord(z)}"]
        return f"{' '.join(parts)} ; {note}Z{format_coord(pt.z)}"

    def rewrite(self, raw: str, line_no: int) -> list[str]:
        if is_full_line_comment(raw):
            return [raw.strip()]
        if not clean_gcode_line(raw):
            return [raw]

        parsed = tokenize_gcode_line(raw)
        state = self.state
        codes = parsed.g_codes()
        state.apply_modes(codes)
        target = state.target_for(parsed)
        if target is not None:
            state.cursor = target

        if any(code in HOMING_G_CODES for code in codes):
            state.anchor = None
            return [raw]
        if any(code in NON_MOTION_G_CODES for code in codes) or any(
            parsed.has(word) for word in NON_MOTION_WORDS
        ):
            if target is not None:
                state.anchor = target
            return [raw]

        if state.motion in (MotionMode.RAPID, MotionMode.LINEAR):
            if target is None:
                return [raw]
            return self._linear(parsed, raw, target, line_no)
        if state.motion in (MotionMode.ARC_CW, MotionMode.ARC_CCW):
            if target is None:
                return [raw]
            return self._arc(parsed, raw, target, line_no)
        if state.motion is MotionMode.PROBE:
            state.anchor = None
        return [raw]

    def _linear(self, parsed: GcodeLine, raw: str, target: Point3, line_no: int) -> list[str]:
        state = self.state
        if not state.absolute:
            self.diagnose(
                "relative",
                f"line {line_no}: relative move passed through uncompensated",
            )
            state.anchor = target
            return [raw]
        tokens = [f"{w}{v}" for w, v in parsed.words if w not in LINEAR_SKIP_WORDS]
        points = []
        if state.anchor is not None:
            points = split_segment(state.anchor, target, self._split_length())
        if not points:
            points = [target]
        state.anchor = target
        return [self._compensated(tokens, pt) for pt in points]

    def _arc(self, parsed: GcodeLine, raw: str, target: Point3, line_no: int) -> list[str]:
        state = self.state
        if state.anchor is None:
            logger.warning(f"line {line_no}: arc without a known start point, passing through")
            state.anchor = target
            return [raw]
        if not state.absolute or state.plane != "G17":
            self.diagnose(
                "arc-mode",
                f"line {line_no}: {'relative' if not state.absolute else state.plane} arc "
                f"passed through uncompensated",
            )
            state.anchor = target
            return [raw]

        clockwise = state.motion is MotionMode.ARC_CW
        try:
            points = linearize_arc(
                state.anchor,
                target,
                i=parsed.value("I"),
                j=parsed.value("J"),
                r=parsed.value("R"),
                clockwise=clockwise,
                max_segment=self._to_program_units(self.arc_segment_mm),
            )
        except ArcGeometryInvalid as exc:
            self.diagnose("arc-geometry", f"line {line_no}: {exc} Treated as a straight move.")
            points = split_segment(state.anchor, target, self._split_length()) or [target]
        state.anchor = target
        tokens = _arc_tokens(parsed)
        note = f"{state.motion.value} "
        return [self._compensated(tokens, pt, note) for pt in points]


def _arc_tokens(parsed: GcodeLine) -> list[str]:
    """Non-coordinate words of an arc line with its motion word turned into G1.

    Modal words sharing the line (G90, G20, G17 ...) are kept.
    """
    tokens: list[str] = []
    replaced = False
    for w, v in parsed.words:
        if w in ARC_SKIP_WORDS:
            continue
        if w == "G" and motion_mode_for(round(float(v), 3)) is not None:
            if not replaced:
                tokens.append("G1")
                replaced = True
            continue
        tokens.append(f"{w}{v}")
    if not replaced:
        tokens.insert(0, "G1")
    return tokens


def compensate(
    program_text: str,
    mesh: HeightMesh,
    *,
    step: float = DEFAULT_STEP,
    arc_segment_mm: float = ARC_SEGMENT_MM,
    progress_interval: int = PROGRESS_INTERVAL,
    notify: Callable[[str], None] | None = None,
    strict: bool = False,
) -> CompensationResult:
    """Rewrite a program so every move follows the probed surface.

    Lines are processed strictly in order. A fault on one line is reported
    and that line is passed through unchanged; with ``strict`` the fault is
    raised as CompensationError instead.
    """
    if mesh.point_count() < MIN_COMPENSATION_POINTS:
        raise InsufficientProbeData(
            f"At least {MIN_COMPENSATION_POINTS} probe points are needed, got {mesh.point_count()}.",
            mesh.point_count(),
        )
    send = notify or (lambda _message: None)
    engine = _Compensator(mesh, step=step, arc_segment_mm=arc_segment_mm, notify=send)
    lines = program_text.split("\n")
    total = len(lines)
    out: list[str] = []
    faults = 0
    for lc, line in enumerate(lines):
        if progress_interval > 0 and lc % progress_interval == 0:
            logger.info(f"progress info ... line: {lc}/{total}")
            send(f"progress ...  {lc}/{total}")
        raw = line.rstrip("\r")
        snapshot = replace(engine.state)
        try:
            out.extend(engine.rewrite(raw, lc + 1))
        except Exception as exc:
            logger.exception(f"Failed to compensate line {lc + 1}: {raw!r}")
            if strict:
                raise CompensationError(str(exc), lc + 1, raw) from exc
            faults += 1
            engine.state = snapshot
            engine.diagnose("fault", f"error on line {lc + 1}, passed through: {exc}")
            out.append(raw)
    logger.info(f"Leveling applied: {total} lines in, {len(out)} lines out")
    return CompensationResult(out, total, engine.diagnostics, faults)


def write_leveled_program(output_path: str, lines: Iterable[str]) -> ExportResult:
    try:
        lines_written = 0
        with open(output_path, "w", encoding="utf-8", newline="") as outfile:
            for line in lines:
                outfile.write(line.rstrip("\n"))
                outfile.write("\n")
                lines_written += 1
    except OSError as exc:
        logger.error(f"Failed writing leveled program {output_path}: {exc}")
        try:
            os.remove(output_path)
        except OSError:
            logger.debug(f"No partial output to remove at {output_path}")
        return ExportResult(None, 0, str(exc), True)
    return ExportResult(output_path, lines_written, None, False)
