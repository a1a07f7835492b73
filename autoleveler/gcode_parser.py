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
import re
from dataclasses import dataclass
from typing import Iterable

from autoleveler.utils.constants import MM_PER_INCH, OUTPUT_DECIMALS

logger = logging.getLogger(__name__)

PAREN_COMMENT_PAT = re.compile(r"\(.*?\)")
FULL_LINE_COMMENT_PAT = re.compile(r"^\s*\([^)]*\)\s*$")
WORD_PAT = re.compile(r"([A-Z])([-+]?(?:\d+(?:\.\d*)?|\.\d+))")
AXIS_WORDS = ("X", "Y", "Z")
ARC_WORDS = ("I", "J", "K", "R")


@dataclass(frozen=True)
class GcodeBounds:
    minx: float
    maxx: float
    miny: float
    maxy: float


@dataclass(frozen=True)
class GcodeLine:
    """One program line split into letter/value words.

    ``words`` keeps the source order and the value text as written, so a
    word can be echoed back unchanged when the line is rewritten.
    """

    raw: str
    clean: str
    words: tuple[tuple[str, str], ...]

    def has(self, letter: str) -> bool:
        return any(w == letter for w, _ in self.words)

    def value(self, letter: str) -> float | None:
        for w, val in self.words:
            if w == letter:
                return float(val)
        return None

    def g_codes(self) -> list[float]:
        codes: list[float] = []
        for w, val in self.words:
            if w == "G":
                codes.append(round(float(val), 3))
        return codes

    def has_axis(self) -> bool:
        return any(w in AXIS_WORDS for w, _ in self.words)


def clean_gcode_line(line: str) -> str:
    """Strip comments and whitespace; keep simple + safe."""
    line = line.replace("\ufeff", "")
    line = PAREN_COMMENT_PAT.sub("", line)
    if ";" in line:
        line = line.split(";", 1)[0]
    line = line.strip()
    if line.startswith("%"):
        return ""
    return line


def is_full_line_comment(line: str) -> bool:
    return bool(FULL_LINE_COMMENT_PAT.match(line))


def tokenize_gcode_line(line: str) -> GcodeLine:
    clean = clean_gcode_line(line)
    compact = "".join(clean.upper().split())
    words = tuple(WORD_PAT.findall(compact))
    return GcodeLine(raw=line, clean=clean, words=words)


def format_coord(value: float, decimals: int = OUTPUT_DECIMALS) -> str:
    text = f"{value:.{decimals}f}"
    if text.startswith("-") and float(text) == 0:
        text = text[1:]
    return text


def to_mm(value: float, inches: bool) -> float:
    return value * MM_PER_INCH if inches else value


def compute_gcode_bounds(lines: Iterable[str]) -> GcodeBounds | None:
    """XY extent of the absolute-mode coordinates of a program, in mm.

    Only the X/Y words themselves are considered; arcs bulging past their
    end points are not accounted for. Returns None when the program has no
    absolute XY coordinates.
    """
    absolute = True
    inches = False
    minx = miny = float("inf")
    maxx = maxy = float("-inf")
    has_moves = False
    for raw in lines:
        parsed = tokenize_gcode_line(raw)
        if not parsed.words:
            continue
        codes = parsed.g_codes()
        if 90.0 in codes:
            absolute = True
        if 91.0 in codes:
            absolute = False
        if 20.0 in codes:
            inches = True
        if 21.0 in codes:
            inches = False
        if not absolute:
            continue
        x = parsed.value("X")
        if x is not None:
            x = to_mm(x, inches)
            minx = min(minx, x)
            maxx = max(maxx, x)
            has_moves = True
        y = parsed.value("Y")
        if y is not None:
            y = to_mm(y, inches)
            miny = min(miny, y)
            maxy = max(maxy, y)
            has_moves = True
    if not has_moves:
        logger.info("No bounds detected in G-code.")
        return None
    # A program touching only one axis still needs a finite rectangle.
    if minx == float("inf"):
        minx = maxx = 0.0
    if miny == float("inf"):
        miny = maxy = 0.0
    bounds = GcodeBounds(minx=minx, maxx=maxx, miny=miny, maxy=maxy)
    logger.info(f"Calculated G-code bounds: {bounds}")
    return bounds


def format_number(value: float, max_decimals: int = 4) -> str:
    text = f"{value:.{max_decimals}f}"
    text = text.rstrip("0").rstrip(".")
    if text == "-0":
        text = "0"
    return text
