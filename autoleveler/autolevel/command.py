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
import logging
import re

from autoleveler.autolevel.grid import GridRequest
from autoleveler.utils.constants import (
    DEFAULT_PROBE_FEED,
    DEFAULT_STEP,
    DEFAULT_TRAVEL_HEIGHT,
)

logger = logging.getLogger(__name__)

TOKEN_PAT = re.compile(r"^(GRID|D|H|F|M|X|Y|P)([-+]?(?:\d+(?:\.\d*)?|\.\d+))$")


@dataclass(frozen=True)
class AutoLevelCommand:
    step: float | None = None
    grid: float | None = None
    travel_height: float | None = None
    feed: float | None = None
    margin: float | None = None
    width: float | None = None
    height: float | None = None
    probe_only: bool = False

    def to_request(
        self,
        *,
        step: float = DEFAULT_STEP,
        travel_height: float = DEFAULT_TRAVEL_HEIGHT,
        feed: float = DEFAULT_PROBE_FEED,
        margin: float | None = None,
    ) -> GridRequest:
        """Grid request with this command's values over the given defaults."""
        return GridRequest(
            step=self.step if self.step is not None else step,
            grid=int(self.grid) if self.grid else None,
            margin=self.margin if self.margin is not None else margin,
            width=self.width,
            height=self.height,
            travel_height=self.travel_height if self.travel_height is not None else travel_height,
            feed=self.feed if self.feed is not None else feed,
        )


_FIELDS = {
    "D": "step",
    "GRID": "grid",
    "H": "travel_height",
    "F": "feed",
    "M": "margin",
    "X": "width",
    "Y": "height",
}


def parse_autolevel_command(text: str) -> AutoLevelCommand:
    values: dict = {}
    probe_only = False
    for token in (text or "").upper().split():
        match = TOKEN_PAT.match(token)
        if not match:
            continue
        letter, number = match.groups()
        value = float(number)
        if letter == "P":
            probe_only = value != 0
        elif _FIELDS[letter] not in values:
            values[_FIELDS[letter]] = value
    cmd = AutoLevelCommand(probe_only=probe_only, **values)
    logger.debug(f"Parsed autolevel command {text!r}: {cmd}")
    return cmd
