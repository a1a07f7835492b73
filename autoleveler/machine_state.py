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

logger = logging.getLogger(__name__)

WCO_DRIFT_TOLERANCE = 1e-5


def _parse_axes(text: str | None) -> tuple[float, float, float] | None:
    if not text:
        return None
    parts = text.split(",")
    if len(parts) < 3:
        return None
    try:
        return float(parts[0]), float(parts[1]), float(parts[2])
    except ValueError:
        logger.debug(f"Failed parsing axis triple from status field: {text}")
        return None


@dataclass
class WorkOffset:
    """Machine minus work coordinates, as last reported by the controller."""

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    def set(self, x: float, y: float, z: float) -> None:
        self.x = float(x)
        self.y = float(y)
        self.z = float(z)

    def reset(self) -> None:
        self.set(0.0, 0.0, 0.0)

    def as_tuple(self) -> tuple[float, float, float]:
        return self.x, self.y, self.z

    def reconcile_z(self, mpos_z: float, wpos_z: float) -> bool:
        """Replace the Z offset when the reported positions disagree with it.

        Only a known, non-zero offset is corrected. Returns True on change.
        """
        if self.z == 0:
            return False
        actual = float(mpos_z) - float(wpos_z)
        if abs(self.z - actual) <= WCO_DRIFT_TOLERANCE:
            return False
        logger.warning(f"WARNING: WCO Z offset drift detected! wco.z={self.z} actual={actual}")
        self.z = actual
        return True


@dataclass
class MachineState:
    state: str = "?"
    mpos: tuple[float, float, float] | None = None
    wpos: tuple[float, float, float] | None = None
    wco: tuple[float, float, float] | None = None
    extra: dict[str, str] = field(default_factory=dict)


def parse_status_report(raw: str) -> MachineState:
    """Split a ``<Idle|MPos:..|WCO:..>`` report into its fields."""
    parts = raw.strip().strip("<>").split("|")
    status = MachineState(state=parts[0] if parts and parts[0] else "?")
    for part in parts[1:]:
        if part.startswith("MPos:"):
            status.mpos = _parse_axes(part[5:])
        elif part.startswith("WPos:"):
            status.wpos = _parse_axes(part[5:])
        elif part.startswith("WCO:"):
            status.wco = _parse_axes(part[4:])
        elif ":" in part:
            key, value = part.split(":", 1)
            status.extra[key] = value
    if status.wco is None and status.mpos is not None and status.wpos is not None:
        status.wco = tuple(m - w for m, w in zip(status.mpos, status.wpos))
    return status


def wco_from_mapping(data: Mapping[str, Any]) -> tuple[float, float, float] | None:
    """Work offset from a state mapping such as ``{"wco": {"x": 0, ...}}``."""
    wco = data.get("wco")
    if wco is None:
        status = data.get("status")
        if isinstance(status, Mapping):
            wco = status.get("wco")
    if wco is None:
        return None
    if isinstance(wco, str):
        return _parse_axes(wco)
    if isinstance(wco, Mapping):
        return float(wco.get("x", 0)), float(wco.get("y", 0)), float(wco.get("z", 0))
    x, y, z = list(wco)[:3]
    return float(x), float(y), float(z)
