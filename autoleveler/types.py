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

from __future__ import annotations

from typing import Any, Callable, Mapping, Protocol, TypeAlias

StatusLike: TypeAlias = Mapping[str, Any] | str
DataCallback: TypeAlias = Callable[[bytes], None]
StatusCallback: TypeAlias = Callable[[str], None]


class Channel(Protocol):
    def send_gcode(self, text: str) -> None: ...
    def load_gcode(self, name: str, text: str) -> None: ...


class ProbeSink(Protocol):
    def write_point(self, pt: Any) -> None: ...
    def close(self) -> None: ...
