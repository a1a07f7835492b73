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
from typing import Callable

from autoleveler.autolevel.mesh import Point3
from autoleveler.gcode_parser import format_number
from autoleveler.machine_state import WorkOffset
from autoleveler.types import ProbeSink
from autoleveler.utils.constants import (
    PROBE_BUFFER_KEEP,
    PROBE_BUFFER_LIMIT,
    PROBE_RECORD_CLOSE,
    PROBE_RECORD_OPEN,
)
from autoleveler.utils.exceptions import MalformedProbeRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProbeRecord:
    x: float
    y: float
    z: float
    ok: bool
    raw: str


def parse_probe_record(raw: str) -> ProbeRecord:
    """Parse ``[PRB:x,y,z(,extra axes):s]`` into machine coordinates."""
    line = raw.strip()
    if not (line.startswith(PROBE_RECORD_OPEN) and line.endswith(PROBE_RECORD_CLOSE)):
        raise MalformedProbeRecord("Not a probe record", raw)
    payload = line[len(PROBE_RECORD_OPEN):-len(PROBE_RECORD_CLOSE)]
    if ":" not in payload:
        raise MalformedProbeRecord("Probe record has no status field", raw)
    coords_part, ok_part = payload.rsplit(":", 1)
    ok_part = ok_part.strip()
    if len(ok_part) != 1 or not ok_part.isdigit():
        raise MalformedProbeRecord("Probe record status is not a digit", raw)
    coords = coords_part.split(",")
    if not 3 <= len(coords) <= 6:
        raise MalformedProbeRecord("Probe record needs 3 to 6 axis values", raw)
    try:
        values = [float(c) for c in coords]
    except ValueError as exc:
        raise MalformedProbeRecord(f"Probe record value is not numeric: {exc}", raw) from exc
    return ProbeRecord(x=values[0], y=values[1], z=values[2], ok=ok_part == "1", raw=line)


class ProbeRecordBuffer:
    """Append-only text queue that yields complete probe records.

    Data may arrive split anywhere, including inside a record; an opened
    record without its closing marker stays buffered until more data comes.
    """

    def __init__(self, limit: int = PROBE_BUFFER_LIMIT, keep: int = PROBE_BUFFER_KEEP):
        self._buffer = ""
        self._limit = limit
        self._keep = keep

    def __len__(self) -> int:
        return len(self._buffer)

    def pending(self) -> str:
        return self._buffer

    def clear(self) -> None:
        self._buffer = ""

    def feed(self, data: bytes | str) -> list[str]:
        if isinstance(data, (bytes, bytearray)):
            data = bytes(data).decode("utf-8", errors="replace")
        self._buffer += data
        if len(self._buffer) > self._limit:
            logger.debug("Trimming large probe buffer to prevent overflow")
            self._buffer = self._buffer[-self._keep:]
        return self._extract()

    def _extract(self) -> list[str]:
        records: list[str] = []
        while True:
            start = self._buffer.find(PROBE_RECORD_OPEN)
            if start < 0:
                # Keep a possible partial opener at the tail, drop the rest.
                self._buffer = self._buffer[-(len(PROBE_RECORD_OPEN) - 1):]
                break
            end = self._buffer.find(PROBE_RECORD_CLOSE, start)
            if end < 0:
                self._buffer = self._buffer[start:]
                break
            records.append(self._buffer[start:end + 1])
            self._buffer = self._buffer[end + 1:]
        return records


@dataclass
class ProbeSession:
    planned_count: int = 0
    probe_only: bool = False
    points: list[Point3] = field(default_factory=list)
    min_z: float = 0.0
    max_z: float = 0.0
    sum_z: float = 0.0

    def is_active(self) -> bool:
        return self.planned_count > 0

    def begin(self, planned_count: int, probe_only: bool) -> None:
        self.points = []
        self.min_z = self.max_z = self.sum_z = 0.0
        self.planned_count = planned_count
        self.probe_only = probe_only

    def add(self, pt: Point3) -> None:
        if not self.points:
            self.min_z = self.max_z = self.sum_z = pt.z
        else:
            self.min_z = min(self.min_z, pt.z)
            self.max_z = max(self.max_z, pt.z)
            self.sum_z += pt.z
        self.points.append(pt)

    def is_complete(self) -> bool:
        return self.is_active() and len(self.points) >= self.planned_count

    def average_z(self) -> float:
        if not self.points:
            return 0.0
        return self.sum_z / len(self.points)

    def finish(self) -> None:
        self.planned_count = 0


class ProbeStreamParser:
    """Turns raw channel data into work-space probe points for a session."""

    def __init__(
        self,
        session: ProbeSession,
        work_offset: WorkOffset,
        *,
        notify: Callable[[str], None],
        on_complete: Callable[[ProbeSession], None] | None = None,
    ):
        self.session = session
        self.work_offset = work_offset
        self.buffer = ProbeRecordBuffer()
        self.sink: ProbeSink | None = None
        self._notify = notify
        self._on_complete = on_complete

    def feed(self, data: bytes | str) -> list[Point3]:
        accepted: list[Point3] = []
        for raw in self.buffer.feed(data):
            logger.debug(f"Processing extracted PRB chunk: {raw}")
            try:
                record = parse_probe_record(raw)
            except MalformedProbeRecord as exc:
                logger.warning(f"Discarding malformed probe record {raw!r}: {exc}")
                continue
            pt = self._accept(record)
            if pt is not None:
                accepted.append(pt)
        return accepted

    def _accept(self, record: ProbeRecord) -> Point3 | None:
        session = self.session
        if not session.is_active():
            logger.info(f"Ignored PRB (no active probing session): {record.raw}")
            return None
        if not record.ok:
            logger.warning(f"Probe reported no contact, recording position anyway: {record.raw}")
        offset = self.work_offset
        pt = Point3(record.x - offset.x, record.y - offset.y, record.z - offset.z)
        if self.sink is not None:
            self.sink.write_point(pt)
        session.add(pt)
        self._notify(
            f"PROBED {format_number(pt.x)} {format_number(pt.y)} {format_number(pt.z)}"
        )
        logger.info(
            f"probed {len(session.points)}/{session.planned_count}> "
            f"{pt.x:.3f} {pt.y:.3f} {pt.z:.3f}"
        )
        if session.is_complete():
            self._complete()
        return pt

    def _complete(self) -> None:
        session = self.session
        logger.info(f"Probing complete. Total points: {len(session.points)}")
        self._notify(
            f"dz_min={session.min_z:.3f}, dz_max={session.max_z:.3f}, "
            f"dz_avg={session.average_z():.3f}"
        )
        if self.sink is not None:
            self.sink.close()
            self.sink = None
        try:
            if self._on_complete is not None:
                self._on_complete(session)
        finally:
            session.finish()
            self.work_offset.reset()
