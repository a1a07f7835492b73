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
import os
from typing import Any, Mapping

from autoleveler.autolevel.command import parse_autolevel_command
from autoleveler.autolevel.grid import plan_probe_program
from autoleveler.autolevel.leveler import (
    CompensationResult,
    compensate,
    is_leveled_name,
    leveled_name,
    write_leveled_program,
)
from autoleveler.autolevel.mesh import HeightMesh, Point3
from autoleveler.autolevel.probe_file import ProbeFileSink, load_probe_points
from autoleveler.autolevel.probe_stream import ProbeSession, ProbeStreamParser
from autoleveler.gcode_parser import GcodeBounds, compute_gcode_bounds, format_number
from autoleveler.machine_state import (
    MachineState,
    WorkOffset,
    parse_status_report,
    wco_from_mapping,
)
from autoleveler.types import Channel, StatusLike
from autoleveler.utils.config import Settings
from autoleveler.utils.constants import (
    ARC_SEGMENT_MM,
    DEFAULT_PROBE_FEED,
    DEFAULT_PROBE_FILE,
    DEFAULT_STEP,
    DEFAULT_TRAVEL_HEIGHT,
    MESSAGE_PREFIX,
    MIN_COMPENSATION_POINTS,
    PROGRESS_INTERVAL,
)
from autoleveler.utils.exceptions import (
    AutoLevelerException,
    MalformedProbeRecord,
    NoProgramLoaded,
    ProbeSessionActiveError,
    SettingsValidationError,
    SinkUnavailable,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AutoLevelOptions:
    step: float = DEFAULT_STEP
    feed: float = DEFAULT_PROBE_FEED
    travel_height: float = DEFAULT_TRAVEL_HEIGHT
    margin: float | None = None
    out_dir: str = ""
    probe_file: str = DEFAULT_PROBE_FILE
    progress_interval: int = PROGRESS_INTERVAL
    arc_segment_mm: float = ARC_SEGMENT_MM
    strict: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "AutoLevelOptions":
        margin = settings.get("margin")
        try:
            return cls(
                step=float(settings.get("step", DEFAULT_STEP)),
                feed=float(settings.get("feed", DEFAULT_PROBE_FEED)),
                travel_height=float(settings.get("height", DEFAULT_TRAVEL_HEIGHT)),
                margin=None if margin is None else float(margin),
                out_dir=settings.get("out_dir", "") or "",
                probe_file=settings.get("probe_file", DEFAULT_PROBE_FILE) or DEFAULT_PROBE_FILE,
                progress_interval=int(settings.get("progress_interval", PROGRESS_INTERVAL)),
                arc_segment_mm=float(settings.get("arc_segment_mm", ARC_SEGMENT_MM)),
                strict=bool(settings.get("strict", False)),
            )
        except (TypeError, ValueError) as exc:
            raise SettingsValidationError(f"Invalid probing setting: {exc}") from exc


class AutoLevel:
    """Probing and leveling workflow bound to one controller channel.

    The host forwards channel events (status reports, raw serial data,
    program load/unload) and operator commands; all operator feedback goes
    back through the channel as ``(AL: ...)`` comments.
    """

    def __init__(self, channel: Channel, options: AutoLevelOptions | None = None):
        self.channel = channel
        self.options = options or AutoLevelOptions()
        self.work_offset = WorkOffset()
        self.machine = MachineState()
        self.session = ProbeSession()
        self.parser = ProbeStreamParser(
            self.session,
            self.work_offset,
            notify=self._notify,
            on_complete=self._on_probing_complete,
        )
        self.gcode_name: str | None = None
        self.gcode: str | None = None
        self.gcode_bounds: GcodeBounds | None = None
        self.mesh: HeightMesh | None = None
        self._recover_points()

    @property
    def points(self) -> list[Point3]:
        return list(self.session.points)

    def _notify(self, text: str) -> None:
        self.channel.send_gcode(f"({MESSAGE_PREFIX} {text})")

    def _recover_points(self) -> None:
        path = self.options.probe_file
        try:
            points = load_probe_points(path)
        except (OSError, MalformedProbeRecord) as exc:
            logger.error(f"Failed reading probe file {path}: {exc}")
            self.session.points = []
            return
        for pt in points:
            self.session.add(pt)

    # -- channel events ---------------------------------------------------

    def on_controller_state(self, status: StatusLike) -> None:
        if isinstance(status, str):
            self.machine = parse_status_report(status)
            wco = self.machine.wco
        else:
            wco = wco_from_mapping(status)
            if wco is not None:
                self.machine.wco = wco
        if wco is not None:
            self.work_offset.set(*wco)

    def on_gcode_load(self, name: str, text: str) -> None:
        if is_leveled_name(name):
            logger.info(f"Ignoring our own leveled program {name}")
            return
        self.gcode_name = name
        self.gcode = text
        self.gcode_bounds = compute_gcode_bounds(text.split("\n"))
        logger.info(f"Loaded program {name}")

    def on_gcode_unload(self) -> None:
        self.gcode_name = None
        self.gcode = None
        self.gcode_bounds = None

    def on_serial_read(self, data: bytes | str) -> list[Point3]:
        return self.parser.feed(data)

    def update_context(self, context: Mapping[str, Any] | None) -> None:
        if not context:
            return
        mpos_z = context.get("mposz")
        pos_z = context.get("posz")
        if mpos_z is None or pos_z is None:
            return
        self.work_offset.reconcile_z(float(mpos_z), float(pos_z))

    # -- operator commands ------------------------------------------------

    def handle_command(self, text: str, context: Mapping[str, Any] | None = None) -> bool:
        """Dispatch a ``#autolevel...`` command. Returns False for other text."""
        parts = (text or "").split()
        if not parts:
            return False
        name = parts[0].lower()
        if name == "#autolevel":
            self.update_context(context)
            self.start(text, context)
        elif name == "#autolevel_reapply":
            self.reapply()
        elif name == "#autolevel_dump":
            self.dump_mesh()
        elif name == "#autolevel_cancel":
            self.cancel()
        else:
            return False
        return True

    def start(self, command: str, context: Mapping[str, Any] | None = None) -> bool:
        try:
            return self._start(command, context)
        except AutoLevelerException as exc:
            logger.error(f"Auto-level start failed: {exc}")
            self._notify(f"error occurred {exc}")
            return False

    def _start(self, command: str, context: Mapping[str, Any] | None) -> bool:
        if self.session.is_active():
            raise ProbeSessionActiveError(
                f"probing already in progress ({len(self.session.points)}/"
                f"{self.session.planned_count}), cancel it first"
            )
        cmd = parse_autolevel_command(command)
        if self.gcode is None:
            self._notify("no gcode loaded")
            if not cmd.probe_only:
                return False

        opts = self.options
        request = cmd.to_request(
            step=opts.step,
            travel_height=opts.travel_height,
            feed=opts.feed,
            margin=opts.margin,
        )
        logger.info(
            f"STEP: {request.step} mm HEIGHT:{request.travel_height} mm FEED:{request.feed} "
            f"MARGIN: {request.effective_margin()} mm  PROBE ONLY:{cmd.probe_only}  GRID: {request.grid}"
        )
        logger.info(f"Using tracked WCO: {self.work_offset.as_tuple()}")
        plan = plan_probe_program(request, self.gcode_bounds, context)

        if self.parser.sink is None:
            self._open_sink()
        self._notify("auto-leveling started")
        self.parser.buffer.clear()
        self.session.begin(plan.point_count(), cmd.probe_only)
        self.channel.send_gcode(plan.text())
        return True

    def _open_sink(self) -> None:
        path = self.options.probe_file
        try:
            self.parser.sink = ProbeFileSink(path).open()
        except SinkUnavailable as exc:
            logger.warning(f"Probing continues without a probe file: {exc}")
            self._notify(str(exc))
            return
        self._notify(f"Opened probe file {path}")

    def cancel(self) -> bool:
        if not self.session.is_active():
            return False
        self.session.finish()
        self.parser.buffer.clear()
        if self.parser.sink is not None:
            self.parser.sink.close()
            self.parser.sink = None
        logger.info("Probing session cancelled")
        self._notify("auto-leveling cancelled")
        return True

    def reapply(self) -> CompensationResult | None:
        if self.gcode is None:
            self._notify("no gcode loaded")
            return None
        if len(self.session.points) < MIN_COMPENSATION_POINTS:
            self._notify("no previous autolevel points")
            return None
        return self.apply_compensation()

    def dump_mesh(self) -> None:
        points = self.session.points
        if not points:
            self._notify("no mesh data")
            return
        self._notify("dumping mesh start")
        for pt in points:
            self._notify(f"PROBED {format_number(pt.x)} {format_number(pt.y)} {format_number(pt.z)}")
        self._notify("finished")

    # -- compensation -----------------------------------------------------

    def _on_probing_complete(self, session: ProbeSession) -> None:
        if session.probe_only:
            logger.info("Probe only mode. Finished.")
            self._notify("finished")
            return
        self.apply_compensation()

    def apply_compensation(self) -> CompensationResult | None:
        self._notify("applying ...")
        opts = self.options
        try:
            if self.gcode is None or self.gcode_name is None:
                raise NoProgramLoaded("no gcode loaded")
            mesh = HeightMesh.build(self.session.points)
            result = compensate(
                self.gcode,
                mesh,
                step=opts.step,
                arc_segment_mm=opts.arc_segment_mm,
                progress_interval=opts.progress_interval,
                notify=self._notify,
                strict=opts.strict,
            )
        except AutoLevelerException as exc:
            logger.error(f"error occurred {exc}")
            self._notify(f"error occurred {exc}")
            return None
        self.mesh = mesh

        name = leveled_name(self.gcode_name)
        self._notify(f"loading new gcode {name} ...")
        self.channel.load_gcode(name, result.text())
        if opts.out_dir:
            path = os.path.join(opts.out_dir, name)
            export = write_leveled_program(path, result.lines)
            if export.error:
                self._notify(f"could not write output file {export.error}")
            else:
                self._notify(f"output file written to {path}")
        self._notify("finished")
        return result
