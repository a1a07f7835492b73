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

"""Command line entry point: ``python -m autoleveler``."""

from __future__ import annotations

import argparse
from dataclasses import replace
import logging
import os
import sys
import time
from typing import Sequence

from autoleveler.autolevel.command import parse_autolevel_command
from autoleveler.autolevel.controller import AutoLevel, AutoLevelOptions
from autoleveler.autolevel.grid import plan_probe_program
from autoleveler.autolevel.leveler import compensate, leveled_name, write_leveled_program
from autoleveler.autolevel.mesh import HeightMesh
from autoleveler.autolevel.probe_file import load_probe_points
from autoleveler.gcode_parser import compute_gcode_bounds
from autoleveler.serial_channel import SerialChannel
from autoleveler.utils.config import Settings
from autoleveler.utils.exceptions import AutoLevelerException, GcodeFileError
from autoleveler.utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def _read_program(path: str) -> str:
    try:
        with open(path, "r", encoding="utf-8", errors="replace", newline="") as handle:
            return handle.read()
    except OSError as exc:
        raise GcodeFileError(f"Cannot read G-code file {path}: {exc}") from exc


def _load_settings(args: argparse.Namespace) -> Settings:
    settings = Settings(args.config)
    settings.load()
    settings.validate()
    return settings


def _options(args: argparse.Namespace, settings: Settings | None = None) -> AutoLevelOptions:
    if settings is None:
        settings = _load_settings(args)
    options = AutoLevelOptions.from_settings(settings)
    overrides = {}
    for name in ("step", "feed", "travel_height", "margin", "probe_file"):
        value = getattr(args, name, None)
        if value is not None:
            overrides[name] = value
    if getattr(args, "strict", False):
        overrides["strict"] = True
    return replace(options, **overrides)


def _cmd_plan(args: argparse.Namespace) -> int:
    options = _options(args)
    command = parse_autolevel_command(args.command or "")
    request = command.to_request(
        step=options.step,
        travel_height=options.travel_height,
        feed=options.feed,
        margin=options.margin,
    )
    if args.width is not None or args.length is not None or args.grid is not None:
        request = replace(
            request,
            width=args.width if args.width is not None else request.width,
            height=args.length if args.length is not None else request.height,
            grid=args.grid if args.grid is not None else request.grid,
        )
    bounds = None
    if args.gcode:
        bounds = compute_gcode_bounds(_read_program(args.gcode).split("\n"))
    plan = plan_probe_program(request, bounds)
    print(plan.text())
    print(f"({plan.point_count()} probe points)", file=sys.stderr)
    return 0


def _cmd_level(args: argparse.Namespace) -> int:
    options = _options(args)
    program = _read_program(args.gcode)
    mesh = HeightMesh.build(load_probe_points(options.probe_file))
    result = compensate(
        program,
        mesh,
        step=options.step,
        arc_segment_mm=options.arc_segment_mm,
        progress_interval=0,
        strict=options.strict,
    )
    for message in result.diagnostics:
        print(message, file=sys.stderr)
    out_path = args.out
    if not out_path:
        directory, name = os.path.split(args.gcode)
        out_path = os.path.join(directory, leveled_name(name))
    export = write_leveled_program(out_path, result.lines)
    if export.error:
        print(f"Could not write {out_path}: {export.error}", file=sys.stderr)
        return 1
    print(f"Wrote {export.lines_written} lines to {export.output_path}")
    return 0


def _cmd_mesh(args: argparse.Namespace) -> int:
    options = _options(args)
    mesh = HeightMesh.build(load_probe_points(options.probe_file))
    stats = mesh.stats()
    if args.x is None or args.y is None:
        print(
            f"Samples: {stats.point_count} rows: {mesh.row_count()} Z(min/avg/max): "
            f"{stats.min_z:.4f} / {stats.mean_z:.4f} / {stats.max_z:.4f} (mm)"
        )
        return 0
    print(f"{mesh.query(args.x, args.y):.4f}")
    return 0


def _cmd_probe(args: argparse.Namespace) -> int:
    settings = _load_settings(args)
    options = _options(args, settings)
    port = args.port or settings.get("port")
    baud = args.baud or settings.get("baud_rate")

    channel = SerialChannel()
    autolevel = AutoLevel(channel, options)
    channel.on_data(autolevel.on_serial_read)
    channel.on_status(autolevel.on_controller_state)
    if args.gcode:
        autolevel.on_gcode_load(os.path.basename(args.gcode), _read_program(args.gcode))

    channel.connect(port, baud)
    try:
        channel.query_status()
        # Leveling a loaded job is left to the ``level`` command.
        if not autolevel.start(f"#autolevel {args.command or ''} P1"):
            return 1
        deadline = time.time() + args.timeout
        while autolevel.session.is_active():
            if time.time() > deadline:
                autolevel.cancel()
                print("Timed out waiting for probe results", file=sys.stderr)
                return 1
            channel.query_status()
            time.sleep(0.5)
    finally:
        channel.disconnect()
    print(f"Recorded {len(autolevel.points)} points to {options.probe_file}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="autoleveler",
        description="Plan GRBL probing grids and level G-code against probed heights.",
    )
    ap.add_argument("--config", default=None, help="Settings file (default: user config dir)")
    ap.add_argument("-v", "--verbose", action="store_true", help="Log debug output to the console")
    sub = ap.add_subparsers(dest="cmd", required=True)

    def probe_args(p: argparse.ArgumentParser) -> None:
        p.add_argument("--step", type=float, default=None, help="Probe step distance (mm)")
        p.add_argument("--margin", type=float, default=None, help="Margin from each edge (mm)")
        p.add_argument("--travel-height", dest="travel_height", type=float, default=None,
                       help="Safe travel height between probes (mm)")
        p.add_argument("--feed", type=float, default=None, help="Probe feed rate (mm/min)")

    p_plan = sub.add_parser("plan", help="Print the probing program")
    probe_args(p_plan)
    p_plan.add_argument("--width", type=float, default=None, help="Probe area size along X (mm)")
    p_plan.add_argument("--length", type=float, default=None, help="Probe area size along Y (mm)")
    p_plan.add_argument("--grid", type=int, default=None, help="Probe points per axis (overrides step)")
    p_plan.add_argument("--gcode", default=None, help="Take the probe area from this program's bounds")
    p_plan.add_argument("--command", default=None, help="Operator tokens, e.g. 'D5 M1 GRID4'")
    p_plan.set_defaults(func=_cmd_plan)

    p_level = sub.add_parser("level", help="Compensate a G-code file with a recorded probe file")
    p_level.add_argument("gcode", help="Input G-code file")
    p_level.add_argument("--probe-file", dest="probe_file", default=None, help="Recorded probe points")
    p_level.add_argument("--out", default=None, help="Output path (default: #AL:<name> beside input)")
    p_level.add_argument("--step", type=float, default=None, help="Probe step used for segment splitting (mm)")
    p_level.add_argument("--strict", action="store_true", help="Abort on the first line that fails")
    p_level.set_defaults(func=_cmd_level)

    p_mesh = sub.add_parser("mesh", help="Summarize or query a recorded probe file")
    p_mesh.add_argument("--probe-file", dest="probe_file", default=None, help="Recorded probe points")
    p_mesh.add_argument("--x", type=float, default=None, help="Query X (mm)")
    p_mesh.add_argument("--y", type=float, default=None, help="Query Y (mm)")
    p_mesh.set_defaults(func=_cmd_mesh)

    p_probe = sub.add_parser("probe", help="Run a probing session on a connected controller")
    probe_args(p_probe)
    p_probe.add_argument("--port", default=None, help="Serial port (e.g. COM3 or /dev/ttyUSB0)")
    p_probe.add_argument("--baud", type=int, default=None, help="Baud rate (default: from settings)")
    p_probe.add_argument("--gcode", default=None, help="Take the probe area from this program's bounds")
    p_probe.add_argument("--command", default=None, help="Operator tokens, e.g. 'GRID3 X100 Y80'")
    p_probe.add_argument("--probe-file", dest="probe_file", default=None, help="Where to record points")
    p_probe.add_argument("--timeout", type=float, default=600.0, help="Session timeout (seconds)")
    p_probe.set_defaults(func=_cmd_probe)
    return ap


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(console_level=logging.DEBUG if args.verbose else logging.WARNING)
    try:
        return args.func(args)
    except AutoLevelerException as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
