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

"""Constants and default values for Autoleveler.

This module centralizes the protocol markers, numeric tolerances and
defaults shared by the planner, the probe stream parser and the
compensation engine.
"""

# ============================================================================
# SERIAL COMMUNICATION CONSTANTS
# ============================================================================

BAUD_DEFAULT = 115200
"""Default baud rate for GRBL serial communication."""

VALID_BAUD_RATES = (9600, 19200, 38400, 57600, 115200, 230400)
"""Baud rates accepted by the settings validator."""

SERIAL_TIMEOUT = 0.1
"""Serial read timeout (seconds)."""

SERIAL_WRITE_TIMEOUT = 1.0
"""Serial write timeout (seconds)."""

SERIAL_READ_CHUNK = 256
"""Bytes requested per serial read."""

SERIAL_ACK_TIMEOUT = 60.0
"""Longest wait for ok/error after a sent line (seconds)."""

RT_STATUS = b"?"
"""Realtime status report query."""

SERIAL_CONNECT_DELAY = 2.0
"""Wait after opening the port for boards that reset on connect (seconds)."""

THREAD_JOIN_TIMEOUT = 1.0
"""Time to wait for the worker threads on close (seconds)."""

# ============================================================================
# PROBE STREAM
# ============================================================================

PROBE_RECORD_OPEN = "[PRB:"
"""Opening marker of a GRBL probe result record."""

PROBE_RECORD_CLOSE = "]"
"""Closing marker of a GRBL probe result record."""

PROBE_BUFFER_LIMIT = 5000
"""Buffer size (characters) above which the head is discarded."""

PROBE_BUFFER_KEEP = 2000
"""Characters kept from the tail after trimming an oversized buffer."""

# ============================================================================
# PROBING DEFAULTS
# ============================================================================

DEFAULT_STEP = 10.0
"""Default probe spacing (mm)."""

DEFAULT_PROBE_FEED = 50.0
"""Default probing feed rate (mm/min)."""

DEFAULT_TRAVEL_HEIGHT = 2.0
"""Default safe travel height above the work zero (mm)."""

PROBE_OVERTRAVEL = 1.0
"""Probe moves run this far below the work zero (mm)."""

MIN_GRID_POINTS = 2
"""Minimum points per axis in grid-count mode."""

GRID_POSITION_TOLERANCE = 0.001
"""Two coordinates closer than this are the same probe position (mm)."""

DEFAULT_PROBE_FILE = "__last_Z_probe.txt"
"""Recovery file the probed points are recorded to."""

PROBE_FILE_PADDING = "0 0 0 0 0 0"
"""Reserved trailing fields of a recorded probe point."""

# ============================================================================
# MESH / COMPENSATION
# ============================================================================

MESH_ROW_EPSILON = 0.001
"""Y distance under which two probe points belong to the same mesh row."""

MESH_SPAN_EPSILON = 1e-9
"""Cell span treated as zero during interpolation."""

MIN_COMPENSATION_POINTS = 3
"""Probe points required before a program may be rewritten."""

ARC_SEGMENT_MM = 0.5
"""Maximum chord length used when linearizing arcs (mm)."""

SEGMENT_EPSILON = 1e-10
"""Moves shorter than this are not split."""

PROGRESS_INTERVAL = 1000
"""Source lines between compensation progress messages."""

OUTPUT_DECIMALS = 3
"""Decimals written for rewritten coordinates."""

MM_PER_INCH = 25.4

LEVELED_PREFIX = "#AL:"
"""Name prefix of programs produced by compensation."""

MESSAGE_PREFIX = "AL:"
"""Prefix of operator messages sent as G-code comments."""

# ============================================================================
# SETTINGS
# ============================================================================

SETTINGS_DIRNAME = "Autoleveler"
"""Directory name under the platform configuration root."""

SETTINGS_FILENAME = "settings.json"
"""Settings file name."""

SETTINGS_BACKUP_SUFFIX = ".backup"
"""Suffix of the copy kept while saving settings."""

SETTINGS_TEMP_SUFFIX = ".tmp"
"""Suffix of the temporary file written during an atomic save."""
