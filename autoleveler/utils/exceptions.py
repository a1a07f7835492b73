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

"""Custom exceptions for Autoleveler.

This module defines specific exception types for the probing, mesh and
compensation stages, so callers can tell an operator mistake (no program
loaded, too few points) from a channel failure or a malformed program.
"""

from typing import Any, Optional


class AutoLevelerException(Exception):
    """Base exception for all Autoleveler errors."""
    pass


# ============================================================================
# CHANNEL EXCEPTIONS
# ============================================================================

class ChannelException(AutoLevelerException):
    """Base exception for controller channel errors."""
    pass


class ChannelConnectionError(ChannelException):
    """Failed to open the controller channel."""
    pass


class ChannelWriteError(ChannelException):
    """Failed to write instruction text to the channel."""
    pass


# ============================================================================
# PROBING EXCEPTIONS
# ============================================================================

class ProbeException(AutoLevelerException):
    """Base exception for probing session errors."""
    pass


class InsufficientProbeData(ProbeException):
    """Not enough probed points to build a mesh or rewrite a program."""

    def __init__(self, message: str, point_count: int = 0):
        super().__init__(message)
        self.point_count = point_count


class MalformedProbeRecord(ProbeException):
    """A bracketed probe record failed numeric parsing."""

    def __init__(self, message: str, record: Optional[str] = None):
        super().__init__(message)
        self.record = record


class ProbeSessionActiveError(ProbeException):
    """A probing session was started while another one is still running."""
    pass


class ProbeAreaUndefined(ProbeException):
    """No explicit size, program bounds or context bounds to probe."""
    pass


class SinkUnavailable(ProbeException):
    """The session recording file could not be opened or written."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


# ============================================================================
# G-CODE EXCEPTIONS
# ============================================================================

class GcodeException(AutoLevelerException):
    """Base exception for G-code related errors."""
    pass


class NoProgramLoaded(GcodeException):
    """A compensation request arrived with no program loaded."""
    pass


class ArcGeometryInvalid(GcodeException):
    """Arc parameters cannot yield a valid center."""
    pass


class CompensationError(GcodeException):
    """Rewriting a program line failed."""

    def __init__(
        self,
        message: str,
        line_number: Optional[int] = None,
        line_content: Optional[str] = None,
    ):
        super().__init__(message)
        self.line_number = line_number
        self.line_content = line_content


class GcodeFileError(GcodeException):
    """Error reading or writing a G-code file."""
    pass


# ============================================================================
# SETTINGS EXCEPTIONS
# ============================================================================

class SettingsException(AutoLevelerException):
    """Base exception for settings errors."""
    pass


class SettingsLoadError(SettingsException):
    """Failed to load settings file."""
    pass


class SettingsSaveError(SettingsException):
    """Failed to save settings file."""
    pass


class SettingsValidationError(SettingsException):
    """Settings validation failed."""
    pass


# ============================================================================
# VALIDATION EXCEPTIONS
# ============================================================================

class ValidationException(AutoLevelerException):
    """Base exception for validation errors."""
    pass


class InvalidParameterError(ValidationException):
    """Invalid parameter value."""

    def __init__(self, parameter_name: str, value: Any, reason: Optional[str] = None):
        self.parameter_name = parameter_name
        self.value = value
        self.reason = reason

        message = f"Invalid value for '{parameter_name}': {value}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class InvalidRangeError(ValidationException):
    """Value out of valid range."""

    def __init__(self, value, min_val, max_val):
        self.value = value
        self.min_val = min_val
        self.max_val = max_val

        message = f"Value {value} out of range [{min_val}, {max_val}]"
        super().__init__(message)
