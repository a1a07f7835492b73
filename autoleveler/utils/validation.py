"""Validation utilities for Autoleveler.

This module provides validation functions for operator-supplied probing
parameters and channel settings.
"""

from .constants import MIN_GRID_POINTS, VALID_BAUD_RATES
from .exceptions import InvalidParameterError, InvalidRangeError


def validate_feed_rate(feed: float) -> float:
    """Validate feed rate.

    Args:
        feed: Feed rate in mm/min

    Returns:
        The validated feed rate

    Raises:
        InvalidParameterError: If feed rate is invalid
    """
    try:
        feed = float(feed)
    except (TypeError, ValueError):
        raise InvalidParameterError("feed_rate", feed, "must be numeric")

    if feed <= 0:
        raise InvalidParameterError("feed_rate", feed, "must be positive")

    return feed


def validate_positive(value: float, name: str) -> float:
    """Validate a strictly positive distance.

    Args:
        value: Value to check
        name: Parameter name used in the error message

    Returns:
        The validated value as float

    Raises:
        InvalidParameterError: If value is not a positive number
    """
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise InvalidParameterError(name, value, "must be numeric")

    if value != value or value <= 0:
        raise InvalidParameterError(name, value, "must be positive")

    return value


def validate_grid_count(count: float, max_count: int = 1000) -> int:
    """Validate a points-per-axis grid request.

    Counts below the minimum are raised to it rather than rejected, so a
    request always spans at least the start and end of each axis.

    Args:
        count: Requested points per axis
        max_count: Largest accepted count

    Returns:
        The validated count

    Raises:
        InvalidParameterError: If count is not numeric
        InvalidRangeError: If count exceeds max_count
    """
    try:
        count = int(float(count))
    except (TypeError, ValueError, OverflowError):
        raise InvalidParameterError("grid", count, "must be numeric")

    if count < MIN_GRID_POINTS:
        count = MIN_GRID_POINTS
    if count > max_count:
        raise InvalidRangeError(count, MIN_GRID_POINTS, max_count)

    return count


def validate_port_name(port: str) -> str:
    """Validate serial port name.

    Args:
        port: Serial port name (e.g., "COM3" or "/dev/ttyUSB0")

    Returns:
        The validated port name

    Raises:
        InvalidParameterError: If port name is invalid
    """
    if not port or not isinstance(port, str):
        raise InvalidParameterError("port", port, "must be non-empty string")

    port = port.strip()
    if not port:
        raise InvalidParameterError("port", port, "must be non-empty")

    return port


def validate_baud_rate(baud: int) -> int:
    """Validate baud rate.

    Args:
        baud: Baud rate value

    Returns:
        The validated baud rate

    Raises:
        InvalidParameterError: If baud rate is invalid
    """
    try:
        baud = int(baud)
    except (TypeError, ValueError):
        raise InvalidParameterError("baud_rate", baud, "must be integer")

    if baud not in VALID_BAUD_RATES:
        raise InvalidParameterError(
            "baud_rate",
            baud,
            f"must be one of {list(VALID_BAUD_RATES)}"
        )

    return baud
