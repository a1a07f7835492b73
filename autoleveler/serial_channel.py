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

"""pyserial transport for talking to a GRBL controller."""

from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Any

import serial
from serial.tools import list_ports as serial_list_ports

from autoleveler.types import DataCallback, StatusCallback
from autoleveler.utils.constants import (
    BAUD_DEFAULT,
    RT_STATUS,
    SERIAL_ACK_TIMEOUT,
    SERIAL_CONNECT_DELAY,
    SERIAL_READ_CHUNK,
    SERIAL_TIMEOUT,
    SERIAL_WRITE_TIMEOUT,
    THREAD_JOIN_TIMEOUT,
)
from autoleveler.utils.exceptions import ChannelConnectionError, ChannelWriteError
from autoleveler.utils.validation import validate_baud_rate, validate_port_name

logger = logging.getLogger(__name__)
serial_logger = logging.getLogger("autoleveler.serial")


def list_ports() -> list[str]:
    """Get list of available serial ports.

    Returns:
        List of port device names
    """
    return [p.device for p in serial_list_ports.comports()]


class SerialChannel:
    """Channel over a serial port.

    ``send_gcode`` and ``load_gcode`` only queue lines; a TX thread writes
    them one at a time, waiting for GRBL's ``ok``/``error`` before the next.
    Everything read from the port is handed raw to the ``on_data``
    callbacks, and complete ``<...>`` status lines to ``on_status``.
    """

    def __init__(
        self,
        connect_delay: float = SERIAL_CONNECT_DELAY,
        ack_timeout: float = SERIAL_ACK_TIMEOUT,
    ):
        self.ser: Any | None = None
        self.connect_delay = connect_delay
        self.ack_timeout = ack_timeout
        self._rx_thread: threading.Thread | None = None
        self._tx_thread: threading.Thread | None = None
        self._stop_evt = threading.Event()
        self._write_lock = threading.Lock()
        self._tx_q: queue.Queue[str] = queue.Queue()
        self._ack_q: queue.Queue[str] = queue.Queue()
        self._data_callbacks: list[DataCallback] = []
        self._status_callbacks: list[StatusCallback] = []
        self._line_buf = b""
        self.loaded_name: str | None = None

    def on_data(self, callback: DataCallback) -> None:
        self._data_callbacks.append(callback)

    def on_status(self, callback: StatusCallback) -> None:
        self._status_callbacks.append(callback)

    def connect(self, port: str, baud: int = BAUD_DEFAULT) -> None:
        """Open the port and start the worker threads.

        Args:
            port: Serial port name (e.g., 'COM3' or '/dev/ttyUSB0')
            baud: Baud rate (default: 115200)

        Raises:
            ChannelConnectionError: If the port cannot be opened
        """
        port = validate_port_name(port)
        baud = validate_baud_rate(baud)
        if self.is_connected():
            self.disconnect()

        self._stop_evt = threading.Event()
        try:
            self.ser = serial.Serial(
                port,
                baudrate=baud,
                timeout=SERIAL_TIMEOUT,
                write_timeout=SERIAL_WRITE_TIMEOUT,
            )
        except serial.SerialException as e:
            self.ser = None
            raise ChannelConnectionError(f"Failed to connect to {port}: {e}") from e

        # Some boards reset when the port opens.
        if self.connect_delay > 0:
            time.sleep(self.connect_delay)
        try:
            self.ser.reset_input_buffer()
            self.ser.reset_output_buffer()
        except serial.SerialException as e:
            logger.warning(f"Failed to reset buffers: {e}")

        stop_evt = self._stop_evt
        self._rx_thread = threading.Thread(
            target=self._rx_loop, args=(stop_evt,), daemon=True, name="AL-RX"
        )
        self._tx_thread = threading.Thread(
            target=self._tx_loop, args=(stop_evt,), daemon=True, name="AL-TX"
        )
        self._rx_thread.start()
        self._tx_thread.start()
        logger.info(f"Connected to {port} at {baud} baud")

    def disconnect(self) -> None:
        """Stop the worker threads and close the port. Idempotent."""
        self._stop_evt.set()
        if self.ser is not None:
            try:
                self.ser.close()
                logger.info("Serial port closed")
            except serial.SerialException as e:
                logger.error(f"Error closing serial port: {e}")
            finally:
                self.ser = None
        for thread in (self._rx_thread, self._tx_thread):
            if thread is None or thread is threading.current_thread():
                continue
            if thread.is_alive():
                thread.join(timeout=THREAD_JOIN_TIMEOUT)
                if thread.is_alive():
                    logger.warning(f"Thread {thread.name} did not terminate")
        self._rx_thread = None
        self._tx_thread = None
        self._line_buf = b""
        self._drain(self._tx_q)
        self._drain(self._ack_q)

    def is_connected(self) -> bool:
        return self.ser is not None and self.ser.is_open

    def pending(self) -> int:
        return self._tx_q.qsize()

    def send_gcode(self, text: str) -> None:
        for line in text.splitlines():
            line = line.strip()
            if line:
                self._tx_q.put(line)

    def load_gcode(self, name: str, text: str) -> None:
        """Queue a whole program for the controller."""
        self.loaded_name = name
        logger.info(f"Loading program {name}")
        self.send_gcode(text)

    def query_status(self) -> None:
        self._write(RT_STATUS)

    def _write(self, payload: bytes) -> None:
        ser = self.ser
        if ser is None or not ser.is_open:
            raise ChannelWriteError("Serial port is not connected")
        try:
            with self._write_lock:
                ser.write(payload)
        except serial.SerialException as e:
            raise ChannelWriteError(f"Serial write failed: {e}") from e

    def _tx_loop(self, stop_evt: threading.Event) -> None:
        logger.debug("TX thread started")
        try:
            while not stop_evt.is_set():
                try:
                    line = self._tx_q.get(timeout=SERIAL_TIMEOUT)
                except queue.Empty:
                    continue
                self._write((line + "\n").encode("utf-8"))
                serial_logger.debug(f"TX {line}")
                self._wait_ack(line, stop_evt)
        except ChannelWriteError as e:
            logger.error(f"TX thread error: {e}")
            stop_evt.set()
        finally:
            logger.debug("TX thread stopped")

    def _wait_ack(self, line: str, stop_evt: threading.Event) -> None:
        deadline = time.time() + self.ack_timeout
        while not stop_evt.is_set():
            try:
                reply = self._ack_q.get(timeout=SERIAL_TIMEOUT)
            except queue.Empty:
                if time.time() > deadline:
                    logger.warning(f"No acknowledgement for {line!r} after {self.ack_timeout}s")
                    return
                continue
            if reply.startswith("error"):
                logger.warning(f"GRBL rejected {line!r}: {reply}")
            return

    def _rx_loop(self, stop_evt: threading.Event) -> None:
        logger.debug("RX thread started")
        try:
            while not stop_evt.is_set():
                ser = self.ser
                if ser is None:
                    break
                try:
                    chunk = ser.read(SERIAL_READ_CHUNK)
                except serial.SerialException as e:
                    logger.error(f"Serial read error: {e}")
                    stop_evt.set()
                    break
                if chunk:
                    self._handle_chunk(chunk)
        finally:
            logger.debug("RX thread stopped")

    def _handle_chunk(self, chunk: bytes) -> None:
        serial_logger.debug(f"RX {chunk!r}")
        for callback in list(self._data_callbacks):
            callback(chunk)
        self._line_buf += chunk
        while b"\n" in self._line_buf:
            line, self._line_buf = self._line_buf.split(b"\n", 1)
            line_str = line.decode("utf-8", errors="replace").strip()
            if line_str == "ok" or line_str.startswith("error"):
                self._ack_q.put(line_str)
            elif line_str.startswith("<") and line_str.endswith(">"):
                for callback in list(self._status_callbacks):
                    callback(line_str)

    @staticmethod
    def _drain(q: queue.Queue) -> None:
        while True:
            try:
                q.get_nowait()
            except queue.Empty:
                return
