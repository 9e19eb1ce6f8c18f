"""
Project Name: Tinyburn
Copyright (c) 2025 Henrik Olsson

Permission is hereby granted under MIT license.

Serial Communication Module
"""

import serial
import serial.tools.list_ports
import serial.serialutil
import threading
import logging
from collections import namedtuple
from typing import Callable, List, Optional, Union

from tinyburn.constants import BAUD_RATE, BUFFER_SIZE, READ_TIMEOUT

logger = logging.getLogger("SerialLink")

PortInfo = namedtuple("PortInfo", ["device", "description", "manufacturer"])


class SerialError(Exception):
    """Custom exception for serial communication errors."""

    pass


class LinkBusyError(SerialError):
    """The link is already held open by another transaction."""

    pass


def list_ports() -> List[PortInfo]:
    """Lists the serial ports present on the system."""
    ports = []
    for p in serial.tools.list_ports.comports():
        ports.append(PortInfo(p.device, p.description, p.manufacturer))
    logger.debug(f"Serial ports found: {[p.device for p in ports]}")
    return ports


def find_programmer_port(preferred_port: Optional[str] = None) -> Optional[str]:
    """
    Picks the port of the programmer: the preferred port when given, otherwise
    the first port that looks like an Arduino or USB serial adapter.
    """
    if preferred_port:
        return preferred_port
    for p in list_ports():
        if (
            p.manufacturer
            and (
                "Arduino" in p.manufacturer
                or "FTDI" in p.manufacturer
                or "CH340" in p.manufacturer
            )
        ) or (p.description and "USB Serial" in p.description):
            return p.device
    return None


class SerialLink:
    """
    A serial port that delivers received bytes one at a time to a listener.

    open() connects the port and starts a reader thread that calls the
    listener for every byte; close() stops the thread and releases the port.
    Only one owner may hold the link open at a time.
    """

    def __init__(
        self,
        port: str,
        baud_rate: int = int(BAUD_RATE),
        timeout: float = READ_TIMEOUT,
    ):
        self.port_name = port
        self.baud_rate = baud_rate
        self.timeout = timeout
        self.connection: Optional[serial.Serial] = None
        self._listener: Optional[Callable[[int], None]] = None
        self._reader: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._lock = threading.Lock()

    def is_open(self) -> bool:
        return self.connection is not None and self.connection.is_open

    def open(self, listener: Callable[[int], None]):
        with self._lock:
            if self.connection is not None:
                raise LinkBusyError(f"{self.port_name} is already open.")
            try:
                logger.debug(
                    f"Opening {self.port_name} at {self.baud_rate} baud."
                )
                self.connection = serial.Serial(
                    port=self.port_name,
                    baudrate=self.baud_rate,
                    timeout=self.timeout,
                )
            except (
                OSError,
                serial.SerialException,
                serial.serialutil.SerialException,
            ) as e:
                logger.error(f"Failed to open serial port {self.port_name}: {e}")
                self.connection = None
                raise SerialError(f"Could not connect to {self.port_name}: {e}") from e

            self._listener = listener
            self._stop.clear()
            self._reader = threading.Thread(
                target=self._read_loop, name=f"reader-{self.port_name}", daemon=True
            )
            self._reader.start()

    def _read_loop(self):
        connection = self.connection
        while not self._stop.is_set():
            try:
                data = connection.read(connection.in_waiting or 1)
            except (serial.SerialException, OSError, TypeError) as e:
                if not self._stop.is_set():
                    logger.error(f"Serial error reading from {self.port_name}: {e}")
                break
            for byte in data:
                self._listener(byte)

    def send(self, data: Union[bytes, str], progress: Optional[Callable[[int], None]] = None) -> int:
        """Writes data in BUFFER_SIZE chunks, reporting each chunk to progress."""
        if not self.is_open():
            raise SerialError("Not connected.")
        if isinstance(data, str):
            data = data.encode("ascii")
        written = 0
        try:
            for offset in range(0, len(data), BUFFER_SIZE):
                chunk = data[offset : offset + BUFFER_SIZE]
                count = self.connection.write(chunk)
                self.connection.flush()
                written += count
                if progress:
                    progress(count)
        except serial.SerialTimeoutException as e:
            raise SerialError(f"Timeout writing to {self.port_name}: {e}") from e
        except serial.SerialException as e:
            raise SerialError(f"Serial error writing to {self.port_name}: {e}") from e
        logger.debug(f"Sent {written} bytes to {self.port_name}.")
        return written

    def close(self):
        with self._lock:
            if self.connection is None:
                return
            self._stop.set()
            reader = self._reader
            if reader and reader is not threading.current_thread():
                reader.join(timeout=1.0)
            try:
                self.connection.close()
                logger.debug(f"Closed {self.port_name}.")
            except serial.SerialException as e:
                logger.error(f"Error closing port {self.port_name}: {e}")
            finally:
                self.connection = None
                self._reader = None
                self._listener = None
