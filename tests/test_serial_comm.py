"""Tests for the serial link and port discovery."""

import threading
import time
from unittest.mock import MagicMock, patch

import pytest
import serial

from tinyburn.serial_comm import (
    LinkBusyError,
    PortInfo,
    SerialError,
    SerialLink,
    find_programmer_port,
    list_ports,
)


def make_port(device, description="n/a", manufacturer=None):
    port = MagicMock()
    port.device = device
    port.description = description
    port.manufacturer = manufacturer
    return port


def make_connection(*chunks):
    """A fake serial.Serial returning chunks from read(), then nothing."""
    pending = list(chunks)
    connection = MagicMock()
    connection.is_open = True
    connection.in_waiting = 0
    connection.write.side_effect = len

    def read(size):
        if pending:
            return pending.pop(0)
        time.sleep(0.005)
        return b""

    connection.read.side_effect = read
    return connection


class TestListPorts:
    @patch("tinyburn.serial_comm.serial.tools.list_ports.comports")
    def test_list_ports(self, mock_comports):
        mock_comports.return_value = [
            make_port("/dev/ttyACM0", "Arduino Uno", "Arduino (www.arduino.cc)"),
            make_port("/dev/ttyS0"),
        ]
        result = list_ports()
        assert result == [
            PortInfo("/dev/ttyACM0", "Arduino Uno", "Arduino (www.arduino.cc)"),
            PortInfo("/dev/ttyS0", "n/a", None),
        ]

    @patch("tinyburn.serial_comm.serial.tools.list_ports.comports")
    def test_find_prefers_given_port(self, mock_comports):
        assert find_programmer_port("/dev/ttyUSB3") == "/dev/ttyUSB3"
        mock_comports.assert_not_called()

    @patch("tinyburn.serial_comm.serial.tools.list_ports.comports")
    def test_find_arduino(self, mock_comports):
        mock_comports.return_value = [
            make_port("/dev/ttyS0"),
            make_port("/dev/ttyUSB0", "FT232R", "FTDI"),
        ]
        assert find_programmer_port() == "/dev/ttyUSB0"

    @patch("tinyburn.serial_comm.serial.tools.list_ports.comports")
    def test_find_usb_serial_description(self, mock_comports):
        mock_comports.return_value = [make_port("COM4", "USB Serial Device (COM4)")]
        assert find_programmer_port() == "COM4"

    @patch("tinyburn.serial_comm.serial.tools.list_ports.comports")
    def test_find_nothing(self, mock_comports):
        mock_comports.return_value = [make_port("/dev/ttyS0")]
        assert find_programmer_port() is None


class TestSerialLink:
    @patch("tinyburn.serial_comm.serial.Serial")
    def test_open_delivers_bytes(self, mock_serial_class):
        mock_serial_class.return_value = make_connection(b"\x06O", b"K")
        received = []
        done = threading.Event()

        def listener(byte):
            received.append(byte)
            if len(received) == 3:
                done.set()

        link = SerialLink("/dev/ttyUSB0")
        link.open(listener)
        try:
            assert done.wait(2)
        finally:
            link.close()

        assert received == [0x06, ord("O"), ord("K")]
        mock_serial_class.assert_called_once_with(
            port="/dev/ttyUSB0", baudrate=115200, timeout=0.1
        )

    @patch("tinyburn.serial_comm.serial.Serial")
    def test_open_failure(self, mock_serial_class):
        mock_serial_class.side_effect = serial.SerialException("could not open port")
        link = SerialLink("/dev/nonexistent")
        with pytest.raises(SerialError):
            link.open(lambda byte: None)
        assert not link.is_open()

    @patch("tinyburn.serial_comm.serial.Serial")
    def test_open_twice_is_busy(self, mock_serial_class):
        mock_serial_class.return_value = make_connection()
        link = SerialLink("/dev/ttyUSB0")
        link.open(lambda byte: None)
        try:
            with pytest.raises(LinkBusyError):
                link.open(lambda byte: None)
        finally:
            link.close()

    @patch("tinyburn.serial_comm.serial.Serial")
    def test_send_in_chunks(self, mock_serial_class):
        connection = make_connection()
        mock_serial_class.return_value = connection
        progress = []
        link = SerialLink("/dev/ttyUSB0")
        link.open(lambda byte: None)
        try:
            assert link.send("x" * 150, progress=progress.append) == 150
        finally:
            link.close()

        assert progress == [64, 64, 22]
        assert [c.args[0] for c in connection.write.call_args_list] == [
            b"x" * 64,
            b"x" * 64,
            b"x" * 22,
        ]
        assert connection.flush.call_count == 3

    def test_send_when_closed(self):
        with pytest.raises(SerialError):
            SerialLink("/dev/ttyUSB0").send(b"Q\n")

    @patch("tinyburn.serial_comm.serial.Serial")
    def test_send_error_wrapped(self, mock_serial_class):
        connection = make_connection()
        connection.write.side_effect = serial.SerialException("device disconnected")
        mock_serial_class.return_value = connection
        link = SerialLink("/dev/ttyUSB0")
        link.open(lambda byte: None)
        try:
            with pytest.raises(SerialError):
                link.send(b"Q\n")
        finally:
            link.close()

    @patch("tinyburn.serial_comm.serial.Serial")
    def test_close_releases_port(self, mock_serial_class):
        connection = make_connection()
        mock_serial_class.return_value = connection
        link = SerialLink("/dev/ttyUSB0")
        link.open(lambda byte: None)
        link.close()

        connection.close.assert_called_once()
        assert not link.is_open()
        link.open(lambda byte: None)
        link.close()
        assert mock_serial_class.call_count == 2

    def test_close_when_not_open(self):
        SerialLink("/dev/ttyUSB0").close()
