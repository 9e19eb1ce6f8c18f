"""Shared fixtures for the tinyburn tests."""

import logging

import pytest

from tinyburn import config as config_module
from tinyburn.config import ConfigManager
from tinyburn.serial_comm import LinkBusyError

ACK = b"\x06"
ESC = b"\x1b"


class ScriptedLink:
    """Stands in for SerialLink.

    Each entry of ``replies`` is played back to the listener right after one
    write, in order, the way a programmer sketch answers.
    """

    def __init__(self, replies=None, port_name="/dev/ttyFAKE"):
        self.port_name = port_name
        self.replies = list(replies or [])
        self.sent = []
        self.listener = None
        self.open_count = 0
        self.close_count = 0

    def is_open(self):
        return self.listener is not None

    def open(self, listener):
        if self.listener is not None:
            raise LinkBusyError("already open")
        self.listener = listener
        self.open_count += 1

    def send(self, data, progress=None):
        if isinstance(data, str):
            data = data.encode("ascii")
        self.sent.append(data)
        if progress:
            progress(len(data))
        if self.replies:
            for byte in self.replies.pop(0):
                self.listener(byte)
        return len(data)

    def close(self):
        self.listener = None
        self.close_count += 1


@pytest.fixture
def scripted_link():
    def factory(*replies):
        return ScriptedLink(replies)

    return factory


@pytest.fixture
def home(tmp_path, monkeypatch):
    """Points the config directory at tmp_path and resets the config singletons."""
    monkeypatch.setattr(config_module, "HOME_PATH", str(tmp_path))
    monkeypatch.setattr(ConfigManager, "_instances", {})
    monkeypatch.setattr(ConfigManager, "_initialized_configs", {})
    return tmp_path


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    root.handlers = handlers
    root.setLevel(level)
