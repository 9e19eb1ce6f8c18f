"""
Project Name: Tinyburn
Copyright (c) 2025 Henrik Olsson

Permission is hereby granted under MIT license.

Programmer Protocol Module

Drives one command/response transaction with the TPI programmer sketch:

    IDLE -> AWAIT_EXIT_HANDSHAKE -> READY -> TRANSACTING -> COMPLETE
                                                         -> TIMED_OUT

On open the engine sends 'Q' to make a listening bootloader leave
programming mode, then waits for the sketch to announce itself with two
ACK bytes. The command follows, terminated by '*', and everything the
sketch sends back is collected until it sends ESC. Silence for the whole
tick budget ends the transaction with a timeout.

Received bytes are posted to a queue by the link's reader thread; the
worker thread is the only consumer and the only one counting ticks.
"""

import queue
import logging
import threading
from enum import Enum
from typing import Callable, List, Optional

from tinyburn.constants import (
    ACK,
    ESC,
    COMMAND_TERMINATOR,
    LEAVE_PROGMODE,
    TICK_INTERVAL,
    TIMEOUT_TICKS,
)
from tinyburn.serial_comm import LinkBusyError, SerialError, SerialLink
from tinyburn.utils import is_printable

logger = logging.getLogger("Protocol")

HANDSHAKE_LENGTH = 2


class ProtocolError(SerialError):
    pass


class HandshakeTimeout(ProtocolError):
    """The programmer never sent its ready handshake."""

    pass


class ResponseTimeout(ProtocolError):
    """The programmer stopped sending before the end of response marker."""

    def __init__(self, message: str, response: str = ""):
        super().__init__(message)
        self.response = response


class State(Enum):
    IDLE = "idle"
    AWAIT_EXIT_HANDSHAKE = "await-exit-handshake"
    READY = "ready"
    TRANSACTING = "transacting"
    COMPLETE = "complete"
    TIMED_OUT = "timed-out"
    FAILED = "failed"


class Session:
    """State of a single transaction, owned by the engine that started it."""

    def __init__(self, command: str, ticks: int, blocking: bool):
        self.command = command
        self.ticks = ticks
        self.blocking = blocking
        self.state = State.IDLE
        self.history: List[State] = [State.IDLE]
        self.error: Optional[Exception] = None
        self.worker: Optional[threading.Thread] = None
        self._response: List[str] = []
        self._events: "queue.Queue[int]" = queue.Queue()
        self._done = threading.Event()

    @property
    def response(self) -> str:
        return "".join(self._response)

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Blocks until the transaction reached a terminal state."""
        return self._done.wait(timeout)

    def post(self, byte: int):
        self._events.put(byte)

    def next_event(self, timeout: float) -> Optional[int]:
        """The next received byte, or None when nothing arrived within timeout."""
        try:
            return self._events.get(timeout=timeout)
        except queue.Empty:
            return None

    def append(self, char: str):
        self._response.append(char)

    def finish(self):
        self._done.set()

    def enter(self, state: State):
        logger.debug(f"{self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)


class ProtocolEngine:
    """
    Runs transactions over a SerialLink, one at a time.

    query() blocks until the transaction ends and returns the response.
    send() returns as soon as the link is open and leaves the transaction
    running in the background.
    """

    def __init__(
        self,
        link: SerialLink,
        ticks: int = TIMEOUT_TICKS,
        tick_interval: float = TICK_INTERVAL,
        trace: Optional[Callable[[str], None]] = None,
        progress: Optional[Callable[[int], None]] = None,
    ):
        self.link = link
        self.ticks = ticks
        self.tick_interval = tick_interval
        self.trace = trace
        self.progress = progress
        self._session: Optional[Session] = None
        self._lock = threading.Lock()

    @property
    def session(self) -> Optional[Session]:
        return self._session

    def query(self, command: str) -> str:
        """
        Sends a command and waits for the complete response.

        Raises:
            HandshakeTimeout: If the programmer didn't signal ready.
            ResponseTimeout: If the response wasn't terminated in time.
            SerialError: If the link couldn't be opened or written.
        """
        session = self._start(command, blocking=True)
        session.worker.join()
        if session.error:
            raise session.error
        return session.response

    def send(self, command: str) -> Session:
        """Starts a transaction and returns without waiting for it to end."""
        return self._start(command, blocking=False)

    def _start(self, command: str, blocking: bool) -> Session:
        with self._lock:
            if self._session is not None and not self._session.done:
                raise LinkBusyError("A transaction is already running on this link.")
            session = Session(command, self.ticks, blocking)
            self.link.open(lambda byte: self._on_byte(session, byte))
            self._session = session
        session.worker = threading.Thread(
            target=self._run, args=(session,), name="protocol-worker", daemon=True
        )
        session.worker.start()
        return session

    def _on_byte(self, session: Session, byte: int):
        if self.trace and is_printable(byte):
            self.trace(chr(byte))
        session.post(byte)

    def _next_byte(self, session: Session) -> Optional[int]:
        return session.next_event(self.tick_interval)

    def _budget_seconds(self, session: Session) -> float:
        return session.ticks * self.tick_interval

    def _await_handshake(self, session: Session):
        matched = 0
        countdown = session.ticks
        while matched < HANDSHAKE_LENGTH:
            byte = self._next_byte(session)
            if byte is None:
                countdown -= 1
                if countdown <= 0:
                    raise HandshakeTimeout(
                        f"Programmer on {self.link.port_name} not ready after "
                        f"{self._budget_seconds(session):.1f}s."
                    )
                continue
            countdown = session.ticks
            matched = matched + 1 if byte == ACK else 0

    def _collect_response(self, session: Session):
        countdown = session.ticks
        while True:
            byte = self._next_byte(session)
            if byte is None:
                countdown -= 1
                if countdown <= 0:
                    raise ResponseTimeout(
                        f"No end of response from {self.link.port_name} after "
                        f"{self._budget_seconds(session):.1f}s of silence.",
                        session.response,
                    )
                continue
            if byte == ESC:
                return
            session.append(chr(byte))
            countdown = session.ticks

    def _run(self, session: Session):
        try:
            self.link.send(LEAVE_PROGMODE)
            session.enter(State.AWAIT_EXIT_HANDSHAKE)
            self._await_handshake(session)
            session.enter(State.READY)
            self.link.send(session.command + COMMAND_TERMINATOR, progress=self.progress)
            session.enter(State.TRANSACTING)
            self._collect_response(session)
            session.enter(State.COMPLETE)
        except ProtocolError as e:
            session.error = e
            session.enter(State.TIMED_OUT)
            self._report(session, e)
        except SerialError as e:
            session.error = e
            session.enter(State.FAILED)
            self._report(session, e)
        except Exception as e:
            session.error = e
            session.enter(State.FAILED)
            logger.error(f"Unexpected error during transaction: {e}")
        finally:
            self.link.close()
            session.finish()

    def _report(self, session: Session, error: Exception):
        if session.blocking:
            logger.debug(f"Transaction failed: {error}")
        else:
            logger.error(f"{error}")
