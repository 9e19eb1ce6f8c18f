"""
Project Name: Tinyburn
Copyright (c) 2025 Henrik Olsson

Permission is hereby granted under MIT license.

Console Output Utilities
"""

import logging
import sys
import threading

import tqdm

bar_format = "{l_bar}{bar}| {n}/{total} bytes "


class TraceWriter:
    """
    Live protocol trace. Receives the printable characters echoed by the
    programmer sketch and writes them to the console as they arrive.
    Remembers whether the last character ended a line so log records can
    start on a fresh one.
    """

    def __init__(self, stream=None):
        self.stream = stream or sys.stdout
        self.at_line_start = True
        self._lock = threading.Lock()

    def __call__(self, text: str):
        if not text:
            return
        with self._lock:
            self.stream.write(text)
            self.stream.flush()
            self.at_line_start = text.endswith("\n")

    def end_line(self):
        with self._lock:
            if not self.at_line_start:
                self.stream.write("\n")
                self.at_line_start = True


class SingleLineStatusHandler(logging.StreamHandler):
    """
    A logging handler that can overwrite a single line in the console.
    It looks for a 'status' attribute in the log record's 'extra' dict.

    - status='start': prints the message without a newline.
    - status='end': prints the message on the same line (using \\r) and adds a newline.

    Normal records clear an active status line, and a pending trace line
    from the programmer, before being printed.
    """

    def __init__(self, stream=None, trace: TraceWriter = None):
        super().__init__(stream or sys.stdout)
        self.trace = trace
        self._status_line_active = False

    def emit(self, record):
        status = getattr(record, "status", None)
        if self._status_line_active and status is None:
            self.stream.write(self.terminator)
            self._status_line_active = False
        if self.trace and status != "end":
            self.trace.end_line()

        try:
            msg = self.format(record)
            if status == "start":
                self.stream.write(msg)
                self._status_line_active = True
            elif status == "end":
                self.stream.write("\r" + msg + self.terminator)
                self._status_line_active = False
            else:
                self.stream.write(msg + self.terminator)
                self._status_line_active = False

            self.flush()
        except Exception:
            self.handleError(record)


class UploadProgress:
    """Progress bar fed with the number of bytes written to the programmer."""

    def __init__(self, total: int, description: str = "Uploading"):
        self.total = total
        self.pbar = tqdm.tqdm(total=total, desc=description, bar_format=bar_format)

    def __call__(self, sent: int):
        if self.pbar:
            self.pbar.update(sent)

    def close(self):
        if self.pbar:
            self.pbar.close()
            self.pbar = None
