"""
Project Name: Tinyburn
Copyright (c) 2025 Henrik Olsson

Permission is hereby granted under MIT license.
AVRdude Tool Wrapper Module
"""
import os
import re
import logging
import tempfile
from subprocess import Popen, PIPE, TimeoutExpired
from pathlib import Path
from shutil import which

from tinyburn.chips import normalize_signature
from tinyburn.constants import ISP_BAUD_RATE, SERIAL_ISP_PROGRAMMERS

logger = logging.getLogger("Avrdude")

ISP_FUSE_NAMES = ("lfuse", "hfuse", "efuse")


class AvrdudeNotFoundError(FileNotFoundError): ...


class AvrdudeConfigNotFoundError(FileNotFoundError): ...


class AvrdudeCommandError(Exception):
    def __init__(self, message, stderr=""):
        super().__init__(message)
        self.stderr = stderr


class Avrdude:
    """
    Runs avrdude against an ISP programmer to read and write the fuse
    bytes, read the device signature and write the flash of ISP parts.
    Programmers that sit on a serial port ('arduino', 'buspirate') get the
    port and 19200 baud, anything else is addressed over USB.
    """

    def __init__(
        self,
        partno,
        programmer_id,
        port=None,
        avrdude_config_path=None,
        avrdude_path=None,
        verbose=False,
    ):
        self.partno = partno
        self.programmer_id = programmer_id
        self.port = port
        self.verbose = verbose
        self.command = self._find_avrdude_path(avrdude_path)
        self.version = self._get_avrdude_version()
        if avrdude_config_path or (self.version is not None and self.version < 7.0):
            self.config = self._configure_avrconf(avrdude_config_path)
        else:
            self.config = None
        logger.debug(f"Initialized Avrdude for {self.partno} with {self.programmer_id}")

    def _find_avrdude_path(self, avrdude_path):
        executable = "avrdude"
        paths_to_check = [
            avrdude_path,
            Path(avrdude_path) / executable if avrdude_path else None,
            Path(avrdude_path) / "bin" / executable if avrdude_path else None,
            which(executable),
        ]
        for path in paths_to_check:
            if path and which(str(path)):
                return which(str(path))
        raise AvrdudeNotFoundError("avrdude executable not found")

    def _configure_avrconf(self, confpath):
        if not confpath:
            confpath = os.path.dirname(self.command)

        avrconf = Path(confpath)
        if not avrconf.name.endswith("avrdude.conf"):
            avrconf /= "avrdude.conf"

        if not avrconf.exists():
            raise AvrdudeConfigNotFoundError(f"avrdude.conf not found at {avrconf}")

        return avrconf

    def _get_avrdude_version(self):
        stderr, _ = self._execute_command([])
        match = re.search(
            r"avrdude\s+version\s+(\d+\.\d+)", stderr, re.IGNORECASE
        )
        if match:
            version = match.group(1)
            logger.debug(f"avrdude version: {version}")
            return float(version)
        logger.warning("Could not determine avrdude version.")
        return None

    def _execute_command(self, options):
        cmd = [self.command] + options
        logger.debug(f"Executing command: {' '.join(cmd)}")
        process = Popen(cmd, stdout=PIPE, stderr=PIPE, stdin=PIPE)
        try:
            stdout, stderr = process.communicate(timeout=30)
            returncode = process.returncode
        except TimeoutExpired as e:
            process.kill()
            stderr = e.stderr or b""
            returncode = -1
        return stderr.decode("ISO-8859-1"), returncode

    def build_options(self, extra_flags=None):
        options = ["-v"] if self.verbose else []
        if self.programmer_id in SERIAL_ISP_PROGRAMMERS:
            if not self.port:
                raise AvrdudeCommandError(
                    f"Programmer '{self.programmer_id}' needs a serial port."
                )
            options += ["-P", self.port, "-b", ISP_BAUD_RATE]
        else:
            options += ["-P", "usb"]
        if self.config:
            options += ["-C", str(self.config.absolute())]
        options += ["-c", self.programmer_id, "-p", self.partno]
        if extra_flags:
            options += extra_flags
        return options

    def _log_failure(self, operation, stderr):
        logger.error(f"Error {operation} with {self.programmer_id}")
        for line in stderr.splitlines():
            logger.debug(f"  {line}")

    def read_fuses(self):
        """Reads the low, high and extended fuse bytes."""
        with tempfile.TemporaryDirectory(prefix="tinyburn-") as tmp_dir:
            files = {name: Path(tmp_dir) / f"{name}.hex" for name in ISP_FUSE_NAMES}
            flags = []
            for name, path in files.items():
                flags += ["-U", f"{name}:r:{path}:h"]
            stderr, returncode = self._execute_command(self.build_options(flags))
            if returncode != 0:
                self._log_failure("reading fuses", stderr)
                raise AvrdudeCommandError("Error reading fuses", stderr)
            fuses = {name: int(path.read_text().strip(), 0) for name, path in files.items()}
        logger.debug(
            "Fuses read: " + ", ".join(f"{name}=0x{value:02X}" for name, value in fuses.items())
        )
        return fuses

    def write_fuse(self, name, value):
        """Writes one fuse byte. Returns (stderr, returncode)."""
        flags = ["-U", f"{name}:w:0x{value:02X}:m"]
        return self._execute_command(self.build_options(flags))

    def read_signature(self):
        """Returns the device signature as six hex characters."""
        with tempfile.TemporaryDirectory(prefix="tinyburn-") as tmp_dir:
            sig_file = Path(tmp_dir) / "sig.hex"
            stderr, returncode = self._execute_command(
                self.build_options(["-U", f"signature:r:{sig_file}:h"])
            )
            if returncode != 0:
                self._log_failure("reading device signature", stderr)
                raise AvrdudeCommandError("Error reading device signature", stderr)
            return normalize_signature(sig_file.read_text().strip())

    def flash_firmware(self, hex_file, extra_flags=None):
        """Writes an Intel HEX file to flash. Returns (stderr, returncode)."""
        options = self.build_options(extra_flags) + [
            "-U",
            f"flash:w:{hex_file}:i",
        ]
        return self._execute_command(options)
